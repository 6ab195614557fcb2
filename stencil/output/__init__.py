"""Staging and atomic commit of generated output."""

from stencil.output.materializer import MaterializeResult, Materializer, OverwritePolicy

__all__ = ["MaterializeResult", "Materializer", "OverwritePolicy"]
