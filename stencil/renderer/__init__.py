"""Rendering of template paths and file contents."""

from stencil.renderer.templates import REASON_EMPTY_PATH, TEMPLATE_SUFFIX, TemplateRenderer

__all__ = ["REASON_EMPTY_PATH", "TEMPLATE_SUFFIX", "TemplateRenderer"]
