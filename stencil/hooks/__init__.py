"""Sandboxed pre- and post-generation hooks."""

from stencil.hooks.api import FileApi, HookAbort, VariableApi, abort
from stencil.hooks.runner import HookRunner

__all__ = ["FileApi", "HookAbort", "HookRunner", "VariableApi", "abort"]
