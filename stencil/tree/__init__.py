"""Template tree walking and ignore rules."""

from stencil.tree.walker import FileEntry, TreeFilter, is_binary

__all__ = ["FileEntry", "TreeFilter", "is_binary"]
