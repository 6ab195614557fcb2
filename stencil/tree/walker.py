"""Deterministic, lazy walk of a template tree.

``TreeFilter`` yields one :class:`FileEntry` per regular file (and per
symlink) below the template root, ordered lexicographically by full relative
path (so ``a.txt`` precedes ``a/x``), deciding for each
whether it becomes part of the generated project.  Ignore patterns use git's
wildmatch syntax via ``pathspec``: they are evaluated in order and the last
matching pattern decides, so ``!keep.tmp`` after ``*.tmp`` re-includes
``keep.tmp``.
"""

from __future__ import annotations

import codecs
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from pathspec import PathSpec

from stencil.errors import IoFailure

ALWAYS_EXCLUDED_DIRS: frozenset[str] = frozenset({".git"})

REASON_ALWAYS_EXCLUDED = "always-excluded"
REASON_SYMLINK = "symlink not followed"


@dataclass
class FileEntry:
    """A file of the template tree on its way to the destination."""

    relative_path: str
    source_path: Path
    binary: bool = False
    mode: int = 0o644
    included: bool = True
    reason: str | None = None
    rendered_path: str | None = None
    rendered_content: str | bytes | None = None

    def exclude(self, reason: str) -> None:
        self.included = False
        self.reason = reason


class TreeFilter:
    """Lazily walks and classifies the files of a template.

    Patterns can be appended with :meth:`extend` until the walk is consumed,
    which lets conditional ignore blocks take effect once placeholder values
    are known.
    """

    def __init__(
        self,
        root: Path,
        patterns: Iterable[str] = (),
        always_excluded: Iterable[str] = (),
        sniff_bytes: int = 8000,
    ) -> None:
        self.root = Path(root)
        self.patterns: list[str] = list(patterns)
        self.always_excluded = {Path(p).as_posix() for p in always_excluded}
        self.sniff_bytes = sniff_bytes
        self._compiled: list[tuple[str, object]] | None = None

    def extend(self, patterns: Iterable[str]) -> None:
        """Append patterns after the existing ones."""
        self.patterns.extend(patterns)
        self._compiled = None

    # -- Decisions ---------------------------------------------------------

    def _rules(self) -> list[tuple[str, object]]:
        if self._compiled is None:
            rules: list[tuple[str, object]] = []
            for line in self.patterns:
                compiled = PathSpec.from_lines("gitwildmatch", [line]).patterns
                for pattern in compiled:
                    # Blank lines and comments compile to patterns with include=None.
                    if getattr(pattern, "include", None) is not None:
                        rules.append((line, pattern))
            self._compiled = rules
        return self._compiled

    def decide(self, relative_path: str) -> tuple[bool, str | None]:
        """Return ``(included, reason)`` for a POSIX relative path."""
        parts = relative_path.split("/")
        if any(part in ALWAYS_EXCLUDED_DIRS for part in parts):
            return False, REASON_ALWAYS_EXCLUDED
        if relative_path in self.always_excluded:
            return False, REASON_ALWAYS_EXCLUDED

        decision: tuple[bool, str | None] = (True, None)
        for line, pattern in self._rules():
            if pattern.match_file(relative_path) is not None:  # type: ignore[attr-defined]
                if pattern.include:  # type: ignore[attr-defined]
                    decision = (False, f"ignored by '{line}'")
                else:
                    decision = (True, None)
        return decision

    # -- Walking -----------------------------------------------------------

    def __iter__(self) -> Iterator[FileEntry]:
        return self.walk()

    def walk(self) -> Iterator[FileEntry]:
        """Yield every file entry, included or not, ordered by relative path.

        Raises:
            IoFailure: If a directory or file cannot be read.
        """
        yield from self._walk_dir(self.root, "")

    def included(self) -> Iterator[FileEntry]:
        """Yield only the entries that will be generated."""
        return (entry for entry in self.walk() if entry.included)

    def _walk_dir(self, directory: Path, prefix: str) -> Iterator[FileEntry]:
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=_sort_key)
        except OSError as exc:
            raise IoFailure(f"Cannot list {directory}: {exc}", directory) from exc

        for child in children:
            rel = f"{prefix}{child.name}"
            if child.is_symlink():
                entry = FileEntry(relative_path=rel, source_path=Path(child.path))
                entry.exclude(REASON_SYMLINK)
                yield entry
            elif child.is_dir(follow_symlinks=False):
                if child.name in ALWAYS_EXCLUDED_DIRS:
                    continue
                yield from self._walk_dir(Path(child.path), f"{rel}/")
            elif child.is_file(follow_symlinks=False):
                yield self._entry(child, rel)

    def _entry(self, child: os.DirEntry, rel: str) -> FileEntry:
        path = Path(child.path)
        included, reason = self.decide(rel)
        entry = FileEntry(relative_path=rel, source_path=path, included=included, reason=reason)
        if not included:
            return entry
        try:
            entry.mode = child.stat(follow_symlinks=False).st_mode & 0o777
            with open(path, "rb") as fh:
                entry.binary = is_binary(fh.read(self.sniff_bytes))
        except OSError as exc:
            raise IoFailure(f"Cannot read template file {rel}: {exc}", path) from exc
        return entry


def is_binary(prefix: bytes) -> bool:
    """Classify a file by its leading bytes: NUL or invalid UTF-8 means binary."""
    if b"\x00" in prefix:
        return True
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        # final=False tolerates a multi-byte sequence cut at the prefix end.
        decoder.decode(prefix, final=False)
    except UnicodeDecodeError:
        return True
    return False


def _sort_key(entry: os.DirEntry) -> str:
    # A directory sorts as its name plus the separator its children carry.
    return entry.name + "/" if entry.is_dir(follow_symlinks=False) else entry.name
