"""Atomic materialization of rendered entries into the destination.

Every included entry is first written into a staging directory created next
to the destination, so the destination is not touched until the commit step.
Commit is a single ``os.rename`` when the destination is absent or empty.
Otherwise files are moved in one by one under the overwrite policy, with the
originals backed up so a failure part-way can be rolled back.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from stencil.errors import CommitError, DestinationExists, IoFailure
from stencil.tree.walker import FileEntry
from stencil.utils import print_detail


class OverwritePolicy(str, Enum):
    """What to do with files that already exist in the destination."""
    FAIL = "fail"
    SKIP = "skip"
    MERGE = "merge"


@dataclass
class MaterializeResult:
    """Outcome of a committed materialization."""

    destination: Path
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class Materializer:
    """Stages rendered entries and commits them to *destination*."""

    def __init__(
        self,
        destination: Path,
        policy: OverwritePolicy = OverwritePolicy.FAIL,
        verbose: bool = False,
    ) -> None:
        self.destination = Path(destination).absolute()
        self.policy = OverwritePolicy(policy)
        self.verbose = verbose

    # -- Public API --------------------------------------------------------

    def materialize(self, entries: Iterable[FileEntry]) -> MaterializeResult:
        """Stage *entries* then commit them.

        Entries are consumed lazily; an error raised by the stream (read or
        render failure) discards staging and leaves the destination as it was.

        Raises:
            DestinationExists: Conflicts under the ``fail`` policy.
            IoFailure: Staging could not be written.
            CommitError: Moving staged files into place failed.
        """
        created_parents = self._ensure_parent()
        staging: Path | None = None
        committed = False
        try:
            staging = Path(
                tempfile.mkdtemp(
                    prefix=f".{self.destination.name}.stencil-staging-",
                    dir=self.destination.parent,
                )
            )
            files = self.stage(entries, staging)
            result = self.commit(staging, files)
            committed = True
            return result
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            if not committed:
                _remove_empty(created_parents)

    def stage(self, entries: Iterable[FileEntry], staging: Path) -> list[str]:
        """Write every included entry below *staging*; return their paths."""
        files: list[str] = []
        seen: set[str] = set()
        for entry in entries:
            if not entry.included:
                continue
            rel = entry.rendered_path or entry.relative_path
            if rel in seen:
                raise IoFailure(f"Two template files render to {rel}", rel)
            seen.add(rel)
            self._write_entry(entry, staging / rel)
            files.append(rel)
        print_detail(f"Staged {len(files)} files", self.verbose)
        return files

    def commit(self, staging: Path, files: list[str]) -> MaterializeResult:
        """Move the staged tree into the destination."""
        dest = self.destination
        if not dest.exists() and not dest.is_symlink():
            self._rename_whole(staging)
            return MaterializeResult(destination=dest, written=sorted(files))

        if not dest.is_dir():
            raise DestinationExists(dest, [dest.name])
        if not any(dest.iterdir()):
            self._rename_whole(staging)
            return MaterializeResult(destination=dest, written=sorted(files))

        conflicts, blocked = self.conflicts(files)
        if blocked and self.policy is not OverwritePolicy.SKIP:
            raise DestinationExists(dest, blocked)
        if conflicts and self.policy is OverwritePolicy.FAIL:
            raise DestinationExists(dest, conflicts)
        return self._merge(staging, files, set(conflicts) | set(blocked))

    def conflicts(self, files: list[str]) -> tuple[list[str], list[str]]:
        """Split existing destination paths into overwritable and blocked ones.

        Blocked paths cannot be overwritten: the destination has a directory
        where a file is generated, or a file where a directory is needed.
        """
        overwritable: list[str] = []
        blocked: list[str] = []
        for rel in sorted(files):
            target = self.destination / rel
            if any(
                parent.exists() and not parent.is_dir()
                for parent in _ancestors(self.destination, rel)
            ):
                blocked.append(rel)
            elif target.is_dir() and not target.is_symlink():
                blocked.append(rel)
            elif target.exists() or target.is_symlink():
                overwritable.append(rel)
        return overwritable, blocked

    # -- Internals ---------------------------------------------------------

    def _ensure_parent(self) -> list[Path]:
        created: list[Path] = []
        missing = []
        parent = self.destination.parent
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        try:
            for directory in reversed(missing):
                directory.mkdir()
                created.append(directory)
        except OSError as exc:
            _remove_empty(created)
            raise IoFailure(f"Cannot create {directory}: {exc}", directory) from exc
        return created

    def _write_entry(self, entry: FileEntry, target: Path) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if entry.binary or entry.rendered_content is None:
                shutil.copyfile(entry.source_path, target)
            elif isinstance(entry.rendered_content, bytes):
                target.write_bytes(entry.rendered_content)
            else:
                with open(target, "w", encoding="utf-8", newline="") as fh:
                    fh.write(entry.rendered_content)
            os.chmod(target, entry.mode)
        except OSError as exc:
            raise IoFailure(f"Cannot stage {entry.relative_path}: {exc}", target) from exc

    def _rename_whole(self, staging: Path) -> None:
        try:
            os.chmod(staging, 0o777 & ~_current_umask())
            os.rename(staging, self.destination)
        except OSError as exc:
            raise CommitError(
                f"Cannot move output into {self.destination}: {exc}",
                self.destination,
                rolled_back=True,
            ) from exc

    def _merge(self, staging: Path, files: list[str], existing: set[str]) -> MaterializeResult:
        dest = self.destination
        result = MaterializeResult(destination=dest)
        backup = Path(
            tempfile.mkdtemp(prefix=f".{dest.name}.stencil-backup-", dir=dest.parent)
        )
        created_dirs: list[Path] = []
        created_files: list[Path] = []
        backed_up: list[str] = []
        try:
            for rel in sorted(files):
                if rel in existing and self.policy is OverwritePolicy.SKIP:
                    result.skipped.append(rel)
                    continue
                target = dest / rel
                for parent in _ancestors(dest, rel):
                    if not parent.exists():
                        parent.mkdir()
                        created_dirs.append(parent)
                if rel in existing:
                    saved = backup / rel
                    saved.parent.mkdir(parents=True, exist_ok=True)
                    os.rename(target, saved)
                    backed_up.append(rel)
                os.rename(staging / rel, target)
                created_files.append(target)
                result.written.append(rel)
        except BaseException as exc:
            rolled_back = self._rollback(backup, backed_up, created_files, created_dirs)
            if rolled_back:
                shutil.rmtree(backup, ignore_errors=True)
            if not isinstance(exc, Exception):
                raise
            raise CommitError(
                f"Merging into {dest} failed: {exc}", dest, rolled_back=rolled_back
            ) from exc

        shutil.rmtree(backup, ignore_errors=True)
        print_detail(
            f"Merged {len(result.written)} files, skipped {len(result.skipped)}", self.verbose
        )
        return result

    def _rollback(
        self,
        backup: Path,
        backed_up: list[str],
        created_files: list[Path],
        created_dirs: list[Path],
    ) -> bool:
        ok = True
        for path in reversed(created_files):
            try:
                path.unlink()
            except OSError:
                ok = False
        for rel in reversed(backed_up):
            try:
                os.rename(backup / rel, self.destination / rel)
            except OSError:
                ok = False
        for directory in reversed(created_dirs):
            try:
                directory.rmdir()
            except OSError:
                ok = False
        return ok


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ancestors(root: Path, rel: str) -> list[Path]:
    """Directories between *root* (exclusive) and the file *rel*, outermost first."""
    parts = rel.split("/")[:-1]
    return [root.joinpath(*parts[: i + 1]) for i in range(len(parts))]


def _remove_empty(directories: list[Path]) -> None:
    for directory in reversed(directories):
        try:
            directory.rmdir()
        except OSError:
            break


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask
