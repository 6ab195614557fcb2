"""Thin async wrapper around the ``git`` command line.

All git access in Stencil goes through :func:`run_git`, which runs the
command as a subprocess with a timeout and raises :class:`GitCommandError`
on a non-zero exit.  Callers translate that into the public error taxonomy
(``NetworkFailure``, ``AmbiguousRef``, ...) with the stderr text preserved.
"""

from __future__ import annotations

import asyncio
import os
import re
import tarfile
from dataclasses import dataclass
from pathlib import Path

_HEX_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")

# Keep git from ever blocking on a credential or host-key prompt.
_GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
    "LC_ALL": "C",
}


class GitCommandError(Exception):
    """Raised when a git command fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


@dataclass(frozen=True)
class RemoteRef:
    """One line of ``git ls-remote`` / ``git show-ref`` output."""

    sha: str
    name: str

    @property
    def kind(self) -> str:
        if self.name.startswith("refs/heads/"):
            return "branch"
        if self.name.startswith("refs/tags/"):
            return "tag"
        return "other"


def looks_like_commit(ref: str) -> bool:
    """Return ``True`` if *ref* could be a (possibly abbreviated) commit id."""
    return bool(_HEX_RE.match(ref))


async def run_git(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float = 120.0,
) -> tuple[str, str]:
    """Run a git command asynchronously and return (stdout, stderr).

    Raises GitCommandError if the command exits with a non-zero code or
    exceeds *timeout*.
    """
    cmd = ["git"] + list(args)
    cmd_str = " ".join(cmd)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=str(cwd) if cwd else None,
            env={**os.environ, **_GIT_ENV},
        )
    except FileNotFoundError as exc:
        raise GitCommandError("git executable not found", command=cmd_str) from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        raise GitCommandError(
            f"Git command timed out after {timeout}s: {cmd_str}",
            command=cmd_str,
        )

    stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        raise GitCommandError(
            f"Git command failed (exit {process.returncode}): {cmd_str}\n{stderr}",
            command=cmd_str,
            stderr=stderr,
        )

    return stdout, stderr


def parse_ref_lines(output: str) -> list[RemoteRef]:
    """Parse ``<sha> <refname>`` lines (tab or space separated)."""
    refs: list[RemoteRef] = []
    for line in output.splitlines():
        parts = line.split(None, 1)
        if len(parts) == 2:
            refs.append(RemoteRef(sha=parts[0], name=parts[1].strip()))
    return refs


async def is_git_repository(path: Path, timeout: float = 30.0) -> bool:
    """Return ``True`` if *path* is the top level of a git work tree or a bare repo."""
    try:
        bare, _ = await run_git("rev-parse", "--is-bare-repository", cwd=path, timeout=timeout)
        if bare == "true":
            return True
        toplevel, _ = await run_git("rev-parse", "--show-toplevel", cwd=path, timeout=timeout)
    except GitCommandError:
        return False
    return Path(toplevel).resolve() == path.resolve()


async def export_revision(
    repo: Path, revision: str, target: Path, timeout: float = 120.0
) -> None:
    """Write the tree of *revision* into *target* without touching *repo*.

    Uses ``git archive`` so neither the repository's index nor its work tree
    is modified; the tarball is unpacked with tarfile's ``data`` filter.
    """
    target.mkdir(parents=True, exist_ok=True)
    archive = target.parent / f".{target.name}.tar"
    try:
        await run_git(
            "archive", "--format=tar", f"--output={archive}", revision,
            cwd=repo, timeout=timeout,
        )
        await asyncio.to_thread(_extract_tar, archive, target)
    finally:
        archive.unlink(missing_ok=True)


def _extract_tar(archive: Path, target: Path) -> None:
    with tarfile.open(archive) as tar:
        tar.extractall(target, filter="data")
