"""Per-origin template cache and its advisory lock.

Layout::

    <cache_dir>/repos/<cache_key>/
        repo.git/    bare repository holding fetched revisions
        refs.json    ref -> {sha, kind} index of previous resolutions
        .lock        flock(2) target serialising clone/fetch/export

Concurrent resolutions of the same origin serialise on ``.lock``; a waiter
blocks until the holder releases it and then reuses the now-current cache.
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import os
import time
from pathlib import Path
from typing import Any

from stencil.errors import CacheLockTimeout

_POLL_INTERVAL = 0.05


class CacheLock:
    """Async context manager holding an exclusive ``flock`` on a lock file.

    Acquisition polls with a non-blocking ``flock`` so the event loop is never
    blocked, and gives up with :class:`CacheLockTimeout` after *timeout*
    seconds.  The lock is released on every exit path, including errors and
    cancellation.
    """

    def __init__(self, path: Path, timeout: float = 60.0) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    async def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        deadline = time.monotonic() + self.timeout
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise CacheLockTimeout(self.path, self.timeout)
                    await asyncio.sleep(_POLL_INTERVAL)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    async def __aenter__(self) -> "CacheLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.release()


class CacheEntry:
    """Paths and ref index of one origin's cache directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def repo_path(self) -> Path:
        return self.root / "repo.git"

    @property
    def lock_path(self) -> Path:
        return self.root / ".lock"

    @property
    def index_path(self) -> Path:
        return self.root / "refs.json"

    def lock(self, timeout: float) -> CacheLock:
        return CacheLock(self.lock_path, timeout=timeout)

    @property
    def initialized(self) -> bool:
        return (self.repo_path / "HEAD").exists()

    def load_index(self) -> dict[str, dict[str, str]]:
        """Return the recorded ref index; an unreadable index counts as empty."""
        if not self.index_path.exists():
            return {}
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def record(self, ref: str, sha: str, kind: str) -> None:
        """Remember that *ref* resolved to *sha*; written atomically."""
        index = self.load_index()
        index[ref] = {"sha": sha, "kind": kind}
        tmp = self.index_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(index, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.index_path)
