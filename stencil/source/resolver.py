"""Template source resolution.

Turns a :class:`SourceDescriptor` into an isolated, private copy of the
template tree at one concrete revision.  Remote origins go through the
per-origin cache (see :mod:`stencil.source.cache`); local paths are either
snapshotted as-is or, when a ref is given, exported from the repository with
``git archive``.  The shared cache never has a checked-out work tree, so no
resolution can disturb another.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

from stencil.config import Config
from stencil.errors import AmbiguousRef, IoFailure, NetworkFailure, NotAGitRepository, PathNotFound
from stencil.source.cache import CacheEntry
from stencil.source.descriptor import SourceDescriptor
from stencil.source.git import (
    GitCommandError,
    RemoteRef,
    export_revision,
    is_git_repository,
    looks_like_commit,
    parse_ref_lines,
    run_git,
)
from stencil.utils import print_detail, short_revision

# Ref kinds whose target never moves; a cached resolution can be reused offline.
_IMMUTABLE_KINDS = ("tag", "commit")


@dataclass
class ResolvedSource:
    """An isolated template tree ready for filtering and rendering."""

    path: Path
    revision: str | None
    workdir: Path

    def cleanup(self) -> None:
        """Remove the private working copy."""
        shutil.rmtree(self.workdir, ignore_errors=True)


def select_ref(ref: str | None, refs: list[RemoteRef]) -> tuple[str, str] | None:
    """Pick the single commit *ref* names among advertised *refs*.

    Returns ``(sha, kind)`` or ``None`` when nothing matches.  Annotated tags
    resolve to their peeled commit.

    Raises:
        AmbiguousRef: If *ref* names several distinct commits.
    """
    if ref is None or ref == "HEAD":
        for r in refs:
            if r.name == "HEAD":
                return r.sha, "branch"
        return None

    names = {f"refs/heads/{ref}", f"refs/tags/{ref}", ref}
    peeled = {r.name.removesuffix("^{}"): r.sha for r in refs if r.name.endswith("^{}")}

    found: dict[str, tuple[str, str]] = {}
    for r in refs:
        if r.name.endswith("^{}") or r.name not in names:
            continue
        kind = r.kind if r.kind != "other" else "branch"
        found[r.name] = (peeled.get(r.name, r.sha), kind)

    shas = {sha for sha, _ in found.values()}
    if not shas:
        return None
    if len(shas) > 1:
        candidates = [f"{name} ({sha[:12]})" for name, (sha, _) in sorted(found.items())]
        raise AmbiguousRef(ref, candidates)
    # A branch and a tag on the same commit are not ambiguous; mutable wins so
    # the cache keeps checking for updates.
    kinds = {kind for _, kind in found.values()}
    kind = "branch" if "branch" in kinds else kinds.pop()
    return shas.pop(), kind


class SourceResolver:
    """Obtains an isolated copy of a template at a resolved revision."""

    def __init__(self, config: Config) -> None:
        self.config = config

    # -- Public API --------------------------------------------------------

    async def resolve(
        self,
        descriptor: SourceDescriptor,
        force_refresh: bool = False,
        work_area: Path | None = None,
    ) -> ResolvedSource:
        """Resolve *descriptor* into a private working copy.

        Args:
            descriptor: Origin, ref and subpath of the template.
            force_refresh: Re-fetch remote revisions even if cached.
            work_area: Directory in which the temporary working copy is
                created. Defaults to the system temp directory.

        Returns:
            A ``ResolvedSource``; the caller owns ``workdir`` and must call
            :meth:`ResolvedSource.cleanup`.
        """
        workdir = Path(tempfile.mkdtemp(prefix="stencil-src-", dir=work_area))
        checkout = workdir / "tree"
        try:
            if descriptor.remote:
                revision = await self._resolve_remote(descriptor, checkout, force_refresh)
            else:
                revision = await self._resolve_local(descriptor, checkout)
            path = _narrow(checkout, descriptor.subpath)
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise

        print_detail(
            f"Resolved {descriptor.describe()} at {short_revision(revision)}",
            self.config.verbose,
        )
        return ResolvedSource(path=path, revision=revision, workdir=workdir)

    # -- Local paths -------------------------------------------------------

    async def _resolve_local(self, descriptor: SourceDescriptor, checkout: Path) -> str | None:
        source = Path(descriptor.origin).expanduser()
        if not source.exists():
            raise PathNotFound(f"Template path does not exist: {source}", source)
        if not source.is_dir():
            raise PathNotFound(f"Template path is not a directory: {source}", source)
        if not os.access(source, os.R_OK | os.X_OK):
            raise PathNotFound(f"Template path is not readable: {source}", source)
        source = source.resolve()

        if descriptor.ref is None:
            await asyncio.to_thread(_snapshot_tree, source, checkout)
            return None

        if not await is_git_repository(source, timeout=self.config.git_timeout):
            raise NotAGitRepository(source)

        sha = await self._resolve_local_ref(source, descriptor.ref)
        await self._export(source, sha, checkout)
        return sha

    async def _resolve_local_ref(self, repo: Path, ref: str) -> str:
        timeout = self.config.git_timeout
        try:
            stdout, _ = await run_git("show-ref", "--head", "--dereference", cwd=repo, timeout=timeout)
        except GitCommandError:
            # show-ref exits non-zero in a repository without any refs.
            stdout = ""
        selected = select_ref(ref, parse_ref_lines(stdout))
        if selected is not None:
            return selected[0]

        if looks_like_commit(ref):
            commits = await self._commits_with_prefix(repo, ref)
            if len(commits) > 1:
                raise AmbiguousRef(ref, commits, origin=str(repo))
            if commits:
                return commits[0]

        try:
            sha, _ = await run_git(
                "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}",
                cwd=repo, timeout=timeout,
            )
        except GitCommandError:
            raise AmbiguousRef(ref, [], origin=str(repo)) from None
        return sha

    async def _commits_with_prefix(self, repo: Path, prefix: str) -> list[str]:
        try:
            stdout, _ = await run_git(
                "rev-parse", f"--disambiguate={prefix}", cwd=repo, timeout=self.config.git_timeout
            )
        except GitCommandError:
            return []
        commits: list[str] = []
        for sha in stdout.split():
            if await _has_commit(repo, sha, self.config.git_timeout):
                commits.append(sha)
        return sorted(commits)

    # -- Remote origins ----------------------------------------------------

    async def _resolve_remote(
        self, descriptor: SourceDescriptor, checkout: Path, force_refresh: bool
    ) -> str:
        self.config.ensure_directories()
        entry = CacheEntry(self.config.repos_dir / descriptor.cache_key)
        url = descriptor.fetch_url
        ref_key = descriptor.ref or "HEAD"

        async with entry.lock(self.config.lock_timeout):
            if not entry.initialized:
                await self._init_cache(entry, descriptor)

            recorded = entry.load_index().get(ref_key)
            if (
                not force_refresh
                and recorded
                and recorded.get("kind") in _IMMUTABLE_KINDS
                and await _has_commit(entry.repo_path, recorded["sha"], self.config.git_timeout)
            ):
                sha = recorded["sha"]
                print_detail(f"Using cached {recorded['kind']} {ref_key}", self.config.verbose)
            else:
                refs = await self._ls_remote(url, descriptor)
                sha, kind, fetch_spec = await self._select_remote(entry, descriptor, refs)
                if force_refresh or not await _has_commit(
                    entry.repo_path, sha, self.config.git_timeout
                ):
                    await self._fetch(entry, url, fetch_spec, descriptor)
                    if not await _has_commit(entry.repo_path, sha, self.config.git_timeout):
                        raise NetworkFailure(
                            f"Fetched {fetch_spec} but commit {sha[:12]} is still missing",
                            origin=descriptor.normalized_origin,
                        )
                entry.record(ref_key, sha, kind)

            await self._export(entry.repo_path, sha, checkout)
        return sha

    async def _init_cache(self, entry: CacheEntry, descriptor: SourceDescriptor) -> None:
        entry.root.mkdir(parents=True, exist_ok=True)
        if entry.repo_path.exists():
            shutil.rmtree(entry.repo_path)
        try:
            await run_git("init", "--bare", "--quiet", str(entry.repo_path), timeout=self.config.git_timeout)
        except GitCommandError as exc:
            raise IoFailure(
                f"Could not create template cache: {exc.stderr or exc}", entry.repo_path
            ) from exc
        print_detail(f"Created cache for {descriptor.normalized_origin}", self.config.verbose)

    async def _ls_remote(self, url: str, descriptor: SourceDescriptor) -> list[RemoteRef]:
        try:
            stdout, _ = await run_git("ls-remote", url, timeout=self.config.git_timeout)
        except GitCommandError as exc:
            raise NetworkFailure(
                f"Could not list refs of {url}: {exc.stderr or exc}",
                origin=descriptor.normalized_origin,
                stderr=exc.stderr,
            ) from exc
        return parse_ref_lines(stdout)

    async def _select_remote(
        self, entry: CacheEntry, descriptor: SourceDescriptor, refs: list[RemoteRef]
    ) -> tuple[str, str, str]:
        """Return ``(sha, kind, fetch_spec)`` for the descriptor's ref."""
        ref = descriptor.ref
        try:
            selected = select_ref(ref, refs)
        except AmbiguousRef as exc:
            raise AmbiguousRef(exc.ref, exc.candidates, origin=descriptor.normalized_origin) from None

        if selected is not None:
            sha, kind = selected
            if ref is None or ref == "HEAD":
                return sha, kind, "HEAD"
            if ref.startswith("refs/"):
                return sha, kind, ref
            prefix = "refs/heads/" if kind == "branch" else "refs/tags/"
            return sha, kind, f"{prefix}{ref}"

        if ref is not None and looks_like_commit(ref):
            advertised = sorted({r.sha for r in refs if r.sha.startswith(ref.lower())})
            if len(advertised) > 1:
                raise AmbiguousRef(ref, advertised, origin=descriptor.normalized_origin)
            if advertised:
                return advertised[0], "commit", advertised[0]
            if len(ref) == 40:
                return ref.lower(), "commit", ref.lower()
            cached = await self._commits_with_prefix(entry.repo_path, ref)
            if len(cached) > 1:
                raise AmbiguousRef(ref, cached, origin=descriptor.normalized_origin)
            if cached:
                return cached[0], "commit", cached[0]

        raise AmbiguousRef(ref or "HEAD", [], origin=descriptor.normalized_origin)

    async def _fetch(
        self, entry: CacheEntry, url: str, fetch_spec: str, descriptor: SourceDescriptor
    ) -> None:
        print_detail(f"Fetching {fetch_spec} from {url}", self.config.verbose)
        try:
            await run_git(
                "fetch", "--quiet", "--no-tags", "--depth", "1", url, fetch_spec,
                cwd=entry.repo_path, timeout=self.config.git_timeout,
            )
        except GitCommandError as exc:
            raise NetworkFailure(
                f"Could not fetch {fetch_spec} from {url}: {exc.stderr or exc}",
                origin=descriptor.normalized_origin,
                stderr=exc.stderr,
            ) from exc

    # -- Export ------------------------------------------------------------

    async def _export(self, repo: Path, sha: str, checkout: Path) -> None:
        try:
            await export_revision(repo, sha, checkout, timeout=self.config.git_timeout)
        except GitCommandError as exc:
            raise IoFailure(
                f"Could not export revision {sha[:12]}: {exc.stderr or exc}", repo
            ) from exc
        except (OSError, tarfile.TarError) as exc:
            raise IoFailure(f"Could not unpack revision {sha[:12]}: {exc}", checkout) from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _has_commit(repo: Path, sha: str, timeout: float) -> bool:
    try:
        await run_git("cat-file", "-e", f"{sha}^{{commit}}", cwd=repo, timeout=timeout)
    except GitCommandError:
        return False
    return True


def _snapshot_tree(source: Path, target: Path) -> None:
    """Copy a local template tree, skipping version-control metadata."""
    try:
        shutil.copytree(source, target, symlinks=True, ignore=shutil.ignore_patterns(".git"))
    except (shutil.Error, OSError) as exc:
        raise IoFailure(f"Could not copy template from {source}: {exc}", source) from exc


def _narrow(checkout: Path, subpath: str | None) -> Path:
    """Return the template root inside *checkout*, validating *subpath*."""
    base = checkout.resolve()
    if not subpath:
        return base
    target = (base / subpath).resolve()
    if not target.is_relative_to(base):
        raise PathNotFound(f"Subpath '{subpath}' escapes the template", subpath)
    if not target.is_dir():
        raise PathNotFound(f"Subpath '{subpath}' not found in template", subpath)
    return target
