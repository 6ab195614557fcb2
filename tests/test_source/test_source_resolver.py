"""Tests for template source resolution (stencil.source.resolver).

Remote behaviour is exercised against real repositories reached through
``file://`` URLs, so ls-remote, shallow fetch and archive all run for real.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import commit_all, git
from stencil.config import Config
from stencil.errors import AmbiguousRef, NetworkFailure, NotAGitRepository, PathNotFound
from stencil.source import resolver as resolver_module
from stencil.source.cache import CacheEntry
from stencil.source.descriptor import SourceDescriptor
from stencil.source.git import RemoteRef
from stencil.source.resolver import SourceResolver, select_ref

SHA_A = "a" * 40
SHA_B = "b" * 40


@pytest.fixture
def git_calls(monkeypatch) -> list[tuple[str, ...]]:
    """Record every git invocation made by the resolver."""
    calls: list[tuple[str, ...]] = []
    original = resolver_module.run_git

    async def recording(*args, **kwargs):
        calls.append(args)
        return await original(*args, **kwargs)

    monkeypatch.setattr(resolver_module, "run_git", recording)
    return calls


def _count(calls: list[tuple[str, ...]], command: str) -> int:
    return sum(1 for args in calls if args and args[0] == command)


# ---------------------------------------------------------------------------
# select_ref
# ---------------------------------------------------------------------------


class TestSelectRef:
    @pytest.mark.unit
    def test_head(self):
        refs = [RemoteRef(SHA_A, "HEAD"), RemoteRef(SHA_A, "refs/heads/main")]
        assert select_ref(None, refs) == (SHA_A, "branch")

    @pytest.mark.unit
    def test_branch(self):
        refs = [RemoteRef(SHA_A, "refs/heads/dev")]
        assert select_ref("dev", refs) == (SHA_A, "branch")

    @pytest.mark.unit
    def test_annotated_tag_is_peeled(self):
        refs = [RemoteRef(SHA_B, "refs/tags/v1"), RemoteRef(SHA_A, "refs/tags/v1^{}")]
        assert select_ref("v1", refs) == (SHA_A, "tag")

    @pytest.mark.unit
    def test_branch_and_tag_on_same_commit(self):
        refs = [RemoteRef(SHA_A, "refs/heads/v1"), RemoteRef(SHA_A, "refs/tags/v1")]
        assert select_ref("v1", refs) == (SHA_A, "branch")

    @pytest.mark.unit
    def test_branch_and_tag_on_different_commits(self):
        refs = [RemoteRef(SHA_A, "refs/heads/v1"), RemoteRef(SHA_B, "refs/tags/v1")]
        with pytest.raises(AmbiguousRef) as info:
            select_ref("v1", refs)
        assert len(info.value.candidates) == 2

    @pytest.mark.unit
    def test_no_match(self):
        assert select_ref("missing", [RemoteRef(SHA_A, "refs/heads/main")]) is None


# ---------------------------------------------------------------------------
# Local paths
# ---------------------------------------------------------------------------


class TestLocalResolution:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_snapshot_without_ref(self, tmp_git_repo: Path, isolated_config: Config):
        (tmp_git_repo / "draft.txt").write_text("uncommitted")
        resolved = await SourceResolver(isolated_config).resolve(
            SourceDescriptor(origin=str(tmp_git_repo))
        )
        try:
            assert resolved.revision is None
            assert (resolved.path / "draft.txt").read_text() == "uncommitted"
            assert not (resolved.path / ".git").exists()
            (resolved.path / "stencil.yaml").unlink()
            assert (tmp_git_repo / "stencil.yaml").exists()
        finally:
            resolved.cleanup()
        assert not resolved.workdir.exists()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_path(self, tmp_path: Path, isolated_config: Config):
        with pytest.raises(PathNotFound):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=str(tmp_path / "nope"))
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_file_instead_of_directory(self, tmp_path: Path, isolated_config: Config):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(PathNotFound, match="not a directory"):
            await SourceResolver(isolated_config).resolve(SourceDescriptor(origin=str(target)))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ref_requires_repository(self, make_template, isolated_config: Config):
        root = make_template({"README.md": "hi"})
        with pytest.raises(NotAGitRepository):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=str(root), ref="main")
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_ref_exports_that_revision(self, tmp_git_repo: Path, isolated_config: Config):
        git(tmp_git_repo, "tag", "v1")
        tagged = git(tmp_git_repo, "rev-parse", "HEAD")
        (tmp_git_repo / "later.txt").write_text("later")
        commit_all(tmp_git_repo, "later")

        resolved = await SourceResolver(isolated_config).resolve(
            SourceDescriptor(origin=str(tmp_git_repo), ref="v1")
        )
        try:
            assert resolved.revision == tagged
            assert not (resolved.path / "later.txt").exists()
        finally:
            resolved.cleanup()
        assert git(tmp_git_repo, "status", "--porcelain") == ""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_abbreviated_commit(self, tmp_git_repo: Path, isolated_config: Config):
        sha = git(tmp_git_repo, "rev-parse", "HEAD")
        resolved = await SourceResolver(isolated_config).resolve(
            SourceDescriptor(origin=str(tmp_git_repo), ref=sha[:10])
        )
        try:
            assert resolved.revision == sha
        finally:
            resolved.cleanup()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_branch_and_tag_conflict(self, tmp_git_repo: Path, isolated_config: Config):
        git(tmp_git_repo, "tag", "v1")
        git(tmp_git_repo, "checkout", "-q", "-b", "release")
        (tmp_git_repo / "x.txt").write_text("x")
        commit_all(tmp_git_repo, "x")
        git(tmp_git_repo, "branch", "-m", "release", "v1")

        with pytest.raises(AmbiguousRef) as info:
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=str(tmp_git_repo), ref="v1")
            )
        assert any("refs/heads/v1" in c for c in info.value.candidates)
        assert any("refs/tags/v1" in c for c in info.value.candidates)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_ref(self, tmp_git_repo: Path, isolated_config: Config):
        with pytest.raises(AmbiguousRef, match="could not be resolved"):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=str(tmp_git_repo), ref="no-such-branch")
            )


# ---------------------------------------------------------------------------
# Subpath narrowing
# ---------------------------------------------------------------------------


class TestSubpath:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_narrowed_root(self, make_template, isolated_config: Config):
        root = make_template({"web/stencil.yaml": "", "web/index.html": "x", "api/main.py": "y"})
        resolved = await SourceResolver(isolated_config).resolve(
            SourceDescriptor(origin=str(root), subpath="web")
        )
        try:
            assert resolved.path.name == "web"
            assert (resolved.path / "index.html").exists()
        finally:
            resolved.cleanup()

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("subpath", ["missing", "../outside", "README.md"])
    async def test_invalid_subpath(self, subpath: str, make_template, isolated_config: Config):
        root = make_template({"README.md": "x"})
        with pytest.raises(PathNotFound):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=str(root), subpath=subpath)
            )


# ---------------------------------------------------------------------------
# Remote origins
# ---------------------------------------------------------------------------


class TestRemoteResolution:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_default_branch(self, tmp_git_repo: Path, isolated_config: Config):
        descriptor = SourceDescriptor(origin=tmp_git_repo.as_uri())
        resolved = await SourceResolver(isolated_config).resolve(descriptor)
        try:
            assert resolved.revision == git(tmp_git_repo, "rev-parse", "HEAD")
            assert (resolved.path / "{{project_name}}" / "README.md").exists()
        finally:
            resolved.cleanup()

        entry = CacheEntry(isolated_config.repos_dir / descriptor.cache_key)
        assert entry.initialized
        assert entry.load_index()["HEAD"]["sha"] == resolved.revision
        assert entry.lock_path.exists()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tag_reused_without_network(
        self, tmp_git_repo: Path, isolated_config: Config, git_calls
    ):
        git(tmp_git_repo, "tag", "-a", "v1", "-m", "release 1")
        descriptor = SourceDescriptor(origin=tmp_git_repo.as_uri(), ref="v1")
        resolver = SourceResolver(isolated_config)

        first = await resolver.resolve(descriptor)
        first.cleanup()
        assert _count(git_calls, "fetch") == 1

        git_calls.clear()
        second = await resolver.resolve(descriptor)
        second.cleanup()
        assert second.revision == first.revision
        assert _count(git_calls, "fetch") == 0
        assert _count(git_calls, "ls-remote") == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_branch_checked_but_not_refetched(
        self, tmp_git_repo: Path, isolated_config: Config, git_calls
    ):
        descriptor = SourceDescriptor(origin=tmp_git_repo.as_uri(), ref="main")
        resolver = SourceResolver(isolated_config)

        for _ in range(3):
            (await resolver.resolve(descriptor)).cleanup()
        assert _count(git_calls, "fetch") == 1
        assert _count(git_calls, "ls-remote") == 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_moved_branch_is_fetched(
        self, tmp_git_repo: Path, isolated_config: Config, git_calls
    ):
        descriptor = SourceDescriptor(origin=tmp_git_repo.as_uri(), ref="main")
        resolver = SourceResolver(isolated_config)
        (await resolver.resolve(descriptor)).cleanup()

        (tmp_git_repo / "NEW.md").write_text("new")
        head = commit_all(tmp_git_repo, "new file")
        resolved = await resolver.resolve(descriptor)
        try:
            assert resolved.revision == head
            assert (resolved.path / "NEW.md").exists()
        finally:
            resolved.cleanup()
        assert _count(git_calls, "fetch") == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_force_refresh_fetches(
        self, tmp_git_repo: Path, isolated_config: Config, git_calls
    ):
        git(tmp_git_repo, "tag", "v1")
        descriptor = SourceDescriptor(origin=tmp_git_repo.as_uri(), ref="v1")
        resolver = SourceResolver(isolated_config)
        (await resolver.resolve(descriptor)).cleanup()
        (await resolver.resolve(descriptor, force_refresh=True)).cleanup()
        assert _count(git_calls, "fetch") == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_full_commit_id(self, tmp_git_repo: Path, isolated_config: Config):
        old = git(tmp_git_repo, "rev-parse", "HEAD")
        (tmp_git_repo / "NEW.md").write_text("new")
        commit_all(tmp_git_repo, "new file")

        resolved = await SourceResolver(isolated_config).resolve(
            SourceDescriptor(origin=tmp_git_repo.as_uri(), ref=old)
        )
        try:
            assert resolved.revision == old
            assert not (resolved.path / "NEW.md").exists()
        finally:
            resolved.cleanup()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_remote_ref(self, tmp_git_repo: Path, isolated_config: Config):
        with pytest.raises(AmbiguousRef):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=tmp_git_repo.as_uri(), ref="nope")
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unreachable_remote(self, tmp_path: Path, isolated_config: Config):
        missing = (tmp_path / "missing-repo").as_uri()
        with pytest.raises(NetworkFailure) as info:
            await SourceResolver(isolated_config).resolve(SourceDescriptor(origin=missing))
        assert info.value.stderr

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failure_removes_workdir(self, tmp_path: Path, isolated_config: Config):
        work_area = tmp_path / "work"
        work_area.mkdir()
        with pytest.raises(NetworkFailure):
            await SourceResolver(isolated_config).resolve(
                SourceDescriptor(origin=(tmp_path / "missing").as_uri()), work_area=work_area
            )
        assert list(work_area.iterdir()) == []
