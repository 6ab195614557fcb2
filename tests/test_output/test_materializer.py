"""Tests for staged, atomic output (stencil.output.materializer)."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from stencil.errors import CommitError, DestinationExists, IoFailure
from stencil.output import materializer as materializer_module
from stencil.output.materializer import Materializer, OverwritePolicy
from stencil.tree.walker import FileEntry


def text_entry(tmp_path: Path, rel: str, content: str, mode: int = 0o644) -> FileEntry:
    return FileEntry(
        relative_path=rel,
        source_path=tmp_path / "unused",
        mode=mode,
        rendered_path=rel,
        rendered_content=content,
    )


def binary_entry(tmp_path: Path, rel: str, data: bytes) -> FileEntry:
    source = tmp_path / "src-bin" / rel.replace("/", "_")
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_bytes(data)
    return FileEntry(relative_path=rel, source_path=source, binary=True, rendered_path=rel)


def snapshot(root: Path) -> dict[str, bytes]:
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def leftovers(parent: Path) -> list[str]:
    return [p.name for p in parent.iterdir() if ".stencil-" in p.name]


@pytest.fixture
def entries(tmp_path):
    return [
        text_entry(tmp_path, "README.md", "# demo\n"),
        text_entry(tmp_path, "src/app.py", "print('hi')\r\n"),
        binary_entry(tmp_path, "assets/logo.png", b"\x89PNG\x00\x01"),
    ]


# ---------------------------------------------------------------------------
# Fresh destinations
# ---------------------------------------------------------------------------


class TestFreshDestination:
    @pytest.mark.unit
    def test_absent_destination(self, tmp_path, entries):
        dest = tmp_path / "out" / "demo"
        result = Materializer(dest).materialize(entries)
        assert result.written == ["README.md", "assets/logo.png", "src/app.py"]
        assert snapshot(dest) == {
            "README.md": b"# demo\n",
            "assets/logo.png": b"\x89PNG\x00\x01",
            "src/app.py": b"print('hi')\r\n",
        }
        assert leftovers(dest.parent) == []

    @pytest.mark.unit
    def test_empty_directory_destination(self, tmp_path, entries):
        dest = tmp_path / "out"
        dest.mkdir()
        Materializer(dest).materialize(entries)
        assert (dest / "README.md").read_text() == "# demo\n"

    @pytest.mark.unit
    def test_excluded_entries_skipped(self, tmp_path, entries):
        entries[0].exclude("ignored by '*.md'")
        dest = tmp_path / "out"
        result = Materializer(dest).materialize(entries)
        assert "README.md" not in result.written
        assert not (dest / "README.md").exists()

    @pytest.mark.unit
    def test_mode_preserved(self, tmp_path):
        dest = tmp_path / "out"
        Materializer(dest).materialize([text_entry(tmp_path, "run.sh", "#!/bin/sh\n", mode=0o755)])
        assert (dest / "run.sh").stat().st_mode & 0o777 == 0o755

    @pytest.mark.unit
    def test_destination_is_a_file(self, tmp_path, entries):
        dest = tmp_path / "out"
        dest.write_text("occupied")
        with pytest.raises(DestinationExists):
            Materializer(dest).materialize(entries)
        assert dest.read_text() == "occupied"

    @pytest.mark.unit
    def test_duplicate_rendered_paths(self, tmp_path):
        dest = tmp_path / "out"
        with pytest.raises(IoFailure, match="render to"):
            Materializer(dest).materialize([
                text_entry(tmp_path, "same.txt", "a"),
                text_entry(tmp_path, "same.txt", "b"),
            ])
        assert not dest.exists()


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------


class TestAtomicity:
    @pytest.mark.unit
    def test_failure_while_staging_leaves_nothing(self, tmp_path, entries, monkeypatch):
        original = Materializer._write_entry
        calls = {"n": 0}

        def flaky(self, entry, target):
            calls["n"] += 1
            if calls["n"] == 2:
                raise IoFailure("disk full", target)
            original(self, entry, target)

        monkeypatch.setattr(Materializer, "_write_entry", flaky)
        dest = tmp_path / "deep" / "nested" / "out"
        with pytest.raises(IoFailure, match="disk full"):
            Materializer(dest).materialize(entries)
        assert not dest.exists()
        assert not (tmp_path / "deep").exists()

    @pytest.mark.unit
    def test_failure_in_entry_stream(self, tmp_path, entries):
        def stream():
            yield entries[0]
            raise IoFailure("render failed")

        dest = tmp_path / "out"
        with pytest.raises(IoFailure):
            Materializer(dest).materialize(stream())
        assert not dest.exists()
        assert leftovers(tmp_path) == []

    @pytest.mark.unit
    def test_existing_destination_untouched_on_staging_failure(self, tmp_path, entries, monkeypatch):
        dest = tmp_path / "out"
        dest.mkdir()
        (dest / "keep.txt").write_text("mine")

        def broken(self, entry, target):
            raise IoFailure("boom", target)

        monkeypatch.setattr(Materializer, "_write_entry", broken)
        with pytest.raises(IoFailure):
            Materializer(dest, OverwritePolicy.MERGE).materialize(entries)
        assert snapshot(dest) == {"keep.txt": b"mine"}


# ---------------------------------------------------------------------------
# Overwrite policies
# ---------------------------------------------------------------------------


@pytest.fixture
def populated(tmp_path):
    dest = tmp_path / "out"
    (dest / "src").mkdir(parents=True)
    (dest / "README.md").write_text("old readme")
    (dest / "notes.txt").write_text("untouched")
    return dest


class TestPolicies:
    @pytest.mark.unit
    def test_fail_lists_conflicts(self, populated, entries):
        before = snapshot(populated)
        with pytest.raises(DestinationExists) as info:
            Materializer(populated, OverwritePolicy.FAIL).materialize(entries)
        assert info.value.conflicts == ["README.md"]
        assert snapshot(populated) == before

    @pytest.mark.unit
    def test_fail_without_conflicts_merges(self, populated, tmp_path):
        result = Materializer(populated, OverwritePolicy.FAIL).materialize(
            [text_entry(tmp_path, "src/new.py", "x")]
        )
        assert result.written == ["src/new.py"]
        assert (populated / "notes.txt").read_text() == "untouched"

    @pytest.mark.unit
    def test_skip_keeps_existing(self, populated, entries):
        result = Materializer(populated, OverwritePolicy.SKIP).materialize(entries)
        assert result.skipped == ["README.md"]
        assert (populated / "README.md").read_text() == "old readme"
        assert (populated / "src" / "app.py").exists()

    @pytest.mark.unit
    def test_merge_overwrites(self, populated, entries):
        result = Materializer(populated, OverwritePolicy.MERGE).materialize(entries)
        assert "README.md" in result.written
        assert (populated / "README.md").read_text() == "# demo\n"
        assert (populated / "notes.txt").read_text() == "untouched"
        assert leftovers(populated.parent) == []

    @pytest.mark.unit
    def test_directory_in_the_way_is_blocked(self, populated, tmp_path):
        entry = text_entry(tmp_path, "src", "a file named like a directory")
        with pytest.raises(DestinationExists) as info:
            Materializer(populated, OverwritePolicy.MERGE).materialize([entry])
        assert info.value.conflicts == ["src"]

    @pytest.mark.unit
    def test_file_in_the_way_of_directory(self, populated, tmp_path):
        entry = text_entry(tmp_path, "notes.txt/inner.md", "x")
        with pytest.raises(DestinationExists):
            Materializer(populated, OverwritePolicy.MERGE).materialize([entry])

    @pytest.mark.unit
    def test_merge_rollback(self, populated, entries, monkeypatch):
        before = snapshot(populated)
        real_rename = os.rename

        def failing_rename(src, dst):
            if Path(dst) == populated / "src" / "app.py":
                raise OSError("device busy")
            return real_rename(src, dst)

        monkeypatch.setattr(materializer_module.os, "rename", failing_rename)
        with pytest.raises(CommitError) as info:
            Materializer(populated, OverwritePolicy.MERGE).materialize(entries)
        assert info.value.rolled_back is True
        assert snapshot(populated) == before
        assert not (populated / "assets").exists()
        assert leftovers(populated.parent) == []
