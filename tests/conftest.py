"""Shared pytest fixtures for the Stencil test suite.

Provides reusable fixtures for:
- An isolated configuration with a private template cache
- Template directories built from a ``{path: content}`` mapping
- Real git repositories holding templates (used as ``file://`` remotes)
- A scripted prompter answering interactive questions
- Mock subprocess helpers
"""

from __future__ import annotations

import subprocess
import textwrap
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from stencil.config import Config


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def isolated_config(tmp_path: Path) -> Config:
    """Config whose cache lives under the test's temp directory."""
    return Config(cache_dir=tmp_path / "cache", lock_timeout=2.0, git_timeout=30.0)


# ---------------------------------------------------------------------------
# Template trees
# ---------------------------------------------------------------------------

def write_tree(root: Path, files: dict[str, str | bytes]) -> Path:
    """Create *files* (relative path -> text or bytes) below *root*."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(textwrap.dedent(content), encoding="utf-8")
    return root


@pytest.fixture
def make_template(tmp_path: Path) -> Callable[..., Path]:
    """Factory building a plain template directory.

    Usage:
        def test_something(make_template):
            root = make_template({"stencil.yaml": "...", "README.md": "# {{project_name}}"})
    """
    counter = {"n": 0}

    def factory(files: dict[str, str | bytes], name: str | None = None) -> Path:
        counter["n"] += 1
        return write_tree(tmp_path / (name or f"template-{counter['n']}"), files)

    return factory


# ---------------------------------------------------------------------------
# Git repositories
# ---------------------------------------------------------------------------

def git(cwd: Path, *args: str) -> str:
    """Run a git command synchronously and return its stripped stdout."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def commit_all(repo: Path, message: str = "update") -> str:
    """Commit every change in *repo* and return the new commit id."""
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def init_repo(path: Path) -> Path:
    """Initialise a repository with a fixed identity and ``main`` branch."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "user.email", "test@stencil.local")
    git(path, "config", "user.name", "Stencil Test")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "config", "tag.gpgsign", "false")
    # Lets tests fetch an unadvertised commit by id.
    git(path, "config", "uploadpack.allowAnySHA1InWant", "true")
    return path


@pytest.fixture
def make_git_template(tmp_path: Path) -> Callable[..., Path]:
    """Factory building a committed template repository."""
    counter = {"n": 0}

    def factory(files: dict[str, str | bytes], name: str | None = None) -> Path:
        counter["n"] += 1
        repo = init_repo(tmp_path / (name or f"repo-{counter['n']}"))
        write_tree(repo, files)
        commit_all(repo, "Initial commit")
        return repo

    return factory


@pytest.fixture
def tmp_git_repo(make_git_template: Callable[..., Path]) -> Path:
    """Template repository used by most source and pipeline tests.

    ``{{project_name}}/README.md`` renders ``# {{project_name | upcase}}`` and
    the manifest declares a single optional placeholder.
    """
    return make_git_template(
        {
            "stencil.yaml": """\
                placeholders:
                  license:
                    type: enum
                    choices: [MIT, Apache-2.0]
                    default: MIT
                """,
            "{{project_name}}/README.md": "# {{ project_name | upcase }}\n",
            "{{project_name}}/LICENSE": "{{ license }}\n",
        },
        name="template-repo",
    )


# ---------------------------------------------------------------------------
# Prompting
# ---------------------------------------------------------------------------

class ScriptedPrompter:
    """``Prompter`` returning queued answers and recording the questions."""

    def __init__(self, answers: Sequence[Any] = ()) -> None:
        self.answers = list(answers)
        self.questions: list[str] = []
        self.defaults: list[Any] = []
        self.invalid: list[str] = []

    def _next(self, question: str, default: Any) -> Any:
        self.questions.append(question)
        self.defaults.append(default)
        if not self.answers:
            raise AssertionError(f"Unexpected question: {question}")
        return self.answers.pop(0)

    def ask_text(self, question: str, default: str | None = None) -> str:
        return self._next(question, default)

    def ask_bool(self, question: str, default: bool | None = None) -> bool:
        return self._next(question, default)

    def ask_choice(
        self, question: str, choices: Sequence[str], default: str | None = None
    ) -> str:
        return self._next(question, default)

    def report_invalid(self, message: str) -> None:
        self.invalid.append(message)


@pytest.fixture
def scripted_prompter() -> Callable[..., ScriptedPrompter]:
    """Factory for a prompter with pre-recorded answers."""
    return ScriptedPrompter


# ---------------------------------------------------------------------------
# Mock Subprocess
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing git command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory
