"""Stencil configuration.

Centralised, typed configuration for the generation pipeline. All settings use
Pydantic v2 models so they can be validated at construction time and loaded
from a JSON file or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_FILE = "config.json"


def _default_cache_dir() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "stencil"


class Config(BaseModel):
    """Global Stencil configuration.

    The template cache is an explicit value with an explicit lifecycle rather
    than a process-wide singleton: every ``SourceResolver`` receives the
    ``Config`` it should use.
    """

    cache_dir: Path = Field(default_factory=_default_cache_dir)
    lock_timeout: float = Field(
        default=60.0, gt=0, description="Seconds to wait for a per-origin cache lock"
    )
    git_timeout: float = Field(
        default=120.0, ge=1, description="Per git command timeout in seconds"
    )
    sniff_bytes: int = Field(
        default=8000, ge=64, description="Prefix size inspected to classify binary files"
    )
    manifest_names: list[str] = Field(default=["stencil.yaml", "stencil.yml"])
    verbose: bool = Field(default=False)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def repos_dir(self) -> Path:
        """Directory holding one subdirectory per normalized origin."""
        return self.cache_dir / "repos"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a configuration from a JSON file."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from an optional JSON file and environment variables.

        The base settings come from the file named by ``STENCIL_CONFIG`` or,
        when that is unset, from ``<cache_dir>/config.json`` if it exists.
        Environment variables then override individual fields.

        Recognised variables (all optional):
            STENCIL_CONFIG, STENCIL_CACHE_DIR, STENCIL_LOCK_TIMEOUT,
            STENCIL_GIT_TIMEOUT, STENCIL_SNIFF_BYTES, STENCIL_VERBOSE.

        Raises:
            OSError: ``STENCIL_CONFIG`` names a file that cannot be read.
            pydantic.ValidationError: The file or a variable holds an invalid value.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("STENCIL_CACHE_DIR"):
            kwargs["cache_dir"] = Path(os.environ["STENCIL_CACHE_DIR"]).expanduser()
        if os.environ.get("STENCIL_LOCK_TIMEOUT"):
            kwargs["lock_timeout"] = float(os.environ["STENCIL_LOCK_TIMEOUT"])
        if os.environ.get("STENCIL_GIT_TIMEOUT"):
            kwargs["git_timeout"] = float(os.environ["STENCIL_GIT_TIMEOUT"])
        if os.environ.get("STENCIL_SNIFF_BYTES"):
            kwargs["sniff_bytes"] = int(os.environ["STENCIL_SNIFF_BYTES"])
        if os.environ.get("STENCIL_VERBOSE"):
            kwargs["verbose"] = os.environ["STENCIL_VERBOSE"].lower() in ("1", "true", "yes")
        explicit = os.environ.get("STENCIL_CONFIG")
        if explicit:
            base = cls.load(Path(explicit).expanduser()).model_dump()
        else:
            default = Path(kwargs.get("cache_dir") or _default_cache_dir()) / CONFIG_FILE
            base = cls.load(default).model_dump() if default.is_file() else {}
        return cls.model_validate({**base, **kwargs})

    def ensure_directories(self) -> None:
        """Create the cache directories that must exist before resolving sources."""
        for directory in (self.cache_dir, self.repos_dir):
            directory.mkdir(parents=True, exist_ok=True)
