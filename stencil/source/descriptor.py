"""Source descriptors: which template tree to use.

A ``SourceDescriptor`` is the ``(origin, ref, subpath)`` triple. Remote
origins are normalised so that every spelling of the same repository maps to
one cache entry.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

from stencil.utils import sanitize_name

_ABBREVIATIONS: dict[str, str] = {
    "gh": "https://github.com",
    "gl": "https://gitlab.com",
    "bb": "https://bitbucket.org",
}

_SCP_RE = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?P<path>(?!/).+)$")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_ABBREV_RE = re.compile(r"^(?P<prefix>gh|gl|bb):(?P<path>[\w.-]+/[\w.-]+)$")


def is_remote(origin: str) -> bool:
    """Return ``True`` if *origin* names a remote repository rather than a local path."""
    return bool(
        _SCHEME_RE.match(origin) or _SCP_RE.match(origin) or _ABBREV_RE.match(origin)
    )


def expand_abbreviation(origin: str) -> str:
    """Expand ``gh:owner/repo`` style abbreviations to full https URLs."""
    match = _ABBREV_RE.match(origin)
    if not match:
        return origin
    return f"{_ABBREVIATIONS[match.group('prefix')]}/{match.group('path')}"


def normalize_origin(origin: str) -> str:
    """Normalise a remote origin so equivalent spellings compare equal.

    * ``gh:``/``gl:``/``bb:`` abbreviations are expanded.
    * scp-like ``user@host:path`` becomes ``ssh://user@host/path``.
    * Scheme and host are lowercased.
    * Trailing ``/`` and ``.git`` are stripped.

    Examples::

        normalize_origin("gh:Acme/tpl") -> "https://github.com/Acme/tpl"
        normalize_origin("git@GitHub.com:acme/tpl.git") -> "ssh://git@github.com/acme/tpl"
    """
    origin = expand_abbreviation(origin.strip())
    scp = _SCP_RE.match(origin)
    if scp:
        origin = f"ssh://{scp.group('user')}@{scp.group('host')}/{scp.group('path')}"

    parts = urlsplit(origin)
    netloc = parts.netloc
    if "@" in netloc:
        userinfo, _, host = netloc.rpartition("@")
        netloc = f"{userinfo}@{host.lower()}"
    else:
        netloc = netloc.lower()

    path = parts.path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, ""))


class SourceDescriptor(BaseModel):
    """Identifies the template tree: origin, optional ref and optional subpath."""

    model_config = ConfigDict(frozen=True)

    origin: str = Field(..., min_length=1, description="Remote URL or local path")
    ref: str | None = Field(default=None, description="Branch, tag or commit id")
    subpath: str | None = Field(default=None, description="Template folder inside the tree")

    @property
    def remote(self) -> bool:
        return is_remote(self.origin)

    @property
    def normalized_origin(self) -> str:
        """The canonical origin: a normalised URL or an absolute local path."""
        if self.remote:
            return normalize_origin(self.origin)
        return str(Path(self.origin).expanduser().resolve())

    @property
    def fetch_url(self) -> str:
        """URL handed to git; abbreviations expanded, otherwise as given."""
        return expand_abbreviation(self.origin)

    @property
    def cache_key(self) -> str:
        """Directory name of this origin's cache entry."""
        normalized = self.normalized_origin
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]
        readable = sanitize_name(normalized.split("://", 1)[-1])[-48:].strip("-")
        return f"{readable or 'origin'}-{digest}"

    def describe(self) -> str:
        text = self.origin
        if self.ref:
            text += f"@{self.ref}"
        if self.subpath:
            text += f" ({self.subpath})"
        return text
