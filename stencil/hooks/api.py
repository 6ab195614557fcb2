"""Capabilities exposed to hook scripts.

A hook script sees exactly three globals: ``variable``, ``file`` and
``abort``.  Every method returns plain values (``str``, ``bool``, ``int``,
``None`` and containers of those) so no host object ever reaches the
sandbox.  State lives in underscore-prefixed attributes, which the Jinja
sandbox refuses to expose.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from stencil.errors import HookPermissionError, MissingRequiredValue
from stencil.manifest.models import TemplateManifest
from stencil.placeholders.prompter import Prompter
from stencil.placeholders.values import PlaceholderValues, Provenance


class HookAbort(Exception):
    """Raised by ``abort(message)`` inside a script."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def abort(message: str = "aborted by hook") -> None:
    """Stop the pipeline with *message*."""
    raise HookAbort(str(message))


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


# ---------------------------------------------------------------------------
# variable
# ---------------------------------------------------------------------------


class VariableApi:
    """Read, set and prompt for placeholder values."""

    def __init__(
        self,
        values: PlaceholderValues,
        manifest: TemplateManifest,
        prompter: Prompter | None = None,
        interactive: bool = False,
    ) -> None:
        self._values = values
        self._manifest = manifest
        self._prompter = prompter
        self._interactive = interactive and prompter is not None

    def get(self, name: str, default: Any = None) -> Any:
        return _plain(self._values.get(name, default))

    def is_set(self, name: str) -> bool:
        return name in self._values

    def set(self, name: str, value: Any) -> None:
        """Set *name*; declared placeholders are validated first."""
        spec = self._manifest.placeholder(name)
        if spec is not None:
            value = spec.coerce(value)
        self._values.set(name, _plain(value), Provenance.HOOK)

    def prompt(
        self, text: str, default: Any = None, choices: Sequence[str] | None = None
    ) -> str:
        """Ask the user; non-interactive runs get the default."""
        if not self._interactive:
            if default is None:
                raise MissingRequiredValue(str(text))
            return str(default)
        assert self._prompter is not None
        default_text = None if default is None else str(default)
        if choices:
            return self._prompter.ask_choice(str(text), [str(c) for c in choices], default_text)
        return self._prompter.ask_text(str(text), default_text)


# ---------------------------------------------------------------------------
# file
# ---------------------------------------------------------------------------


class FileApi:
    """File operations confined to the hook root."""

    def __init__(self, root: Path, script: str = "") -> None:
        self._root = Path(root).resolve()
        self._script = script

    def _resolve(self, path: str) -> Path:
        raw = str(path)
        if not raw or Path(raw).is_absolute():
            raise HookPermissionError(raw, script=self._script)
        target = (self._root / raw).resolve()
        if target == self._root or not target.is_relative_to(self._root):
            raise HookPermissionError(raw, script=self._script)
        return target

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def write(self, path: str, content: Any) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(str(content), encoding="utf-8")

    def rename(self, src: str, dst: str) -> None:
        source = self._resolve(src)
        target = self._resolve(dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        source.rename(target)

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
