"""Resolved placeholder values and their provenance."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from stencil.manifest.models import PROJECT_NAME
from stencil.placeholders.casing import PROJECT_NAME_VARIANTS


class Provenance(str, Enum):
    """Where a placeholder value came from."""
    DEFAULT = "default"
    DERIVED = "derived"
    IDENTITY = "identity"
    PROMPT = "prompt"
    OVERRIDE = "override"
    HOOK = "hook"


# Values a caller or hook chose explicitly are never replaced by derivation.
_EXPLICIT = (Provenance.OVERRIDE, Provenance.HOOK)


@dataclass(frozen=True)
class PlaceholderValue:
    """One resolved variable."""

    name: str
    value: Any
    provenance: Provenance


class PlaceholderValues:
    """Ordered mapping of name -> :class:`PlaceholderValue`.

    Insertion order is resolution order.  Re-setting a name keeps its
    original position and replaces value and provenance.
    """

    def __init__(self) -> None:
        self._values: dict[str, PlaceholderValue] = {}

    def set(self, name: str, value: Any, provenance: Provenance) -> PlaceholderValue:
        entry = PlaceholderValue(name=name, value=value, provenance=provenance)
        self._values[name] = entry
        return entry

    def get(self, name: str, default: Any = None) -> Any:
        entry = self._values.get(name)
        return entry.value if entry is not None else default

    def entry(self, name: str) -> PlaceholderValue | None:
        return self._values.get(name)

    def provenance(self, name: str) -> Provenance | None:
        entry = self._values.get(name)
        return entry.provenance if entry is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def as_context(self) -> dict[str, Any]:
        """Plain ``{name: value}`` dict handed to templates and conditions."""
        return {name: entry.value for name, entry in self._values.items()}

    def derive(self) -> None:
        """(Re)compute the case-converted ``project_*`` variants of ``project_name``."""
        project_name = self.get(PROJECT_NAME)
        if not isinstance(project_name, str):
            return
        for name, convert in PROJECT_NAME_VARIANTS.items():
            if self.provenance(name) in _EXPLICIT:
                continue
            self.set(name, convert(project_name), Provenance.DERIVED)
