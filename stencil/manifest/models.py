"""Pydantic v2 models for the template manifest (``stencil.yaml``).

The manifest is parsed once and is immutable afterwards: every model here is
frozen.  Placeholder declarations keep their declaration order, which is
also the prompting order and the order visibility conditions may depend on.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stencil.errors import InvalidValue

PROJECT_NAME = "project_name"
IDENTITY_PLACEHOLDERS: tuple[str, ...] = ("author_name", "author_email", "authors")

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUE = {"true", "yes", "y", "1", "on"}
_FALSE = {"false", "no", "n", "0", "off"}


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PlaceholderType(str, Enum):
    """Value type of a placeholder."""
    STRING = "string"
    BOOL = "bool"
    INT = "int"
    ENUM = "enum"


# ---------------------------------------------------------------------------
# Placeholder declaration
# ---------------------------------------------------------------------------


class PlaceholderSpec(BaseModel):
    """A declared placeholder: type, default, prompt and validation rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Variable name usable in templates")
    type: PlaceholderType = Field(default=PlaceholderType.STRING)
    default: Any = Field(default=None, description="Value used when nothing else is given")
    prompt: str | None = Field(default=None, description="Question shown when prompting")
    choices: tuple[str, ...] | None = Field(default=None, description="Allowed values")
    regex: str | None = Field(default=None, description="Full-match pattern for strings")
    visible_if: str | None = Field(
        default=None, description="Expression over earlier placeholders; false hides this one"
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _NAME_RE.match(value):
            raise ValueError(f"placeholder name {value!r} is not a valid identifier")
        return value

    @field_validator("choices", mode="before")
    @classmethod
    def _stringify_choices(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            raise ValueError("choices must be a list")
        return tuple(str(v) for v in value)

    @model_validator(mode="after")
    def _check_rules(self) -> "PlaceholderSpec":
        if self.type is PlaceholderType.ENUM and not self.choices:
            raise ValueError(f"enum placeholder '{self.name}' requires choices")
        if self.choices is not None and self.type not in (PlaceholderType.ENUM, PlaceholderType.STRING):
            raise ValueError(f"choices are only allowed on string or enum placeholders ('{self.name}')")
        if self.regex is not None:
            if self.type is not PlaceholderType.STRING:
                raise ValueError(f"regex is only allowed on string placeholders ('{self.name}')")
            try:
                re.compile(self.regex)
            except re.error as exc:
                raise ValueError(f"invalid regex for '{self.name}': {exc}") from exc
        if self.default is not None:
            try:
                self.coerce(self.default)
            except InvalidValue as exc:
                raise ValueError(f"default for '{self.name}' is invalid: {exc.reason}") from exc
        return self

    @property
    def prompt_text(self) -> str:
        return self.prompt or self.name.replace("_", " ").capitalize()

    def coerce(self, raw: Any) -> Any:
        """Convert *raw* to this placeholder's type and validate it.

        Strings coming from the command line are parsed (``"yes"`` -> ``True``,
        ``"8"`` -> ``8``); already-typed values are checked as-is.

        Raises:
            InvalidValue: If the value does not match type, choices or regex.
        """
        if self.type is PlaceholderType.BOOL:
            return self._coerce_bool(raw)
        if self.type is PlaceholderType.INT:
            return self._coerce_int(raw)

        if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            raise InvalidValue(self.name, raw, f"expected a {self.type.value}")
        value = str(raw)
        if self.choices is not None and value not in self.choices:
            raise InvalidValue(self.name, raw, f"must be one of {', '.join(self.choices)}")
        if self.regex is not None and not re.fullmatch(self.regex, value):
            raise InvalidValue(self.name, raw, f"does not match pattern {self.regex!r}")
        return value

    def _coerce_bool(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        raise InvalidValue(self.name, raw, "expected a boolean (true/false)")

    def _coerce_int(self, raw: Any) -> int:
        if isinstance(raw, bool):
            raise InvalidValue(self.name, raw, "expected an integer")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            try:
                return int(raw.strip())
            except ValueError:
                pass
        raise InvalidValue(self.name, raw, "expected an integer")


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class ConditionalBlock(BaseModel):
    """Extra ignore patterns applied when ``when`` evaluates true."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    when: str = Field(..., min_length=1)
    ignore: tuple[str, ...] = Field(default=())


class TemplateManifest(BaseModel):
    """Parsed ``stencil.yaml``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    placeholders: tuple[PlaceholderSpec, ...] = Field(default=())
    ignore: tuple[str, ...] = Field(default=(), description="gitwildmatch patterns, last match wins")
    pre_hooks: tuple[str, ...] = Field(default=())
    post_hooks: tuple[str, ...] = Field(default=())
    inject_identity: bool = Field(default=True)
    lenient: bool = Field(default=False, description="Render undefined variables as empty")
    conditional: tuple[ConditionalBlock, ...] = Field(default=())
    requires: str | None = Field(default=None, description="Version specifier the stencil tool must satisfy")
    manifest_file: str | None = Field(default=None, description="Manifest path relative to the template root")

    @field_validator("placeholders", mode="before")
    @classmethod
    def _placeholders_from_mapping(cls, value: Any) -> Any:
        """Accept the ``name: {type: ..., ...}`` mapping form used in YAML."""
        if not isinstance(value, dict):
            return value
        specs = []
        for name, body in value.items():
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise ValueError(f"placeholder '{name}' must be a mapping")
            specs.append({"name": str(name), **body})
        return specs

    @field_validator("requires")
    @classmethod
    def _valid_specifier(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            SpecifierSet(value)
        except InvalidSpecifier as exc:
            raise ValueError(f"'{value}' is not a valid version specifier") from exc
        return value

    @field_validator("placeholders")
    @classmethod
    def _unique_names(cls, value: tuple[PlaceholderSpec, ...]) -> tuple[PlaceholderSpec, ...]:
        seen: set[str] = set()
        for spec in value:
            if spec.name in seen:
                raise ValueError(f"placeholder '{spec.name}' is declared twice")
            seen.add(spec.name)
        return value

    def placeholder(self, name: str) -> PlaceholderSpec | None:
        """Return the declaration named *name*, if any."""
        for spec in self.placeholders:
            if spec.name == name:
                return spec
        return None

    @property
    def hook_files(self) -> tuple[str, ...]:
        """Every hook script path, pre-hooks first."""
        return self.pre_hooks + self.post_hooks

    def effective_placeholders(self) -> tuple[PlaceholderSpec, ...]:
        """Declarations with the standard ``project_name`` prepended if absent."""
        if self.placeholder(PROJECT_NAME) is not None:
            return self.placeholders
        implicit = PlaceholderSpec(name=PROJECT_NAME, prompt="Project name")
        return (implicit,) + self.placeholders
