"""Placeholder resolution: overrides, prompts, defaults and derived values.

Resolution happens in declaration order.  For every declared placeholder:

1. A false ``visible_if`` leaves it unset (and unprompted).
2. An override is coerced and validated against the declaration.
3. Interactive mode prompts, pre-filled with the default, until the answer
   validates.
4. Otherwise the default is used, or resolution fails.

Undeclared overrides are passed through untouched, identity values are
injected when the manifest allows it, and the ``project_*`` variants of
``project_name`` are derived last.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from stencil.errors import InvalidValue, MissingRequiredValue
from stencil.manifest.conditions import check_dependencies, evaluate
from stencil.manifest.models import IDENTITY_PLACEHOLDERS, PlaceholderSpec, PlaceholderType, TemplateManifest
from stencil.placeholders.prompter import Prompter
from stencil.placeholders.values import PlaceholderValues, Provenance
from stencil.utils import print_detail


class HostIdentity(BaseModel):
    """The user's name and email, as read from the host's git configuration."""

    name: str | None = Field(default=None)
    email: str | None = Field(default=None)

    @property
    def authors(self) -> str | None:
        if self.name and self.email:
            return f"{self.name} <{self.email}>"
        return self.name or self.email

    def as_values(self) -> dict[str, str]:
        """Non-empty identity placeholders keyed by name."""
        raw = {
            "author_name": self.name,
            "author_email": self.email,
            "authors": self.authors,
        }
        return {k: v for k, v in raw.items() if v}


class PlaceholderResolver:
    """Resolves every placeholder of a manifest into ``PlaceholderValues``."""

    def __init__(
        self,
        manifest: TemplateManifest,
        prompter: Prompter | None = None,
        interactive: bool = False,
        verbose: bool = False,
    ) -> None:
        if interactive and prompter is None:
            raise ValueError("an interactive resolver needs a prompter")
        self.manifest = manifest
        self.prompter = prompter
        self.interactive = interactive
        self.verbose = verbose

    def resolve(
        self,
        overrides: Mapping[str, Any] | None = None,
        identity: HostIdentity | None = None,
    ) -> PlaceholderValues:
        """Resolve all placeholders.

        Raises:
            CyclicOrForwardDependency: Before any prompting, on a bad condition.
            InvalidValue: An override does not match its declaration.
            MissingRequiredValue: Non-interactive and no value available.
        """
        overrides = dict(overrides or {})
        declarations = self.manifest.effective_placeholders()
        identity_values = (
            identity.as_values() if identity is not None and self.manifest.inject_identity else {}
        )

        available = IDENTITY_PLACEHOLDERS if self.manifest.inject_identity else ()
        check_dependencies(declarations, available)

        values = PlaceholderValues()
        declared = {spec.name for spec in declarations}

        # Identity values are visible to conditions of every declaration.
        for name, value in identity_values.items():
            if name in declared:
                continue
            if name in overrides:
                values.set(name, overrides[name], Provenance.OVERRIDE)
            else:
                values.set(name, value, Provenance.IDENTITY)

        for spec in declarations:
            if spec.visible_if and not evaluate(spec.visible_if, values.as_context()):
                print_detail(f"Skipping hidden placeholder '{spec.name}'", self.verbose)
                continue

            if spec.name in overrides:
                values.set(spec.name, spec.coerce(overrides[spec.name]), Provenance.OVERRIDE)
                continue

            fallback, provenance = self._fallback(spec, identity_values)
            if self.interactive:
                values.set(spec.name, self._ask(spec, fallback), Provenance.PROMPT)
            elif fallback is not None:
                values.set(spec.name, fallback, provenance)
            else:
                raise MissingRequiredValue(spec.name)

        for name, value in overrides.items():
            if name not in declared and name not in values:
                values.set(name, value, Provenance.OVERRIDE)

        values.derive()
        return values

    # -- Internals ---------------------------------------------------------

    @staticmethod
    def _fallback(
        spec: PlaceholderSpec, identity_values: Mapping[str, str]
    ) -> tuple[Any, Provenance]:
        if spec.name in identity_values:
            return spec.coerce(identity_values[spec.name]), Provenance.IDENTITY
        if spec.default is not None:
            return spec.coerce(spec.default), Provenance.DEFAULT
        return None, Provenance.DEFAULT

    def _ask(self, spec: PlaceholderSpec, default: Any) -> Any:
        assert self.prompter is not None
        while True:
            if spec.type is PlaceholderType.BOOL:
                answer: Any = self.prompter.ask_bool(spec.prompt_text, default)
            elif spec.choices:
                answer = self.prompter.ask_choice(
                    spec.prompt_text,
                    spec.choices,
                    None if default is None else str(default),
                )
            else:
                answer = self.prompter.ask_text(
                    spec.prompt_text, None if default is None else str(default)
                )
            try:
                return spec.coerce(answer)
            except InvalidValue as exc:
                self.prompter.report_invalid(exc.message)
