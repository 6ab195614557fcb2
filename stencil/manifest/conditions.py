"""Manifest condition expressions.

Visibility conditions (``visible_if``) and conditional ignore blocks
(``when``) are Jinja expressions evaluated in a sandbox.  Names they
reference are extracted statically so the placeholder dependency graph can
be checked before any prompting happens.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any, Callable

import jinja2
from jinja2 import meta
from jinja2.sandbox import ImmutableSandboxedEnvironment

from stencil.errors import CyclicOrForwardDependency, ManifestError
from stencil.manifest.models import PlaceholderSpec

# Undefined names evaluate to None, so a condition over a hidden placeholder
# is simply false.
_env = ImmutableSandboxedEnvironment(undefined=jinja2.Undefined)


@lru_cache(maxsize=256)
def _compile(expression: str) -> Callable[..., Any]:
    try:
        return _env.compile_expression(expression, undefined_to_none=True)
    except jinja2.TemplateSyntaxError as exc:
        raise ManifestError(f"Invalid condition {expression!r}: {exc.message}") from exc


@lru_cache(maxsize=256)
def referenced_names(expression: str) -> frozenset[str]:
    """Return the variable names *expression* reads."""
    try:
        ast = _env.parse("{{ (" + expression + ") }}")
    except jinja2.TemplateSyntaxError as exc:
        raise ManifestError(f"Invalid condition {expression!r}: {exc.message}") from exc
    return frozenset(meta.find_undeclared_variables(ast) - set(_env.globals))


def evaluate(expression: str, values: Mapping[str, Any]) -> bool:
    """Evaluate *expression* against *values* and return its truthiness.

    Raises:
        ManifestError: If the expression is malformed or fails at runtime.
    """
    func = _compile(expression)
    try:
        return bool(func(**values))
    except jinja2.TemplateError as exc:
        raise ManifestError(f"Condition {expression!r} failed: {exc}") from exc
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise ManifestError(f"Condition {expression!r} failed: {exc}") from exc


def check_dependencies(
    placeholders: Iterable[PlaceholderSpec], available: Iterable[str] = ()
) -> None:
    """Verify every visibility condition only reads earlier placeholders.

    Args:
        placeholders: Declarations in declaration order.
        available: Names resolved before any declaration (identity values).

    Raises:
        CyclicOrForwardDependency: On a self, forward or unknown reference.
    """
    known = set(available)
    for spec in placeholders:
        if spec.visible_if:
            missing = sorted(referenced_names(spec.visible_if) - known)
            if missing:
                raise CyclicOrForwardDependency(spec.name, missing)
        known.add(spec.name)
