"""Placeholder values, case conversions and interactive resolution."""

from stencil.placeholders.casing import CASE_FILTERS, PROJECT_NAME_VARIANTS
from stencil.placeholders.prompter import Prompter, RichPrompter
from stencil.placeholders.resolver import HostIdentity, PlaceholderResolver
from stencil.placeholders.values import PlaceholderValue, PlaceholderValues, Provenance

__all__ = [
    "CASE_FILTERS",
    "PROJECT_NAME_VARIANTS",
    "HostIdentity",
    "PlaceholderResolver",
    "PlaceholderValue",
    "PlaceholderValues",
    "Prompter",
    "Provenance",
    "RichPrompter",
]
