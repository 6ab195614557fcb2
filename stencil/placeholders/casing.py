"""Case-conversion helpers.

``CASE_FILTERS`` is the complete, enumerated set of case conversions exposed
to templates (as Jinja filters) and used to derive the ``project_*``
variants.  Nothing else is registered implicitly.
"""

from __future__ import annotations

import re
from typing import Callable


def split_words(value: str) -> list[str]:
    """Split ``someThing``, ``some-thing`` or ``SOME_THING`` into words."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1 \2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", s1)
    return [w for w in re.split(r"[^A-Za-z0-9]+", s2) if w]


def upcase(value: str) -> str:
    return str(value).upper()


def downcase(value: str) -> str:
    return str(value).lower()


def capitalize(value: str) -> str:
    return str(value).capitalize()


def kebab_case(value: str) -> str:
    """Convert ``Some Thing`` to ``some-thing``."""
    return "-".join(w.lower() for w in split_words(str(value)))


def snake_case(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    return "_".join(w.lower() for w in split_words(str(value)))


def pascal_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    return "".join(w.capitalize() for w in split_words(str(value)))


def camel_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = pascal_case(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


def shouty_snake_case(value: str) -> str:
    return snake_case(value).upper()


def shouty_kebab_case(value: str) -> str:
    return kebab_case(value).upper()


def title_case(value: str) -> str:
    return " ".join(w.capitalize() for w in split_words(str(value)))


CASE_FILTERS: dict[str, Callable[[str], str]] = {
    "upcase": upcase,
    "downcase": downcase,
    "capitalize": capitalize,
    "kebab_case": kebab_case,
    "snake_case": snake_case,
    "pascal_case": pascal_case,
    "camel_case": camel_case,
    "shouty_snake_case": shouty_snake_case,
    "shouty_kebab_case": shouty_kebab_case,
    "title_case": title_case,
}

# Derived variable name -> conversion applied to ``project_name``.
PROJECT_NAME_VARIANTS: dict[str, Callable[[str], str]] = {
    "project_slug": kebab_case,
    "project_snake": snake_case,
    "project_pascal": pascal_case,
    "project_camel": camel_case,
    "project_title": title_case,
    "project_upper": shouty_snake_case,
}
