"""Template manifest: models, condition expressions and loading."""

from stencil.manifest.conditions import check_dependencies, evaluate, referenced_names
from stencil.manifest.loader import (
    DEFAULT_MANIFEST_NAMES,
    find_manifest,
    load_manifest,
    load_values_file,
    locate_template_root,
    parse_manifest,
)
from stencil.manifest.models import (
    IDENTITY_PLACEHOLDERS,
    PROJECT_NAME,
    ConditionalBlock,
    PlaceholderSpec,
    PlaceholderType,
    TemplateManifest,
)

__all__ = [
    "DEFAULT_MANIFEST_NAMES",
    "IDENTITY_PLACEHOLDERS",
    "PROJECT_NAME",
    "ConditionalBlock",
    "PlaceholderSpec",
    "PlaceholderType",
    "TemplateManifest",
    "check_dependencies",
    "evaluate",
    "find_manifest",
    "load_manifest",
    "load_values_file",
    "locate_template_root",
    "parse_manifest",
    "referenced_names",
]
