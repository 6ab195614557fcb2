"""Locating, parsing and validating the template manifest."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import yaml
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from stencil.errors import AmbiguousTemplate, ManifestError
from stencil.manifest.conditions import check_dependencies, referenced_names
from stencil.manifest.models import IDENTITY_PLACEHOLDERS, TemplateManifest

DEFAULT_MANIFEST_NAMES: tuple[str, ...] = ("stencil.yaml", "stencil.yml")
DISTRIBUTION = "stencil"


def find_manifest(root: Path, names: Sequence[str] = DEFAULT_MANIFEST_NAMES) -> Path | None:
    """Return the manifest file directly inside *root*, if any."""
    for name in names:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def locate_template_root(
    root: Path,
    names: Sequence[str] = DEFAULT_MANIFEST_NAMES,
    choose: Callable[[list[str]], str] | None = None,
) -> Path:
    """Find the template directory inside a resolved tree.

    * A manifest directly in *root* wins.
    * Otherwise exactly one nested manifest selects its directory.
    * Several nested manifests are offered to *choose*; without a chooser
      the choice is ambiguous.
    * No manifest at all means *root* is a manifest-less template.

    Raises:
        AmbiguousTemplate: Several candidates and no chooser.
    """
    if find_manifest(root, names) is not None:
        return root

    candidates: set[str] = set()
    for name in names:
        for path in root.rglob(name):
            rel = path.parent.relative_to(root)
            if ".git" in rel.parts or not path.is_file():
                continue
            candidates.add(rel.as_posix())

    ordered = sorted(candidates)
    if not ordered:
        return root
    if len(ordered) == 1:
        return root / ordered[0]
    if choose is None:
        raise AmbiguousTemplate(root, ordered)
    chosen = choose(ordered)
    if chosen not in candidates:
        raise AmbiguousTemplate(root, ordered)
    return root / chosen


def parse_manifest(text: str, source: str = "stencil.yaml") -> TemplateManifest:
    """Parse manifest YAML text into a ``TemplateManifest``.

    Raises:
        ManifestError: On YAML syntax errors or schema violations.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"Manifest {source} is not valid YAML: {exc}", path=source) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {source} must be a mapping", path=source)

    try:
        return TemplateManifest.model_validate({**data, "manifest_file": source})
    except ValidationError as exc:
        raise ManifestError(
            f"Manifest {source} is invalid: {_format_validation_error(exc)}", path=source
        ) from exc


def load_manifest(root: Path, names: Sequence[str] = DEFAULT_MANIFEST_NAMES) -> TemplateManifest:
    """Load and fully validate the manifest of the template at *root*.

    A template without a manifest gets the empty default manifest.

    Raises:
        ManifestError: Unreadable/malformed manifest, missing hook scripts or
            a ``requires`` specifier the installed tool does not satisfy.
        CyclicOrForwardDependency: A visibility condition reads a later name.
    """
    path = find_manifest(root, names)
    if path is None:
        manifest = TemplateManifest()
    else:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestError(f"Cannot read manifest {path}: {exc}", path=str(path)) from exc
        manifest = parse_manifest(text, source=path.relative_to(root).as_posix())

    validate_manifest(manifest, root)
    return manifest


def validate_manifest(manifest: TemplateManifest, root: Path) -> None:
    """Static checks that need the template tree or span several fields."""
    if manifest.requires is not None:
        check_tool_version(manifest.requires, source=manifest.manifest_file or "stencil.yaml")

    base = root.resolve()
    for script in manifest.hook_files:
        target = (base / script).resolve()
        if Path(script).is_absolute() or not target.is_relative_to(base):
            raise ManifestError(f"Hook script '{script}' is outside the template", path=script)
        if not target.is_file():
            raise ManifestError(f"Hook script '{script}' not found", path=script)

    available = IDENTITY_PLACEHOLDERS if manifest.inject_identity else ()
    check_dependencies(manifest.effective_placeholders(), available)

    for block in manifest.conditional:
        referenced_names(block.when)


def installed_version() -> str:
    """Version of the installed stencil distribution."""
    try:
        return version(DISTRIBUTION)
    except PackageNotFoundError as exc:
        raise ManifestError(f"Cannot determine the installed {DISTRIBUTION} version") from exc


def check_tool_version(requires: str, source: str = "stencil.yaml") -> None:
    """Ensure the running tool satisfies the manifest's ``requires`` specifier.

    Raises:
        ManifestError: The specifier is invalid or the installed version does
            not match it.
    """
    current = installed_version()
    try:
        satisfied = SpecifierSet(requires).contains(Version(current), prereleases=True)
    except (InvalidSpecifier, InvalidVersion) as exc:
        raise ManifestError(f"Cannot check requires '{requires}' in {source}: {exc}", path=source) from exc
    if not satisfied:
        raise ManifestError(
            f"Template requires {DISTRIBUTION} {requires} but {current} is installed",
            path=source,
            requires=requires,
            installed=current,
        )


def load_values_file(path: Path) -> dict[str, Any]:
    """Read a YAML mapping of placeholder overrides.

    Raises:
        ManifestError: If the file is unreadable or not a mapping.
    """
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ManifestError(f"Cannot read values file {path}: {exc}", path=str(path)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManifestError(f"Values file {path} must be a mapping", path=str(path))
    # Both a bare mapping and one nested under a top-level ``values`` key are accepted.
    values = data["values"] if isinstance(data.get("values"), dict) else data
    return {str(k): v for k, v in values.items()}


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts)
