"""Stencil generation pipeline.

Drives one generation request through its stages, strictly in order:

1. RESOLVE     -- obtain an isolated copy of the template at one revision.
2. LOAD        -- locate the template root, parse and check its manifest.
3. VALUES      -- resolve placeholders (overrides, prompts, defaults).
4. PRE-HOOKS   -- run pre-generation scripts on the private working copy.
5. RENDER      -- filter, render and stage the tree, then commit it.
6. POST        -- optional ``git init`` and post-generation scripts.

A failure before step 5 commits leaves the destination untouched.  A failure
in step 6 raises :class:`~stencil.errors.PostGenerationError` carrying the
summary of the committed output.

Usage::

    python -m stencil.pipeline gh:acme/rust-template -o ./demo -d project_name=demo
    python -m stencil.pipeline ./my-template --ref v2 --silent --values-file answers.yaml
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from stencil.config import Config
from stencil.errors import IoFailure, PostGenerationError, StencilError
from stencil.hooks.runner import HookRunner
from stencil.manifest.conditions import evaluate
from stencil.manifest.loader import load_manifest, load_values_file, locate_template_root
from stencil.manifest.models import TemplateManifest
from stencil.output.materializer import MaterializeResult, Materializer, OverwritePolicy
from stencil.placeholders.prompter import Prompter, RichPrompter
from stencil.placeholders.resolver import HostIdentity, PlaceholderResolver
from stencil.placeholders.values import PlaceholderValues
from stencil.renderer.templates import TemplateRenderer
from stencil.source.descriptor import SourceDescriptor
from stencil.source.git import GitCommandError, run_git
from stencil.source.resolver import ResolvedSource, SourceResolver
from stencil.tree.walker import TreeFilter
from stencil.utils import (
    console,
    format_duration,
    parse_assignments,
    print_detail,
    print_error,
    print_panel,
    print_step,
    print_success,
    print_summary_table,
    print_warning,
    short_revision,
)

# ---------------------------------------------------------------------------
# Request / summary models
# ---------------------------------------------------------------------------


class GenerationStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"


class GenerationRequest(BaseModel):
    """Everything the pipeline needs to generate one project."""

    model_config = ConfigDict(frozen=True)

    source: SourceDescriptor
    destination: Path | None = Field(
        default=None, description="Target directory; defaults to ./<project_slug>"
    )
    overrides: dict[str, Any] = Field(default_factory=dict)
    policy: OverwritePolicy = Field(default=OverwritePolicy.FAIL)
    interactive: bool = Field(default=False)
    force_refresh: bool = Field(default=False)
    identity: HostIdentity | None = Field(default=None)
    vcs: Literal["git", "none"] | None = Field(default=None)


class GenerationSummary(BaseModel):
    """What a generation run produced."""

    destination: Path
    revision: str | None = None
    values: dict[str, Any] = Field(default_factory=dict)
    written: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    status: GenerationStatus = GenerationStatus.SUCCESS
    duration: float = 0.0

    def as_table(self) -> dict[str, Any]:
        return {
            "Destination": self.destination,
            "Revision": short_revision(self.revision),
            "Files written": len(self.written),
            "Files skipped": len(self.skipped),
            "Status": self.status.value,
            "Duration": format_duration(self.duration),
        }


@dataclass
class GenerationContext:
    """Mutable state of one run; owned by a single ``Pipeline.run`` call."""

    request: GenerationRequest
    resolved: ResolvedSource | None = None
    template_root: Path | None = None
    manifest: TemplateManifest | None = None
    values: PlaceholderValues = field(default_factory=PlaceholderValues)
    tree: TreeFilter | None = None
    destination: Path | None = None
    result: MaterializeResult | None = None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class Pipeline:
    """Runs generation requests.

    Attributes:
        config: Cache location, timeouts and verbosity.
        prompter: Used for interactive questions; a ``RichPrompter`` by default.
        resolver: The source resolver sharing ``config``'s cache.
    """

    def __init__(self, config: Config, prompter: Prompter | None = None) -> None:
        self.config = config
        self.prompter = prompter or RichPrompter()
        self.resolver = SourceResolver(config)

    async def run(self, request: GenerationRequest) -> GenerationSummary:
        """Generate a project for *request*.

        Raises:
            StencilError: Any failure before commit; the destination is untouched.
            PostGenerationError: The project was written but a post step failed.
        """
        start = time.monotonic()
        ctx = GenerationContext(request=request)
        try:
            await self._resolve(ctx)
            self._load(ctx)
            self._resolve_values(ctx)
            self._run_pre_hooks(ctx)
            self._render(ctx)

            summary = self._summary(ctx, start, GenerationStatus.SUCCESS)
            try:
                await self._post_generate(ctx)
            except StencilError as exc:
                partial = self._summary(ctx, start, GenerationStatus.PARTIAL)
                raise PostGenerationError(exc, partial) from exc
            summary.duration = time.monotonic() - start
            return summary
        finally:
            if ctx.resolved is not None:
                ctx.resolved.cleanup()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _resolve(self, ctx: GenerationContext) -> None:
        request = ctx.request
        print_step(f"Resolving template {request.source.describe()}")
        ctx.resolved = await self.resolver.resolve(
            request.source, force_refresh=request.force_refresh
        )

    def _load(self, ctx: GenerationContext) -> None:
        assert ctx.resolved is not None
        choose = self._choose_template if ctx.request.interactive else None
        root = locate_template_root(ctx.resolved.path, self.config.manifest_names, choose)
        manifest = load_manifest(root, self.config.manifest_names)
        if root != ctx.resolved.path:
            print_detail(
                f"Using template {root.relative_to(ctx.resolved.path).as_posix()}",
                self.config.verbose,
            )

        excluded = list(manifest.hook_files)
        if manifest.manifest_file:
            excluded.append(manifest.manifest_file)
        ctx.template_root = root
        ctx.manifest = manifest
        ctx.tree = TreeFilter(
            root,
            patterns=manifest.ignore,
            always_excluded=excluded,
            sniff_bytes=self.config.sniff_bytes,
        )

    def _resolve_values(self, ctx: GenerationContext) -> None:
        assert ctx.manifest is not None
        resolver = PlaceholderResolver(
            ctx.manifest,
            prompter=self.prompter,
            interactive=ctx.request.interactive,
            verbose=self.config.verbose,
        )
        ctx.values = resolver.resolve(ctx.request.overrides, ctx.request.identity)

    def _run_pre_hooks(self, ctx: GenerationContext) -> None:
        assert ctx.manifest is not None and ctx.template_root is not None
        if ctx.manifest.pre_hooks:
            self._hook_runner(ctx).run_pre(ctx.template_root)
            ctx.values.derive()

    def _render(self, ctx: GenerationContext) -> None:
        assert ctx.manifest is not None and ctx.tree is not None
        context = ctx.values.as_context()
        for block in ctx.manifest.conditional:
            if evaluate(block.when, context):
                ctx.tree.extend(block.ignore)

        ctx.destination = self._destination(ctx)
        print_step(f"Generating into {ctx.destination}")
        renderer = TemplateRenderer(context, lenient=ctx.manifest.lenient)
        materializer = Materializer(
            ctx.destination, policy=ctx.request.policy, verbose=self.config.verbose
        )
        ctx.result = materializer.materialize(renderer.render_all(ctx.tree.walk()))

    async def _post_generate(self, ctx: GenerationContext) -> None:
        assert ctx.manifest is not None and ctx.destination is not None
        if ctx.request.vcs == "git":
            await self._init_vcs(ctx.destination)
        if ctx.manifest.post_hooks:
            self._hook_runner(ctx).run_post(ctx.destination)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _hook_runner(self, ctx: GenerationContext) -> HookRunner:
        assert ctx.manifest is not None and ctx.template_root is not None
        return HookRunner(
            ctx.template_root,
            ctx.manifest,
            ctx.values,
            prompter=self.prompter,
            interactive=ctx.request.interactive,
            verbose=self.config.verbose,
        )

    def _choose_template(self, candidates: list[str]) -> str:
        return self.prompter.ask_choice("Which template should be expanded?", candidates)

    def _destination(self, ctx: GenerationContext) -> Path:
        if ctx.request.destination is not None:
            return Path(ctx.request.destination).expanduser().absolute()
        slug = ctx.values.get("project_slug")
        if not slug:
            raise IoFailure("No destination given and project name yields no directory name")
        return Path.cwd() / str(slug)

    async def _init_vcs(self, destination: Path) -> None:
        timeout = self.config.git_timeout
        try:
            await run_git("rev-parse", "--is-inside-work-tree", cwd=destination, timeout=timeout)
            print_detail("Destination is already inside a git repository", self.config.verbose)
            return
        except GitCommandError:
            pass
        try:
            await run_git("init", "--quiet", cwd=destination, timeout=timeout)
        except GitCommandError as exc:
            raise IoFailure(f"git init failed: {exc.stderr or exc}", destination) from exc
        print_detail(f"Initialized git repository in {destination}", self.config.verbose)

    def _summary(
        self, ctx: GenerationContext, start: float, status: GenerationStatus
    ) -> GenerationSummary:
        assert ctx.result is not None and ctx.resolved is not None
        return GenerationSummary(
            destination=ctx.result.destination,
            revision=ctx.resolved.revision,
            values=ctx.values.as_context(),
            written=ctx.result.written,
            skipped=ctx.result.skipped,
            status=status,
            duration=time.monotonic() - start,
        )


# ---------------------------------------------------------------------------
# Host identity
# ---------------------------------------------------------------------------


async def read_git_identity(timeout: float = 10.0) -> HostIdentity:
    """Read ``user.name`` / ``user.email`` from the host's git configuration."""
    found: dict[str, str | None] = {}
    for key, field_name in (("user.name", "name"), ("user.email", "email")):
        try:
            stdout, _ = await run_git("config", "--get", key, timeout=timeout)
            found[field_name] = stdout or None
        except GitCommandError:
            found[field_name] = None
    return HostIdentity(**found)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


async def _run_cli(pipeline: Pipeline, request: GenerationRequest) -> int:
    try:
        summary = await pipeline.run(request)
    except PostGenerationError as exc:
        print_warning(exc.message)
        print_panel(exc.cause.describe(), title="Post-generation step failed", border_style="yellow")
        print_summary_table(exc.summary.as_table(), title="Generation")
        return EXIT_PARTIAL
    except StencilError as exc:
        print_error(f"Error: {exc.describe()}")
        return EXIT_FAILED

    print_summary_table(summary.as_table(), title="Generation")
    print_success(f"Generated {summary.destination}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``stencil`` / ``python -m stencil.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="stencil",
        description="Stencil -- generate a project from a git or local template",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  stencil gh:acme/service-template -o ./billing\n"
            "  stencil ./templates --subpath api --ref v2 -d project_name=demo --silent\n"
            "\n"
            "Exit codes: 0 success, 1 failure, 2 generated but a post step failed\n"
        ),
    )
    parser.add_argument("origin", help="Template: URL, user@host:path, gh:owner/repo or local path")
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Destination directory (default: ./<project_slug>)",
    )
    parser.add_argument("--ref", default=None, help="Branch, tag or commit to use")
    parser.add_argument("--subpath", default=None, help="Template folder inside the repository")
    parser.add_argument(
        "--define", "-d",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Placeholder value (repeatable)",
    )
    parser.add_argument("--values-file", default=None, help="YAML file with placeholder values")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in OverwritePolicy],
        default=OverwritePolicy.FAIL.value,
        help="What to do with files that already exist (default: fail)",
    )
    parser.add_argument("--silent", action="store_true", help="Never prompt; use defaults")
    parser.add_argument("--refresh", action="store_true", help="Re-fetch the template")
    parser.add_argument(
        "--vcs", choices=["git", "none"], default="git", help="Initialize version control"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show details")

    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
    except (OSError, ValueError) as exc:
        print_error(f"Error: invalid configuration: {exc}")
        sys.exit(EXIT_FAILED)
    if args.verbose:
        config.verbose = True

    try:
        overrides: dict[str, Any] = {}
        if args.values_file:
            overrides.update(load_values_file(Path(args.values_file)))
        overrides.update(parse_assignments(args.define))
    except ValueError as exc:
        print_error(f"Error: {exc}")
        sys.exit(EXIT_FAILED)
    except StencilError as exc:
        print_error(f"Error: {exc.describe()}")
        sys.exit(EXIT_FAILED)

    interactive = not args.silent and sys.stdin.isatty()
    identity = asyncio.run(read_git_identity(config.git_timeout))
    request = GenerationRequest(
        source=SourceDescriptor(origin=args.origin, ref=args.ref, subpath=args.subpath),
        destination=Path(args.output) if args.output else None,
        overrides=overrides,
        policy=OverwritePolicy(args.policy),
        interactive=interactive,
        force_refresh=args.refresh,
        identity=identity,
        vcs=args.vcs,
    )

    pipeline = Pipeline(config)
    try:
        code = asyncio.run(_run_cli(pipeline, request))
    except KeyboardInterrupt:
        console.print()
        print_error("Interrupted.")
        code = EXIT_FAILED
    sys.exit(code)


if __name__ == "__main__":
    main()
