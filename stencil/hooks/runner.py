"""Sequential execution of pre- and post-generation hook scripts.

Hook scripts are Jinja2 templates rendered in an
``ImmutableSandboxedEnvironment`` whose only globals are the capabilities
from :mod:`stencil.hooks.api`.  Side effects happen through those
capabilities; whatever the script renders (minus blank lines) is echoed to
the console.  Scripts run in declared order and the first failure stops the
run.
"""

from __future__ import annotations

from pathlib import Path

import jinja2
from jinja2.sandbox import ImmutableSandboxedEnvironment

from stencil.errors import HookError, ScriptRuntimeError, StencilError
from stencil.hooks.api import FileApi, HookAbort, VariableApi, abort
from stencil.manifest.models import TemplateManifest
from stencil.placeholders.casing import CASE_FILTERS
from stencil.placeholders.prompter import Prompter
from stencil.placeholders.values import PlaceholderValues
from stencil.utils import console, print_detail, print_step


class HookRunner:
    """Runs the manifest's hook scripts against a ``PlaceholderValues`` mapping."""

    def __init__(
        self,
        template_root: Path,
        manifest: TemplateManifest,
        values: PlaceholderValues,
        prompter: Prompter | None = None,
        interactive: bool = False,
        verbose: bool = False,
    ) -> None:
        self.template_root = Path(template_root)
        self.manifest = manifest
        self.values = values
        self.prompter = prompter
        self.interactive = interactive
        self.verbose = verbose
        self.env = ImmutableSandboxedEnvironment(
            extensions=["jinja2.ext.do", "jinja2.ext.loopcontrols"],
            undefined=jinja2.StrictUndefined,
            autoescape=False,
        )
        self.env.globals.clear()
        self.env.filters.update(CASE_FILTERS)

    # -- Public API --------------------------------------------------------

    def run_pre(self, hook_root: Path) -> list[str]:
        """Run pre-hooks with file access confined to the working copy."""
        return self.run(self.manifest.pre_hooks, hook_root, "pre")

    def run_post(self, hook_root: Path) -> list[str]:
        """Run post-hooks with file access confined to the destination."""
        return self.run(self.manifest.post_hooks, hook_root, "post")

    def run(self, scripts: tuple[str, ...] | list[str], hook_root: Path, phase: str) -> list[str]:
        """Run *scripts* in order and return their rendered output.

        Raises:
            ScriptRuntimeError: A script aborted or failed.
            HookPermissionError: A script touched a path outside *hook_root*.
        """
        outputs: list[str] = []
        for script in scripts:
            print_step(f"Running {phase}-hook {script}")
            output = self.run_script(script, hook_root)
            outputs.append(output)
        return outputs

    def run_script(self, script: str, hook_root: Path) -> str:
        source_path = self.template_root / script
        try:
            source = source_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ScriptRuntimeError(script, f"cannot read script: {exc}") from exc

        capabilities = {
            "variable": VariableApi(self.values, self.manifest, self.prompter, self.interactive),
            "file": FileApi(hook_root, script=script),
            "abort": abort,
        }
        try:
            template = self.env.from_string(source)
            output = template.render(**capabilities)
        except HookAbort as exc:
            raise ScriptRuntimeError(script, exc.message, aborted=True) from None
        except HookError:
            raise
        except StencilError as exc:
            raise ScriptRuntimeError(script, exc.message) from exc
        except jinja2.TemplateSyntaxError as exc:
            raise ScriptRuntimeError(script, f"line {exc.lineno}: {exc.message}") from exc
        except (jinja2.TemplateError, OSError, TypeError, ValueError, ArithmeticError) as exc:
            raise ScriptRuntimeError(script, str(exc)) from exc

        self._echo(output)
        print_detail(f"Hook {script} finished", self.verbose)
        return output

    @staticmethod
    def _echo(output: str) -> None:
        for line in output.splitlines():
            if line.strip():
                console.print(line, markup=False, highlight=False)
