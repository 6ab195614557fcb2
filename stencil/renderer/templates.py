"""Jinja2 rendering of template paths and file contents.

Provides the TemplateRenderer class which renders every included
:class:`~stencil.tree.walker.FileEntry` with the resolved placeholder values.
The environment is built once per run from an explicit configuration:
undefined variables are errors unless the manifest opts into lenient mode,
trailing newlines are kept, and the only filters beyond Jinja's built-ins are
the case conversions in ``CASE_FILTERS``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from stencil.errors import (
    IoFailure,
    TemplateRuntimeError,
    TemplateSyntaxError,
    UndefinedVariable,
    UnsafePath,
)
from stencil.placeholders.casing import CASE_FILTERS
from stencil.tree.walker import FileEntry

TEMPLATE_SUFFIX = ".j2"
REASON_EMPTY_PATH = "path rendered empty"

_UNDEFINED_RE = re.compile(r"'([^']+)' is undefined")


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders template paths and text files with a fixed context.

    Rendering is pure: the same entry and context always produce the same
    path and content.
    """

    def __init__(
        self,
        context: Mapping[str, Any],
        lenient: bool = False,
        filters: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self.context = dict(context)
        self.lenient = lenient
        self.env = SandboxedEnvironment(
            undefined=jinja2.Undefined if lenient else jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self.env.filters.update(CASE_FILTERS if filters is None else filters)

    # -- Strings -----------------------------------------------------------

    def render_string(self, source: str, name: str = "<string>") -> str:
        """Render an inline template string.

        Raises:
            UndefinedVariable: A referenced variable has no value.
            TemplateSyntaxError: *source* is not a valid template.
            TemplateRuntimeError: Rendering failed for any other reason.
        """
        try:
            template = self.env.from_string(source)
            return template.render(**self.context)
        except jinja2.UndefinedError as exc:
            match = _UNDEFINED_RE.search(str(exc))
            variable = match.group(1) if match else ""
            raise UndefinedVariable(
                f"Undefined variable in {name}: {exc}", path=name, variable=variable
            ) from exc
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateSyntaxError(
                f"Template syntax error in {name} line {exc.lineno}: {exc.message}",
                path=name,
                line=exc.lineno,
            ) from exc
        except (jinja2.TemplateError, TypeError, ValueError, ArithmeticError, LookupError) as exc:
            line = _template_line(exc)
            where = f" line {line}" if line is not None else ""
            raise TemplateRuntimeError(
                f"Rendering {name}{where} failed: {exc}", path=name, line=line
            ) from exc

    # -- Paths -------------------------------------------------------------

    def render_path(self, relative_path: str) -> str | None:
        """Render every segment of a POSIX relative path.

        Returns ``None`` when a segment renders empty, which excludes the
        file.  A trailing ``.j2`` is stripped from the file name.

        Raises:
            UnsafePath: A segment renders to ``.``/``..`` or contains a separator.
        """
        rendered: list[str] = []
        for segment in relative_path.split("/"):
            value = self.render_string(segment, name=relative_path) if _is_templated(segment) else segment
            if value == "":
                return None
            if value in (".", "..") or "/" in value or "\\" in value:
                raise UnsafePath(relative_path, value)
            rendered.append(value)

        name = rendered[-1]
        if name.endswith(TEMPLATE_SUFFIX) and len(name) > len(TEMPLATE_SUFFIX):
            rendered[-1] = name[: -len(TEMPLATE_SUFFIX)]
        return "/".join(rendered)

    # -- Entries -----------------------------------------------------------

    def render_entry(self, entry: FileEntry) -> FileEntry:
        """Fill ``rendered_path`` and, for text files, ``rendered_content``.

        Binary files keep ``rendered_content=None`` and are copied verbatim.
        Text that turns out not to be UTF-8 past the sniffed prefix is
        reclassified as binary.
        """
        if not entry.included:
            return entry

        path = self.render_path(entry.relative_path)
        if path is None:
            entry.exclude(REASON_EMPTY_PATH)
            return entry
        entry.rendered_path = path

        if entry.binary:
            return entry
        text = _read_text(entry)
        if text is None:
            entry.binary = True
            return entry
        entry.rendered_content = self.render_string(text, name=entry.relative_path)
        return entry

    def render_all(self, entries: Iterable[FileEntry]) -> Iterator[FileEntry]:
        """Lazily render a stream of entries."""
        for entry in entries:
            yield self.render_entry(entry)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _is_templated(value: str) -> bool:
    return "{{" in value or "{%" in value or "{#" in value


def _template_line(exc: BaseException) -> int | None:
    """Line of the innermost template frame in *exc*'s traceback, if any."""
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == "<template>":
            line = tb.tb_lineno
        tb = tb.tb_next
    return line


def _read_text(entry: FileEntry) -> str | None:
    try:
        data = entry.source_path.read_bytes()
    except OSError as exc:
        raise IoFailure(f"Cannot read template file {entry.relative_path}: {exc}", entry.source_path) from exc
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None
