"""Error taxonomy for the Stencil generation pipeline.

Every failure raised by the core derives from :class:`StencilError` and
carries a ``context`` mapping (path, origin, placeholder name, script id, ...)
so the caller can report precisely what went wrong.  Errors are grouped by the
pipeline stage that raises them:

- ``SourceError``  -- network, ambiguous ref, missing path, lock timeout
- ``SchemaError``  -- malformed manifest, forward/cyclic dependency
- ``InputError``   -- invalid or missing placeholder value
- ``RenderError``  -- undefined variable, template syntax error, unsafe path
- ``HookError``    -- explicit abort, runtime fault, sandbox violation
- ``OutputError``  -- destination conflict, staging/commit I/O failure
"""

from __future__ import annotations

from typing import Any


class StencilError(Exception):
    """Base class for every error raised by the generation pipeline."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def describe(self) -> str:
        """Return the message followed by its context as ``key=value`` pairs."""
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


# ---------------------------------------------------------------------------
# Source resolution
# ---------------------------------------------------------------------------


class SourceError(StencilError):
    """Raised when the template source cannot be obtained."""


class NetworkFailure(SourceError):
    """A remote git operation (ls-remote, fetch) failed."""

    def __init__(self, message: str, origin: str = "", stderr: str = "") -> None:
        self.stderr = stderr
        super().__init__(message, origin=origin or None, stderr=stderr or None)


class AmbiguousRef(SourceError):
    """A ref resolved to zero or to several distinct revisions."""

    def __init__(self, ref: str, candidates: list[str], origin: str = "") -> None:
        self.ref = ref
        self.candidates = list(candidates)
        if candidates:
            message = f"Ref '{ref}' is ambiguous; candidates: {', '.join(candidates)}"
        else:
            message = f"Ref '{ref}' could not be resolved"
        super().__init__(message, origin=origin or None)


class PathNotFound(SourceError):
    """A local template path or subpath does not exist or is unreadable."""

    def __init__(self, message: str, path: Any = None) -> None:
        self.path = path
        super().__init__(message, path=str(path) if path is not None else None)


class NotAGitRepository(SourceError):
    """A ref was requested for a local path that is not a git repository."""

    def __init__(self, path: Any) -> None:
        self.path = path
        super().__init__(f"Not a git repository: {path}", path=str(path))


class CacheLockTimeout(SourceError):
    """The per-origin cache lock could not be acquired in time."""

    def __init__(self, lock_path: Any, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for cache lock {lock_path}",
            lock=str(lock_path),
        )


# ---------------------------------------------------------------------------
# Manifest / schema
# ---------------------------------------------------------------------------


class SchemaError(StencilError):
    """Raised when the template manifest is malformed or inconsistent."""


class ManifestError(SchemaError):
    """The manifest could not be parsed or failed validation."""


class CyclicOrForwardDependency(SchemaError):
    """A visibility condition references itself or a later/unknown placeholder."""

    def __init__(self, placeholder: str, referenced: list[str]) -> None:
        self.placeholder = placeholder
        self.referenced = list(referenced)
        super().__init__(
            f"Placeholder '{placeholder}' has a visibility condition referencing "
            f"{', '.join(repr(r) for r in referenced)}, which is not declared before it",
            placeholder=placeholder,
        )


class AmbiguousTemplate(SchemaError):
    """Several nested templates were found and none could be chosen."""

    def __init__(self, root: Any, candidates: list[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(
            f"Multiple templates found under {root}: {', '.join(candidates)}",
            path=str(root),
        )


# ---------------------------------------------------------------------------
# Placeholder input
# ---------------------------------------------------------------------------


class InputError(StencilError):
    """Raised when a placeholder value is invalid or missing."""


class InvalidValue(InputError):
    """A supplied value does not match the declared type, choices or pattern."""

    def __init__(self, placeholder: str, value: Any, reason: str) -> None:
        self.placeholder = placeholder
        self.value = value
        self.reason = reason
        super().__init__(
            f"Invalid value {value!r} for '{placeholder}': {reason}",
            placeholder=placeholder,
        )


class MissingRequiredValue(InputError):
    """No override and no default for a placeholder in non-interactive mode."""

    def __init__(self, placeholder: str) -> None:
        self.placeholder = placeholder
        super().__init__(
            f"No value provided for required placeholder '{placeholder}'",
            placeholder=placeholder,
        )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class RenderError(StencilError):
    """Raised when a template path or file cannot be rendered."""


class UndefinedVariable(RenderError):
    """A template references a variable with no resolved value."""

    def __init__(self, message: str, path: str = "", variable: str = "") -> None:
        self.path = path
        self.variable = variable
        super().__init__(message, path=path or None, variable=variable or None)


class TemplateSyntaxError(RenderError):
    """A template path or file contains invalid template syntax."""

    def __init__(self, message: str, path: str = "", line: int | None = None) -> None:
        self.path = path
        self.line = line
        super().__init__(message, path=path or None, line=line)


class TemplateRuntimeError(RenderError):
    """A template failed while rendering (bad operation, sandbox violation, ...)."""

    def __init__(self, message: str, path: str = "", line: int | None = None) -> None:
        self.path = path
        self.line = line
        super().__init__(message, path=path or None, line=line)


class UnsafePath(RenderError):
    """A rendered path segment would escape its directory."""

    def __init__(self, path: str, segment: str) -> None:
        self.path = path
        super().__init__(
            f"Rendered path segment {segment!r} is not allowed", path=path
        )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class HookError(StencilError):
    """Raised when a hook script fails or aborts."""


class ScriptRuntimeError(HookError):
    """A hook script raised, violated the sandbox, or called ``abort``."""

    def __init__(self, script: str, message: str, aborted: bool = False) -> None:
        self.script = script
        self.aborted = aborted
        prefix = "aborted" if aborted else "failed"
        super().__init__(f"Hook '{script}' {prefix}: {message}", script=script)
        self.reason = message


class HookPermissionError(HookError):
    """A hook attempted a file operation outside its hook root."""

    def __init__(self, path: str, script: str = "") -> None:
        self.path = path
        self.script = script
        message = f"Path '{path}' is outside the hook root"
        if script:
            message = f"Hook '{script}': {message}"
        super().__init__(message, path=path, script=script or None)


class PostGenerationError(HookError):
    """The destination was committed but a post-generation step failed."""

    def __init__(self, cause: StencilError, summary: Any) -> None:
        self.cause = cause
        self.summary = summary
        super().__init__(
            f"Generated, but a post-step failed: {cause.message}",
            destination=str(getattr(summary, "destination", "")) or None,
        )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputError(StencilError):
    """Raised when output cannot be staged or committed."""


class DestinationExists(OutputError):
    """The destination conflicts with generated output under the current policy."""

    def __init__(self, destination: Any, conflicts: list[str]) -> None:
        self.destination = destination
        self.conflicts = list(conflicts)
        shown = ", ".join(conflicts[:5])
        more = f" (+{len(conflicts) - 5} more)" if len(conflicts) > 5 else ""
        super().__init__(
            f"Destination {destination} already contains: {shown}{more}",
            destination=str(destination),
        )


class IoFailure(OutputError):
    """Reading a template entry or writing to staging failed."""

    def __init__(self, message: str, path: Any = None) -> None:
        self.path = path
        super().__init__(message, path=str(path) if path is not None else None)


class CommitError(OutputError):
    """The final commit step failed; partial state may exist."""

    def __init__(self, message: str, destination: Any, rolled_back: bool) -> None:
        self.destination = destination
        self.rolled_back = rolled_back
        state = (
            "changes were rolled back"
            if rolled_back
            else "rollback incomplete, destination may contain partial output"
        )
        super().__init__(
            f"{message}; {state}", destination=str(destination)
        )
