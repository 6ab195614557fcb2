"""Interactive question answering.

The placeholder resolver and the hook ``variable.prompt`` capability talk to
the user only through the :class:`Prompter` protocol, so tests can script the
answers and non-console front ends can plug in their own implementation.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from rich.console import Console
from rich.prompt import Confirm, Prompt

from stencil.utils import console as default_console


class Prompter(Protocol):
    """Asks the user for one value at a time."""

    def ask_text(self, question: str, default: str | None = None) -> str: ...

    def ask_bool(self, question: str, default: bool | None = None) -> bool: ...

    def ask_choice(
        self, question: str, choices: Sequence[str], default: str | None = None
    ) -> str: ...

    def report_invalid(self, message: str) -> None: ...


class RichPrompter:
    """``Prompter`` backed by ``rich.prompt``."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or default_console

    def ask_text(self, question: str, default: str | None = None) -> str:
        if default is None:
            return Prompt.ask(question, console=self.console)
        return Prompt.ask(question, default=default, console=self.console)

    def ask_bool(self, question: str, default: bool | None = None) -> bool:
        if default is None:
            return Confirm.ask(question, console=self.console)
        return Confirm.ask(question, default=default, console=self.console)

    def ask_choice(
        self, question: str, choices: Sequence[str], default: str | None = None
    ) -> str:
        if default is None:
            return Prompt.ask(question, choices=list(choices), console=self.console)
        return Prompt.ask(
            question, choices=list(choices), default=default, console=self.console
        )

    def report_invalid(self, message: str) -> None:
        self.console.print(f"[red]{message}[/red]")
