"""
Operator input.

The hardening workflow never reads stdin directly. It asks an InputProvider,
so the same workflow runs against a terminal or against scripted answers.
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Iterable, List, Optional, Tuple, Union

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt

from .ui import console as default_console

Answer = Union[bool, str]


class InputProvider(ABC):
    """Source of operator answers."""

    @abstractmethod
    def confirm(self, question: str, default: bool = True) -> bool:
        """Ask a yes/no question."""

    @abstractmethod
    def ask(self, question: str) -> str:
        """Ask for a line of text."""

    @abstractmethod
    def ask_secret(self, question: str) -> str:
        """Ask for a value that must not be echoed."""


class ConsoleInputProvider(InputProvider):
    """Interactive prompts on the terminal via rich."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or default_console

    def confirm(self, question: str, default: bool = True) -> bool:
        return Confirm.ask(
            f"[question]{escape(question)}[/question]",
            default=default,
            console=self.console,
        )

    def ask(self, question: str) -> str:
        return Prompt.ask(
            f"[question]{escape(question)}[/question]", console=self.console
        ).strip()

    def ask_secret(self, question: str) -> str:
        return Prompt.ask(
            f"[question]{escape(question)}[/question]",
            password=True,
            console=self.console,
        )


class AnswersExhausted(RuntimeError):
    """Raised when a scripted provider is asked more than it was given."""


class ScriptedInputProvider(InputProvider):
    """
    Replays a fixed list of answers in order.

    A None answer to a yes/no question takes the question's default.
    Every question asked is recorded in `asked` as (kind, question).
    """

    def __init__(self, answers: Iterable[Optional[Answer]]) -> None:
        self._answers = deque(answers)
        self.asked: List[Tuple[str, str]] = []

    def _next(self, kind: str, question: str) -> Optional[Answer]:
        self.asked.append((kind, question))
        if not self._answers:
            raise AnswersExhausted(f"No scripted answer left for: {question}")
        return self._answers.popleft()

    def confirm(self, question: str, default: bool = True) -> bool:
        answer = self._next("confirm", question)
        if answer is None:
            return default
        if isinstance(answer, str):
            return answer.strip().lower() in ("y", "yes")
        return bool(answer)

    def ask(self, question: str) -> str:
        return str(self._next("ask", question) or "").strip()

    def ask_secret(self, question: str) -> str:
        return str(self._next("secret", question) or "")

    @property
    def remaining(self) -> int:
        return len(self._answers)
