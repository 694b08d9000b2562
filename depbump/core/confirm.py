"""Confirmation sources for depbump.

The run layer asks yes/no questions ("write these upgrades?", "install
now?") through a :class:`DecisionProvider` instead of prompting directly,
so commands can be driven by a terminal, by ``--yes`` or by a script.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

from depbump.utils.console import confirm

__all__ = [
    "ConsoleDecisionProvider",
    "DecisionProvider",
    "ScriptedDecisionProvider",
]


class DecisionProvider(Protocol):
    def confirm(self, question: str, *, default: bool = False) -> bool:
        ...


class ConsoleDecisionProvider:
    """Asks on the terminal."""

    def confirm(self, question: str, *, default: bool = False) -> bool:
        return confirm(question, default=default)


class ScriptedDecisionProvider:
    """Answers from a fixed script.

    Answers are consumed in order; once exhausted, ``fallback`` is used
    (or the question's own default when ``fallback`` is ``None``). Every
    question asked is recorded in :attr:`asked`.

    Example::

        >>> provider = ScriptedDecisionProvider([True, False])
        >>> provider.confirm("Apply?")
        True
        >>> provider.confirm("Install?")
        False
    """

    def __init__(
        self,
        answers: Iterable[bool] = (),
        *,
        fallback: Optional[bool] = None,
    ) -> None:
        self._answers: List[bool] = list(answers)
        self.fallback = fallback
        self.asked: List[str] = []

    def confirm(self, question: str, *, default: bool = False) -> bool:
        self.asked.append(question)
        if self._answers:
            return self._answers.pop(0)
        return default if self.fallback is None else self.fallback

    @classmethod
    def approve_all(cls) -> "ScriptedDecisionProvider":
        return cls(fallback=True)
