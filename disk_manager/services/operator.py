"""The attended operator, as seen by the workflows.

Workflows never print or read input directly; every decision goes through
an ``Operator``. ``None`` from ``ask``/``choose`` means no answer was given,
which the workflows treat the same as declining.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence


class Operator(Protocol):
    def confirm(self, message: str) -> bool:
        """Yes/no question; anything but an explicit yes is False."""
        ...

    def ask(self, prompt: str) -> Optional[str]:
        """Free-text question."""
        ...

    def choose(self, prompt: str, options: Sequence[str]) -> Optional[int]:
        """Pick one of ``options``; returns its index."""
        ...
