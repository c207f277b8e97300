"""Abstract utterance interface."""

from __future__ import annotations

from typing import Callable, Optional


class Utterance:
    """A piece of text bound to a voice that can be played and stopped.

    ``onstart`` and ``onend`` each hold a single callback; assigning a new
    one replaces the previous one rather than adding to it.
    """

    def __init__(self) -> None:
        self._onstart: Optional[Callable[[], None]] = None
        self._onend: Optional[Callable[[], None]] = None

    async def start(self) -> None:
        """Speak the utterance."""
        raise NotImplementedError

    def stop(self) -> None:
        """Stop speaking; ``onend`` will not fire for a stopped utterance."""
        raise NotImplementedError

    @property
    def onstart(self) -> Optional[Callable[[], None]]:
        return self._onstart

    @onstart.setter
    def onstart(self, callback: Optional[Callable[[], None]]) -> None:
        self._onstart = callback

    @property
    def onend(self) -> Optional[Callable[[], None]]:
        return self._onend

    @onend.setter
    def onend(self, callback: Optional[Callable[[], None]]) -> None:
        self._onend = callback

    def _emit_start(self) -> None:
        if self._onstart is not None:
            self._onstart()

    def _emit_end(self) -> None:
        if self._onend is not None:
            self._onend()
