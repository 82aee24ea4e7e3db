"""Word-boundary buffering for streamed text.

Fragments from the model rarely end on a word boundary. The buffer only
commits text up to the last boundary character so that word-level
transformations and markdown markers are never applied to half a token.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, FrozenSet

from docchat.utils.text import to_british_spelling

BOUNDARY_CHARS: FrozenSet[str] = frozenset(" \n.,!?;:*_`[]()#>-")


@dataclass(slots=True)
class BufferState:
    committed_text: str = ""
    pending_tail: str = ""


def last_boundary(text: str, boundaries: FrozenSet[str] = BOUNDARY_CHARS) -> int:
    """Index of the right-most boundary character in ``text``, or -1."""
    for index in range(len(text) - 1, -1, -1):
        if text[index] in boundaries:
            return index
    return -1


class WordBoundaryBuffer:
    """Accumulates fragments and releases them at safe boundaries.

    ``committed_text + pending_tail`` is always the exact concatenation of
    every fragment pushed so far; the buffer delays text, it never drops or
    duplicates it. The transformer is applied only to text on its way out.
    """

    def __init__(
        self,
        transformer: Callable[[str], str] = to_british_spelling,
        *,
        boundaries: FrozenSet[str] = BOUNDARY_CHARS,
    ) -> None:
        self.transformer = transformer
        self.boundaries = boundaries
        self._state = BufferState()

    @property
    def state(self) -> BufferState:
        return replace(self._state)

    @property
    def pending_tail(self) -> str:
        """Raw, unconverted text awaiting a boundary; for provisional display only."""
        return self._state.pending_tail

    def push(self, fragment: str) -> str:
        """Add a fragment and return the newly committed, transformed text.

        Returns an empty string when the accumulated tail has no boundary yet.
        """
        if not fragment:
            return ""
        tail = self._state.pending_tail + fragment
        index = last_boundary(tail, self.boundaries)
        if index < 0:
            self._state.pending_tail = tail
            return ""

        complete, self._state.pending_tail = tail[: index + 1], tail[index + 1 :]
        self._state.committed_text += complete
        return self.transformer(complete)

    def flush(self) -> str:
        """Force out the remaining tail and reset the buffer."""
        tail = self._state.pending_tail
        self._state = BufferState()
        return self.transformer(tail) if tail else ""

    def discard(self) -> str:
        """Drop the pending tail without transforming it; returns what was dropped."""
        tail = self._state.pending_tail
        self._state = BufferState()
        return tail
