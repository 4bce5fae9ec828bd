from typing import Iterator, List, Tuple

from ..models import ModelToolCallTurn, ToolResultTurn, Turn


class ConversationHistory:
    """Chronological log of turns, bounded to the most recent `limit` turns.

    The bound is applied by `trim()` at the end of each exchange; turns added
    during an exchange are replayed in full until then. Dropped turns are gone
    for good.
    """

    def __init__(self, limit: int = 10) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._turns: List[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def trim(self) -> int:
        """Drop the oldest turns beyond the limit; return how many were dropped."""
        excess = len(self._turns) - self.limit
        if excess <= 0:
            return 0
        del self._turns[:excess]
        return excess

    def pending_tool_calls(self) -> List[ModelToolCallTurn]:
        """Tool calls not yet followed by their result turn."""
        resolved = {t.call_id for t in self._turns if isinstance(t, ToolResultTurn)}
        return [
            t
            for t in self._turns
            if isinstance(t, ModelToolCallTurn) and t.call_id not in resolved
        ]
