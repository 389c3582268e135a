"""
Working memory ("brain") of retrieved snippets.

Holds the most recent archived memories the retriever surfaced, in FIFO
order with a fixed capacity, and renders them as a hint exchange placed
between the preamble and the live conversation.
"""

import json
import logging
from collections import deque
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

MEMORY_ABOUT = (
    "This JSON object is a representation of our conversation leading up to "
    "this point. This object represents your memories."
)
MEMORY_PREFACE = (
    "Below is a JSON representation of our conversation leading up to this "
    'point. Please only respond to this message with "Ok.":\n'
)
MEMORY_ACK = "Ok."


class MemoryBuffer:
    """Bounded FIFO of retrieved memory contents."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("memory buffer capacity must be positive")
        self.capacity = capacity
        self._memories: deque[str] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._memories)

    def add(self, content: str):
        # deque(maxlen) drops the oldest entry when full
        self._memories.append(content)

    def snapshot(self) -> list[str]:
        return list(self._memories)

    def restore(self, contents: Iterable[str]):
        """Replace the buffer; only the newest ``capacity`` items are kept."""
        self._memories = deque(contents, maxlen=self.capacity)

    def render(self) -> str:
        payload = {"about": MEMORY_ABOUT, "memories": self.snapshot()}
        return MEMORY_PREFACE + json.dumps(payload, ensure_ascii=False)

    def hint_tokens(self, count: Callable[[str], int]) -> int:
        """Tokens the hint exchange adds to a request; 0 when empty."""
        if not self._memories:
            return 0
        return count(self.render()) + count(MEMORY_ACK)

    def enforce_token_limit(self, count: Callable[[str], int], max_tokens: int) -> list[str]:
        """
        Drop the oldest memories until the hint fits in ``max_tokens``.

        The hint is re-counted after every drop. Returns the dropped contents,
        oldest first.
        """
        dropped = []
        while self._memories and self.hint_tokens(count) > max_tokens:
            dropped.append(self._memories.popleft())
        if dropped:
            logger.info(
                "Dropped %d oldest memories to keep the hint under %d tokens",
                len(dropped),
                max_tokens,
            )
        return dropped


def build_memory_hint(buffer: MemoryBuffer) -> list[dict]:
    """User/assistant hint exchange carrying the buffer, or nothing when empty."""
    if not len(buffer):
        return []
    return [
        {"role": "user", "content": buffer.render()},
        {"role": "assistant", "content": MEMORY_ACK},
    ]
