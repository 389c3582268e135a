"""
Context window with token-budget eviction.

The window is split into:

- Preamble: system turns set up at session start. Never evicted.
- Tail: alternating user/assistant turns, oldest first.

When the running total reaches the budget, the oldest user turn and the
assistant turn answering it are evicted together, so the tail always starts
with a user turn and ends with a complete exchange or one pending user turn.
"""

import logging

from langchain_core.messages import BaseMessage

from ..errors import TurnOrderError
from .token_budget import TokenCounter, calculate_budget
from .turns import ConversationTurn, Role, parse_role, to_message

logger = logging.getLogger(__name__)


class ContextWindow:
    """
    Ordered conversation turns under a token budget.

    Usage:
        window = ContextWindow(counter)
        window.add("system", "You are helpful.")
        window.add("user", "Hello")
        evicted = window.evict_if_needed(context_max_tokens, assistant_min_tokens)
    """

    def __init__(self, token_counter: TokenCounter):
        self.token_counter = token_counter
        self._preamble: list[ConversationTurn] = []
        self._tail: list[ConversationTurn] = []
        self._next_index = 0

    @property
    def preamble(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._preamble)

    @property
    def tail(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._tail)

    def make_turn(self, role, content: str) -> ConversationTurn:
        """Create a turn with this window's counter and next sequence index."""
        if not isinstance(role, Role):
            role = parse_role(role)
        turn = ConversationTurn(
            role=role,
            content=content,
            token_count=self.token_counter.count(content),
            sequence_index=self._next_index,
        )
        self._next_index += 1
        return turn

    def add(self, role, content: str) -> ConversationTurn:
        turn = self.make_turn(role, content)
        self.append(turn)
        return turn

    def append(self, turn: ConversationTurn):
        """
        Append a turn.

        System turns extend the preamble only while the tail is still empty.
        Tail turns must alternate user/assistant, starting with user.
        """
        if turn.role is Role.SYSTEM:
            if self._tail:
                raise TurnOrderError(
                    "system turns can only be added before the conversation starts"
                )
            self._preamble.append(turn)
        else:
            expected = self._expected_tail_role()
            if turn.role is not expected:
                raise TurnOrderError(
                    f"expected a {expected.value} turn, got {turn.role.value}"
                )
            self._tail.append(turn)
        self._next_index = max(self._next_index, turn.sequence_index + 1)

    def _expected_tail_role(self) -> Role:
        if not self._tail or self._tail[-1].role is Role.ASSISTANT:
            return Role.USER
        return Role.ASSISTANT

    def total_tokens(self) -> int:
        return self.token_counter.count_many(self._preamble) + self.token_counter.count_many(
            self._tail
        )

    @staticmethod
    def budget(
        context_max_tokens: int, assistant_min_tokens: int, reserved_tokens: int = 0
    ) -> int:
        """
        Tokens available to preamble + tail.

        ``reserved_tokens`` is room kept for request content that is not part of
        the window, such as the memory hint.
        """
        budget = calculate_budget(context_max_tokens, assistant_min_tokens)
        return max(budget - reserved_tokens, 0)

    def is_over_budget(
        self, context_max_tokens: int, assistant_min_tokens: int, reserved_tokens: int = 0
    ) -> bool:
        return self.total_tokens() >= self.budget(
            context_max_tokens, assistant_min_tokens, reserved_tokens
        )

    def evict_if_needed(
        self, context_max_tokens: int, assistant_min_tokens: int, reserved_tokens: int = 0
    ) -> list[ConversationTurn]:
        """
        Evict the oldest user/assistant pairs until the window fits the budget.

        Stops when the tail holds one turn or fewer, even if the budget is
        still exceeded; callers check ``is_over_budget`` to report that.
        Returns the evicted turns in removal order.
        """
        budget = self.budget(context_max_tokens, assistant_min_tokens, reserved_tokens)
        evicted: list[ConversationTurn] = []

        total = self.total_tokens()
        while total >= budget:
            if len(self._tail) <= 1:
                logger.warning(
                    "Context still over budget (%d/%d tokens) with %d tail turn(s) left",
                    total,
                    budget,
                    len(self._tail),
                )
                break
            user_turn = self._tail.pop(0)
            assistant_turn = self._tail.pop(0)
            evicted.extend((user_turn, assistant_turn))
            total = self.total_tokens()

        if evicted:
            logger.info(
                "Evicted %d turns to fit budget (%d/%d tokens now)",
                len(evicted),
                total,
                budget,
            )
        else:
            logger.debug("Context fits budget (%d/%d tokens)", total, budget)
        return evicted

    def snapshot(self) -> list[dict]:
        """Preamble + tail as ``[{role, content}, ...]`` for request construction."""
        return [turn.to_dict() for turn in (*self._preamble, *self._tail)]

    def to_messages(self) -> list[BaseMessage]:
        return [to_message(t.role, t.content) for t in (*self._preamble, *self._tail)]

    def replace_tail(self, turns: list[ConversationTurn]):
        """
        Reset the tail from a checkpoint.

        Alternation is checked on the whole sequence first; on TurnOrderError
        the current tail is left untouched.
        """
        expected = Role.USER
        for turn in turns:
            if turn.role is not expected:
                raise TurnOrderError(
                    f"expected a {expected.value} turn, got {turn.role.value}"
                )
            expected = Role.ASSISTANT if expected is Role.USER else Role.USER
        self._tail = list(turns)
        for turn in turns:
            self._next_index = max(self._next_index, turn.sequence_index + 1)
