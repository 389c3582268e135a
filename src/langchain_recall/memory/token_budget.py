"""
Token counting and the context budget.

Token counts come from a pluggable tokenizer: any deterministic callable
mapping a string to its token count. The default is tiktoken's cl100k_base
encoding; ``estimate_tokens`` is a download-free heuristic.
"""

import logging
from typing import Callable, Iterable, Optional

import tiktoken

from ..errors import TokenizerUnavailable
from .config import MemoryConfig

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"
ESTIMATE_TOKENIZER = "estimate"

Tokenizer = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~3 chars per token for mixed CJK/English."""
    if not text:
        return 0
    return max(1, len(text) // 3)


def load_tiktoken(encoding: str = DEFAULT_ENCODING) -> Tokenizer:
    """Load a tiktoken encoding and return it as a counting callable."""
    try:
        encoder = tiktoken.get_encoding(encoding)
    except Exception as e:
        raise TokenizerUnavailable(
            f"Failed to load tiktoken encoding '{encoding}': {e}"
        ) from e

    def count(text: str) -> int:
        # Special-token text in a turn is counted as ordinary text
        return len(encoder.encode(text, disallowed_special=()))

    return count


class TokenCounter:
    """
    Counts tokens for budget management.

    Usage:
        counter = TokenCounter()                          # tiktoken cl100k_base
        counter = TokenCounter(tokenizer=estimate_tokens)  # heuristic
        counter.count("Hello world")
    """

    def __init__(
        self,
        tokenizer: Optional[Tokenizer] = None,
        encoding: str = DEFAULT_ENCODING,
    ):
        if tokenizer is None:
            tokenizer = load_tiktoken(encoding)
            self.name = encoding
        else:
            self.name = getattr(tokenizer, "__name__", type(tokenizer).__name__)
        self._tokenizer = tokenizer

    @classmethod
    def from_config(cls, config: MemoryConfig) -> "TokenCounter":
        """Build the counter selected by ``config.tokenizer``."""
        if config.tokenizer == ESTIMATE_TOKENIZER:
            return cls(tokenizer=estimate_tokens)
        return cls(encoding=config.tokenizer)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return self._tokenizer(text)

    def count_many(self, turns: Iterable) -> int:
        """
        Sum of independent per-turn counts.

        Turn boundaries are not re-tokenized jointly, so this can differ
        slightly from tokenizing the whole conversation at once.
        """
        return sum(self.count(turn.content) for turn in turns)


def calculate_budget(context_max_tokens: int, assistant_min_tokens: int) -> int:
    """
    Tokens available to preamble + conversation.

    The reserve for the assistant's reply is clipped to the context size, so
    the budget is never negative.
    """
    return context_max_tokens - min(assistant_min_tokens, context_max_tokens)
