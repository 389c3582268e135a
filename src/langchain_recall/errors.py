"""
Exception hierarchy for the context window and long-term memory.

Only TokenizerUnavailable is fatal to a session. Everything else is either
local to the failing call or recoverable by skipping the memory feature that
depends on it.
"""


class RecallError(Exception):
    """Base class for all errors raised by langchain_recall."""


class TokenizerUnavailable(RecallError):
    """The tokenizer could not be loaded, so no budget can be computed."""


class DimensionMismatch(RecallError, ValueError):
    """A vector does not have the dimension the index was built for."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"expected vector of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class EmbeddingUnavailable(RecallError):
    """The embedding model or service failed to encode a text."""


class IndexBuildFailure(RecallError):
    """Building the vector index failed; the previous build stays active."""


class NotFound(RecallError, KeyError):
    """No archived content is stored under the requested id."""

    def __str__(self):
        return f"no archived content for id {self.args[0]!r}"


class ConversationNotFound(RecallError, LookupError):
    """The persistence store has no conversation with the requested identity."""


class UnknownRole(RecallError, ValueError):
    """A role string is not one of system / user / assistant."""

    def __init__(self, role: str):
        super().__init__(f"Role in message not allowed: {role!r}")
        self.role = role


class TurnOrderError(RecallError, ValueError):
    """Appending a turn would break the preamble or alternation invariants."""
