"""
LangChain Recall: token-budgeted chat context with long-term vector memory.
"""

from .completion import CompletionService, LangChainCompletionService
from .errors import (
    ConversationNotFound,
    DimensionMismatch,
    EmbeddingUnavailable,
    IndexBuildFailure,
    NotFound,
    RecallError,
    TokenizerUnavailable,
    TurnOrderError,
    UnknownRole,
)
from .memory import MemoryConfig, TokenCounter
from .persistence import InMemoryPersistenceStore, PostgresPersistenceStore
from .session import ResponseStream, SessionManager, TurnReport

__all__ = [
    "CompletionService",
    "ConversationNotFound",
    "DimensionMismatch",
    "EmbeddingUnavailable",
    "IndexBuildFailure",
    "InMemoryPersistenceStore",
    "LangChainCompletionService",
    "MemoryConfig",
    "NotFound",
    "PostgresPersistenceStore",
    "RecallError",
    "ResponseStream",
    "SessionManager",
    "TokenCounter",
    "TokenizerUnavailable",
    "TurnOrderError",
    "TurnReport",
    "UnknownRole",
]
