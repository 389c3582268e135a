"""
Bounded context window with long-term vector memory.

Keeps the conversation sent to the LLM under a hard token budget:

- Preamble: system turns, never evicted
- Tail: alternating user/assistant turns; the oldest pairs are evicted first

Evicted turns are embedded into an HNSW index (faiss) with their text kept in
a content store, so they stay semantically searchable. Memories related to
each new user message are pulled back into a bounded buffer and surfaced to
the model as a hint ahead of the conversation.
"""

from .brain import MemoryBuffer, build_memory_hint
from .config import MemoryConfig
from .content_store import ContentStore
from .context_window import ContextWindow
from .embedding import (
    EmbeddingProvider,
    LangChainEmbeddingProvider,
    LocalEmbeddingProvider,
    create_embedding_provider,
)
from .token_budget import (
    TokenCounter,
    calculate_budget,
    estimate_tokens,
    load_tiktoken,
)
from .turns import ArchivedMemory, ConversationTurn, Role, parse_role
from .vector_index import IndexState, VectorIndex

__all__ = [
    "ArchivedMemory",
    "ContentStore",
    "ContextWindow",
    "ConversationTurn",
    "EmbeddingProvider",
    "IndexState",
    "LangChainEmbeddingProvider",
    "LocalEmbeddingProvider",
    "MemoryBuffer",
    "MemoryConfig",
    "Role",
    "TokenCounter",
    "VectorIndex",
    "build_memory_hint",
    "calculate_budget",
    "create_embedding_provider",
    "estimate_tokens",
    "load_tiktoken",
    "parse_role",
]
