"""
Memory configuration and model context window mappings.
"""

import os
from dataclasses import dataclass
from typing import Optional

# Model → context window size (tokens)
MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    # Anthropic
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-opus-4-5-20251101": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    # OpenAI compatible
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-3.5-turbo": 16_385,
    # DeepSeek
    "deepseek-chat": 64_000,
    "deepseek-reasoner": 64_000,
    # GLM
    "glm-4": 128_000,
    "glm-4-flash": 128_000,
    "glm-4.7-flash": 128_000,
}

DEFAULT_CONTEXT_WINDOW = 128_000


def _optional_float(value: str) -> Optional[float]:
    value = value.strip()
    return float(value) if value else None


@dataclass
class MemoryConfig:
    """Configuration for the context window and long-term memory."""

    # Context window (0 = auto-detect from model name)
    context_max_tokens: int = 0

    # Room reserved for the assistant's reply; clipped to context_max_tokens
    assistant_minimum_context_tokens: int = 1024

    # Long-term memory
    vector_dimension: int = 384  # all-MiniLM-L6-v2
    memory_buffer_capacity: int = 10
    retrieval_k: int = 5
    memory_max_distance: Optional[float] = None  # None = inject every neighbour
    # Share of context_max_tokens the memory hint may use
    memory_max_tokens_ratio: float = 0.25

    # "cl100k_base" (tiktoken) or "estimate" (character heuristic)
    tokenizer: str = "cl100k_base"

    # Embeddings
    embedding_model: str = "embedding-3"
    embedding_base_url: str = ""  # empty = reuse API_BASE_URL
    embedding_api_key: str = ""  # empty = reuse API_KEY
    # Local fallback when no OpenAI-compatible endpoint is configured
    local_embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # HNSW index parameters
    hnsw_m: int = 32
    hnsw_ef_search: int = 64

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            context_max_tokens=int(os.getenv("MEMORY_CONTEXT_MAX_TOKENS", "0")),
            assistant_minimum_context_tokens=int(
                os.getenv("MEMORY_ASSISTANT_MIN_TOKENS", "1024")
            ),
            vector_dimension=int(os.getenv("MEMORY_VECTOR_DIMENSION", "384")),
            memory_buffer_capacity=int(os.getenv("MEMORY_BUFFER_CAPACITY", "10")),
            retrieval_k=int(os.getenv("MEMORY_RETRIEVAL_K", "5")),
            memory_max_distance=_optional_float(os.getenv("MEMORY_MAX_DISTANCE", "")),
            memory_max_tokens_ratio=float(os.getenv("MEMORY_MAX_TOKENS_RATIO", "0.25")),
            tokenizer=os.getenv("MEMORY_TOKENIZER", "cl100k_base"),
            embedding_model=os.getenv("MEMORY_EMBEDDING_MODEL", "embedding-3"),
            embedding_base_url=os.getenv("MEMORY_EMBEDDING_BASE_URL", ""),
            embedding_api_key=os.getenv("MEMORY_EMBEDDING_API_KEY", ""),
            local_embedding_model=os.getenv(
                "MEMORY_LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
            ),
            hnsw_m=int(os.getenv("MEMORY_HNSW_M", "32")),
            hnsw_ef_search=int(os.getenv("MEMORY_HNSW_EF_SEARCH", "64")),
        )

    def get_context_max_tokens(self, model_name: str) -> int:
        """Resolve context window size from config or model name."""
        if self.context_max_tokens > 0:
            return self.context_max_tokens
        # Try exact match first, then prefix match
        if model_name in MODEL_CONTEXT_WINDOWS:
            return MODEL_CONTEXT_WINDOWS[model_name]
        for key, size in MODEL_CONTEXT_WINDOWS.items():
            if model_name.startswith(key) or key.startswith(model_name):
                return size
        return DEFAULT_CONTEXT_WINDOW

    def get_memory_max_tokens(self, context_max_tokens: int) -> int:
        """Token cap for the rendered memory hint."""
        return int(context_max_tokens * self.memory_max_tokens_ratio)
