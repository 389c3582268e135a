"""
Embedding providers for long-term memory.

An embedding provider turns text into a fixed-dimension vector. Failures of
the underlying model or service surface as EmbeddingUnavailable; the length
of the returned vector is checked by the consumer (VectorIndex), not here.
"""

import logging
from typing import Optional, Protocol

from langchain_core.embeddings import Embeddings

from ..errors import EmbeddingUnavailable
from .config import MemoryConfig

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    def encode(self, text: str) -> list[float]:
        ...


class LangChainEmbeddingProvider:
    """Adapts any LangChain ``Embeddings`` model to the provider interface."""

    def __init__(self, embeddings: Embeddings):
        self._embeddings = embeddings

    def encode(self, text: str) -> list[float]:
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding failed: {e}") from e


class LocalEmbeddingProvider:
    """
    Sentence-transformers model running in-process.

    The model is loaded on first use, so constructing the provider never
    downloads anything. all-MiniLM-L6-v2 produces 384-dimensional vectors.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None

    def _ensure_model(self):
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading local embedding model: %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        except Exception as e:
            raise EmbeddingUnavailable(
                f"Failed to load embedding model '{self.model_name}': {e}"
            ) from e

    def encode(self, text: str) -> list[float]:
        self._ensure_model()
        try:
            vector = self._model.encode(text, normalize_embeddings=True)
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding failed: {e}") from e
        return [float(x) for x in vector]


def create_embedding_provider(
    config: MemoryConfig,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    model_provider: Optional[str] = None,
) -> EmbeddingProvider:
    """
    Create the embedding provider for a session.

    An OpenAI-compatible endpoint is used when the model provider is openai
    or a base URL is configured without a provider. Embedding credentials:
    dedicated config values > general credentials. Everything else, and a
    remote model that cannot be created, falls back to the local
    sentence-transformers model, so long-term memory is always available.
    """
    embed_base_url = config.embedding_base_url or base_url
    embed_api_key = config.embedding_api_key or api_key

    if model_provider == "openai" or (embed_base_url and not model_provider):
        try:
            from langchain_openai import OpenAIEmbeddings

            embed_kwargs = {}
            if embed_api_key:
                embed_kwargs["api_key"] = embed_api_key
            if embed_base_url:
                embed_kwargs["base_url"] = embed_base_url
            embeddings = OpenAIEmbeddings(model=config.embedding_model, **embed_kwargs)
            return LangChainEmbeddingProvider(embeddings)
        except Exception as e:
            logger.warning(
                "Failed to create embedding model, using local model instead: %s", e
            )

    logger.info(
        "Using local embedding model '%s' for provider '%s'",
        config.local_embedding_model,
        model_provider,
    )
    return LocalEmbeddingProvider(config.local_embedding_model)
