"""
Approximate nearest-neighbour index over archived turn embeddings.

Backed by a faiss HNSW graph (Euclidean / L2). The index is built in two
phases:

  - insert() queues vectors; they are not searchable yet
  - build() rebuilds the HNSW graph over everything inserted so far and
    swaps it in as the new searchable snapshot

Searches always run against the last successful build, so a search issued
between insert() and build() returns stale-but-valid results. If a build
fails, the previous snapshot stays active and the pending vectors remain
queued for the next build.

Ordering of equidistant neighbours depends on the HNSW graph and is not
stable; only "closer first" holds.
"""

import logging
import math
from enum import Enum
from typing import Optional, Sequence

import faiss
import numpy as np

from ..errors import DimensionMismatch, IndexBuildFailure

logger = logging.getLogger(__name__)


class IndexState(str, Enum):
    IDLE = "idle"
    INSERTING = "inserting"
    SEARCHABLE = "searchable"


class VectorIndex:
    """
    HNSW index keyed by integer archival ids.

    Usage:
        index = VectorIndex(dimension=4)
        index.insert([1, 0, 0, 0], 1)
        index.build()
        index.search([0, 1, 0, 0], k=1)  # -> [1]
    """

    def __init__(self, dimension: int, m: int = 32, ef_search: int = 64):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.m = m
        self.ef_search = ef_search
        self.state = IndexState.IDLE

        self._built_ids: list[int] = []
        self._built_vectors = np.empty((0, dimension), dtype=np.float32)
        self._pending_ids: list[int] = []
        self._pending_vectors: list[np.ndarray] = []
        self._index: Optional[faiss.Index] = None

    def __len__(self) -> int:
        """Number of vectors in the searchable snapshot."""
        return len(self._built_ids)

    @property
    def pending_count(self) -> int:
        return len(self._pending_ids)

    def _as_vector(self, vector: Sequence[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] != self.dimension:
            actual = arr.shape[0] if arr.ndim == 1 else arr.size
            raise DimensionMismatch(self.dimension, int(actual))
        return arr

    def insert(self, vector: Sequence[float], id: int):
        """Queue a vector for the next build."""
        arr = self._as_vector(vector)
        id = int(id)
        if id in self._pending_ids or id in self._built_ids:
            raise ValueError(f"id {id} is already in the index")
        self._pending_ids.append(id)
        self._pending_vectors.append(arr)
        self.state = IndexState.INSERTING

    def build(self):
        """Rebuild the searchable snapshot over all inserted vectors."""
        if not self._pending_ids:
            if self._index is not None:
                self.state = IndexState.SEARCHABLE
            return

        ids = self._built_ids + self._pending_ids
        vectors = np.vstack([self._built_vectors, *self._pending_vectors])
        try:
            hnsw = faiss.IndexHNSWFlat(self.dimension, self.m)
            hnsw.hnsw.efSearch = self.ef_search
            index = faiss.IndexIDMap(hnsw)
            index.add_with_ids(vectors, np.asarray(ids, dtype=np.int64))
        except Exception as e:
            logger.warning("Vector index build failed, keeping previous snapshot: %s", e)
            raise IndexBuildFailure(str(e)) from e

        self._index = index
        self._built_ids = ids
        self._built_vectors = vectors
        self._pending_ids = []
        self._pending_vectors = []
        self.state = IndexState.SEARCHABLE
        logger.info("Built vector index with %d vectors", len(ids))

    def search_with_distances(
        self, vector: Sequence[float], k: int
    ) -> list[tuple[int, float]]:
        """Nearest built neighbours as ``(id, euclidean_distance)``, closest first."""
        query = self._as_vector(vector)
        if self._index is None or k <= 0:
            return []
        k = min(k, len(self._built_ids))
        distances, labels = self._index.search(query.reshape(1, -1), k)
        results = []
        for label, sq_dist in zip(labels[0], distances[0]):
            if label == -1:
                continue
            # faiss reports squared L2 distances
            results.append((int(label), math.sqrt(max(float(sq_dist), 0.0))))
        return results

    def search(self, vector: Sequence[float], k: int) -> list[int]:
        """Ids of the nearest built neighbours, closest first."""
        return [id for id, _ in self.search_with_distances(vector, k)]

    def entries(self) -> list[tuple[int, list[float]]]:
        """All inserted ``(id, vector)`` pairs, built and pending, in insertion order."""
        built = [(id, vec.tolist()) for id, vec in zip(self._built_ids, self._built_vectors)]
        pending = [
            (id, vec.tolist()) for id, vec in zip(self._pending_ids, self._pending_vectors)
        ]
        return built + pending
