"""
Tests for the HNSW vector index.
"""

import pytest
from unittest.mock import patch

from langchain_recall.errors import DimensionMismatch, IndexBuildFailure
from langchain_recall.memory.vector_index import IndexState, VectorIndex


def _index_with(*vectors) -> VectorIndex:
    index = VectorIndex(dimension=4)
    for i, vec in enumerate(vectors, start=1):
        index.insert(vec, i)
    index.build()
    return index


# ── Search Tests ──


class TestVectorIndexSearch:
    def test_nearest_of_two_by_euclidean_distance(self):
        index = VectorIndex(dimension=4)
        index.insert([1, 0, 0, 0], 1)
        index.insert([5, 5, 5, 5], 2)
        index.build()
        assert index.search([0, 1, 0, 0], k=1) == [1]

    def test_nearest_neighbour(self):
        index = _index_with([1, 0, 0, 0], [0, 1, 0, 0])
        assert index.search([0, 1, 0, 0], 1) == [2]
        assert index.search([0.9, 0.1, 0, 0], 1) == [1]

    def test_closer_first(self):
        index = _index_with([1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 1, 0])
        assert index.search([0, 0.9, 0.2, 0], 2) == [2, 3]

    def test_distances_are_euclidean(self):
        index = _index_with([1, 0, 0, 0], [0, 3, 0, 0])
        results = dict(index.search_with_distances([0, 0, 0, 0], 2))
        assert results[1] == pytest.approx(1.0)
        assert results[2] == pytest.approx(3.0)

    def test_k_larger_than_size(self):
        index = _index_with([1, 0, 0, 0], [0, 1, 0, 0])
        assert sorted(index.search([0, 0, 0, 1], 10)) == [1, 2]

    def test_empty_index(self):
        index = VectorIndex(dimension=4)
        assert index.search([1, 0, 0, 0], 3) == []

    def test_zero_k(self):
        index = _index_with([1, 0, 0, 0])
        assert index.search([1, 0, 0, 0], 0) == []


# ── Dimension Tests ──


class TestVectorIndexDimensions:
    def test_insert_wrong_dimension(self):
        index = _index_with([1, 0, 0, 0], [0, 1, 0, 0])
        with pytest.raises(DimensionMismatch) as exc:
            index.insert([1, 0, 0], 3)
        assert exc.value.expected == 4
        assert exc.value.actual == 3
        # The rejected insert leaves the index untouched
        assert index.pending_count == 0
        assert index.search([0, 1, 0, 0], 1) == [2]

    def test_search_wrong_dimension(self):
        index = _index_with([1, 0, 0, 0])
        with pytest.raises(DimensionMismatch):
            index.search([1, 0], 1)

    def test_invalid_dimension(self):
        with pytest.raises(ValueError):
            VectorIndex(dimension=0)


# ── Build Lifecycle Tests ──


class TestVectorIndexLifecycle:
    def test_state_transitions(self):
        index = VectorIndex(dimension=4)
        assert index.state is IndexState.IDLE
        index.insert([1, 0, 0, 0], 1)
        assert index.state is IndexState.INSERTING
        index.build()
        assert index.state is IndexState.SEARCHABLE
        index.insert([0, 1, 0, 0], 2)
        assert index.state is IndexState.INSERTING

    def test_pending_vectors_not_searchable(self):
        index = _index_with([1, 0, 0, 0])
        index.insert([0, 1, 0, 0], 2)
        # Searches use the last build until the next one
        assert index.search([0, 1, 0, 0], 1) == [1]
        assert len(index) == 1
        index.build()
        assert index.search([0, 1, 0, 0], 1) == [2]
        assert len(index) == 2

    def test_build_without_pending_is_noop(self):
        index = _index_with([1, 0, 0, 0])
        index.build()
        assert len(index) == 1
        assert index.state is IndexState.SEARCHABLE

    def test_build_failure_keeps_previous_snapshot(self):
        index = _index_with([1, 0, 0, 0])
        index.insert([0, 1, 0, 0], 2)
        with patch(
            "langchain_recall.memory.vector_index.faiss.IndexHNSWFlat",
            side_effect=RuntimeError("out of memory"),
        ):
            with pytest.raises(IndexBuildFailure):
                index.build()
        assert index.search([0, 1, 0, 0], 1) == [1]
        assert index.pending_count == 1

        # The queued vector is picked up by the next successful build
        index.build()
        assert index.search([0, 1, 0, 0], 1) == [2]

    def test_duplicate_id_rejected(self):
        index = _index_with([1, 0, 0, 0])
        with pytest.raises(ValueError):
            index.insert([0, 1, 0, 0], 1)

    def test_entries_cover_built_and_pending(self):
        index = _index_with([1, 0, 0, 0])
        index.insert([0, 1, 0, 0], 2)
        assert index.entries() == [(1, [1.0, 0.0, 0.0, 0.0]), (2, [0.0, 1.0, 0.0, 0.0])]
