"""
Unit tests for QueryOptimizer

Tests cover strategy selection, adaptive thresholds and limits, chunking
and configuration overrides.
"""

import pytest

from companion_memory.memory.services.optimizer import QueryOptimizer, SearchStrategy


@pytest.fixture
def optimizer():
    return QueryOptimizer()


class TestStrategy:

    @pytest.mark.parametrize("limit,expected", [
        (1, SearchStrategy.APPROXIMATE),
        (50, SearchStrategy.APPROXIMATE),
        (51, SearchStrategy.EXACT),
        (0, SearchStrategy.EXACT),
    ])
    def test_choose_strategy(self, optimizer, limit, expected):
        assert optimizer.choose_strategy(limit) is expected

    def test_configurable_cutoff(self):
        optimizer = QueryOptimizer({'approximate_search_max_limit': 10})
        assert optimizer.choose_strategy(11) is SearchStrategy.EXACT


class TestAdaptiveParameters:

    @pytest.mark.parametrize("avg_length,expected", [(250, 0.65), (120, 0.7), (30, 0.75), (200, 0.7), (50, 0.7)])
    def test_threshold(self, optimizer, avg_length, expected):
        assert optimizer.adaptive_threshold(avg_length) == expected

    @pytest.mark.parametrize("total,expected", [(6000, 15), (1000, 10), (50, 5), (100, 10), (5000, 10)])
    def test_limit(self, optimizer, total, expected):
        assert optimizer.adaptive_limit(total) == expected

    def test_recommend_for_short_small_corpus(self, optimizer):
        params = optimizer.recommend(["User likes tea", "User has a cat"])
        assert params.similarity_threshold == 0.75
        assert params.limit == 5
        assert params.strategy is SearchStrategy.APPROXIMATE
        assert params.total_memories == 2

    def test_recommend_uses_total_over_sample(self, optimizer):
        params = optimizer.recommend(["x" * 300] * 10, total_memories=8000)
        assert params.similarity_threshold == 0.65
        assert params.limit == 15

    def test_recommend_empty_corpus(self, optimizer):
        params = optimizer.recommend([])
        assert params.similarity_threshold == 0.7
        assert params.limit == 5
        assert params.avg_text_length == 0.0

    def test_overrides(self):
        optimizer = QueryOptimizer({'default_threshold': 0.6, 'default_limit': 8})
        assert optimizer.default_parameters().similarity_threshold == 0.6
        assert optimizer.default_parameters().limit == 8


class TestChunk:

    def test_default_chunk_size(self):
        chunks = list(QueryOptimizer.chunk(list(range(250))))
        assert [len(c) for c in chunks] == [100, 100, 50]
        assert QueryOptimizer.BATCH_INSERT_CHUNK_SIZE == 100

    def test_custom_size_and_empty(self):
        assert list(QueryOptimizer.chunk([1, 2, 3], 2)) == [[1, 2], [3]]
        assert list(QueryOptimizer.chunk([])) == []
