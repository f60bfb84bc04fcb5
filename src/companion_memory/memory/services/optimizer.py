"""
Query Optimizer

Advisory logic for similarity search:
- Search strategy selection (index query vs brute-force scan)
- Adaptive similarity threshold from average fragment length
- Adaptive result count from corpus size
- Batch-insert chunk sizing
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

T = TypeVar('T')


class SearchStrategy(str, Enum):
    APPROXIMATE = "approximate"
    EXACT = "exact"


@dataclass
class SearchParameters:
    """Recommended search settings for an owner's corpus."""

    similarity_threshold: float
    limit: int
    strategy: SearchStrategy
    total_memories: int = 0
    avg_text_length: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'similarity_threshold': self.similarity_threshold,
            'limit': self.limit,
            'strategy': self.strategy.value,
            'total_memories': self.total_memories,
            'avg_text_length': self.avg_text_length,
        }


class QueryOptimizer:
    """Chooses search strategy and parameters; holds no state of its own."""

    BATCH_INSERT_CHUNK_SIZE = 100

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize optimizer.

        Args:
            config: Optional overrides. Recognized keys: approximate_search_max_limit,
                default_threshold, long_text_threshold, short_text_threshold,
                long_text_length, short_text_length, default_limit, large_corpus_limit,
                small_corpus_limit, large_corpus_size, small_corpus_size
        """
        self.config = config or {}

        self.approximate_max_limit = self.config.get('approximate_search_max_limit', 50)

        self.default_threshold = self.config.get('default_threshold', 0.7)
        self.long_text_threshold = self.config.get('long_text_threshold', 0.65)
        self.short_text_threshold = self.config.get('short_text_threshold', 0.75)
        self.long_text_length = self.config.get('long_text_length', 200)
        self.short_text_length = self.config.get('short_text_length', 50)

        self.default_limit = self.config.get('default_limit', 10)
        self.large_corpus_limit = self.config.get('large_corpus_limit', 15)
        self.small_corpus_limit = self.config.get('small_corpus_limit', 5)
        self.large_corpus_size = self.config.get('large_corpus_size', 5000)
        self.small_corpus_size = self.config.get('small_corpus_size', 100)

    def choose_strategy(self, limit: int) -> SearchStrategy:
        """Index query for small bounded result sets, full scan otherwise.

        A limit of 0 is unbounded and always scans.
        """
        if 0 < limit <= self.approximate_max_limit:
            return SearchStrategy.APPROXIMATE
        return SearchStrategy.EXACT

    def adaptive_threshold(self, avg_text_length: float) -> float:
        # Longer texts drift more semantically, so accept weaker matches
        if avg_text_length > self.long_text_length:
            return self.long_text_threshold
        if avg_text_length < self.short_text_length:
            return self.short_text_threshold
        return self.default_threshold

    def adaptive_limit(self, total_memories: int) -> int:
        if total_memories > self.large_corpus_size:
            return self.large_corpus_limit
        if total_memories < self.small_corpus_size:
            return self.small_corpus_limit
        return self.default_limit

    def recommend(self, texts: Sequence[str], total_memories: Optional[int] = None) -> SearchParameters:
        """Recommend search parameters for a corpus sample.

        Args:
            texts: Sample of fragment texts used to estimate average length
            total_memories: Corpus size; defaults to the sample size

        Returns:
            SearchParameters with threshold, limit and strategy
        """
        total = len(texts) if total_memories is None else total_memories
        avg_length = sum(len(t) for t in texts) / len(texts) if texts else 0.0

        if not texts:
            threshold = self.default_threshold
        else:
            threshold = self.adaptive_threshold(avg_length)
        limit = self.adaptive_limit(total)

        return SearchParameters(
            similarity_threshold=threshold,
            limit=limit,
            strategy=self.choose_strategy(limit),
            total_memories=total,
            avg_text_length=round(avg_length, 2),
        )

    def default_parameters(self) -> SearchParameters:
        return SearchParameters(
            similarity_threshold=self.default_threshold,
            limit=self.default_limit,
            strategy=self.choose_strategy(self.default_limit),
        )

    @classmethod
    def chunk(cls, items: List[T], size: Optional[int] = None) -> Iterator[List[T]]:
        """Yield consecutive slices of at most ``size`` items."""
        size = size or cls.BATCH_INSERT_CHUNK_SIZE
        for start in range(0, len(items), size):
            yield items[start:start + size]
