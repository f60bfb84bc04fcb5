"""
Memory Retrieval Service

Handles the read path:
- Similarity search scoped to an owner (degrades to empty results)
- Ordered, paginated listing
- Text search, single lookups and derived statistics
- Chat-context formatting
"""

import logging
from typing import Any, Dict, List, Optional

from ..clients.embedding import EmbeddingClient
from ..exceptions import ValidationError
from ..models import (
    MemoryFragment,
    MemoryStats,
    RankedFragment,
    RetrievalQuery,
    validate_owner_id,
)
from ..store import FragmentStore
from .optimizer import QueryOptimizer, SearchParameters, SearchStrategy

ORDER_FIELDS = ('created_at', 'updated_at', 'text')
ORDER_DIRECTIONS = ('asc', 'desc')
RECOMMENDATION_SAMPLE_SIZE = 1000
CHAT_CONTEXT_HEADER = "Relevant memories about the user:"


class MemoryRetrievalService:
    """Service responsible for search and retrieval operations."""

    def __init__(
        self,
        store: FragmentStore,
        embedding_client: EmbeddingClient,
        optimizer: QueryOptimizer,
        config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Initialize retrieval service.

        Args:
            store: Owner-scoped fragment store
            embedding_client: Client used to embed queries
            optimizer: QueryOptimizer choosing the search strategy
            config: Configuration dictionary (default_limit, default_threshold)
        """
        self.store = store
        self.embedding_client = embedding_client
        self.optimizer = optimizer
        self.config = config or {}
        self.default_limit = self.config.get('default_limit', 10)
        self.default_threshold = self.config.get('default_threshold', 0.7)

    async def retrieve_relevant(
        self,
        query: str,
        owner_id: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        scope_id: Optional[str] = None
    ) -> List[RankedFragment]:
        """Find the owner's fragments most similar to a query.

        Args:
            query: Query text
            owner_id: Owner whose fragments are searched
            limit: Maximum results; 0 means unbounded
            similarity_threshold: Minimum similarity (0-1)
            scope_id: Optional secondary scope

        Returns:
            Ranked fragments, best first; empty on any failure
        """
        request = RetrievalQuery(
            text=query,
            owner_id=owner_id,
            scope_id=scope_id,
            similarity_threshold=self.default_threshold if similarity_threshold is None else similarity_threshold,
            match_count=self.default_limit if limit is None else limit,
        )
        try:
            request.validate()
            query_embedding = await self.embedding_client.embed(request.text)
            strategy = self.optimizer.choose_strategy(request.match_count)
            results = await self.store.match_fragments(
                query_embedding,
                request.similarity_threshold,
                request.match_count,
                request.owner_id,
                scope_id=request.scope_id,
                exact=strategy == SearchStrategy.EXACT,
            )
        except Exception as e:
            logging.warning(f"Memory retrieval failed for owner {owner_id}: {e}")
            return []

        results = sorted(results, key=lambda r: r.similarity, reverse=True)
        if request.match_count > 0:
            results = results[:request.match_count]

        logging.debug(f"Retrieved {len(results)} memories for owner {owner_id} ({strategy.value} search)")
        return results

    async def list(
        self,
        owner_id: str,
        limit: int = 100,
        offset: int = 0,
        order_by: str = 'created_at',
        order_direction: str = 'desc',
        scope_id: Optional[str] = None,
        include_embeddings: bool = False
    ) -> List[MemoryFragment]:
        """List fragments in a stable order.

        Ties on the sort field are broken by id, so consecutive pages never
        overlap. A limit of 0 returns everything from ``offset`` on.

        Raises:
            ValidationError: invalid owner, paging or ordering arguments
            PersistenceError: store failure
        """
        validate_owner_id(owner_id)
        if order_by not in ORDER_FIELDS:
            raise ValidationError('order_by', f"must be one of {list(ORDER_FIELDS)}", order_by)
        if order_direction not in ORDER_DIRECTIONS:
            raise ValidationError('order_direction', "must be 'asc' or 'desc'", order_direction)
        if limit < 0:
            raise ValidationError('limit', "must be >= 0", limit)
        if offset < 0:
            raise ValidationError('offset', "must be >= 0", offset)

        fragments = await self.store.list_for_owner(owner_id, scope_id, include_embeddings=include_embeddings)

        def sort_key(fragment: MemoryFragment):
            value = getattr(fragment, order_by)
            if order_by != 'text':
                value = value.timestamp() if value is not None else 0.0
            return (value, fragment.id or "")

        fragments.sort(key=sort_key, reverse=order_direction == 'desc')

        if limit == 0:
            return fragments[offset:]
        return fragments[offset:offset + limit]

    async def search_by_text(
        self,
        text: str,
        owner_id: str,
        limit: int = 10,
        scope_id: Optional[str] = None
    ) -> List[MemoryFragment]:
        """Case-insensitive substring search, newest first. Empty on failure."""
        try:
            validate_owner_id(owner_id)
            needle = (text or "").strip().lower()
            if not needle:
                return []
            fragments = await self.list(owner_id, limit=0, scope_id=scope_id)
        except Exception as e:
            logging.warning(f"Text search failed for owner {owner_id}: {e}")
            return []

        matches = [f for f in fragments if needle in f.text.lower()]
        return matches[:limit] if limit > 0 else matches

    async def get_one(self, fragment_id: str, owner_id: str) -> Optional[MemoryFragment]:
        """Fetch one fragment; None when missing or owned by someone else."""
        validate_owner_id(owner_id)
        return await self.store.get(fragment_id, owner_id)

    async def stats(self, owner_id: str, scope_id: Optional[str] = None) -> MemoryStats:
        validate_owner_id(owner_id)
        fragments = await self.store.list_for_owner(owner_id, scope_id)
        created = [f.created_at for f in fragments if f.created_at is not None]
        return MemoryStats(
            total_fragments=len(fragments),
            oldest_memory=min(created) if created else None,
            newest_memory=max(created) if created else None,
        )

    async def format_for_chat(
        self,
        query: str,
        owner_id: str,
        limit: int = 5,
        scope_id: Optional[str] = None
    ) -> str:
        """Render relevant memories as a chat-prompt block, or "" when none."""
        try:
            memories = await self.retrieve_relevant(query, owner_id, limit=limit, scope_id=scope_id)
        except Exception as e:
            logging.warning(f"Chat context formatting failed for owner {owner_id}: {e}")
            return ""
        if not memories:
            return ""
        lines = "\n".join(f"- {memory.text}" for memory in memories)
        return f"{CHAT_CONTEXT_HEADER}\n{lines}"

    async def recommend_parameters(self, owner_id: str, scope_id: Optional[str] = None) -> SearchParameters:
        """Ask the optimizer for search settings tuned to the owner's corpus."""
        try:
            validate_owner_id(owner_id)
            total = await self.store.count(owner_id, scope_id)
            sample = await self.list(owner_id, limit=RECOMMENDATION_SAMPLE_SIZE, scope_id=scope_id)
        except Exception as e:
            logging.warning(f"Could not analyze corpus for owner {owner_id}, using defaults: {e}")
            return self.optimizer.default_parameters()
        return self.optimizer.recommend([f.text for f in sample], total_memories=total)
