"""
Memory Storage Service

Handles the write path:
- Embedding generation (single and chunked batch)
- Single and batch inserts with partial-batch reporting
- Owner-scoped updates that keep text and embedding consistent
- Idempotent deletes
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..clients.embedding import EmbeddingClient
from ..exceptions import BatchStoreError, ValidationError
from ..models import FragmentContext, MemoryFragment, validate_fragment_text, validate_owner_id
from ..store import FragmentStore
from .optimizer import QueryOptimizer


class MemoryStorageService:
    """Service responsible for embedding and persisting fragments."""

    def __init__(
        self,
        store: FragmentStore,
        embedding_client: EmbeddingClient,
        config: Optional[Dict[str, Any]] = None
    ) -> None:
        """Initialize storage service.

        Args:
            store: Owner-scoped fragment store
            embedding_client: Client used to embed fragment text
            config: Configuration dictionary (batch_chunk_size)
        """
        self.fragment_store = store
        self.embedding_client = embedding_client
        self.config = config or {}
        self.chunk_size = self.config.get('batch_chunk_size', QueryOptimizer.BATCH_INSERT_CHUNK_SIZE)

    async def generate_embedding(self, text: str) -> List[float]:
        """Embed one text. Raises ProviderError on failure."""
        return await self.embedding_client.embed(text)

    async def batch_generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed texts one chunk per provider call."""
        vectors: List[List[float]] = []
        for chunk in QueryOptimizer.chunk(texts, self.chunk_size):
            vectors.extend(await self.embedding_client.embed_many(chunk))
        return vectors

    def _prepare(self, fragment: MemoryFragment) -> MemoryFragment:
        validate_owner_id(fragment.owner_id)
        fragment.text = validate_fragment_text(fragment.text)
        return fragment

    async def store(self, fragment: MemoryFragment) -> str:
        """Embed and persist a fragment.

        Returns:
            The assigned fragment id

        Raises:
            ValidationError: invalid owner or text; nothing is sent anywhere
            ProviderError: embedding failed; nothing is persisted
            PersistenceError: insert failed
        """
        self._prepare(fragment)
        fragment.embedding = await self.generate_embedding(fragment.text)
        fragment.embedding_model = self.embedding_client.model_name
        ids = await self.fragment_store.insert([fragment])
        logging.info(f"Stored memory fragment {ids[0]} for owner {fragment.owner_id}")
        return ids[0]

    async def batch_store(self, fragments: List[MemoryFragment]) -> List[str]:
        """Embed and persist fragments in fixed-size chunks.

        Every fragment is validated before any provider or store call. Chunks
        run sequentially; each is one embedding call plus one insert and
        either commits whole or not at all. A failed chunk does not stop the
        chunks after it.

        Returns:
            Ids of all stored fragments, in input order

        Raises:
            ValidationError: any fragment is invalid
            BatchStoreError: one or more chunks failed; carries the ids that
                were committed and the start index and cause of each failure
        """
        if not fragments:
            return []
        for fragment in fragments:
            self._prepare(fragment)

        stored_ids: List[str] = []
        failed_chunks: List[Tuple[int, Exception]] = []

        for index, chunk in enumerate(QueryOptimizer.chunk(fragments, self.chunk_size)):
            start = index * self.chunk_size
            try:
                vectors = await self.embedding_client.embed_many([f.text for f in chunk])
                for fragment, vector in zip(chunk, vectors):
                    fragment.embedding = vector
                    fragment.embedding_model = self.embedding_client.model_name
                stored_ids.extend(await self.fragment_store.insert(chunk))
            except Exception as e:
                logging.error(f"Batch store chunk starting at {start} failed ({len(chunk)} fragments): {e}")
                failed_chunks.append((start, e))

        if failed_chunks:
            raise BatchStoreError(stored_ids, failed_chunks)

        logging.info(f"Batch stored {len(stored_ids)} memory fragments")
        return stored_ids

    async def update(
        self,
        fragment_id: str,
        owner_id: str,
        text: Optional[str] = None,
        context: Optional[FragmentContext] = None
    ) -> bool:
        """Update a fragment's text and/or context within the owner's scope.

        A text change regenerates the embedding; a context-only change does not.

        Returns:
            True when a fragment was updated, False when none matched
        """
        validate_owner_id(owner_id)
        if text is None and context is None:
            raise ValidationError('update', "provide text and/or context")

        embedding = None
        embedding_model = None
        if text is not None:
            text = validate_fragment_text(text)
            embedding = await self.generate_embedding(text)
            embedding_model = self.embedding_client.model_name

        updated = await self.fragment_store.update(
            fragment_id,
            owner_id,
            text=text,
            embedding=embedding,
            embedding_model=embedding_model,
            context=context,
        )
        if updated:
            logging.info(f"Updated memory fragment {fragment_id}")
        return updated

    async def delete(self, fragment_id: str, owner_id: str) -> None:
        """Delete one fragment; deleting a missing id succeeds."""
        validate_owner_id(owner_id)
        await self.fragment_store.delete([fragment_id], owner_id)

    async def delete_many(self, fragment_ids: List[str], owner_id: str) -> int:
        validate_owner_id(owner_id)
        deleted = await self.fragment_store.delete(fragment_ids, owner_id)
        logging.info(f"Deleted {deleted} memory fragments for owner {owner_id}")
        return deleted

    async def delete_all(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        validate_owner_id(owner_id)
        return await self.fragment_store.delete_all(owner_id, scope_id)
