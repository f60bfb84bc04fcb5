"""
Memory Service Facade

Composes the extraction, storage, retrieval and management services behind
the API used by the chat flow and the management surface. Every method takes
the owner id (and optional scope id) and passes it through unchanged.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from ..clients.embedding import EmbeddingClient
from ..clients.llm import ChatCompletionClient
from ..exceptions import BatchStoreError
from ..models import FragmentContext, MemoryFragment, MemoryStats, RankedFragment
from ..store import ChromaFragmentStore, FragmentStore
from .background import BackgroundCaptureRunner
from .extraction import MemoryExtractionService
from .management import BulkDeleteRequest, BulkDeleteResult, ExportResult, MemoryManagementService
from .optimizer import QueryOptimizer, SearchParameters
from .retrieval import MemoryRetrievalService
from .storage import MemoryStorageService


class MemoryService:
    """Facade over the decomposed memory services."""

    def __init__(
        self,
        store: FragmentStore,
        embedding_client: EmbeddingClient,
        llm_client: ChatCompletionClient,
        memory_config: Optional[Dict[str, Any]] = None,
        background_runner: Optional[BackgroundCaptureRunner] = None
    ) -> None:
        """Initialize the memory service.

        Args:
            store: Owner-scoped fragment store
            embedding_client: Embedding provider client
            llm_client: Chat-completion client used for extraction
            memory_config: The ``memory`` configuration section
            background_runner: Runner for detached capture tasks
        """
        memory_config = memory_config or {}
        self.store = store
        self.embedding_client = embedding_client
        self.llm_client = llm_client
        self.background_runner = background_runner or BackgroundCaptureRunner()

        self.optimizer = QueryOptimizer(memory_config.get('optimizer', {}))
        self.extraction = MemoryExtractionService(llm_client, memory_config.get('extraction', {}))
        self.storage = MemoryStorageService(store, embedding_client, memory_config.get('storage', {}))
        self.retrieval = MemoryRetrievalService(
            store, embedding_client, self.optimizer, memory_config.get('retrieval', {})
        )
        self.management = MemoryManagementService(self.retrieval, self.storage)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "MemoryService":
        """Build the service and its clients from a full configuration dict."""
        embedding_client = EmbeddingClient.from_config(config.get('embeddings', {}))
        store = ChromaFragmentStore.from_config(
            config.get('database', {}),
            embedding_function=embedding_client.embeddings,
            embedding_dimension=embedding_client.dimension,
        )
        llm_client = ChatCompletionClient.from_config(config.get('llm', {}))
        return cls(store, embedding_client, llm_client, config.get('memory', {}))

    # =========================================================================
    # Chat flow
    # =========================================================================

    async def process_and_store_memories(
        self,
        text: str,
        owner_id: str,
        context: Union[str, Dict[str, Any], None] = None,
        scope_id: Optional[str] = None,
        extraction_threshold: Optional[float] = None
    ) -> List[MemoryFragment]:
        """Extract memories from a message and store them.

        Never raises: any failure is logged and yields an empty list. Chunks
        committed before a partial batch failure stay persisted.
        """
        try:
            fragments = await self.extraction.extract(
                text, owner_id, context, scope_id=scope_id, extraction_threshold=extraction_threshold
            )
            if not fragments:
                return []
            await self.storage.batch_store(fragments)
            logging.info(f"Captured {len(fragments)} memories for owner {owner_id}")
            return fragments
        except BatchStoreError as e:
            logging.error(
                f"Memory capture failed for owner {owner_id} after storing "
                f"{len(e.stored_ids)} fragment(s): {e}"
            )
            return []
        except Exception as e:
            logging.error(f"Memory capture failed for owner {owner_id}: {e}")
            return []

    async def get_memories_for_chat(
        self,
        query: str,
        owner_id: str,
        max_memories: int = 5,
        scope_id: Optional[str] = None
    ) -> str:
        return await self.retrieval.format_for_chat(query, owner_id, limit=max_memories, scope_id=scope_id)

    def capture_in_background(
        self,
        text: str,
        owner_id: str,
        context: Union[str, Dict[str, Any], None] = None,
        scope_id: Optional[str] = None,
        extraction_threshold: Optional[float] = None
    ) -> asyncio.Task:
        """Schedule ``process_and_store_memories`` as a tracked background task."""
        return self.background_runner.submit(
            lambda: self.process_and_store_memories(
                text, owner_id, context, scope_id=scope_id, extraction_threshold=extraction_threshold
            ),
            name=f"memory-capture-{owner_id}",
        )

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.background_runner.drain(timeout)
        await self.llm_client.aclose()

    # =========================================================================
    # Management
    # =========================================================================

    async def create_memory(
        self,
        text: str,
        owner_id: str,
        context: Optional[FragmentContext] = None,
        scope_id: Optional[str] = None
    ) -> MemoryFragment:
        fragment = MemoryFragment(
            owner_id=owner_id,
            scope_id=scope_id,
            text=text,
            context=context or FragmentContext.manual_entry(),
        )
        await self.storage.store(fragment)
        return fragment

    async def search_memories(
        self,
        query: str,
        owner_id: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        scope_id: Optional[str] = None
    ) -> List[RankedFragment]:
        return await self.retrieval.retrieve_relevant(
            query, owner_id, limit=limit, similarity_threshold=similarity_threshold, scope_id=scope_id
        )

    async def get_memory(self, fragment_id: str, owner_id: str) -> Optional[MemoryFragment]:
        return await self.retrieval.get_one(fragment_id, owner_id)

    async def list_memories(
        self,
        owner_id: str,
        limit: int = 100,
        offset: int = 0,
        order_by: str = 'created_at',
        order_direction: str = 'desc',
        scope_id: Optional[str] = None
    ) -> List[MemoryFragment]:
        return await self.retrieval.list(
            owner_id, limit=limit, offset=offset, order_by=order_by,
            order_direction=order_direction, scope_id=scope_id
        )

    async def update_memory(
        self,
        fragment_id: str,
        owner_id: str,
        text: Optional[str] = None,
        context: Optional[FragmentContext] = None
    ) -> bool:
        return await self.storage.update(fragment_id, owner_id, text=text, context=context)

    async def delete_memory(self, fragment_id: str, owner_id: str) -> None:
        await self.storage.delete(fragment_id, owner_id)

    async def delete_all_memories(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        return await self.storage.delete_all(owner_id, scope_id)

    async def get_stats(self, owner_id: str, scope_id: Optional[str] = None) -> MemoryStats:
        return await self.retrieval.stats(owner_id, scope_id)

    async def recommend_search_parameters(self, owner_id: str, scope_id: Optional[str] = None) -> SearchParameters:
        return await self.retrieval.recommend_parameters(owner_id, scope_id)

    async def export_memories(
        self,
        owner_id: str,
        fmt: str = 'json',
        include_embeddings: bool = False,
        scope_id: Optional[str] = None
    ) -> ExportResult:
        return await self.management.export(owner_id, fmt, include_embeddings, scope_id)

    async def bulk_delete(
        self,
        owner_id: str,
        request: BulkDeleteRequest,
        scope_id: Optional[str] = None
    ) -> BulkDeleteResult:
        return await self.management.bulk_delete(owner_id, request, scope_id)
