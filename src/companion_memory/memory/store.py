"""
Fragment Store

Persistence adapter for memory fragments. Every operation takes the owner id
(and optional scope id) and filters on it, so nothing outside the caller's
scope can be read or mutated.

The Chroma implementation keeps one row per fragment in a cosine-space
collection:

    id          -> fragment id (uuid4)
    document    -> fragment text
    embedding   -> fragment embedding
    metadata    -> owner_id, scope_id, context (JSON), emotional_tone,
                   embedding_model, created_at, updated_at (epoch seconds)
"""

import json
import time
import uuid
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from chromadb.errors import ChromaError
from langchain_core.embeddings import Embeddings
from langchain_chroma import Chroma
from sklearn.metrics.pairwise import cosine_similarity

from .exceptions import PersistenceError, ValidationError
from .models import EmotionalTone, FragmentContext, MemoryFragment, RankedFragment


class FragmentStore(ABC):
    """Owner-scoped persistence interface used by the memory services."""

    @abstractmethod
    async def insert(self, fragments: List[MemoryFragment]) -> List[str]:
        """Insert embedded fragments as one unit; assigns ids and timestamps."""
        ...

    @abstractmethod
    async def get(self, fragment_id: str, owner_id: str) -> Optional[MemoryFragment]:
        ...

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        scope_id: Optional[str] = None,
        include_embeddings: bool = False
    ) -> List[MemoryFragment]:
        """Every fragment in the owner's scope, unordered."""
        ...

    @abstractmethod
    async def update(
        self,
        fragment_id: str,
        owner_id: str,
        text: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        embedding_model: Optional[str] = None,
        context: Optional[FragmentContext] = None
    ) -> bool:
        """Update text/embedding and/or context. Returns False when nothing matched."""
        ...

    @abstractmethod
    async def delete(self, fragment_ids: List[str], owner_id: str) -> int:
        """Delete the owner's fragments among ``fragment_ids``; returns rows removed."""
        ...

    @abstractmethod
    async def delete_all(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def count(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def match_fragments(
        self,
        query_embedding: List[float],
        match_threshold: float,
        match_count: int,
        owner_id: str,
        scope_id: Optional[str] = None,
        exact: bool = False
    ) -> List[RankedFragment]:
        """Similarity search in the owner's scope, best match first.

        ``match_count`` of 0 means unbounded.
        """
        ...


class ChromaFragmentStore(FragmentStore):
    """FragmentStore backed by a Chroma collection in cosine space."""

    def __init__(self, collection: Chroma, embedding_dimension: Optional[int] = None) -> None:
        """Initialize the store.

        Args:
            collection: LangChain Chroma wrapper; rows are written through its
                underlying chromadb collection with explicit embeddings
            embedding_dimension: Expected vector length, enforced on writes and
                queries when set
        """
        self.collection = collection
        self.embedding_dimension = embedding_dimension

    @classmethod
    def from_config(
        cls,
        db_config: Dict[str, Any],
        embedding_function: Optional[Embeddings] = None,
        embedding_dimension: Optional[int] = None
    ) -> "ChromaFragmentStore":
        persist_directory = db_config.get('persist_directory', './chroma_db_memory')
        collection_name = db_config.get('collection_name', 'memory_fragments')
        try:
            collection = Chroma(
                collection_name=collection_name,
                embedding_function=embedding_function,
                persist_directory=persist_directory,
                collection_metadata={"hnsw:space": "cosine"},
            )
        except ChromaError as init_error:
            logging.error(f"ChromaDB initialization failed: {init_error}")
            raise PersistenceError(
                "initialize", str(init_error), {'persist_directory': persist_directory}
            ) from init_error
        except (OSError, IOError) as init_error:
            logging.error(f"Filesystem error during initialization: {init_error}")
            raise PersistenceError(
                "initialize", f"cannot access storage directory: {init_error}",
                {'persist_directory': persist_directory}
            ) from init_error

        logging.info(f"Fragment store ready: collection '{collection_name}' in {persist_directory}")
        return cls(collection, embedding_dimension)

    # ------------------------------------------------------------------
    # FragmentStore API
    # ------------------------------------------------------------------

    async def insert(self, fragments: List[MemoryFragment]) -> List[str]:
        if not fragments:
            return []

        for fragment in fragments:
            if fragment.embedding is None:
                raise ValidationError('embedding', "fragment must be embedded before insert")
            self._check_dimension(fragment.embedding)

        now = time.time()
        ids = [str(uuid.uuid4()) for _ in fragments]
        metadatas = [self._to_metadata(fragment, now, now) for fragment in fragments]

        await self._run(
            "insert",
            self.collection._collection.add,
            ids=ids,
            embeddings=[list(f.embedding) for f in fragments],
            documents=[f.text for f in fragments],
            metadatas=metadatas,
        )

        created = _from_epoch(now)
        for fragment_id, fragment in zip(ids, fragments):
            fragment.id = fragment_id
            fragment.created_at = created
            fragment.updated_at = created

        logging.debug(f"Inserted {len(ids)} fragments for owner {fragments[0].owner_id}")
        return ids

    async def get(self, fragment_id: str, owner_id: str) -> Optional[MemoryFragment]:
        result = await self._run(
            "get",
            self.collection._collection.get,
            ids=[fragment_id],
            where=self._where(owner_id),
            include=["documents", "metadatas", "embeddings"],
        )
        fragments = self._rows_to_fragments(result)
        return fragments[0] if fragments else None

    async def list_for_owner(
        self,
        owner_id: str,
        scope_id: Optional[str] = None,
        include_embeddings: bool = False
    ) -> List[MemoryFragment]:
        include = ["documents", "metadatas"]
        if include_embeddings:
            include.append("embeddings")
        result = await self._run(
            "list",
            self.collection._collection.get,
            where=self._where(owner_id, scope_id),
            include=include,
        )
        return self._rows_to_fragments(result)

    async def update(
        self,
        fragment_id: str,
        owner_id: str,
        text: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        embedding_model: Optional[str] = None,
        context: Optional[FragmentContext] = None
    ) -> bool:
        # Text without a fresh vector would let the collection re-embed with
        # its own function, so both must travel together.
        if text is not None and embedding is None:
            raise ValidationError('embedding', "text updates require a regenerated embedding")
        if embedding is not None:
            self._check_dimension(embedding)

        existing = await self._run(
            "update",
            self.collection._collection.get,
            ids=[fragment_id],
            where=self._where(owner_id),
            include=["metadatas"],
        )
        if not existing.get('ids'):
            return False

        # No version column: concurrent updates to the same fragment are
        # last-write-wins.
        metadata = dict(existing['metadatas'][0] or {})
        metadata['updated_at'] = time.time()
        if context is not None:
            metadata['context'] = json.dumps(context.to_dict())
            metadata['emotional_tone'] = context.emotional_tone.value
        if embedding_model is not None:
            metadata['embedding_model'] = embedding_model

        kwargs: Dict[str, Any] = {'ids': [fragment_id], 'metadatas': [metadata]}
        if text is not None:
            kwargs['documents'] = [text]
            kwargs['embeddings'] = [list(embedding)]

        await self._run("update", self.collection._collection.update, **kwargs)
        return True

    async def delete(self, fragment_ids: List[str], owner_id: str) -> int:
        if not fragment_ids:
            return 0
        matched = await self._run(
            "delete",
            self.collection._collection.get,
            ids=list(fragment_ids),
            where=self._where(owner_id),
            include=[],
        )
        ids_to_delete = matched.get('ids') or []
        if ids_to_delete:
            await self._run("delete", self.collection._collection.delete, ids=ids_to_delete)
        return len(ids_to_delete)

    async def delete_all(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        matched = await self._run(
            "delete_all",
            self.collection._collection.get,
            where=self._where(owner_id, scope_id),
            include=[],
        )
        ids_to_delete = matched.get('ids') or []
        if ids_to_delete:
            await self._run("delete_all", self.collection._collection.delete, ids=ids_to_delete)
            logging.info(f"Deleted {len(ids_to_delete)} fragments for owner {owner_id}")
        return len(ids_to_delete)

    async def count(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        result = await self._run(
            "count",
            self.collection._collection.get,
            where=self._where(owner_id, scope_id),
            include=[],
        )
        return len(result.get('ids') or [])

    async def match_fragments(
        self,
        query_embedding: List[float],
        match_threshold: float,
        match_count: int,
        owner_id: str,
        scope_id: Optional[str] = None,
        exact: bool = False
    ) -> List[RankedFragment]:
        self._check_dimension(query_embedding)

        if exact:
            ranked = await self._match_exact(query_embedding, owner_id, scope_id)
        else:
            ranked = await self._match_approximate(query_embedding, match_count, owner_id, scope_id)

        ranked = [r for r in ranked if r.similarity >= match_threshold]
        ranked.sort(key=lambda r: (-r.similarity, r.fragment.id or ""))
        if match_count > 0:
            ranked = ranked[:match_count]
        return ranked

    # ------------------------------------------------------------------
    # Search strategies
    # ------------------------------------------------------------------

    async def _match_approximate(
        self,
        query_embedding: List[float],
        match_count: int,
        owner_id: str,
        scope_id: Optional[str]
    ) -> List[RankedFragment]:
        """HNSW index query restricted to the owner's rows."""
        total = await self.count(owner_id, scope_id)
        if total == 0:
            return []
        n_results = total if match_count <= 0 else min(match_count, total)

        result = await self._run(
            "match_fragments",
            self.collection._collection.query,
            query_embeddings=[list(query_embedding)],
            n_results=n_results,
            where=self._where(owner_id, scope_id),
            include=["documents", "metadatas", "distances"],
        )

        ids = (result.get('ids') or [[]])[0]
        documents = (result.get('documents') or [[]])[0]
        metadatas = (result.get('metadatas') or [[]])[0]
        distances = (result.get('distances') or [[]])[0]

        ranked = []
        for fragment_id, document, metadata, distance in zip(ids, documents, metadatas, distances):
            fragment = self._row_to_fragment(fragment_id, document, metadata)
            # cosine space: distance = 1 - cosine similarity
            ranked.append(RankedFragment(fragment=fragment, similarity=float(1.0 - distance)))
        return ranked

    async def _match_exact(
        self,
        query_embedding: List[float],
        owner_id: str,
        scope_id: Optional[str]
    ) -> List[RankedFragment]:
        """Brute-force cosine similarity over every row in the owner's scope."""
        fragments = await self.list_for_owner(owner_id, scope_id, include_embeddings=True)
        candidates = [f for f in fragments if f.embedding is not None]
        if not candidates:
            return []

        query = np.array(query_embedding, dtype=float).reshape(1, -1)
        matrix = np.array([f.embedding for f in candidates], dtype=float)
        scores = cosine_similarity(query, matrix)[0]

        return [
            RankedFragment(fragment=fragment, similarity=float(score))
            for fragment, score in zip(candidates, scores)
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """Run a blocking collection call in a thread, mapping backend errors."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ChromaError as db_error:
            logging.error(f"ChromaDB error during {operation}: {db_error}")
            raise PersistenceError(operation, str(db_error)) from db_error
        except (OSError, IOError) as db_error:
            logging.error(f"Filesystem error during {operation}: {db_error}")
            raise PersistenceError(operation, f"filesystem error: {db_error}") from db_error
        except Exception as db_error:
            logging.error(f"Unexpected error during {operation}: {db_error}")
            raise PersistenceError(operation, str(db_error)) from db_error

    def _check_dimension(self, embedding: List[float]) -> None:
        if self.embedding_dimension is not None and len(embedding) != self.embedding_dimension:
            raise ValidationError(
                'embedding',
                f"dimension {len(embedding)} does not match store dimension {self.embedding_dimension}"
            )

    @staticmethod
    def _where(owner_id: str, scope_id: Optional[str] = None) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = [{"owner_id": {"$eq": owner_id}}]
        if scope_id:
            clauses.append({"scope_id": {"$eq": scope_id}})
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    @staticmethod
    def _to_metadata(fragment: MemoryFragment, created_at: float, updated_at: float) -> Dict[str, Any]:
        # Chroma metadata only accepts scalar values
        return {
            'owner_id': fragment.owner_id,
            'scope_id': fragment.scope_id or "",
            'context': json.dumps(fragment.context.to_dict()),
            'emotional_tone': fragment.context.emotional_tone.value,
            'embedding_model': fragment.embedding_model or "",
            'created_at': created_at,
            'updated_at': updated_at,
        }

    def _rows_to_fragments(self, result: Dict[str, Any]) -> List[MemoryFragment]:
        ids = result.get('ids') or []
        documents = result.get('documents')
        metadatas = result.get('metadatas')
        embeddings = result.get('embeddings')

        fragments = []
        for i, fragment_id in enumerate(ids):
            embedding = None
            if embeddings is not None and len(embeddings) > i and embeddings[i] is not None:
                embedding = [float(v) for v in embeddings[i]]
            fragments.append(self._row_to_fragment(
                fragment_id,
                documents[i] if documents is not None else "",
                metadatas[i] if metadatas is not None else {},
                embedding,
            ))
        return fragments

    @staticmethod
    def _row_to_fragment(
        fragment_id: str,
        document: str,
        metadata: Optional[Dict[str, Any]],
        embedding: Optional[List[float]] = None
    ) -> MemoryFragment:
        metadata = metadata or {}
        try:
            context = FragmentContext.from_dict(json.loads(metadata.get('context') or '{}'))
        except (ValueError, ValidationError) as e:
            logging.warning(f"Unreadable context on fragment {fragment_id}: {e}")
            context = FragmentContext(emotional_tone=EmotionalTone.NEUTRAL)

        return MemoryFragment(
            id=fragment_id,
            owner_id=metadata.get('owner_id', ""),
            scope_id=metadata.get('scope_id') or None,
            text=document or "",
            context=context,
            embedding=embedding,
            embedding_model=metadata.get('embedding_model') or None,
            created_at=_from_epoch(metadata.get('created_at')),
            updated_at=_from_epoch(metadata.get('updated_at')),
        )


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)
