"""
Unit tests for MemoryStorageService

Tests cover:
- Single store: validation, embedding, persistence ordering
- Batch store chunking and partial-batch failure reporting
- Update rules (embedding regeneration, owner scoping, validation first)
- Idempotent deletes
"""

import pytest

from companion_memory.memory.exceptions import BatchStoreError, ProviderError, ValidationError
from companion_memory.memory.models import EmotionalTone, FragmentContext, MemoryFragment
from companion_memory.memory.services.storage import MemoryStorageService
from tests.fixtures.memory_store import FakeEmbeddingClient, InMemoryFragmentStore


@pytest.fixture
def store():
    return InMemoryFragmentStore(embedding_dimension=2)


@pytest.fixture
def embeddings():
    return FakeEmbeddingClient({'User loves hiking': [1.0, 0.0]})


@pytest.fixture
def storage_service(store, embeddings):
    return MemoryStorageService(store, embeddings, {'batch_chunk_size': 2})


def fragment(text, owner_id="user-1"):
    return MemoryFragment(owner_id=owner_id, text=text)


class TestStore:

    def test_backend_does_not_shadow_store_method(self, storage_service, store):
        assert storage_service.fragment_store is store
        assert callable(storage_service.store)
        assert not isinstance(storage_service.store, InMemoryFragmentStore)

    @pytest.mark.asyncio
    async def test_store_embeds_and_persists(self, storage_service, store):
        fragment_id = await storage_service.store(fragment("  User loves hiking "))

        saved = await store.get(fragment_id, "user-1")
        assert saved.text == "User loves hiking"
        assert saved.embedding == [1.0, 0.0]
        assert saved.embedding_model == "fake-embedding-model"

    @pytest.mark.asyncio
    async def test_embedding_failure_persists_nothing(self, storage_service, store, embeddings):
        embeddings.fail = True
        with pytest.raises(ProviderError):
            await storage_service.store(fragment("User loves hiking"))
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_invalid_text_rejected_before_embedding(self, storage_service, embeddings):
        with pytest.raises(ValidationError):
            await storage_service.store(fragment("a" * 2001))
        assert embeddings.embed_calls == []

    @pytest.mark.asyncio
    async def test_missing_owner_rejected(self, storage_service):
        with pytest.raises(ValidationError):
            await storage_service.store(fragment("User loves hiking", owner_id=""))


class TestBatchStore:

    @pytest.mark.asyncio
    async def test_chunks_and_returns_ids_in_order(self, storage_service, store, embeddings):
        fragments = [fragment(f"fact {i}") for i in range(5)]

        ids = await storage_service.batch_store(fragments)

        assert ids == [f.id for f in fragments]
        assert [len(call) for call in embeddings.embed_many_calls] == [2, 2, 1]
        assert store.insert_calls == 3
        assert len(store.rows) == 5

    @pytest.mark.asyncio
    async def test_empty_batch(self, storage_service, store):
        assert await storage_service.batch_store([]) == []
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_call(self, storage_service, store, embeddings):
        fragments = [fragment("ok"), fragment("ok too"), fragment("")]
        with pytest.raises(ValidationError):
            await storage_service.batch_store(fragments)
        assert embeddings.embed_many_calls == []
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_failed_chunk_does_not_stop_later_chunks(self, storage_service, store):
        store.fail_inserts_on_calls = [2]
        fragments = [fragment(f"fact {i}") for i in range(5)]

        with pytest.raises(BatchStoreError) as exc_info:
            await storage_service.batch_store(fragments)

        error = exc_info.value
        assert error.stored_ids == [fragments[0].id, fragments[1].id, fragments[4].id]
        assert [start for start, _ in error.failed_chunks] == [2]
        assert len(store.rows) == 3

    @pytest.mark.asyncio
    async def test_embedding_failure_fails_only_its_chunk(self, storage_service, store, embeddings):
        embeddings.fail_on_batch_calls = [1]
        fragments = [fragment(f"fact {i}") for i in range(3)]

        with pytest.raises(BatchStoreError) as exc_info:
            await storage_service.batch_store(fragments)

        assert exc_info.value.stored_ids == [fragments[2].id]
        assert isinstance(exc_info.value.failed_chunks[0][1], ProviderError)

    @pytest.mark.asyncio
    async def test_batch_generate_embeddings_chunks(self, storage_service, embeddings):
        vectors = await storage_service.batch_generate_embeddings(["a", "b", "c"])
        assert len(vectors) == 3
        assert len(embeddings.embed_many_calls) == 2


class TestUpdate:

    @pytest.mark.asyncio
    async def test_text_change_regenerates_embedding(self, storage_service, store, embeddings):
        fragment_id = await storage_service.store(fragment("User owns a car"))
        embeddings.vectors['User loves hiking'] = [0.6, 0.8]

        assert await storage_service.update(fragment_id, "user-1", text="User loves hiking") is True

        saved = await store.get(fragment_id, "user-1")
        assert saved.text == "User loves hiking"
        assert saved.embedding == [0.6, 0.8]

    @pytest.mark.asyncio
    async def test_context_change_keeps_embedding(self, storage_service, store, embeddings):
        fragment_id = await storage_service.store(fragment("User loves hiking"))
        calls_before = len(embeddings.embed_calls)

        updated = await storage_service.update(
            fragment_id, "user-1", context=FragmentContext(emotional_tone=EmotionalTone.NEGATIVE)
        )

        saved = await store.get(fragment_id, "user-1")
        assert updated is True
        assert len(embeddings.embed_calls) == calls_before
        assert saved.embedding == [1.0, 0.0]
        assert saved.context.emotional_tone is EmotionalTone.NEGATIVE

    @pytest.mark.asyncio
    async def test_oversized_text_rejected_before_write(self, storage_service, store):
        fragment_id = await storage_service.store(fragment("User loves hiking"))

        with pytest.raises(ValidationError):
            await storage_service.update(fragment_id, "user-1", text="a" * 2001)

        assert store.update_calls == 0
        assert (await store.get(fragment_id, "user-1")).text == "User loves hiking"

    @pytest.mark.asyncio
    async def test_other_owner_is_noop(self, storage_service, store):
        fragment_id = await storage_service.store(fragment("User loves hiking"))

        assert await storage_service.update(fragment_id, "user-2", text="hijacked") is False
        assert (await store.get(fragment_id, "user-1")).text == "User loves hiking"

    @pytest.mark.asyncio
    async def test_nothing_to_update(self, storage_service):
        with pytest.raises(ValidationError):
            await storage_service.update("f1", "user-1")


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, storage_service, store):
        fragment_id = await storage_service.store(fragment("User loves hiking"))

        await storage_service.delete(fragment_id, "user-1")
        await storage_service.delete(fragment_id, "user-1")
        await storage_service.delete("never-existed", "user-1")

        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_delete_many_respects_owner(self, storage_service, store):
        mine = await storage_service.store(fragment("mine"))
        theirs = await storage_service.store(fragment("theirs", owner_id="user-2"))

        assert await storage_service.delete_many([mine, theirs], "user-1") == 1
        assert await store.get(theirs, "user-2") is not None

    @pytest.mark.asyncio
    async def test_delete_all_counts(self, storage_service):
        await storage_service.batch_store([fragment("a"), fragment("b"), fragment("c", owner_id="user-2")])
        assert await storage_service.delete_all("user-1") == 2
        assert await storage_service.delete_all("user-1") == 0
