import os
import sys
from unittest.mock import AsyncMock, Mock

import pytest

# Make the src layout importable when the package is not installed
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
SRC_ROOT = os.path.join(PROJECT_ROOT, 'src')
if SRC_ROOT not in sys.path:
    sys.path.insert(0, SRC_ROOT)

from companion_memory.memory.clients.llm import ChatCompletionClient
from companion_memory.memory.services import MemoryService
from tests.fixtures.memory_store import FakeEmbeddingClient, InMemoryFragmentStore


@pytest.fixture
def fragment_store():
    """Empty in-memory fragment store."""
    return InMemoryFragmentStore()


@pytest.fixture
def embedding_client():
    """Embedding client with 2-d vectors keyed by text."""
    return FakeEmbeddingClient()


@pytest.fixture
def mock_llm_client():
    """Chat-completion client returning an empty fragment array."""
    mock = Mock(spec=ChatCompletionClient)
    mock.complete = AsyncMock(return_value='[]')
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def memory_service(fragment_store, embedding_client, mock_llm_client):
    """MemoryService wired to in-memory doubles."""
    return MemoryService(
        store=fragment_store,
        embedding_client=embedding_client,
        llm_client=mock_llm_client,
        memory_config={'extraction': {'batch_pause_seconds': 0}}
    )
