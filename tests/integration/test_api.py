"""
Integration tests for the HTTP management surface

Drives the FastAPI app with TestClient over an in-memory MemoryService.
"""

import json
import pytest
from fastapi.testclient import TestClient

from companion_memory.memory.exceptions import PersistenceError
from companion_memory.server import create_app

pytestmark = pytest.mark.integration

OWNER = {"X-Owner-Id": "user-1"}
OTHER = {"X-Owner-Id": "user-2"}


@pytest.fixture
def app(memory_service, embedding_client):
    embedding_client.vectors.update({'hiking': [1.0, 0.0], 'User loves hiking': [0.8, 0.6]})
    return create_app(memory_service, {'title': 'Test', 'version': '9.9.9'}, drain_timeout=5.0)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def create(client, text="User loves hiking", headers=OWNER, **extra):
    response = client.post("/memories", json={"text": text, **extra}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["version"] == "9.9.9"


class TestCrud:

    def test_create_and_get(self, client):
        created = create(client, context={"emotionalTone": "positive", "messageContext": "chat"})

        fetched = client.get(f"/memories/{created['id']}", headers=OWNER)

        assert fetched.status_code == 200
        assert fetched.json()["text"] == "User loves hiking"
        assert fetched.json()["context"]["emotional_tone"] == "positive"

    def test_get_other_owner_is_404(self, client):
        created = create(client)
        response = client.get(f"/memories/{created['id']}", headers=OTHER)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "resource_not_found"

    def test_missing_owner_header_is_400(self, client):
        response = client.get("/memories")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_create_oversized_text_is_400(self, client):
        response = client.post("/memories", json={"text": "a" * 2001}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["error"]["data"]["field"] == "text"

    def test_create_unknown_tone_is_400(self, client):
        response = client.post(
            "/memories", json={"text": "User likes tea", "context": {"emotional_tone": "furious"}}, headers=OWNER
        )
        assert response.status_code == 400

    def test_update(self, client):
        created = create(client)
        response = client.put(f"/memories/{created['id']}", json={"text": "User loves mountain hiking"}, headers=OWNER)
        assert response.status_code == 200
        assert response.json()["text"] == "User loves mountain hiking"

    def test_update_without_fields_is_400(self, client):
        created = create(client)
        assert client.put(f"/memories/{created['id']}", json={}, headers=OWNER).status_code == 400

    def test_update_other_owner_is_404(self, client):
        created = create(client)
        response = client.put(f"/memories/{created['id']}", json={"text": "mine now"}, headers=OTHER)
        assert response.status_code == 404

    def test_delete_is_idempotent(self, client):
        created = create(client)
        assert client.delete(f"/memories/{created['id']}", headers=OWNER).status_code == 200
        assert client.delete(f"/memories/{created['id']}", headers=OWNER).status_code == 200
        assert client.get(f"/memories/{created['id']}", headers=OWNER).status_code == 404

    def test_list_and_delete_all(self, client):
        create(client, "first")
        create(client, "second")
        create(client, "theirs", headers=OTHER)

        listed = client.get("/memories", params={"limit": 1}, headers=OWNER).json()
        assert listed["count"] == 1
        assert listed["memories"][0]["text"] == "second"

        assert client.delete("/memories", headers=OWNER).json() == {"deleted_count": 2}
        assert client.get("/memories", headers=OTHER).json()["count"] == 1

    def test_list_invalid_order_is_400(self, client):
        response = client.get("/memories", params={"order_by": "mood"}, headers=OWNER)
        assert response.status_code == 400


class TestSearchAndContext:

    def test_search(self, client):
        create(client)
        body = client.get("/memories/search", params={"q": "hiking"}, headers=OWNER).json()
        assert body["count"] == 1
        assert body["results"][0]["similarity"] == pytest.approx(0.8)

    def test_chat_context(self, client):
        create(client)
        response = client.post("/memories/context", json={"query": "hiking"}, headers=OWNER)
        assert response.json() == {"context": "Relevant memories about the user:\n- User loves hiking"}

    def test_stats(self, client):
        create(client)
        body = client.get("/memories/stats", headers=OWNER).json()
        assert body["total_fragments"] == 1
        assert body["oldest_memory"] is not None

    def test_search_parameters(self, client):
        body = client.get("/memories/search-parameters", headers=OWNER).json()
        assert body["strategy"] == "approximate"


class TestExportAndBulkDelete:

    def test_export_json(self, client):
        create(client)
        response = client.get("/memories/export", headers=OWNER)
        assert response.status_code == 200
        assert "attachment; filename=\"memories-export-" in response.headers["content-disposition"]
        assert json.loads(response.text)["export_info"]["total_memories"] == 1

    def test_export_csv(self, client):
        create(client)
        response = client.get("/memories/export", params={"format": "csv"}, headers=OWNER)
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines()[0].startswith("ID,Fragment Text")

    def test_export_bad_format(self, client):
        response = client.get("/memories/export", params={"format": "xml"}, headers=OWNER)
        assert response.status_code == 400

    def test_bulk_delete_filtered(self, client):
        create(client, "User loves hiking")
        create(client, "User owns a red car")

        response = client.post(
            "/memories/bulk-delete",
            json={"action": "delete_filtered", "filters": {"text_contains": "car"}},
            headers=OWNER,
        )

        assert response.json()["deleted_count"] == 1
        assert client.get("/memories", headers=OWNER).json()["count"] == 1

    def test_bulk_delete_requires_filters(self, client):
        response = client.post("/memories/bulk-delete", json={"action": "delete_filtered"}, headers=OWNER)
        assert response.status_code == 400


class TestCapture:

    def test_capture_is_accepted_and_stored(self, app, memory_service, mock_llm_client, fragment_store):
        mock_llm_client.complete.return_value = '["User loves tea"]'

        with TestClient(app) as client:
            response = client.post("/memories/capture", json={"text": "I love tea"}, headers=OWNER)
            assert response.status_code == 202

        # Shutdown drains pending captures
        assert [f.text for f in fragment_store.rows.values()] == ["User loves tea"]

    def test_capture_blank_text_is_400(self, client):
        response = client.post("/memories/capture", json={"text": "  "}, headers=OWNER)
        assert response.status_code == 400


class TestErrorMapping:

    def test_provider_error_is_502(self, client, embedding_client):
        embedding_client.fail = True
        response = client.post("/memories", json={"text": "User likes tea"}, headers=OWNER)
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "provider_error"

    def test_persistence_error_is_500(self, client, fragment_store):
        async def broken(*args, **kwargs):
            raise PersistenceError("list", "database unavailable")

        fragment_store.list_for_owner = broken
        response = client.get("/memories", headers=OWNER)
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "persistence_error"
