"""Unit tests for the FastAPI web interface."""

import io
import json
from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from semantic_rag.document_loader import PDF, TEXT
from semantic_rag.errors import InvalidInputError, ProviderError, StoreError
from semantic_rag.gdrive import DriveFile
from semantic_rag.rag_engine import GENERIC_ERROR
from semantic_rag.web import _log_stream

from conftest import ollama_chunks


@asynccontextmanager
async def _noop_lifespan(app):
    yield


@pytest.fixture(autouse=True)
def _app(services):
    """Swap the lifespan for a no-op and inject test services into app state.

    TestClient would otherwise open a real ChromaDB under ./chroma_db and
    talk to Ollama on startup.
    """
    import semantic_rag.web as web

    original_lifespan = web.app.router.lifespan_context
    web.app.router.lifespan_context = _noop_lifespan
    web.app.state.services = services

    yield web

    web.app.router.lifespan_context = original_lifespan
    if hasattr(web.app.state, "services"):
        del web.app.state.services


@pytest.fixture
def client():
    import semantic_rag.web as web

    with TestClient(web.app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def mock_chat():
    with patch("semantic_rag.generation.ollama") as mock_ollama:
        mock_ollama.chat.side_effect = lambda **kwargs: iter(
            ollama_chunks("The sky ", "is blue.")
        )
        yield mock_ollama.chat


def _sse_payloads(text: str) -> list:
    payloads = []
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


def _ask(client, question: str):
    return client.post(
        "/api/v1/chat",
        json={"messages": [{"role": "user", "content": question}]},
    )


# ---------- Health endpoint ----------


class TestHealth:
    def test_healthy_when_ollama_reachable(self, client):
        with patch("ollama.list", return_value={"models": []}):
            resp = client.get("/api/v1/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["ollama_connected"] is True

    def test_degraded_when_ollama_unreachable(self, client):
        with patch("ollama.list", side_effect=Exception("connection refused")):
            resp = client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"
        assert resp.json()["ollama_connected"] is False

    def test_returns_document_count(self, client, services):
        services.ingestor.index_text("The sky is blue.", "sky.txt")
        with patch("ollama.list"):
            resp = client.get("/api/v1/health")

        assert resp.json()["documents"] == 1

    def test_503_before_startup(self, client, _app):
        del _app.app.state.services
        resp = client.get("/api/v1/health")
        assert resp.status_code == 503


# ---------- Chat endpoint ----------


class TestChat:
    def test_streams_sse_deltas(self, client, mock_chat):
        resp = _ask(client, "What color is the sky?")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["x-cache"] == "MISS"
        payloads = _sse_payloads(resp.text)
        assert payloads == [{"content": "The sky "}, {"content": "is blue."}, "[DONE]"]

    def test_second_identical_request_is_cache_hit(self, client, mock_chat):
        _ask(client, "What color is the sky?")
        resp = _ask(client, "What color is the sky?")

        assert resp.headers["x-cache"] == "HIT"
        payloads = _sse_payloads(resp.text)
        assert payloads[0]["content"] == "The sky is blue."
        assert payloads[0]["cached"] is True
        assert payloads[0]["similarity"] >= 0.95
        assert payloads[-1] == "[DONE]"
        assert mock_chat.call_count == 1

    def test_cache_disabled_by_settings(self, client, mock_chat):
        client.post("/api/v1/settings", json={"cache": {"enabled": False}})
        _ask(client, "What color is the sky?")
        resp = _ask(client, "What color is the sky?")

        assert resp.headers["x-cache"] == "MISS"
        assert mock_chat.call_count == 2

    def test_generation_failure_is_terminal_error_event(self, client):
        with patch("semantic_rag.generation.ollama") as mock_ollama:
            mock_ollama.chat.side_effect = ConnectionError("refused")
            resp = _ask(client, "What color is the sky?")

        assert resp.status_code == 200
        assert _sse_payloads(resp.text) == [{"error": GENERIC_ERROR}, "[DONE]"]

    def test_empty_messages_is_400(self, client):
        resp = client.post("/api/v1/chat", json={"messages": []})
        assert resp.status_code == 400
        assert resp.json() == {"error": "No messages provided"}

    def test_blank_user_message_is_400(self, client):
        resp = _ask(client, "   ")
        assert resp.status_code == 400

    def test_invalid_role_is_422(self, client):
        resp = client.post(
            "/api/v1/chat", json={"messages": [{"role": "robot", "content": "hi"}]}
        )
        assert resp.status_code == 422

    def test_embedding_failure_is_502(self, client, services):
        services.engine.embedder = MagicMock()
        services.engine.embedder.embed.side_effect = ProviderError("ollama down")

        resp = _ask(client, "What color is the sky?")

        assert resp.status_code == 502
        assert resp.json() == {"error": GENERIC_ERROR}
        assert services.events.entries(category="system")[-1].level == "error"

    def test_store_failure_is_503(self, client, services):
        services.engine.store = MagicMock()
        services.engine.store.search.side_effect = StoreError("unreachable")

        resp = _ask(client, "What color is the sky?")

        assert resp.status_code == 503
        assert "unreachable" not in resp.text


# ---------- Ingest endpoint ----------


class TestIngest:
    def _file(self, name: str, content: bytes, mime: str = "application/octet-stream"):
        return ("files", (name, io.BytesIO(content), mime))

    def test_ingests_text_file(self, client, services):
        resp = client.post(
            "/api/v1/ingest",
            files=[self._file("sky.txt", b"The sky is blue.", "text/plain")],
        )

        assert resp.status_code == 200
        result = resp.json()["results"][0]
        assert result["filename"] == "sky.txt"
        assert result["status"] == "success"
        assert result["chunks"] == 1
        assert services.store.count() == 1

    def test_octet_stream_falls_back_to_extension(self, client):
        resp = client.post(
            "/api/v1/ingest",
            files=[self._file("notes.md", b"# Title\n\nGrass is **green**.")],
        )
        assert resp.json()["results"][0]["status"] == "success"

    def test_per_file_results(self, client, services):
        resp = client.post(
            "/api/v1/ingest",
            files=[
                self._file("photo.png", b"\x89PNG", "image/png"),
                self._file("ok.txt", b"Still indexed.", "text/plain"),
            ],
        )

        statuses = [(r["filename"], r["status"]) for r in resp.json()["results"]]
        assert statuses == [("photo.png", "error"), ("ok.txt", "success")]
        assert services.store.count() == 1

    def test_oversized_file_rejected(self, client, services):
        with patch("semantic_rag.web.MAX_UPLOAD_BYTES", 10):
            resp = client.post(
                "/api/v1/ingest",
                files=[self._file("big.txt", b"x" * 11, "text/plain")],
            )

        result = resp.json()["results"][0]
        assert result["status"] == "error"
        assert result["reason"] == "File too large"
        assert services.store.count() == 0

    def test_no_files_is_rejected(self, client):
        resp = client.post("/api/v1/ingest")
        assert resp.status_code == 422


# ---------- Documents endpoint ----------


class TestDocuments:
    def test_count(self, client, services):
        services.ingestor.index_text("The sky is blue.", "sky.txt")
        resp = client.get("/api/v1/documents")
        assert resp.json() == {"count": 1}

    def test_delete_all(self, client, services):
        services.ingestor.index_text("The sky is blue.", "sky.txt")
        services.ingestor.index_text("Grass is green.", "grass.txt")

        resp = client.delete("/api/v1/documents")

        assert resp.json() == {"success": True, "removed": 2}
        assert services.store.count() == 0


# ---------- Cache endpoint ----------


class TestCache:
    def test_stats(self, client, services):
        services.cache.store("Q?", "A.")
        data = client.get("/api/v1/cache").json()
        assert data == {"total_entries": 1, "index": "test_cache", "ttl_seconds": 0}

    def test_clear(self, client, services):
        services.cache.store("Q?", "A.")
        resp = client.delete("/api/v1/cache")
        assert resp.json() == {"success": True, "removed": 1}
        assert client.get("/api/v1/cache").json()["total_entries"] == 0


# ---------- Settings endpoint ----------


class TestSettings:
    def test_get_defaults(self, client):
        data = client.get("/api/v1/settings").json()
        assert data["retrieval"]["top_k"] == 5
        assert data["cache"]["similarity_threshold"] == 0.95

    def test_partial_update(self, client, services):
        resp = client.post("/api/v1/settings", json={"retrieval": {"top_k": 3}})

        assert resp.status_code == 200
        assert resp.json()["retrieval"]["top_k"] == 3
        assert resp.json()["retrieval"]["score_threshold"] == 0.7
        assert services.settings.get().retrieval.top_k == 3

    def test_invalid_update_is_400(self, client, services):
        resp = client.post("/api/v1/settings", json={"retrieval": {"top_k": 0}})
        assert resp.status_code == 400
        assert services.settings.get().retrieval.top_k == 5

    def test_reset(self, client):
        client.post("/api/v1/settings", json={"retrieval": {"top_k": 3}})
        resp = client.delete("/api/v1/settings")
        assert resp.json()["retrieval"]["top_k"] == 5


# ---------- Logs endpoint ----------


class TestLogs:
    def test_lists_events(self, client, services):
        services.events.publish("info", "cache", "Cache MISS")
        logs = client.get("/api/v1/logs").json()["logs"]
        assert logs[-1]["message"] == "Cache MISS"
        assert logs[-1]["category"] == "cache"

    def test_filters_by_category(self, client, services):
        services.events.publish("info", "cache", "a")
        services.events.publish("info", "llm", "b")
        logs = client.get("/api/v1/logs", params={"category": "llm"}).json()["logs"]
        assert [e["message"] for e in logs] == ["b"]

    def test_unknown_category_is_400(self, client):
        resp = client.get("/api/v1/logs", params={"category": "metrics"})
        assert resp.status_code == 400

    def test_limit(self, client, services):
        for i in range(5):
            services.events.publish("info", "system", str(i))
        logs = client.get("/api/v1/logs", params={"limit": 2}).json()["logs"]
        assert [e["message"] for e in logs] == ["3", "4"]

    def test_clear(self, client, services):
        services.events.publish("info", "system", "x")
        assert client.delete("/api/v1/logs").json() == {"success": True}
        assert services.events.entries() == []


# ---------- Log stream ----------


class TestLogStream:
    def test_replays_then_follows(self, services):
        services.events.publish("info", "system", "before")
        stream = _log_stream(services.events, None, 0.05)

        first = next(stream)
        services.events.publish("info", "cache", "after")
        rest = list(stream)

        assert json.loads(first[len("data: "):])["message"] == "before"
        assert [json.loads(s[len("data: "):])["message"] for s in rest] == ["after"]
        assert services.events.subscriber_count == 0

    def test_category_filter_applies_to_live_events(self, services):
        services.events.publish("info", "llm", "backlog")
        stream = _log_stream(services.events, "llm", 0.05)

        next(stream)
        services.events.publish("info", "cache", "skipped")
        services.events.publish("info", "llm", "kept")

        assert [json.loads(s[len("data: "):])["message"] for s in stream] == ["kept"]

    def test_closing_unsubscribes(self, services):
        services.events.publish("info", "system", "x")
        stream = _log_stream(services.events, None, 5.0)
        next(stream)
        assert services.events.subscriber_count == 1

        stream.close()

        assert services.events.subscriber_count == 0

    def test_endpoint_streams_retained_events(self, client, services):
        services.events.publish("warning", "cache", "Cache store failed")

        resp = client.get("/api/v1/logs/stream", params={"timeout": 0.05})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        payloads = _sse_payloads(resp.text)
        assert payloads[-1]["message"] == "Cache store failed"

    def test_endpoint_rejects_unknown_category(self, client):
        resp = client.get("/api/v1/logs/stream", params={"category": "metrics"})
        assert resp.status_code == 400

    def test_endpoint_rejects_bad_timeout(self, client):
        resp = client.get("/api/v1/logs/stream", params={"timeout": 0})
        assert resp.status_code == 400


# ---------- Google Drive endpoints ----------


class TestGDrive:
    @pytest.fixture
    def drive(self, services):
        drive = MagicMock()
        services.drive = drive
        return drive

    def test_not_configured_is_503(self, client):
        assert client.get("/api/v1/gdrive").status_code == 503
        assert client.post("/api/v1/gdrive", json={}).status_code == 503

    def test_lists_files(self, client, drive):
        drive.list_files.return_value = [DriveFile("1", "sky.txt", TEXT, 16)]

        resp = client.get("/api/v1/gdrive", params={"folder_id": "folder-1"})

        assert resp.json() == {
            "files": [{"id": "1", "name": "sky.txt", "mime_type": TEXT, "size": 16}]
        }
        drive.list_files.assert_called_once_with("folder-1")

    def test_missing_folder_is_400(self, client, drive):
        drive.list_files.side_effect = InvalidInputError("No folder ID provided")
        assert client.get("/api/v1/gdrive").status_code == 400

    def test_listing_failure_is_502(self, client, drive):
        drive.list_files.side_effect = ProviderError("Drive listing failed: 403")
        resp = client.get("/api/v1/gdrive")
        assert resp.status_code == 502
        assert "403" not in resp.text

    def test_sync_ingests_folder(self, client, drive, services):
        drive.list_files.return_value = [
            DriveFile("1", "sky.txt", TEXT),
            DriveFile("2", "gone.pdf", PDF),
        ]
        drive.download.side_effect = [b"The sky is blue.", ProviderError("Drive download failed")]

        resp = client.post("/api/v1/gdrive", json={"folder_id": "folder-1"})

        data = resp.json()
        assert data["message"] == "Processed 1 files"
        assert [(r["filename"], r["status"]) for r in data["results"]] == [
            ("sky.txt", "success"),
            ("gone.pdf", "error"),
        ]
        assert services.store.count() == 1
        drive.list_files.assert_called_once_with("folder-1")

    def test_sync_without_body_uses_default_folder(self, client, drive):
        drive.list_files.return_value = []

        resp = client.post("/api/v1/gdrive")

        assert resp.json() == {"message": "No supported files found in folder", "results": []}
        drive.list_files.assert_called_once_with(None)
