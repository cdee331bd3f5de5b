"""FastAPI web interface for the RAG system."""

import json
import logging
import queue
from collections.abc import Iterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from semantic_rag.config import AppConfig
from semantic_rag.document_loader import TEXT, guess_mime_type
from semantic_rag.errors import (
    CacheError,
    InvalidInputError,
    ProviderError,
    RAGError,
    StoreError,
)
from semantic_rag.events import CATEGORIES, LogBuffer
from semantic_rag.gdrive import DriveSource, sync_folder
from semantic_rag.models import ChatMessage, IngestResult
from semantic_rag.rag_engine import AnswerStream
from semantic_rag.services import Services, build_services

logger = logging.getLogger(__name__)

_config = AppConfig()

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Open the vector indexes and build the pipeline on startup."""
    services = build_services(_config)
    application.state.services = services
    logger.info("Pipeline ready (%d passages indexed)", services.store.count())
    yield


app = FastAPI(
    title="Semantic RAG",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

router = APIRouter(prefix="/api/v1")


def get_services(request: Request) -> Services:
    """FastAPI dependency: return the pipeline services from app state."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return services


_STATUS = {
    InvalidInputError: 400,
    ProviderError: 502,
    StoreError: 503,
    CacheError: 503,
}


@app.exception_handler(RAGError)
async def _rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    status = next((code for cls, code in _STATUS.items() if isinstance(exc, cls)), 500)
    services = getattr(request.app.state, "services", None)
    if services is not None:
        services.events.publish(
            "error",
            "system",
            f"Request failed: {request.method} {request.url.path}",
            {"error": str(exc), "type": type(exc).__name__},
        )
    if status == 400:
        return JSONResponse(status_code=status, content={"error": str(exc)})
    return JSONResponse(
        status_code=status,
        content={"error": "An error occurred processing your request"},
    )


class MessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    messages: list[MessageIn]


class IngestResultOut(BaseModel):
    filename: str
    status: str
    chunks: int = 0
    reason: str | None = None


class IngestResponse(BaseModel):
    results: list[IngestResultOut]


class CountResponse(BaseModel):
    count: int


class DeleteResponse(BaseModel):
    success: bool
    removed: int


class CacheStatsResponse(BaseModel):
    total_entries: int
    index: str
    ttl_seconds: int


class GDriveSyncRequest(BaseModel):
    folder_id: str | None = None


class GDriveSyncResponse(BaseModel):
    message: str
    results: list[IngestResultOut]


class HealthResponse(BaseModel):
    status: str
    ollama_connected: bool
    documents: int


def _sse_events(stream: AnswerStream) -> Iterator[str]:
    """Encode answer events as Server-Sent Events."""
    try:
        for event in stream:
            if event.kind == "cache_hit":
                payload = {"content": event.text, "cached": True, "similarity": event.similarity}
            elif event.kind == "delta":
                payload = {"content": event.text}
            elif event.kind == "error":
                payload = {"error": event.text}
            else:
                continue
            yield f"data: {json.dumps(payload)}\n\n"
        yield "data: [DONE]\n\n"
    finally:
        # The client may have disconnected before the stream finished.
        stream.cancel()


@router.post("/chat")
def api_chat(body: ChatRequest, services: Services = Depends(get_services)):
    messages = [ChatMessage(role=m.role, content=m.content) for m in body.messages]
    stream = services.engine.answer(messages, services.settings.get())
    return StreamingResponse(
        _sse_events(stream),
        media_type="text/event-stream",
        headers={"X-Cache": "HIT" if stream.cached else "MISS", "Cache-Control": "no-cache"},
    )


def _to_out(result: IngestResult) -> IngestResultOut:
    return IngestResultOut(
        filename=result.filename,
        status=result.status,
        chunks=result.chunks,
        reason=result.reason,
    )


@router.post("/ingest", response_model=IngestResponse)
def api_ingest(files: list[UploadFile], services: Services = Depends(get_services)):
    if not files:
        raise InvalidInputError("No files provided")

    results: list[IngestResultOut] = []
    accepted: list[tuple[bytes, str, str]] = []
    for file in files:
        filename = file.filename or "upload"
        data = file.file.read(MAX_UPLOAD_BYTES + 1)
        if len(data) > MAX_UPLOAD_BYTES:
            results.append(
                IngestResultOut(filename=filename, status="error", reason="File too large")
            )
            continue
        mime_type = file.content_type
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = guess_mime_type(filename) or TEXT
        accepted.append((data, filename, mime_type))

    results.extend(_to_out(r) for r in services.ingestor.ingest_files(accepted))
    return IngestResponse(results=results)


@router.get("/documents", response_model=CountResponse)
def api_document_count(services: Services = Depends(get_services)):
    return CountResponse(count=services.store.count())


@router.delete("/documents", response_model=DeleteResponse)
def api_delete_documents(services: Services = Depends(get_services)):
    removed = services.store.delete_all()
    services.events.publish("info", "system", f"Deleted {removed} passages")
    return DeleteResponse(success=True, removed=removed)


@router.get("/cache", response_model=CacheStatsResponse)
def api_cache_stats(services: Services = Depends(get_services)):
    return CacheStatsResponse(**services.cache.stats())


@router.delete("/cache", response_model=DeleteResponse)
def api_clear_cache(services: Services = Depends(get_services)):
    return DeleteResponse(success=True, removed=services.cache.clear())


@router.get("/settings")
def api_get_settings(services: Services = Depends(get_services)):
    return services.settings.get().model_dump()


@router.post("/settings")
def api_update_settings(body: dict, services: Services = Depends(get_services)):
    return services.settings.update(body).model_dump()


@router.delete("/settings")
def api_reset_settings(services: Services = Depends(get_services)):
    return services.settings.reset().model_dump()


@router.get("/logs")
def api_logs(
    limit: int = 100,
    category: str | None = None,
    services: Services = Depends(get_services),
):
    if category is not None and category not in CATEGORIES:
        raise InvalidInputError(f"Unknown category: {category}")
    if limit < 1:
        raise InvalidInputError("limit must be positive")
    return {"logs": [e.to_dict() for e in services.events.entries(limit, category)]}


@router.delete("/logs")
def api_clear_logs(services: Services = Depends(get_services)):
    services.events.clear()
    return {"success": True}


def _log_stream(
    events: LogBuffer, category: str | None, idle_timeout: float
) -> Iterator[str]:
    """Replay retained events, then forward new ones as Server-Sent Events.

    The stream ends once *idle_timeout* seconds pass without a new event;
    EventSource clients reconnect on their own.
    """
    q = events.subscribe()
    try:
        backlog = events.entries(category=category)
        seen = {e.id for e in backlog}
        for event in backlog:
            yield f"data: {json.dumps(event.to_dict())}\n\n"
        while True:
            try:
                event = q.get(timeout=idle_timeout)
            except queue.Empty:
                break
            if event.id in seen or (category and event.category != category):
                continue
            yield f"data: {json.dumps(event.to_dict())}\n\n"
    finally:
        events.unsubscribe(q)


@router.get("/logs/stream")
def api_stream_logs(
    category: str | None = None,
    timeout: float = 30.0,
    services: Services = Depends(get_services),
):
    if category is not None and category not in CATEGORIES:
        raise InvalidInputError(f"Unknown category: {category}")
    if not 0 < timeout <= 300:
        raise InvalidInputError("timeout must be between 0 and 300 seconds")
    return StreamingResponse(
        _log_stream(services.events, category, timeout),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def _require_drive(services: Services) -> DriveSource:
    if services.drive is None:
        raise HTTPException(status_code=503, detail="Google Drive is not configured")
    return services.drive


@router.get("/gdrive")
def api_gdrive_files(folder_id: str | None = None, services: Services = Depends(get_services)):
    drive = _require_drive(services)
    return {"files": [f.to_dict() for f in drive.list_files(folder_id)]}


@router.post("/gdrive", response_model=GDriveSyncResponse)
def api_gdrive_sync(
    body: GDriveSyncRequest | None = None,
    services: Services = Depends(get_services),
):
    drive = _require_drive(services)
    folder_id = body.folder_id if body else None
    results = sync_folder(drive, services.ingestor, services.events, folder_id)
    if not results:
        return GDriveSyncResponse(message="No supported files found in folder", results=[])
    succeeded = sum(1 for r in results if r.status == "success")
    return GDriveSyncResponse(
        message=f"Processed {succeeded} files",
        results=[_to_out(r) for r in results],
    )


@router.get("/health", response_model=HealthResponse)
def api_health(services: Services = Depends(get_services)):
    connected = True
    try:
        import ollama

        ollama.list()
    except Exception:
        connected = False

    return HealthResponse(
        status="healthy" if connected else "degraded",
        ollama_connected=connected,
        documents=services.store.count(),
    )


app.include_router(router)
