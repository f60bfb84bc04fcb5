from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from typing import Optional
from contextlib import asynccontextmanager
import time
import logging

from ..memory.exceptions import MemorySystemError, ValidationError
from ..memory.models import FragmentContext, validate_owner_id
from ..memory.services import BulkDeleteFilters, BulkDeleteRequest, MemoryService
from .errors import ErrorCode, create_error_response, create_not_found_error, error_from_exception
from .models import (
    BulkDeleteBody,
    CaptureRequest,
    ChatContextRequest,
    CreateMemoryRequest,
    UpdateMemoryRequest,
)


def get_owner_id(x_owner_id: str = Header(default="", alias="X-Owner-Id")) -> str:
    """Owner identity supplied by the upstream auth layer."""
    return validate_owner_id(x_owner_id.strip())


def create_app(
    memory_service: MemoryService,
    server_config: dict,
    drain_timeout: Optional[float] = 10.0
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        memory_service: Memory facade serving every route
        server_config: Server configuration dictionary
        drain_timeout: Seconds to wait for background captures on shutdown

    Returns:
        Configured FastAPI application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.info("FastAPI application starting up")
        yield
        logging.info("FastAPI shutdown: draining background captures")
        await memory_service.shutdown(drain_timeout)
        logging.info("Shutdown cleanup completed")

    app = FastAPI(
        title=server_config.get('title', 'Companion Memory Service'),
        version=server_config.get('version', '1.0.0'),
        lifespan=lifespan
    )
    app.state.memory_service = memory_service

    @app.exception_handler(MemorySystemError)
    async def memory_error_handler(request: Request, exc: MemorySystemError):
        status, body = error_from_exception(exc)
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        body = create_error_response(
            ErrorCode.VALIDATION_ERROR,
            "Invalid request",
            {"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]},
            log_error=False
        )
        return JSONResponse(status_code=400, content=body)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status."""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "service": "Companion Memory Service",
            "version": server_config.get('version', '1.0.0'),
            "pending_captures": memory_service.background_runner.pending
        }

    @app.get("/memories")
    async def list_memories(
        owner_id: str = Depends(get_owner_id),
        limit: int = Query(default=100, ge=0),
        offset: int = Query(default=0, ge=0),
        order_by: str = "created_at",
        order_direction: str = "desc",
        scope_id: Optional[str] = None
    ):
        memories = await memory_service.list_memories(
            owner_id, limit=limit, offset=offset, order_by=order_by,
            order_direction=order_direction, scope_id=scope_id
        )
        return {
            "memories": [m.to_dict() for m in memories],
            "count": len(memories),
            "limit": limit,
            "offset": offset
        }

    @app.post("/memories", status_code=201)
    async def create_memory(body: CreateMemoryRequest, owner_id: str = Depends(get_owner_id)):
        context = FragmentContext.from_dict(body.context) if body.context is not None else None
        fragment = await memory_service.create_memory(body.text, owner_id, context, scope_id=body.scope_id)
        return fragment.to_dict()

    @app.delete("/memories")
    async def delete_all_memories(owner_id: str = Depends(get_owner_id), scope_id: Optional[str] = None):
        deleted = await memory_service.delete_all_memories(owner_id, scope_id)
        return {"deleted_count": deleted}

    @app.get("/memories/search")
    async def search_memories(
        q: str,
        owner_id: str = Depends(get_owner_id),
        limit: int = Query(default=10, ge=0),
        threshold: float = Query(default=0.7, ge=0.0, le=1.0),
        scope_id: Optional[str] = None
    ):
        results = await memory_service.search_memories(
            q, owner_id, limit=limit, similarity_threshold=threshold, scope_id=scope_id
        )
        return {"results": [r.to_dict() for r in results], "count": len(results)}

    @app.get("/memories/stats")
    async def memory_stats(owner_id: str = Depends(get_owner_id), scope_id: Optional[str] = None):
        stats = await memory_service.get_stats(owner_id, scope_id)
        return stats.to_dict()

    @app.get("/memories/search-parameters")
    async def search_parameters(owner_id: str = Depends(get_owner_id), scope_id: Optional[str] = None):
        params = await memory_service.recommend_search_parameters(owner_id, scope_id)
        return params.to_dict()

    @app.get("/memories/export")
    async def export_memories(
        owner_id: str = Depends(get_owner_id),
        format: str = "json",
        include_embeddings: bool = False,
        scope_id: Optional[str] = None
    ):
        result = await memory_service.export_memories(owner_id, format, include_embeddings, scope_id)
        return Response(
            content=result.content,
            media_type=result.media_type,
            headers={"Content-Disposition": f'attachment; filename="{result.filename}"'}
        )

    @app.post("/memories/bulk-delete")
    async def bulk_delete(
        body: BulkDeleteBody,
        owner_id: str = Depends(get_owner_id),
        scope_id: Optional[str] = None
    ):
        request = BulkDeleteRequest(action=body.action, filters=BulkDeleteFilters.from_dict(body.filters))
        result = await memory_service.bulk_delete(owner_id, request, scope_id)
        return result.to_dict()

    @app.post("/memories/capture", status_code=202)
    async def capture_memories(body: CaptureRequest, owner_id: str = Depends(get_owner_id)):
        if not body.text.strip():
            raise ValidationError('text', "message cannot be empty")
        memory_service.capture_in_background(
            body.text, owner_id, body.context,
            scope_id=body.scope_id, extraction_threshold=body.extraction_threshold
        )
        return {"status": "accepted"}

    @app.post("/memories/context")
    async def chat_context(body: ChatContextRequest, owner_id: str = Depends(get_owner_id)):
        context = await memory_service.get_memories_for_chat(
            body.query, owner_id, max_memories=body.max_memories, scope_id=body.scope_id
        )
        return {"context": context}

    @app.get("/memories/{fragment_id}")
    async def get_memory(fragment_id: str, owner_id: str = Depends(get_owner_id)):
        fragment = await memory_service.get_memory(fragment_id, owner_id)
        if fragment is None:
            return JSONResponse(status_code=404, content=create_not_found_error("Memory", fragment_id))
        return fragment.to_dict()

    @app.put("/memories/{fragment_id}")
    async def update_memory(
        fragment_id: str,
        body: UpdateMemoryRequest,
        owner_id: str = Depends(get_owner_id)
    ):
        context = FragmentContext.from_dict(body.context) if body.context is not None else None
        updated = await memory_service.update_memory(fragment_id, owner_id, text=body.text, context=context)
        if not updated:
            return JSONResponse(status_code=404, content=create_not_found_error("Memory", fragment_id))
        fragment = await memory_service.get_memory(fragment_id, owner_id)
        return fragment.to_dict() if fragment else {"id": fragment_id}

    @app.delete("/memories/{fragment_id}")
    async def delete_memory(fragment_id: str, owner_id: str = Depends(get_owner_id)):
        await memory_service.delete_memory(fragment_id, owner_id)
        return {"deleted": True, "id": fragment_id}

    return app
