"""
Admin API for managing call forwards.

JSON counterpart of the operator UI: list registry entries and create,
read, replace and delete call forwards.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from callforward.models.api_models import (
    CallForwardRequest,
    CallForwardResponse,
    ContextResponse,
    ErrorResponse,
    ExtensionResponse,
)
from callforward.models.call_forward import CallForward
from callforward.services.call_forward_store import CallForwardStore
from callforward.services.registry import Registry
from callforward.utils.exceptions import (
    CallForwardNotFoundException,
    DatabaseException,
    OverlapConflictException,
    UnknownContextException,
    ValidationException,
)
from callforward.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["call-forwards"])

# Global service instances (injected on startup)
store: CallForwardStore = None
registry: Registry = None


def init_handler(call_forward_store: CallForwardStore, call_forward_registry: Registry):
    """
    Initialize handler with the store and registry.

    Args:
        call_forward_store: Call forward store
        call_forward_registry: Registry of extensions and contexts
    """
    global store, registry
    store = call_forward_store
    registry = call_forward_registry


def _error(status_code: int, kind: str, message: str, **extra) -> JSONResponse:
    body = ErrorResponse(error=kind, message=message, **extra)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app) -> None:
    """Translate store errors into structured HTTP errors."""

    @app.exception_handler(UnknownContextException)
    async def unknown_context(request: Request, exc: UnknownContextException):
        return _error(400, "unknown_context", str(exc), context=exc.context_name)

    @app.exception_handler(ValidationException)
    async def validation_failed(request: Request, exc: ValidationException):
        return _error(400, "validation", str(exc))

    @app.exception_handler(CallForwardNotFoundException)
    async def not_found(request: Request, exc: CallForwardNotFoundException):
        return _error(404, "not_found", str(exc))

    @app.exception_handler(OverlapConflictException)
    async def overlap(request: Request, exc: OverlapConflictException):
        return _error(
            409,
            "overlap_conflict",
            str(exc),
            source=exc.source.extension_id,
            context=exc.context.protocol_name,
            existing_fwd_id=exc.existing_fwd_id,
        )

    @app.exception_handler(DatabaseException)
    async def database_unavailable(request: Request, exc: DatabaseException):
        logger.error(f"Database error serving {request.url.path}: {exc}")
        return _error(503, "database", "Database unavailable, retry later")


@router.get("/contexts")
async def list_contexts() -> List[ContextResponse]:
    return [ContextResponse.from_context(ctx) for ctx in registry.contexts()]


@router.get("/extensions")
async def list_extensions() -> List[ExtensionResponse]:
    return [ExtensionResponse.from_extension(exten) for exten in registry.extensions()]


@router.get("/call-forwards")
async def list_call_forwards(
    from_extension: Optional[str] = Query(None, min_length=1),
) -> List[CallForwardResponse]:
    """
    List call forwards, optionally only those starting at one extension.
    """
    if from_extension is None:
        forwards = await store.list_all()
    else:
        forwards = await store.list_from(registry.extension(from_extension))
    return [CallForwardResponse.from_call_forward(fwd) for fwd in forwards]


@router.get("/call-forwards/{fwd_id}")
async def get_call_forward(fwd_id: int) -> CallForwardResponse:
    fwd = await store.get(fwd_id)
    return CallForwardResponse.from_call_forward(fwd)


@router.post("/call-forwards", status_code=201)
async def create_call_forward(body: CallForwardRequest) -> CallForwardResponse:
    """
    Create a call forward.

    Returns:
        201 with the stored call forward
        400 for unknown contexts
        409 if another forward from the same extension uses one of the contexts
    """
    draft = CallForward.draft(registry, body.from_extension, body.to_extension, body.contexts)
    created = await store.create(draft)
    return CallForwardResponse.from_call_forward(created)


@router.put("/call-forwards/{fwd_id}")
async def update_call_forward(fwd_id: int, body: CallForwardRequest) -> CallForwardResponse:
    """Replace source, destination and contexts of a call forward."""
    desired = CallForward.draft(
        registry, body.from_extension, body.to_extension, body.contexts
    ).with_id(fwd_id)
    await store.update(desired)
    return CallForwardResponse.from_call_forward(await store.get(fwd_id))


@router.delete("/call-forwards/{fwd_id}", status_code=204)
async def delete_call_forward(fwd_id: int) -> Response:
    await store.delete(fwd_id)
    return Response(status_code=204)
