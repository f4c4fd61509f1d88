from fastapi import BackgroundTasks, Depends, HTTPException

from stockledger.database import SessionLocal
from stockledger.errors import (
    BatchValidationError,
    InventoryUpdateError,
    LedgerError,
    NotFound,
    PermissionDenied,
    PersistenceConflict,
)
from stockledger.services.side_effects import SideEffects


def get_session_factory():
    return SessionLocal


def get_side_effects(
    background_tasks: BackgroundTasks, session_factory=Depends(get_session_factory)
) -> SideEffects:
    """Effects queued during the request run after the response is sent."""
    effects = SideEffects(session_factory)
    background_tasks.add_task(effects.run)
    return effects


def to_http(e: LedgerError) -> HTTPException:
    if isinstance(e, BatchValidationError):
        return HTTPException(400, {"error": str(e), "code": e.code, "details": e.errors})
    if isinstance(e, InventoryUpdateError):
        return HTTPException(500, {"error": str(e), "code": e.code, "request_status": e.request_status})
    if isinstance(e, NotFound):
        return HTTPException(404, str(e))
    if isinstance(e, PermissionDenied):
        return HTTPException(403, str(e))
    if isinstance(e, PersistenceConflict):
        return HTTPException(409, str(e))
    return HTTPException(400, str(e))
