import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.api import (
    auth,
    notifications,
    orders,
    products,
    projects,
    racks,
    reports,
    stock_adjustments,
    stock_management,
)
from stockledger.api.dependencies import to_http
from stockledger.config import settings
from stockledger.database import SessionLocal, init_db
from stockledger.errors import LedgerError
from stockledger.services.auth_service import ensure_default_admin

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # Create default admin if no users
    db = SessionLocal()
    try:
        ensure_default_admin(db)
    finally:
        db.close()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Rack-level stock ledger: movements, order approval, stock adjustments and activity feed",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    http = to_http(exc)
    return JSONResponse(status_code=http.status_code, content={"detail": http.detail})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so clients can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(auth.router, prefix="/api/v1")
app.include_router(products.router, prefix="/api/v1")
app.include_router(projects.router, prefix="/api/v1")
app.include_router(racks.router, prefix="/api/v1")
app.include_router(stock_management.router, prefix="/api/v1")
app.include_router(orders.router, prefix="/api/v1")
app.include_router(stock_adjustments.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(reports.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
