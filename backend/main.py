# backend/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import get_db, init_db
from services.maintenance import create_scheduler
from utils.errors import InventoryError
from utils.idempotency import DuplicatePreventionMiddleware, IdempotencyStore
from utils.retry import is_retryable_error, is_uniqueness_conflict

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Router imports
from routes.logs import router as logs_router
from routes.products import router as products_router
from routes.stock import router as stock_router
from routes.inventory import router as inventory_router
from routes.operations import router as operations_router

# Shared by the middleware and the periodic sweep
idempotency_store = IdempotencyStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = create_scheduler(idempotency_store)
        scheduler.start()
        logger.info("Maintenance scheduler started (reservation sweep every %s min)",
                    settings.RESERVATION_SWEEP_MINUTES)
    yield
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")


app = FastAPI(title="Inventory Ledger API", version="1.0.0", lifespan=lifespan)

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    DuplicatePreventionMiddleware,
    store=idempotency_store,
    window_seconds=settings.IDEMPOTENCY_WINDOW_SECONDS,
    path_windows={"/operations/sales": settings.IDEMPOTENCY_POS_WINDOW_SECONDS},
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handlers ---
def _server_error(exc: Exception, code: str = None) -> JSONResponse:
    body = {"success": False, "message": "Server error"}
    if code:
        body["code"] = code
    if settings.ENVIRONMENT == "development":
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    if is_uniqueness_conflict(exc):
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Duplicate entry", "code": "DUPLICATE_ENTRY"},
        )
    logger.exception("Integrity error on %s %s", request.method, request.url.path)
    return _server_error(exc)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _server_error(exc, "WRITE_CONFLICT" if is_retryable_error(exc) else None)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _server_error(exc)


# Router registration
app.include_router(products_router)
app.include_router(stock_router)
app.include_router(inventory_router)
app.include_router(operations_router)
app.include_router(logs_router)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok", "idempotency_entries": len(idempotency_store)}


@app.get("/")
def read_root():
    return {"message": "Inventory Ledger API is running"}
