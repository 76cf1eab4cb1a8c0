import os
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.circuit_breaker import CircuitBreakerOpenError
from .core.config import get_settings
from .core.database_pool import close_database_pool, get_primary_pool, initialize_database_pool
from .core.errors import RagRelayError
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.metrics import record_http_request
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import chat, health, metrics
from .services.memory.store import InMemoryMemoryStore, PostgresMemoryStore
from .services.rag.orchestrator import build_orchestrator
from .services.search.vector_store import InMemoryVectorStore, PgVectorStore

# Configure structured logging
# Use JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

configure_tracing()

app = FastAPI(
    title="RagRelay",
    description="Retrieval-augmented chat over multiple LLM providers",
    version="0.1.0",
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


async def build_stores(settings, storage_mode: str = "auto"):
    """
    Pick the conversation and vector stores.

    storage_mode (RAG_STORAGE):
    - "memory": in-process stores, no database
    - "postgres": the database is required; startup fails without it
    - "auto" (unset): the database when reachable, else in-process stores
    """
    storage_mode = storage_mode.lower()
    if storage_mode == "memory":
        logger.info("app_startup_storage_in_memory")
        return InMemoryMemoryStore(), InMemoryVectorStore()

    db_pool_initialized = False
    if settings.database_url:
        db_pool_initialized = await initialize_database_pool(
            settings.database_url, command_timeout=settings.timeout_seconds
        )

    if db_pool_initialized:
        pool = get_primary_pool()
        memory_store = PostgresMemoryStore(pool)
        await memory_store.ensure_schema()
        logger.info("app_startup_database_pool_ready")
        return memory_store, PgVectorStore(pool)

    if storage_mode == "postgres":
        raise RuntimeError("RAG_STORAGE=postgres but the database pool could not be initialized")

    logger.warning(
        "app_startup_database_pool_unavailable",
        message="Using in-memory conversation and vector stores.",
    )
    return InMemoryMemoryStore(), InMemoryVectorStore()


@app.on_event("startup")
async def startup_event():
    """Wire storage and the RAG pipeline."""
    logger.info("app_startup_started")
    settings = get_settings()

    memory_store, vector_store = await build_stores(settings, os.getenv("RAG_STORAGE", "auto"))

    app.state.orchestrator = build_orchestrator(settings, memory_store, vector_store)
    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.aclose()
    await close_database_pool()
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, content: dict) -> JSONResponse:
    trace_id = get_trace_id() or get_trace_id_from_context()
    response = JSONResponse(
        status_code=status_code,
        content={**content, "status_code": status_code, "trace_id": trace_id},
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


# Error handlers
@app.exception_handler(RagRelayError)
async def rag_error_handler(request: Request, exc: RagRelayError):
    """Map pipeline errors to their HTTP status."""
    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.message)
    logger.warning(
        "rag_error",
        status_code=exc.status_code,
        error_code=exc.error_code,
        path=request.url.path,
        **exc.context,
    )
    return _error_response(exc.status_code, {"detail": exc.message, **exc.to_dict()})


@app.exception_handler(CircuitBreakerOpenError)
async def circuit_open_handler(request: Request, exc: CircuitBreakerOpenError):
    set_span_status(StatusCode.ERROR, str(exc))
    logger.warning("circuit_open_rejected", breaker=exc.name, path=request.url.path)
    return _error_response(
        503,
        {"detail": str(exc), "error": "circuit_open", "breaker": exc.name},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    start_time = getattr(request.state, "start_time", time.time())
    duration = time.time() - start_time

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.detail)

    record_http_request(
        method=request.method,
        endpoint=request.url.path,
        status_code=exc.status_code,
        duration_seconds=duration,
    )

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, {"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    record_exception(exc)

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, {"detail": "Internal server error"})


# Include routers
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
