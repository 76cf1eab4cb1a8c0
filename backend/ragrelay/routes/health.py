"""
Health check endpoints.
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ragrelay.core.database_pool import get_primary_pool
from ragrelay.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness: the database pool answers a trivial query.

    Without a configured pool the service runs on in-memory stores and is
    reported ready in that mode.
    """
    pool = get_primary_pool()
    if pool is None:
        return {"status": "ok", "database": "not_configured", "storage": "in_memory"}

    try:
        async with pool.acquire() as connection:
            await connection.fetchval("SELECT 1")
    except Exception as e:
        logger.warning(
            "readiness_database_unreachable",
            error=str(e),
            error_type=type(e).__name__,
        )
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "unreachable"},
        )

    return {"status": "ok", "database": "ok", "storage": "postgres"}
