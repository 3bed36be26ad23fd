"""Health check endpoints."""
import asyncio
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_identity_cache, get_token_store
from core.identity_cache import IdentityCache
from schemas.fidelity import CamelModel
from services.token_store import TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    database: str
    identity_cache: int
    token_store: int


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    cache: IdentityCache = Depends(get_identity_cache),
    tokens: TokenStore = Depends(get_token_store),
) -> HealthResponse:
    """Check application and database health, with cache and token counts."""
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        database=db_status,
        identity_cache=cache.count,
        token_store=await asyncio.to_thread(tokens.count),
    )
