import logging

from fastapi import APIRouter, Depends

from gateway.database import get_db
from gateway.dependencies import get_dispatcher
from gateway.models.schemas import HealthResponse
from gateway.services.dispatcher import Dispatcher

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Report configured providers. Before the database is initialised the
    status is "starting" rather than an error."""
    configured = [p for p in dispatcher.registry.providers() if dispatcher.is_configured(p)]
    try:
        async with get_db() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM messages")
            message_count = (await cursor.fetchone())[0]
        return HealthResponse(
            status="healthy",
            providers=configured,
            message_count=message_count,
        )
    except Exception as exc:
        logger.warning("Health check: DB not ready yet (%s)", exc)
        return HealthResponse(status="starting", providers=configured)
