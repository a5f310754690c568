from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from hnreader.api.dependencies import require_auth
from hnreader.api.schemas.stories import HealthResponse
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"], dependencies=[Depends(require_auth)])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check with database connectivity and worker status"""
    state = request.app.state
    try:
        await state.store.ping()
        stories_count = await state.store.count_items()
        last_poll = await state.store.max_fetched_at()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(e)},
        )

    return HealthResponse(
        status="ok",
        stories_count=stories_count,
        last_poll=last_poll or None,
        subscribers=state.broker.subscriber_count,
        toplist_size=len(state.toplist),
    )
