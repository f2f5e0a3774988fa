from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import require_identity
from app.core.database import get_session_factory
from app.core.errors import error_response
from app.core.logging import DOMAIN_PROGRESS, get_domain_logger
from app.progress.aggregator import ProgressAggregator
from app.schemas.progress import ProgressResponse

router = APIRouter(prefix="/api", tags=["progress"])
logger = get_domain_logger(__name__, DOMAIN_PROGRESS)


def get_progress_aggregator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ProgressAggregator:
    return ProgressAggregator(session_factory)


@router.get("/progress")
async def get_progress(
    request: Request,
    identity: str = Depends(require_identity),
    aggregator: ProgressAggregator = Depends(get_progress_aggregator),
):
    try:
        user = await aggregator.find_user(identity)
        if user is None:
            return error_response(request, code="user_not_found", message="User not found", status_code=404)
        data = await aggregator.build(user)
    except Exception:
        logger.exception("Error fetching progress data | workos_user_id=%s", identity)
        return error_response(request, code="internal_error", message="Internal server error", status_code=500)
    return ProgressResponse(data=data).model_dump(by_alias=True)
