"""
API Routes - FastAPI endpoints for ad reward webhooks.

NO DICTIONARIES - All responses use Pydantic models.

Ad networks call these endpoints with GET and sign the query string, so each
handler passes the full request URI through untouched.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_rewards_service
from app.db.session import check_database, get_db
from app.exceptions import (
    BadRequestError,
    ConcurrencyError,
    ForbiddenError,
    InvalidInputError,
    OperationFailedError,
    RewardError,
    ServerError,
)
from app.models.api import HealthResponse, RewardCallbackResponse
from app.models.domain import AdPlatform, GrantOutcome
from app.services.rewards import RewardsService

logger = get_logger(__name__)

router = APIRouter()


async def _process_callback(
    service: RewardsService, platform: AdPlatform, request: Request
) -> GrantOutcome:
    """Run a callback through the rewards service, mapping errors to HTTP statuses."""
    try:
        return await service.process_callback(platform, str(request.url))

    except (InvalidInputError, BadRequestError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc

    except ForbiddenError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    except ConcurrencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Concurrent update, please retry",
        ) from exc

    except (OperationFailedError, ServerError) as exc:
        logger.error("reward_callback_server_failure", platform=platform.value, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Reward processing unavailable",
        ) from exc

    except RewardError as exc:
        logger.error("reward_callback_failed", platform=platform.value, error=str(exc))
        raise HTTPException(
            status_code=exc.http_status,
            detail=str(exc),
        ) from exc


@router.get("/v1/rewards/webhooks/admob", response_model=RewardCallbackResponse)
async def admob_webhook(
    request: Request,
    service: RewardsService = Depends(get_rewards_service),
) -> RewardCallbackResponse:
    """
    AdMob server-side verification callback.

    Query: transaction_id, user_id, custom_data, reward_amount, signature, key_id.
    """
    outcome = await _process_callback(service, AdPlatform.ADMOB, request)
    return RewardCallbackResponse.from_outcome(outcome)


@router.get("/v1/rewards/webhooks/applovin", response_model=RewardCallbackResponse)
async def applovin_webhook(
    request: Request,
    service: RewardsService = Depends(get_rewards_service),
) -> RewardCallbackResponse:
    """
    AppLovin MAX server-to-server reward callback.

    Query: event_id, user_id, ts, signature, reward_type (or custom_data).
    """
    outcome = await _process_callback(service, AdPlatform.APPLOVIN, request)
    return RewardCallbackResponse.from_outcome(outcome)


@router.get("/v1/rewards/webhooks/ironsource", response_class=PlainTextResponse)
async def ironsource_webhook(
    request: Request,
    service: RewardsService = Depends(get_rewards_service),
) -> PlainTextResponse:
    """
    IronSource server-side rewarded video callback.

    Query: appUserId, rewards, eventId, timestamp, signature.
    IronSource expects "<eventId>:OK" as the acknowledgement body.
    """
    outcome = await _process_callback(service, AdPlatform.IRONSOURCE, request)
    return PlainTextResponse(f"{outcome.transaction_id}:OK")


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await check_database(db)

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
