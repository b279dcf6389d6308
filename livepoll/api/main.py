"""
FastAPI application exposing the LivePoll voting core.

Voters cast one vote per poll per identity; administrators (X-User-Role:
ADMIN) read the moderation history and release identities.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from livepoll.api.config import Settings, settings
from livepoll.api.models import (
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    OperationResponse,
    PollResponse,
    ReleaseRequest,
    VoteRequest,
    VoterStatusResponse,
)
from livepoll.engine import DEFAULT_POLLS, VotingEngine, VotingError, load_polls_file
from livepoll.engine.history import identity_statuses
from livepoll.engine.voting import OperationResult
from livepoll.shared.models import UserRole
from livepoll.storage import StorageError, create_storage

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
request_duration = Histogram(
    "livepoll_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

# The limiter is process-wide; create_app() points it at its own settings
rate_limit_settings = settings

ERROR_STATUS_CODES = {
    "PollNotFound": status.HTTP_404_NOT_FOUND,
    "OptionNotFound": status.HTTP_404_NOT_FOUND,
    "PollClosed": status.HTTP_409_CONFLICT,
    "AlreadyVoted": status.HTTP_409_CONFLICT,
    "NoActiveVote": status.HTTP_409_CONFLICT,
    "IntegrityFault": status.HTTP_409_CONFLICT,
}


def build_engine(app_settings: Settings) -> VotingEngine:
    """Create the storage backend, seed the catalog and wrap both in an engine."""
    storage = create_storage(app_settings)
    engine = VotingEngine(
        storage,
        enforce_option_check=app_settings.ENFORCE_OPTION_CHECK,
        enforce_active_polls=app_settings.ENFORCE_ACTIVE_POLLS,
    )

    if app_settings.POLLS_FILE:
        polls = load_polls_file(app_settings.POLLS_FILE)
        logger.info(f"Loaded {len(polls)} polls from {app_settings.POLLS_FILE}")
    elif app_settings.SEED_DEFAULT_POLLS:
        polls = DEFAULT_POLLS
    else:
        polls = []
    engine.catalog.seed(polls)

    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    app_settings = app.state.settings
    logger.info(f"Starting {app_settings.SERVICE_NAME} service...")

    if app.state.engine is None:
        try:
            app.state.engine = build_engine(app_settings)
            logger.info(
                f"{app_settings.SERVICE_NAME} started with "
                f"{app.state.engine.storage.name} storage"
            )
        except Exception as e:
            logger.error(f"Failed to start {app_settings.SERVICE_NAME}: {e}")
            raise

    yield

    logger.info(f"Shutting down {app_settings.SERVICE_NAME} service...")
    try:
        app.state.engine.storage.close()
        logger.info(f"{app_settings.SERVICE_NAME} shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


def get_engine(request: Request) -> VotingEngine:
    return request.app.state.engine


def require_admin(x_user_role: Optional[str] = Header(default=None)) -> UserRole:
    """Allow the request only when the caller carries the ADMIN role flag."""
    try:
        role = UserRole((x_user_role or "").upper())
    except ValueError:
        role = UserRole.GUEST

    if role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required"
        )
    return role


def operation_response(result: OperationResult) -> JSONResponse:
    status_code = status.HTTP_200_OK
    if not result.success:
        status_code = ERROR_STATUS_CODES.get(result.error, status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content=result.to_dict())


router = APIRouter()


@router.get("/polls", response_model=list[PollResponse])
def list_polls(engine: VotingEngine = Depends(get_engine)):
    """List every poll with vote counts projected from active votes."""
    return [poll_results.to_dict() for poll_results in engine.list_polls()]


@router.get(
    "/polls/{poll_id}/results",
    response_model=PollResponse,
    responses={404: {"model": ErrorResponse, "description": "Poll not found"}}
)
def get_results(poll_id: str, engine: VotingEngine = Depends(get_engine)):
    """Get current results for one poll."""
    return engine.get_results(poll_id).to_dict()


@router.post(
    "/polls/{poll_id}/vote",
    response_model=OperationResponse,
    responses={
        404: {"model": OperationResponse, "description": "Poll or option not found"},
        409: {"model": OperationResponse, "description": "Identity already voted or poll closed"},
        429: {"description": "Rate limit exceeded"},
        503: {"model": ErrorResponse, "description": "Storage unavailable"}
    }
)
@limiter.limit(lambda: rate_limit_settings.RATE_LIMIT)
def cast_vote(
    request: Request,
    poll_id: str,
    vote: VoteRequest,
    engine: VotingEngine = Depends(get_engine)
):
    """
    Cast a vote on a poll.

    - **option_id**: Chosen option
    - **identity**: Voter identity; the client address is used when omitted

    An identity may hold one active vote per poll until an admin releases it.
    """
    identity = vote.identity or get_remote_address(request)
    result = engine.cast_vote(poll_id, vote.option_id, identity)
    return operation_response(result)


@router.get(
    "/polls/{poll_id}/status",
    response_model=VoterStatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Poll not found"}}
)
def get_voter_status(
    request: Request,
    poll_id: str,
    identity: Optional[str] = Query(default=None),
    engine: VotingEngine = Depends(get_engine)
):
    """Whether an identity currently holds the voting lock on a poll."""
    return engine.voter_status(poll_id, identity or get_remote_address(request)).to_dict()


@router.get(
    "/polls/{poll_id}/history",
    response_model=HistoryResponse,
    responses={
        403: {"description": "Admin role required"},
        404: {"model": ErrorResponse, "description": "Poll not found"}
    }
)
def get_history(
    poll_id: str,
    engine: VotingEngine = Depends(get_engine),
    role: UserRole = Depends(require_admin)
):
    """Vote records, newest-first audit trail and per-identity status of a poll."""
    history = engine.get_history(poll_id)
    data = history.to_dict()
    data["poll_id"] = poll_id
    data["identities"] = [summary.to_dict() for summary in identity_statuses(history.votes)]
    return data


@router.post(
    "/polls/{poll_id}/release",
    response_model=OperationResponse,
    responses={
        403: {"description": "Admin role required"},
        404: {"model": OperationResponse, "description": "Poll not found"},
        409: {"model": OperationResponse, "description": "No active vote to release"},
        503: {"model": ErrorResponse, "description": "Storage unavailable"}
    }
)
def release_identity(
    poll_id: str,
    release: ReleaseRequest,
    engine: VotingEngine = Depends(get_engine),
    role: UserRole = Depends(require_admin)
):
    """Release an identity's active vote so it may vote again."""
    result = engine.release_identity(poll_id, release.identity)
    if result.success:
        logger.info(f"Admin released {release.identity} on {poll_id}")
    return operation_response(result)


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
)
def health_check(engine: VotingEngine = Depends(get_engine)):
    """Check health of the storage backend."""
    try:
        healthy = engine.storage.check_health()
    except Exception as e:
        logger.error(f"Storage health check error: {e}")
        healthy = False

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        services={
            "storage": "connected" if healthy else "disconnected",
            "backend": engine.storage.name,
        },
        timestamp=datetime.now(timezone.utc)
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


def create_app(engine: Optional[VotingEngine] = None, app_settings: Settings = settings) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        engine: Pre-built engine; when None one is built from settings at startup
        app_settings: Service settings; its RATE_LIMIT also becomes the
            limit of the shared limiter
    """
    app = FastAPI(
        title="LivePoll API",
        description="One vote per poll per identity, with admin release and audit trail",
        version=app_settings.API_VERSION,
        lifespan=lifespan
    )
    app.state.settings = app_settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=app_settings.CORS_ALLOW_METHODS,
        allow_headers=app_settings.CORS_ALLOW_HEADERS,
    )

    global rate_limit_settings
    rate_limit_settings = app_settings
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(VotingError)
    async def voting_error_handler(request: Request, exc: VotingError):
        return JSONResponse(
            status_code=ERROR_STATUS_CODES.get(exc.error_code, status.HTTP_400_BAD_REQUEST),
            content={"success": False, "message": exc.message, "error": exc.error_code}
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "success": False,
                "message": "Storage unavailable, please retry.",
                "error": type(exc).__name__
            }
        )

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        start_time = time.time()
        response = await call_next(request)
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).observe(time.time() - start_time)
        return response

    app.include_router(router, prefix=f"/api/{app_settings.API_VERSION}")

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        prefix = f"/api/{app_settings.API_VERSION}"
        return {
            "service": app_settings.SERVICE_NAME,
            "version": app_settings.API_VERSION,
            "status": "running",
            "endpoints": {
                "list_polls": f"{prefix}/polls",
                "results": f"{prefix}/polls/{{poll_id}}/results",
                "cast_vote": f"{prefix}/polls/{{poll_id}}/vote",
                "voter_status": f"{prefix}/polls/{{poll_id}}/status",
                "history": f"{prefix}/polls/{{poll_id}}/history",
                "release": f"{prefix}/polls/{{poll_id}}/release",
                "health": f"{prefix}/health",
                "metrics": "/metrics"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "livepoll.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
