"""FastAPI application and route handlers."""

import asyncio
import contextlib
import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from . import __version__
from .cards import load_deck
from .config import Settings, get_settings
from .draw import draw, get_spread
from .exceptions import AdmissionDenied, TarotOracleError, ValidationError
from .middleware import add_request_id, get_client_identity
from .models import (
    MAX_EXTRA_QUESTIONS,
    DrawRequest,
    DrawResponse,
    OracleRequest,
    ReadingResponse,
    StatusResponse,
)
from .service import OracleService, create_service

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: Settings) -> None:
    """Configure logging - should be called at startup, not import time."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level="DEBUG" if settings.debug else settings.log_level,
        serialize=False,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level=settings.log_level,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    service = create_service(settings)
    await service.startup()
    app.state.oracle_service = service

    metrics_task: asyncio.Task | None = None
    if settings.metrics_log_interval_seconds > 0:
        metrics_task = asyncio.create_task(
            service.metrics.log_periodically(settings.metrics_log_interval_seconds)
        )

    logger.info("Application started successfully")

    yield

    if metrics_task is not None:
        metrics_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await metrics_task
    await service.shutdown()
    app.state.oracle_service = None
    logger.info("Application shutdown complete")


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors with clean messages."""
    error_messages = []

    for error in exc.errors():
        field = error["loc"][-1] if error["loc"] else "field"
        message = error.get("msg", f"Invalid {field}")

        match error["type"]:
            case "missing":
                message = f"Required field '{field}' is missing"
            case "json_invalid":
                message = "Invalid JSON format"

        error_messages.append(message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "message": "; ".join(error_messages),
            "details": error_messages,
        },
    )


async def tarot_oracle_exception_handler(request: Request, exc: TarotOracleError) -> JSONResponse:
    """Render domain errors as structured JSON."""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc}")
    else:
        logger.warning(f"{exc.__class__.__name__}: {exc}")

    headers = {"X-Request-ID": getattr(request.state, "request_id", "")}
    if isinstance(exc, AdmissionDenied):
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def get_oracle_service(request: Request) -> OracleService:
    """Get the service owned by this application instance."""
    service = getattr(request.app.state, "oracle_service", None)
    if service is None:
        raise RuntimeError("Service not initialized")
    return service


def admit_request(
    request: Request,
    service: Annotated[OracleService, Depends(get_oracle_service)],
) -> str:
    """Charge the request against the general limiter and return the client identity."""
    identity = get_client_identity(request)
    service.admit(identity)
    return identity


router = APIRouter()


async def _read(
    service: OracleService, identity: str, flow_id: str, body: OracleRequest
) -> ReadingResponse:
    get_spread(body.spread_kind)
    try:
        result = await service.read(identity, flow_id, body.to_oracle_payload())
    except TarotOracleError:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error in oracle handler: {e}")
        raise TarotOracleError("Internal server error") from e

    return ReadingResponse(text=result.text, cached=result.cached, no_output=result.no_output)


@router.post("/oracle/{flow_id}", tags=["oracle"])
async def oracle_endpoint(
    flow_id: str,
    body: OracleRequest,
    service: Annotated[OracleService, Depends(get_oracle_service)],
    identity: Annotated[str, Depends(admit_request)],
) -> ReadingResponse:
    """Ask the oracle for a reading."""
    return await _read(service, identity, flow_id, body)


@router.post("/oracle", tags=["oracle"])
async def default_oracle_endpoint(
    request: Request,
    body: OracleRequest,
    service: Annotated[OracleService, Depends(get_oracle_service)],
    identity: Annotated[str, Depends(admit_request)],
) -> ReadingResponse:
    """Ask the oracle for a reading on the configured default flow."""
    settings: Settings = request.app.state.settings
    return await _read(service, identity, settings.oracle_default_flow, body)


def _draw_response(
    spread_kind: str,
    count: int | None,
    significator: str | None,
    extra_questions: list[str] | None,
) -> DrawResponse:
    template = get_spread(spread_kind)
    cards = draw(
        spread_kind,
        count=count,
        significator=significator,
        extra_questions=extra_questions,
    )
    return DrawResponse(
        spread_kind=template.kind,
        title=template.title,
        cards=[card.to_dict() for card in cards],
    )


@router.get("/draw/{spread_kind}", tags=["draw"])
async def draw_endpoint(
    spread_kind: str,
    _identity: Annotated[str, Depends(admit_request)],
    count: int | None = Query(None, ge=1, le=78),
    significator: str | None = Query(None, max_length=64),
    extras: str | None = Query(None, description="Comma-separated extra questions"),
) -> DrawResponse:
    """Draw a spread."""
    extra_questions = [q.strip() for q in extras.split(",") if q.strip()] if extras else None
    if extra_questions and len(extra_questions) > MAX_EXTRA_QUESTIONS:
        raise ValidationError(f"At most {MAX_EXTRA_QUESTIONS} extra questions allowed")
    return _draw_response(spread_kind, count, significator, extra_questions)


@router.post("/draw/{spread_kind}", tags=["draw"])
async def draw_post_endpoint(
    spread_kind: str,
    body: DrawRequest,
    _identity: Annotated[str, Depends(admit_request)],
) -> DrawResponse:
    """Draw a spread with a significator or extra questions in the body."""
    return _draw_response(spread_kind, body.count, body.significator, body.extra_questions)


@router.get("/cards", tags=["draw"])
async def cards_endpoint(
    _identity: Annotated[str, Depends(admit_request)],
) -> dict[str, Any]:
    """List the deck."""
    deck = load_deck()
    return {"count": len(deck), "cards": [card.to_dict() for card in deck]}


@router.get("/status", tags=["health"])
async def status_endpoint(
    service: Annotated[OracleService, Depends(get_oracle_service)],
) -> StatusResponse:
    """Queue, cache and traffic counters."""
    return StatusResponse(**service.metrics.snapshot())


@router.get("/health", tags=["health"])
async def health_endpoint(
    response: Response,
    service: Annotated[OracleService, Depends(get_oracle_service)],
) -> dict[str, Any]:
    """Check health status of all components."""
    services = await service.health_check()
    all_healthy = all(services.values())

    if not all_healthy:
        response.status_code = 503

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
    }


@router.get("/", tags=["health"])
async def root_endpoint() -> dict[str, str]:
    """API information endpoint."""
    return {
        "name": "Tarot Oracle API",
        "version": __version__,
        "status": "running",
        "docs": "/docs",
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Tarot Oracle API",
        version=__version__,
        description="Tarot draws and oracle readings behind admission control, a cache and a queue",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.oracle_service = None

    app.middleware("http")(add_request_id)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(TarotOracleError, tarot_oracle_exception_handler)  # type: ignore[arg-type]

    app.include_router(router)
    app.openapi_tags = [
        {"name": "oracle", "description": "Oracle readings"},
        {"name": "draw", "description": "Card draws"},
        {"name": "health", "description": "Health and status"},
    ]
    return app


app = create_app()
