"""Tarot Oracle API - tarot draws and oracle readings for many concurrent users."""

__version__ = "1.0.0"

from .api import app, create_app  # noqa: E402
from .cache import ResponseCache, request_fingerprint  # noqa: E402
from .dispatcher import Dispatcher  # noqa: E402
from .draw import draw  # noqa: E402
from .gateway import OracleGateway  # noqa: E402
from .rate_limiter import AdmissionController, LimiterKind  # noqa: E402
from .service import OracleService, create_service  # noqa: E402

__all__ = [
    "AdmissionController",
    "Dispatcher",
    "LimiterKind",
    "OracleGateway",
    "OracleService",
    "ResponseCache",
    "app",
    "create_app",
    "create_service",
    "draw",
    "request_fingerprint",
]
