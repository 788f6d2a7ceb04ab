"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from secure import Secure
from asgi_correlation_id import CorrelationIdMiddleware

from clinicflow.api import api_router
from clinicflow.api.deps import SESSION_HEADER
from clinicflow.core.config import get_settings
from clinicflow.core.labels import get_labels
from clinicflow.core.settings import get_upstream_settings, get_workflow_settings
from clinicflow.integrations.clinic_api import ClinicApiClient
from clinicflow.security.logging_filters import SensitiveFilter
from clinicflow.services.session_service import SessionRegistry

logger = logging.getLogger(__name__)

settings = get_settings()

_ALLOWED_ORIGINS = [origin for origin in settings.cors_allow_origins if origin]
if not _ALLOWED_ORIGINS:
    _ALLOWED_ORIGINS = ["http://localhost:5173"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.clinic_api = ClinicApiClient.build(get_upstream_settings())
    app.state.sessions = SessionRegistry(get_workflow_settings(), labels=get_labels())
    try:
        yield
    finally:
        try:
            await app.state.sessions.aclose()
        except Exception:  # pragma: no cover - shutdown is best effort
            logger.exception("Failed to dispose dashboard sessions")
        finally:
            await app.state.clinic_api.aclose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", SESSION_HEADER],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware, header_name="X-Request-ID")

_secure_headers = Secure.with_default_headers()


@app.middleware("http")
async def _apply_security_headers(request, call_next):
    response = await call_next(request)
    _secure_headers.set_headers(response)
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id:
        response.headers.setdefault("X-Request-ID", str(correlation_id))
    return response


for _logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", ""):
    _logger = logging.getLogger(_logger_name)
    if not any(isinstance(flt, SensitiveFilter) for flt in _logger.filters):
        _logger.addFilter(SensitiveFilter())

app.include_router(api_router)


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": settings.app_name}
