"""Health check endpoints."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from clinicflow.api import deps
from clinicflow.core.config import get_settings
from clinicflow.integrations.clinic_api import ClinicApiClient

router = APIRouter()


@router.get("", summary="Service health status")
async def healthcheck() -> dict[str, str]:
    """Return application health metadata."""
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.app_env,
        "upstream": settings.clinic_api_base,
    }


@router.get("/upstream", summary="Clinic API reachability")
async def upstream_health(
    response: Response,
    client: Annotated[ClinicApiClient, Depends(deps.get_clinic_client)],
) -> dict[str, Any]:
    """Any answer below 500 counts as reachable; auth errors still prove the API is up."""
    code = await client.ping()
    reachable = code is not None and code < status.HTTP_500_INTERNAL_SERVER_ERROR
    if not reachable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ok" if reachable else "unreachable",
        "upstream": get_settings().clinic_api_base,
        "upstream_status": code,
    }
