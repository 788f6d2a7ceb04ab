"""Dashboard session lifecycle endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from clinicflow.api import deps
from clinicflow.services.session_service import SessionRegistry

router = APIRouter()


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Dispose a dashboard session and its cached names",
)
async def dispose_session(
    session_id: str,
    registry: Annotated[SessionRegistry, Depends(deps.get_session_registry)],
) -> Response:
    if not await registry.dispose(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
