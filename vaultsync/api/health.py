"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from vaultsync.api.deps import get_settings, get_sync_service
from vaultsync.config import Settings
from vaultsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    provider: str
    vault: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[SyncService, Depends(get_sync_service)],
) -> HealthResponse:
    """Health check endpoint for monitoring and the GUI shell."""
    vault_status = "ok" if settings.vault_dir.is_dir() else "missing"
    return HealthResponse(
        status="ok" if vault_status == "ok" else "degraded",
        version="0.1.0",
        provider=service.provider.namespace,
        vault=vault_status,
    )
