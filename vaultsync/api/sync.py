"""Sync API endpoints for the GUI shell."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from vaultsync.api.deps import get_content_reader, get_settings, get_sync_service, get_vault
from vaultsync.config import Settings
from vaultsync.filesystem.vault import Vault
from vaultsync.schemas.hashes import FileHash
from vaultsync.schemas.state import ConflictDecision, ConflictStrategy
from vaultsync.services.conflict_resolution import apply_manual_merge
from vaultsync.services.content_reader import ContentSide, VaultContentReader
from vaultsync.services.sync_diff import Conflict
from vaultsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

# One pass at a time per process; passes on one vault must never overlap.
_sync_lock = asyncio.Lock()


def _validate_path(vault: Vault, file_path: str) -> str:
    """Check a vault-relative path, raising 400 on traversal or reserved paths."""
    try:
        vault.layout.resolve(file_path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return file_path.lstrip("/")


def _hash_text(value: FileHash | None) -> str | None:
    return value.value if value is not None else None


def _conflict_item(conflict: Conflict) -> ConflictItem:
    return ConflictItem(
        path=conflict.path,
        type=str(conflict.type),
        local_hash=_hash_text(conflict.local_hash),
        remote_hash=_hash_text(conflict.remote_hash),
    )


# ── Schemas ──────────────────────────────────────────


class ConflictItem(BaseModel):
    path: str
    type: str
    local_hash: str | None = None
    remote_hash: str | None = None


class ComparisonItem(BaseModel):
    path: str
    status: str
    conflict: ConflictItem | None = None


class SyncStatusResponse(BaseModel):
    comparisons: list[ComparisonItem]
    conflicts: list[ConflictItem]
    decisions: list[ConflictDecision]


class SyncRunRequest(BaseModel):
    strategy: ConflictStrategy | None = None


class SyncRunResponse(BaseModel):
    pulled: int
    applied: int
    pushed: int
    resolved: int
    conflicts_before: int
    conflicts_after: int
    cursor_before: str | None
    cursor_after: str | None
    blocked_paths: list[str]
    bootstrapped_files: list[str]
    snapshot_id: str | None


class DecisionRequest(BaseModel):
    path: str = Field(min_length=1)
    strategy: ConflictStrategy


class MergeRequest(BaseModel):
    path: str = Field(min_length=1)
    content: str


class MergeResponse(BaseModel):
    path: str
    last_synced_hash: str | None
    last_local_hash: str | None
    last_remote_hash: str | None


# ── Endpoints ────────────────────────────────────────


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[SyncService, Depends(get_sync_service)],
    vault: Annotated[Vault, Depends(get_vault)],
) -> SyncStatusResponse:
    """Current comparison of every tracked path, without syncing."""
    diff = await asyncio.to_thread(service.status, settings.vault_dir)
    return SyncStatusResponse(
        comparisons=[
            ComparisonItem(
                path=c.path,
                status=str(c.status),
                conflict=_conflict_item(c.conflict) if c.conflict is not None else None,
            )
            for c in diff.comparisons
        ],
        conflicts=[_conflict_item(conflict) for conflict in diff.conflicts],
        decisions=vault.decisions.list(),
    )


@router.post("/run", response_model=SyncRunResponse)
async def sync_run(
    body: SyncRunRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[SyncService, Depends(get_sync_service)],
) -> SyncRunResponse:
    """Run one sync pass."""
    strategy = body.strategy or ConflictStrategy(settings.default_conflict_strategy)
    async with _sync_lock:
        summary = await asyncio.to_thread(service.sync_once, settings.vault_dir, strategy)
    return SyncRunResponse(**summary.to_dict())


@router.put("/decisions", response_model=ConflictDecision)
async def record_decision(
    body: DecisionRequest,
    vault: Annotated[Vault, Depends(get_vault)],
) -> ConflictDecision:
    """Record how a conflicted path should be resolved on the next pass."""
    path = _validate_path(vault, body.path)
    return vault.decisions.set(path, body.strategy)


@router.post("/merge", response_model=MergeResponse)
async def submit_merge(
    body: MergeRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    vault: Annotated[Vault, Depends(get_vault)],
) -> MergeResponse:
    """Write caller-merged content; the next pass pushes it."""
    path = _validate_path(vault, body.path)
    async with _sync_lock:
        state = await asyncio.to_thread(
            apply_manual_merge, vault, path, body.content, settings.inline_text_max_bytes
        )
    return MergeResponse(
        path=path,
        last_synced_hash=_hash_text(state.last_synced_hash) if state else None,
        last_local_hash=_hash_text(state.last_local_hash) if state else None,
        last_remote_hash=_hash_text(state.last_remote_hash) if state else None,
    )


@router.get("/content")
async def read_content(
    vault: Annotated[Vault, Depends(get_vault)],
    reader: Annotated[VaultContentReader, Depends(get_content_reader)],
    path: Annotated[str, Query(min_length=1)],
    side: Annotated[ContentSide, Query()] = ContentSide.LOCAL,
) -> Response:
    """Raw bytes of one side of a path, for the diff viewer."""
    path = _validate_path(vault, path)
    body = await asyncio.to_thread(reader.read, path, side)
    if body is None:
        raise HTTPException(status_code=404, detail=f"No {side} content for {path}")
    return Response(content=body, media_type="application/octet-stream")
