"""Health and stage metadata endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from ..schemas import StageDefinition
from ..tracker import list_stage_definitions


router = APIRouter(tags=["stages"])


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@router.get("/stages", response_model=list[StageDefinition])
async def list_stages() -> list[StageDefinition]:
    """Expose stage metadata to the UI."""

    return list_stage_definitions()
