"""
FastAPI routes for cascading deletion and the cleanup jobs.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from fanout.config import INACTIVE_ACCOUNT_DAYS, POST_MAX_AGE_DAYS
from fanout.routes.deps import get_services, require_cron_key
from fanout.services.cleanup import delete_inactive_accounts, delete_old_posts
from fanout.services.jobs import Services, run_cascade_delete


class UnitFailureModel(BaseModel):
    unit: str = Field(..., description="Label of the failed unit of work")
    error: str = Field(..., description="Error message")


class ScanFailureModel(BaseModel):
    path: str = Field(..., description="Template or path whose scan failed")
    error: str = Field(..., description="Error message")


class CompletionResponse(BaseModel):
    processed: int = Field(..., description="Units of work pulled from the producer")
    succeeded: int = Field(..., description="Units that completed")
    failed: int = Field(..., description="Units that raised")
    failures: List[UnitFailureModel] = Field(default_factory=list)


class CascadeResponse(CompletionResponse):
    root_kind: str
    root_id: str
    paths: List[str] = Field(..., description="Store paths nulled by the cascade")
    storage_targets: List[str] = Field(..., description="Object-storage files or prefixes removed")
    scan_failures: List[ScanFailureModel] = Field(default_factory=list)
    complete: bool = Field(..., description="False when any scan or unit failed")


router = APIRouter(tags=["cleanup"], dependencies=[Depends(require_cron_key)])


@router.post("/cascade/{kind}/{entity_id:path}", response_model=CascadeResponse)
async def cascade_delete(
    kind: str = Path(..., description="Entity kind (user, post, comment, like, hashtag-index)"),
    entity_id: str = Path(..., description="Root entity id"),
    services: Services = Depends(get_services),
) -> CascadeResponse:
    """Delete an entity and every denormalized path that references it."""
    report = await run_cascade_delete(services, kind, entity_id)
    return CascadeResponse(**report.to_dict())


@router.post("/jobs/delete-old-posts", response_model=CompletionResponse)
async def delete_old_posts_job(
    days: int = Query(POST_MAX_AGE_DAYS, ge=1, le=3650, description="Maximum post age in days"),
    services: Services = Depends(get_services),
) -> CompletionResponse:
    """Cascade-delete every post older than ``days``."""
    report = await delete_old_posts(services.deleter(), max_age_days=days, concurrency=services.concurrency)
    return CompletionResponse(**report.to_dict())


@router.post("/jobs/delete-inactive-accounts", response_model=CompletionResponse)
async def delete_inactive_accounts_job(
    days: int = Query(INACTIVE_ACCOUNT_DAYS, ge=1, le=3650, description="Inactivity threshold in days"),
    services: Services = Depends(get_services),
) -> CompletionResponse:
    """Delete accounts that have not signed in for ``days`` and cascade their data."""
    if services.auth is None:
        raise HTTPException(status_code=503, detail="No auth provider configured")
    report = await delete_inactive_accounts(
        services.auth, services.deleter(), inactive_days=days, concurrency=services.concurrency
    )
    return CompletionResponse(**report.to_dict())
