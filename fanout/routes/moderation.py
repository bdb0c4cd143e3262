"""
FastAPI routes for text moderation and hashtag indexing.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from fanout.routes.deps import get_services
from fanout.services.hashtags import index_post_hashtags
from fanout.services.jobs import Services, run_moderate
from fanout.services.moderation import moderate_entity


class ModerateRequest(BaseModel):
    text: str = Field(..., description="User submitted text")


class EntityRequest(BaseModel):
    path: str = Field(..., description="Store path of a post or comment, e.g. posts/p1")


class VerdictResponse(BaseModel):
    text: str = Field(..., description="Filtered text")
    was_modified: bool = Field(..., description="Whether any step changed the text")
    reasons: List[str] = Field(default_factory=list, description="Steps that changed the text")


class EntityVerdictResponse(BaseModel):
    path: str
    skipped: bool = Field(..., description="True when the record was missing or already sanitized")
    verdict: Optional[VerdictResponse] = None


class HashtagIndexResponse(BaseModel):
    post_id: str
    hashtags: List[str] = Field(..., description="Index paths written")


router = APIRouter(tags=["moderation"])


def _verdict(verdict) -> VerdictResponse:
    return VerdictResponse(
        text=verdict.text,
        was_modified=verdict.was_modified,
        reasons=[r.value for r in verdict.reasons],
    )


@router.post("/moderation/text", response_model=VerdictResponse)
async def moderate_text(body: ModerateRequest, services: Services = Depends(get_services)) -> VerdictResponse:
    """Run the moderation filter on a piece of text without storing anything."""
    return _verdict(run_moderate(services, body.text))


@router.post("/moderation/entity", response_model=EntityVerdictResponse)
async def moderate_stored_entity(body: EntityRequest, services: Services = Depends(get_services)) -> EntityVerdictResponse:
    """Moderate a stored post or comment in place."""
    if not (body.path.strip("/").startswith("posts/") or body.path.strip("/").startswith("comments/")):
        raise HTTPException(status_code=400, detail="Only posts and comments can be moderated")
    verdict = await moderate_entity(services.store, body.path.strip("/"), services.moderation_filter)
    return EntityVerdictResponse(
        path=body.path,
        skipped=verdict is None,
        verdict=_verdict(verdict) if verdict is not None else None,
    )


@router.post("/hashtags/index/{post_id}", response_model=HashtagIndexResponse)
async def index_hashtags(
    post_id: str = Path(..., description="Post to index"),
    services: Services = Depends(get_services),
) -> HashtagIndexResponse:
    """Add a post to the index of every hashtag in its text."""
    items = await index_post_hashtags(services.store, post_id)
    return HashtagIndexResponse(post_id=post_id, hashtags=sorted(item.path for item in items))
