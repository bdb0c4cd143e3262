"""
FastAPI routes for the store-change triggers: follower push, flag e-mails,
admin claims, public profiles and image blur checks.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from fanout.errors import ExternalServiceError
from fanout.routes.deps import get_services, require_cron_key
from fanout.services.admins import mark_admin, unmark_admin
from fanout.services.flags import send_flag_email
from fanout.services.images import ImageBlurrer
from fanout.services.jobs import Services, run_blur_check
from fanout.services.notifications import notify_new_follower
from fanout.services.profiles import create_public_profile, update_all_profiles


class FollowerNotificationResponse(BaseModel):
    outcome: str = Field(..., description="What happened, e.g. sent or notifications_disabled")
    sent: int = Field(0, description="Devices the push reached")
    removed_tokens: List[str] = Field(default_factory=list, description="Dead tokens removed from the profile")


class FlagResponse(BaseModel):
    path: str
    sent: bool = Field(..., description="Whether the moderators were e-mailed")
    ack: Optional[str] = Field(None, description="Mail relay acknowledgement")


class AdminResponse(BaseModel):
    ok: bool


class ProfilesResponse(BaseModel):
    updated: int = Field(..., description="Profiles written")


class BlurCheckRequest(BaseModel):
    image_ref: str = Field(..., description="Object name, e.g. u1/full/p1/a.jpg")
    fail_open: bool = Field(False, description="Treat a classifier failure as not flagged")


class BlurCheckResponse(BaseModel):
    image_ref: str
    status: str
    reasons: List[str] = Field(default_factory=list)
    blurred_url: Optional[str] = Field(None, description="Refreshed post URL when the image was blurred")


router = APIRouter(tags=["triggers"])


def _require(collaborator: Any, name: str) -> Any:
    if collaborator is None:
        raise HTTPException(status_code=503, detail=f"No {name} configured")
    return collaborator


@router.post("/followers/{followed_uid}/{follower_uid}/notify", response_model=FollowerNotificationResponse)
async def notify_follower(
    followed_uid: str = Path(..., description="User being followed"),
    follower_uid: str = Path(..., description="New follower"),
    following: bool = Query(True, description="False when the follow was removed"),
    services: Services = Depends(get_services),
) -> FollowerNotificationResponse:
    """Push a new-follower notification to the followed user's devices."""
    result = await notify_new_follower(
        services.store, _require(services.auth, "auth provider"), _require(services.push, "push sender"),
        followed_uid, follower_uid, following=following,
    )
    return FollowerNotificationResponse(
        outcome=result.outcome.value, sent=result.sent, removed_tokens=result.removed_tokens
    )


@router.post("/flags/{post_id}", response_model=FlagResponse)
async def flag_content(
    post_id: str = Path(..., description="Flagged post, or the post holding the flagged comment"),
    reporter_uid: str = Query(..., description="User who flagged the content"),
    comment_id: Optional[str] = Query(None, description="Flagged comment, if any"),
    services: Services = Depends(get_services),
) -> FlagResponse:
    """E-mail the moderators about flagged content."""
    ack = await send_flag_email(
        services.store, _require(services.auth, "auth provider"), services.mail,
        post_id, reporter_uid, comment_id=comment_id,
    )
    path = f"comments/{post_id}/{comment_id}" if comment_id else f"posts/{post_id}"
    return FlagResponse(path=path, sent=ack is not None, ack=ack)


@router.post("/admins/{index}", response_model=AdminResponse, dependencies=[Depends(require_cron_key)])
async def grant_admin(
    index: str = Path(..., description="Key of the /admins entry"),
    services: Services = Depends(get_services),
) -> AdminResponse:
    """Grant the admin claim to the user named in ``/admins/{index}``."""
    return AdminResponse(ok=await mark_admin(services.store, _require(services.auth, "auth provider"), index))


@router.delete("/admins", response_model=AdminResponse, dependencies=[Depends(require_cron_key)])
async def revoke_admin(
    email: str = Query(..., description="E-mail of the user to demote"),
    services: Services = Depends(get_services),
) -> AdminResponse:
    """Revoke the admin claim of a user."""
    return AdminResponse(ok=await unmark_admin(_require(services.auth, "auth provider"), email))


@router.post("/profiles/refresh", response_model=ProfilesResponse, dependencies=[Depends(require_cron_key)])
async def refresh_profiles(services: Services = Depends(get_services)) -> ProfilesResponse:
    """Rebuild every public profile from the auth provider."""
    updated = await update_all_profiles(services.store, _require(services.auth, "auth provider"))
    return ProfilesResponse(updated=updated)


@router.post("/profiles/{uid}", response_model=ProfilesResponse)
async def create_profile(
    uid: str = Path(..., description="User whose public profile is written"),
    services: Services = Depends(get_services),
) -> ProfilesResponse:
    """Write the public profile of one user."""
    auth = _require(services.auth, "auth provider")
    try:
        user = await auth.get_user(uid)
    except Exception as exc:
        raise ExternalServiceError("auth", f"Could not load user {uid}", exc) from exc
    await create_public_profile(services.store, user)
    return ProfilesResponse(updated=1)


@router.post("/images/blur-check", response_model=BlurCheckResponse)
async def blur_check(body: BlurCheckRequest, services: Services = Depends(get_services)) -> BlurCheckResponse:
    """Classify an uploaded image and blur it in storage when it is flagged."""
    blurrer = ImageBlurrer(_require(services.storage, "object storage"), services.store)
    urls = []

    async def on_flagged(verdict):
        urls.append(await blurrer(verdict))

    verdict = await run_blur_check(services, body.image_ref, on_flagged, fail_open=body.fail_open)
    return BlurCheckResponse(
        image_ref=verdict.image_ref,
        status=verdict.status.value,
        reasons=[r.value for r in verdict.reasons],
        blurred_url=urls[0] if urls else None,
    )
