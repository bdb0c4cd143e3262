"""Shared FastAPI dependencies."""

import hmac

from fastapi import HTTPException, Query, Request

from fanout import config
from fanout.services.jobs import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_cron_key(key: str = Query("", description="Shared secret for privileged jobs")) -> None:
    """
    Reject the request unless ``key`` matches the configured CRON_KEY.

    An unset CRON_KEY rejects every request.
    """
    expected = config.CRON_KEY
    if not expected or not hmac.compare_digest(key.encode(), expected.encode()):
        raise HTTPException(
            status_code=403,
            detail="Security key does not match. Make sure your 'key' URL query parameter "
                   "matches the CRON_KEY environment variable.",
        )
