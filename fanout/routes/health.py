"""
Health check endpoints for monitoring system status.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from fanout.routes.deps import get_services
from fanout.services.jobs import Services

router = APIRouter(prefix="/health", tags=["health"])


async def check_store_health(services: Services) -> Dict[str, str]:
    """
    Check backing store connectivity.

    Returns:
        Dict with status and optional error details
    """
    try:
        if await services.store.ping():
            return {"status": "ok"}
        return {"status": "down", "error": "Unexpected ping result"}
    except SQLAlchemyError as e:
        return {"status": "down", "error": f"Database error: {str(e)}"}
    except Exception as e:
        return {"status": "down", "error": f"Connection error: {str(e)}"}


def collaborator_status(services: Services) -> Dict[str, str]:
    return {
        name: "configured" if getattr(services, name) is not None else "disabled"
        for name in ("storage", "auth", "classifier", "push", "mail")
    }


@router.get("/")
async def health_check(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """
    Comprehensive health check endpoint.

    Returns:
        Dict containing:
        - status: "ok" | "down"
        - store: backing store health
        - collaborators: which external services are wired in
        - version: API version
        - timestamp: current UTC timestamp
    """
    store_health = await check_store_health(services)
    return {
        "status": "down" if store_health["status"] == "down" else "ok",
        "store": store_health,
        "collaborators": collaborator_status(services),
        "version": "1.0.0",
        "timestamp": datetime.utcnow().isoformat(),
    }
