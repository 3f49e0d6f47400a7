"""Health check endpoints.

- /health - Service status and storage/email configuration presence
- /health/db - Database connection pool health
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from balance import __version__
from balance.api.dependencies import get_settings_dep
from balance.config import Settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(settings: Settings = Depends(get_settings_dep)) -> dict[str, Any]:
    """Service status. Makes no outbound calls, only reports configuration."""
    return {
        "status": "healthy",
        "service": "Balance API",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "storage": {
            "bucket": settings.s3_bucket_name,
            "custom_endpoint": bool(settings.s3_endpoint),
        },
        "email": {"provider": settings.email_provider},
    }


@router.get("/health/db")
def database_health() -> dict[str, Any]:
    """
    Database health check endpoint.

    Returns connection pool health metrics for monitoring.
    Alerts if pool usage exceeds 80%.
    """
    from balance.infrastructure.database import get_pool_stats

    stats = get_pool_stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
    }
