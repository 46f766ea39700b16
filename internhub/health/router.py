"""Health check endpoints."""

from fastapi import APIRouter, Request, Response, status

from internhub.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request, response: Response) -> dict[str, str | bool]:
    """Readiness probe - ready once the store is wired.

    Redis is reported but optional; without it only live pushes are skipped.
    """
    settings = get_settings()
    state = request.app.state
    database = getattr(state, "enrollment_service", None) is not None
    redis = getattr(state, "redis", None) is not None

    if not database:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if database else "not_ready",
        "database": database,
        "redis": redis,
        "payments": getattr(state, "payment_service", None) is not None,
        "environment": settings.environment,
        "debug": settings.debug,
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
