"""Health check endpoints."""

from internhub.health.router import router


__all__ = ["router"]
