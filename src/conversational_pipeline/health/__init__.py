"""Health check and status endpoints."""

from conversational_pipeline.health.endpoints import create_health_router, create_status_router

__all__ = ["create_health_router", "create_status_router"]
