"""Health and pipeline status endpoint factories."""

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse

from conversational_pipeline.errors import UnknownChunkError

if TYPE_CHECKING:
    from conversational_pipeline.session import ConversationalSession

logger = structlog.get_logger()

HealthCheck = Callable[[], bool | Awaitable[bool]]


async def _run_check(name: str, check_fn: HealthCheck) -> bool:
    try:
        result = check_fn()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
    except Exception:
        logger.warning("health_check_failed", check=name, exc_info=True)
        return False


def create_health_router(
    service_name: str,
    version: str,
    checks: dict[str, HealthCheck],
) -> APIRouter:
    """Return a router with a ``/health`` endpoint that runs all checks.

    Checks may be sync or async (e.g. ``RefinementClient.is_healthy``). A
    check that returns ``False`` or raises makes the service ``unhealthy``
    and the endpoint answers 503.
    """
    router = APIRouter()

    @router.get("/health")
    async def health() -> JSONResponse:
        results = {name: await _run_check(name, fn) for name, fn in checks.items()}
        all_ok = all(results.values())
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "healthy" if all_ok else "unhealthy",
                "service": service_name,
                "version": version,
                "checks": {name: "ok" if ok else "failing" for name, ok in results.items()},
            },
        )

    return router


def create_status_router(session: "ConversationalSession", prefix: str = "/pipeline") -> APIRouter:
    """Read-out and control endpoints for a running session.

    Unknown chunk ids raise UnknownChunkError; register_error_handlers
    renders it as a 404.
    """
    router = APIRouter(prefix=prefix)

    @router.get("/latency")
    async def latency(format: str | None = None) -> Any:
        if format in ("json", "csv"):
            body = session.monitor.export_metrics(format)
            media_type = "text/csv" if format == "csv" else "application/json"
            return PlainTextResponse(body, media_type=media_type)
        return {
            "report": session.latency_report().to_dict(),
            "realtime": session.monitor.get_realtime_status().to_dict(),
        }

    @router.get("/status")
    async def status() -> dict[str, Any]:
        return session.get_status()

    @router.get("/chunks")
    async def chunks() -> list[dict[str, Any]]:
        return [chunk.to_dict() for chunk in session.get_chunks()]

    @router.get("/chunks/{chunk_id}")
    async def chunk(chunk_id: str) -> dict[str, Any]:
        emitted = session.get_chunk(chunk_id)
        if emitted is None:
            raise UnknownChunkError(chunk_id)
        return emitted.to_dict()

    @router.post("/middleware/{name}/enable")
    async def enable_middleware(name: str) -> JSONResponse:
        return _toggle(name, enabled=True)

    @router.post("/middleware/{name}/disable")
    async def disable_middleware(name: str) -> JSONResponse:
        return _toggle(name, enabled=False)

    def _toggle(name: str, enabled: bool) -> JSONResponse:
        try:
            if enabled:
                session.pipeline.enable(name)
            else:
                session.pipeline.disable(name)
        except KeyError:
            return JSONResponse(
                status_code=404,
                content={
                    "error_code": "UNKNOWN_MIDDLEWARE",
                    "message": f"Unknown middleware stage: {name}",
                    "stage": name,
                },
            )
        logger.info("middleware_toggled", stage=name, enabled=enabled)
        return JSONResponse(content={"name": name, "enabled": enabled})

    return router
