"""FastAPI exception handlers for pipeline errors."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conversational_pipeline.errors.exceptions import PipelineError

logger = structlog.get_logger()


def error_body(exc: PipelineError) -> dict:
    """JSON body for a pipeline error: code, message, then context."""
    return {"error_code": exc.error_code, "message": str(exc), **exc.context}


def register_error_handlers(app: FastAPI) -> None:
    """Render PipelineError subclasses as JSON with their status code.

    Client errors (unknown or duplicate chunk ids) log at warning; server-side
    failures such as an unavailable refinement service log at error.
    """

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "pipeline_error",
            error_code=exc.error_code,
            status_code=exc.status_code,
            path=request.url.path,
            **exc.context,
        )
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))
