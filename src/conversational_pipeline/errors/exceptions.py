"""Structured exception hierarchy for the conversational chunk pipeline."""

from typing import Any


class PipelineError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        status_code: HTTP status code to return when this error is raised in a handler.
        error_code: Machine-readable error identifier for clients.
        context: Arbitrary key-value pairs providing additional error context.
    """

    status_code: int = 500

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR", **context: Any) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.context = context


class DuplicateChunkError(PipelineError):
    """A chunk id was registered twice."""

    status_code: int = 409

    def __init__(self, chunk_id: str, **context: Any) -> None:
        super().__init__(
            f"Chunk {chunk_id!r} already exists",
            error_code="DUPLICATE_CHUNK",
            chunk_id=chunk_id,
            **context,
        )


class UnknownChunkError(PipelineError):
    """An event referenced a chunk id that was never registered."""

    status_code: int = 404

    def __init__(self, chunk_id: str, **context: Any) -> None:
        super().__init__(
            f"Chunk {chunk_id!r} is not registered",
            error_code="UNKNOWN_CHUNK",
            chunk_id=chunk_id,
            **context,
        )


class RefinementUnavailableError(PipelineError):
    """The refinement service could not produce a refined text this round."""

    status_code: int = 503

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, error_code="REFINEMENT_UNAVAILABLE", **context)


class MiddlewareStageError(PipelineError):
    """A middleware stage raised while enriching a chunk."""

    status_code: int = 500

    def __init__(self, stage: str, chunk_id: str, cause: BaseException, **context: Any) -> None:
        super().__init__(
            f"Middleware stage {stage!r} failed for chunk {chunk_id!r}: {cause}",
            error_code="MIDDLEWARE_STAGE_FAILURE",
            stage=stage,
            chunk_id=chunk_id,
            **context,
        )
        self.cause = cause


class EngineInitializationError(PipelineError):
    """The audio engine could not be started."""

    status_code: int = 503

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, error_code="ENGINE_INITIALIZATION_FAILED", **context)
