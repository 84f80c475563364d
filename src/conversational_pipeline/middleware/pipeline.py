"""
Middleware Pipeline

Ordered, independently togglable enrichment stages applied to a chunk
immediately before emission. Stage failures are isolated: a stage that
raises is logged and treated as a no-op, and the next stage sees the chunk
as it was before the failing stage ran.

Usage:
    pipeline = MiddlewarePipeline()
    pipeline.use(FunctionStage("tag", add_tag))
    pipeline.disable("tag")
    enriched = await pipeline.process(chunk)
"""

import copy
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from conversational_pipeline.errors import MiddlewareStageError
from conversational_pipeline.logging import get_logger
from conversational_pipeline.models import EmittedChunk, MiddlewareContext

logger = get_logger()

SLOW_STAGE_MS = 50.0

StageResult = MiddlewareContext | None | Awaitable[MiddlewareContext | None]


@runtime_checkable
class MiddlewareStage(Protocol):
    """A named enrichment step; ``process`` may be sync or async."""

    name: str

    def process(self, ctx: MiddlewareContext) -> StageResult: ...


@dataclass
class FunctionStage:
    """Adapts a plain (async) function into a MiddlewareStage."""

    name: str
    func: Callable[[MiddlewareContext], StageResult]

    def process(self, ctx: MiddlewareContext) -> StageResult:
        return self.func(ctx)


class MiddlewarePipeline:
    """Runs registered stages in registration order."""

    def __init__(self, on_stage_error: Callable[[MiddlewareStageError], None] | None = None):
        self._stages: list[MiddlewareStage] = []
        self._disabled: set[str] = set()
        self.on_stage_error = on_stage_error
        self.failures = 0

    # =========================================================================
    # Registration
    # =========================================================================

    def use(self, stage: MiddlewareStage, enabled: bool = True) -> "MiddlewarePipeline":
        if any(existing.name == stage.name for existing in self._stages):
            raise ValueError(f"Middleware stage {stage.name!r} is already registered")
        self._stages.append(stage)
        if not enabled:
            self._disabled.add(stage.name)
        logger.debug("middleware_registered", stage=stage.name, enabled=enabled)
        return self

    def unregister(self, name: str) -> None:
        self._require(name)
        self._stages = [stage for stage in self._stages if stage.name != name]
        self._disabled.discard(name)

    def enable(self, name: str) -> None:
        self._require(name)
        self._disabled.discard(name)

    def disable(self, name: str) -> None:
        self._require(name)
        self._disabled.add(name)

    def is_enabled(self, name: str) -> bool:
        self._require(name)
        return name not in self._disabled

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    def get_status(self) -> list[dict[str, Any]]:
        return [
            {"name": stage.name, "enabled": stage.name not in self._disabled, "position": i}
            for i, stage in enumerate(self._stages)
        ]

    # =========================================================================
    # Processing
    # =========================================================================

    async def run(self, chunk: EmittedChunk) -> MiddlewareContext:
        """Run every enabled stage and return the final context."""
        ctx = MiddlewareContext(chunk=chunk, metadata=dict(chunk.metadata))
        latencies: dict[str, float] = {}

        for stage in list(self._stages):
            if stage.name in self._disabled:
                continue

            snapshot_chunk, snapshot_metadata = _snapshot(ctx)
            ctx.stage = stage.name
            start = time.perf_counter()
            try:
                result = stage.process(ctx)
                if inspect.isawaitable(result):
                    result = await result
                if result is not None:
                    if not isinstance(result, MiddlewareContext):
                        raise TypeError(
                            f"stage returned {type(result).__name__}, expected MiddlewareContext"
                        )
                    ctx = result
            except Exception as exc:
                ctx = MiddlewareContext(chunk=snapshot_chunk, metadata=snapshot_metadata)
                self._report_failure(stage.name, chunk.id, exc)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000
                latencies[stage.name] = elapsed_ms

            if elapsed_ms > SLOW_STAGE_MS:
                logger.warning(
                    "middleware_stage_slow",
                    stage=stage.name,
                    chunk_id=chunk.id,
                    duration_ms=round(elapsed_ms, 2),
                )

        ctx.stage = None
        ctx.metadata["middleware_latencies"] = latencies
        ctx.metadata["total_middleware_time"] = sum(latencies.values())
        return ctx

    async def process(self, chunk: EmittedChunk) -> EmittedChunk:
        ctx = await self.run(chunk)
        return finalize(ctx)

    def _report_failure(self, stage: str, chunk_id: str, exc: Exception) -> None:
        self.failures += 1
        error = MiddlewareStageError(stage, chunk_id, exc)
        logger.warning(
            "middleware_stage_failed",
            stage=stage,
            chunk_id=chunk_id,
            error=str(exc),
            exc_info=exc,
        )
        if self.on_stage_error is not None:
            try:
                self.on_stage_error(error)
            except Exception:
                logger.warning("middleware_error_sink_failed", stage=stage, exc_info=True)

    def _require(self, name: str) -> None:
        if not any(stage.name == name for stage in self._stages):
            raise KeyError(f"Unknown middleware stage: {name}")


def finalize(ctx: MiddlewareContext) -> EmittedChunk:
    """Fold the context metadata back into the chunk."""
    chunk = ctx.chunk
    chunk.metadata = {**chunk.metadata, **ctx.metadata}
    return chunk


def _snapshot(ctx: MiddlewareContext) -> tuple[EmittedChunk, dict[str, Any]]:
    """Copy of the chunk and metadata to restore if the next stage fails.

    Metadata may hold values that cannot be deep-copied (locks, client
    handles); those snapshots fall back to copying one level deep.
    """
    try:
        return copy.deepcopy(ctx.chunk), copy.deepcopy(ctx.metadata)
    except Exception:
        chunk = copy.copy(ctx.chunk)
        chunk.metadata = dict(ctx.chunk.metadata)
        chunk.sources = dict(ctx.chunk.sources)
        return chunk, dict(ctx.metadata)
