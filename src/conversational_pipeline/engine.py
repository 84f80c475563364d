"""
Audio Engine Manager

Owns the lifecycle of the audio processing engine (noise suppression and
VAD live outside this package). One manager per session is injected where
needed; concurrent ``initialize`` calls share a single in-flight start.

Usage:
    manager = AudioEngineManager(engine)
    await manager.initialize({"noise_reduction_level": "high"})
    state = manager.get_state()
    await manager.destroy()
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from conversational_pipeline.errors import EngineInitializationError
from conversational_pipeline.logging import get_logger

logger = get_logger()

DEFAULT_ENGINE_CONFIG: dict[str, Any] = {
    "log_level": "info",
    "noise_reduction_level": "high",
    "algorithm": "rnnoise",
    "use_audio_worklet": True,
    "auto_cleanup": True,
}

RESET_SETTLE_S = 0.1


@runtime_checkable
class AudioEngine(Protocol):
    """External audio engine. Both calls may raise."""

    async def initialize(self, config: dict[str, Any]) -> None: ...

    async def destroy(self) -> None: ...


@dataclass
class EngineState:
    is_initialized: bool = False
    is_initializing: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"is_initialized": self.is_initialized, "is_initializing": self.is_initializing}


class AudioEngineManager:
    """Start/stop wrapper around an AudioEngine."""

    def __init__(self, engine: AudioEngine):
        self.engine = engine
        self._initialized = False
        self._init_task: asyncio.Task | None = None

    async def initialize(self, config: dict[str, Any] | None = None) -> None:
        """Start the engine; a no-op when already running.

        Raises:
            EngineInitializationError: if the engine fails to start
        """
        if self._initialized:
            logger.debug("audio_engine_already_initialized")
            return

        if self._init_task is None or self._init_task.done():
            final_config = {**DEFAULT_ENGINE_CONFIG, **(config or {})}
            self._init_task = asyncio.create_task(self._do_initialize(final_config))
        else:
            logger.debug("audio_engine_initialization_in_progress")

        # Joined callers must not cancel the shared start
        await asyncio.shield(self._init_task)

    async def _do_initialize(self, config: dict[str, Any]) -> None:
        try:
            await self._force_destroy()
            logger.info("audio_engine_initializing", algorithm=config.get("algorithm"))
            await self.engine.initialize(config)
            self._initialized = True
            logger.info("audio_engine_initialized")
        except Exception as e:
            if "already initialized" in str(e).lower():
                logger.info("audio_engine_was_already_initialized")
                self._initialized = True
                return
            self._initialized = False
            logger.error("audio_engine_initialization_failed", error=str(e))
            raise EngineInitializationError(f"Audio engine failed to start: {e}") from e
        finally:
            self._init_task = None

    async def _force_destroy(self) -> None:
        try:
            await self.engine.destroy()
        except Exception as e:
            logger.debug("audio_engine_force_destroy_ignored", error=str(e))
        self._initialized = False

    async def destroy(self) -> None:
        """Stop the engine. State is reset even if the engine raises."""
        if not self._initialized:
            logger.debug("audio_engine_not_initialized")
            return
        try:
            await self.engine.destroy()
            logger.info("audio_engine_destroyed")
        except Exception as e:
            logger.error("audio_engine_destroy_failed", error=str(e))
        finally:
            self._initialized = False

    async def reset(self) -> None:
        await self.destroy()
        await asyncio.sleep(RESET_SETTLE_S)

    def get_state(self) -> EngineState:
        return EngineState(
            is_initialized=self._initialized,
            is_initializing=self._init_task is not None and not self._init_task.done(),
        )
