"""
Refiner protocols: what a refinement collaborator must provide.

The SourceMerger only needs an awaitable that turns per-source texts into
one refined string and raises on failure. RefinementClient.refine satisfies
it, and so does any plain async function with the same signature.
"""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from conversational_pipeline.models import TranscriptSource


@runtime_checkable
class Refiner(Protocol):
    async def __call__(self, texts: Mapping[TranscriptSource, str]) -> str: ...


@runtime_checkable
class RefinementClientProtocol(Protocol):
    async def refine(self, texts: Mapping[TranscriptSource, str]) -> str: ...

    async def health_check(self): ...

    async def connect(self) -> bool: ...

    async def close(self) -> None: ...
