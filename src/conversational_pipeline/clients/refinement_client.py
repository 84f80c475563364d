"""
Refinement Service Client

Sends the per-source transcripts of the current utterance to the
refinement service and returns one consolidated text.

Any failure (network error, timeout, non-2xx status, malformed body, or an
explicit ``fallback: true`` answer) surfaces as RefinementUnavailableError so
callers can keep their pre-refinement text.

Usage:
    client = RefinementClient(base_url="http://localhost:8000", language="es")
    await client.connect()
    refined = await client.refine({TranscriptSource.CLOUD_ASR: "hola mundo"})
    await client.close()
"""

import asyncio
from collections.abc import Mapping

import aiohttp
from pydantic import ValidationError

from conversational_pipeline.errors import RefinementUnavailableError
from conversational_pipeline.logging import get_logger, log_performance
from conversational_pipeline.models import TranscriptSource

from .models import HealthResponse, RefineRequest, RefineResponse

logger = get_logger()


class RefinementClient:
    """aiohttp client for the /refine and /health endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        language: str = "es",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.language = language

        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> bool:
        """Initialize the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        logger.info("refinement_client_connected", base_url=self.base_url)
        return True

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("refinement_client_closed")
        self._session = None

    async def __aenter__(self) -> "RefinementClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            await self.connect()
        return self._session

    # =========================================================================
    # Refinement
    # =========================================================================

    async def refine(self, texts: Mapping[TranscriptSource, str]) -> str:
        """Return the refined text or raise RefinementUnavailableError."""
        response = await self.refine_detailed(texts)
        return response.refined_text

    async def refine_detailed(
        self, texts: Mapping[TranscriptSource, str], language: str | None = None
    ) -> RefineResponse:
        request = RefineRequest.from_sources(texts, language or self.language)
        if not request.has_text:
            raise RefinementUnavailableError("No source text to refine")

        session = await self._get_session()
        url = f"{self.base_url}/refine"

        with log_performance(logger, "refinement_request", url=url) as perf:
            try:
                async with session.post(url, json=request.model_dump()) as response:
                    perf["status"] = response.status
                    if response.status < 200 or response.status >= 300:
                        body = await response.text()
                        raise RefinementUnavailableError(
                            f"Refinement failed: HTTP {response.status}",
                            status=response.status,
                            body=body[:200],
                        )
                    data = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise RefinementUnavailableError(f"Refinement request failed: {e}") from e
            except ValueError as e:
                raise RefinementUnavailableError("Refinement response is not JSON") from e

        try:
            result = RefineResponse.model_validate(data)
        except ValidationError as e:
            raise RefinementUnavailableError("Malformed refinement response") from e

        if result.fallback:
            raise RefinementUnavailableError("Refinement service answered with fallback")

        logger.debug("refinement_received", confidence=result.confidence)
        return result

    # =========================================================================
    # Health
    # =========================================================================

    async def health_check(self) -> HealthResponse:
        """Query /health. Never raises; failures map to an unhealthy payload."""
        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/health") as response:
                if response.status != 200:
                    return HealthResponse(status="unhealthy", error=f"HTTP {response.status}")
                data = await response.json(content_type=None)
            return HealthResponse.model_validate(data)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValidationError, ValueError) as e:
            logger.warning("refinement_health_check_failed", error=str(e))
            return HealthResponse(status="unhealthy", error=str(e))

    async def is_healthy(self) -> bool:
        return (await self.health_check()).is_healthy
