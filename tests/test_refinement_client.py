"""Tests for RefinementClient against a local aiohttp stub server."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from conversational_pipeline.clients import (
    RefineRequest,
    RefinementClient,
    RefinementClientProtocol,
)
from conversational_pipeline.errors import RefinementUnavailableError
from conversational_pipeline.models import TranscriptSource

WEB = TranscriptSource.WEB_SPEECH
CLOUD = TranscriptSource.CLOUD_ASR
LOCAL = TranscriptSource.LOCAL_NEURAL


class StubRefinementService:
    """Configurable stand-in for the refinement service."""

    def __init__(self):
        self.requests: list[dict] = []
        self.status = 200
        self.body: dict | str = {"refined_text": "Hola, mundo.", "confidence": 0.92}
        self.health_body: dict = {"status": "healthy", "model_size": "small"}
        self.delay = 0.0

    async def refine(self, request: web.Request) -> web.Response:
        self.requests.append(await request.json())
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.body, str):
            return web.Response(status=self.status, text=self.body)
        return web.json_response(self.body, status=self.status)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response(self.health_body)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/refine", self.refine)
        app.router.add_get("/health", self.health)
        return app


@pytest_asyncio.fixture
async def stub():
    service = StubRefinementService()
    server = test_utils.TestServer(service.app())
    await server.start_server()
    service.base_url = str(server.make_url(""))
    yield service
    await server.close()


@pytest_asyncio.fixture
async def client(stub):
    refinement = RefinementClient(base_url=stub.base_url, timeout=2.0, language="es")
    await refinement.connect()
    yield refinement
    await refinement.close()


class TestRefineRequest:
    def test_cloud_fills_processed_slot(self):
        req = RefineRequest.from_sources({WEB: "ola", CLOUD: "hola", LOCAL: "hola!"}, "es")
        assert req.web_speech_text == "ola"
        assert req.deepgram_text == "hola"
        assert req.language == "es"

    def test_local_neural_fallback(self):
        req = RefineRequest.from_sources({WEB: "ola", LOCAL: "hola"}, "es")
        assert req.deepgram_text == "hola"

    def test_has_text(self):
        assert RefineRequest.from_sources({}, "es").has_text is False
        assert RefineRequest.from_sources({WEB: "x"}, "es").has_text is True


class TestRefinementClient:
    def test_satisfies_protocol(self):
        assert isinstance(RefinementClient(), RefinementClientProtocol)

    @pytest.mark.asyncio
    async def test_refine_success(self, stub, client):
        result = await client.refine({WEB: "ola mundo", CLOUD: "hola mundo"})
        assert result == "Hola, mundo."
        assert stub.requests == [
            {"web_speech_text": "ola mundo", "deepgram_text": "hola mundo", "language": "es"}
        ]

    @pytest.mark.asyncio
    async def test_refine_detailed_keeps_confidence(self, stub, client):
        response = await client.refine_detailed({CLOUD: "hola"}, language="en")
        assert response.confidence == pytest.approx(0.92)
        assert stub.requests[0]["language"] == "en"

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, stub, client):
        stub.status = 500
        stub.body = {"error": "boom"}
        with pytest.raises(RefinementUnavailableError) as exc_info:
            await client.refine({CLOUD: "hola"})
        assert exc_info.value.context["status"] == 500

    @pytest.mark.asyncio
    async def test_fallback_answer_raises(self, stub, client):
        stub.body = {"refined_text": "hola", "confidence": 0.5, "fallback": True}
        with pytest.raises(RefinementUnavailableError):
            await client.refine({CLOUD: "hola"})

    @pytest.mark.asyncio
    async def test_malformed_body_raises(self, stub, client):
        stub.body = {"unexpected": "shape"}
        with pytest.raises(RefinementUnavailableError):
            await client.refine({CLOUD: "hola"})

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self, stub, client):
        stub.body = "<html>gateway</html>"
        with pytest.raises(RefinementUnavailableError):
            await client.refine({CLOUD: "hola"})

    @pytest.mark.asyncio
    async def test_timeout_raises(self, stub):
        stub.delay = 0.5
        async with RefinementClient(base_url=stub.base_url, timeout=0.1) as slow:
            with pytest.raises(RefinementUnavailableError):
                await slow.refine({CLOUD: "hola"})

    @pytest.mark.asyncio
    async def test_empty_input_raises_without_request(self, stub, client):
        with pytest.raises(RefinementUnavailableError):
            await client.refine({WEB: "  "})
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_connection_refused_raises(self):
        async with RefinementClient(base_url="http://127.0.0.1:9", timeout=1.0) as dead:
            with pytest.raises(RefinementUnavailableError):
                await dead.refine({CLOUD: "hola"})


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, client):
        health = await client.health_check()
        assert health.is_healthy
        assert health.model_size == "small"
        assert await client.is_healthy() is True

    @pytest.mark.asyncio
    async def test_unhealthy_payload(self, stub, client):
        stub.health_body = {"status": "unhealthy", "reason": "no api key"}
        health = await client.health_check()
        assert health.is_healthy is False
        assert health.model_extra["reason"] == "no api key"

    @pytest.mark.asyncio
    async def test_unreachable_is_unhealthy(self):
        async with RefinementClient(base_url="http://127.0.0.1:9", timeout=1.0) as dead:
            health = await dead.health_check()
        assert health.is_healthy is False
        assert health.error
