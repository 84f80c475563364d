"""Tests for SourceMerger priority fallback and debounced refinement."""

import asyncio

import pytest

from conversational_pipeline.errors import RefinementUnavailableError
from conversational_pipeline.merger import SourceMerger
from conversational_pipeline.models import TranscriptSource

WEB = TranscriptSource.WEB_SPEECH
CLOUD = TranscriptSource.CLOUD_ASR
LOCAL = TranscriptSource.LOCAL_NEURAL


class FakeRefiner:
    """Async refiner that records calls and returns a canned answer."""

    def __init__(self, result="refined", delay=0.0, error=None):
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, texts):
        self.calls.append(dict(texts))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            self.active -= 1


class TestPriorityFallback:
    def test_empty(self):
        assert SourceMerger().current_text() == ""

    def test_default_order(self):
        merger = SourceMerger()
        merger.on_source_text(WEB, "hola")
        assert merger.current_text() == "hola"
        merger.on_source_text(LOCAL, "hola local")
        assert merger.current_text() == "hola local"
        merger.on_source_text(CLOUD, "hola nube")
        assert merger.current_text() == "hola nube"

    def test_blank_text_skipped(self):
        merger = SourceMerger()
        merger.on_source_text(WEB, "hola")
        merger.on_source_text(CLOUD, "   ")
        assert merger.current_text() == "hola"

    def test_configurable_priority(self):
        merger = SourceMerger(source_priority=[LOCAL, CLOUD, WEB])
        merger.on_source_text(CLOUD, "nube")
        merger.on_source_text(LOCAL, "local")
        assert merger.current_text() == "local"

    def test_chunk_texts_joined_in_arrival_order(self):
        merger = SourceMerger()
        merger.on_source_text(CLOUD, "hola", chunk_id="c1")
        merger.on_source_text(CLOUD, "mundo", chunk_id="c2")
        assert merger.current_text() == "hola mundo"
        merger.on_source_text(CLOUD, "hola amigo", chunk_id="c1")
        assert merger.current_text() == "hola amigo mundo"

    def test_session_text_replaces(self):
        merger = SourceMerger()
        merger.on_source_text(WEB, "hol")
        merger.on_source_text(WEB, "hola que tal")
        assert merger.snapshot().by_source[WEB] == "hola que tal"

    def test_text_changed_callback(self):
        seen = []
        merger = SourceMerger().on_text_changed(seen.append)
        merger.on_source_text(WEB, "hola")
        merger.on_source_text(CLOUD, "hola nube")
        assert seen == ["hola", "hola nube"]

    def test_text_changed_callback_failure_swallowed(self):
        def broken(text):
            raise RuntimeError("ui bug")

        merger = SourceMerger().on_text_changed(broken)
        merger.on_source_text(WEB, "hola")
        assert merger.current_text() == "hola"


class TestRefinement:
    @pytest.mark.asyncio
    async def test_success_outranks_sources(self):
        refiner = FakeRefiner(result="Hola, mundo.")
        merger = SourceMerger(refiner=refiner)
        merger.on_source_text(WEB, "hola mundo")
        merger.on_source_text(CLOUD, "hola mundo")
        result = await merger.refine()
        assert result == "Hola, mundo."
        assert merger.current_text() == "Hola, mundo."
        assert merger.refinement_count == 1
        assert refiner.calls[0] == {WEB: "hola mundo", CLOUD: "hola mundo"}
        merger.abandon()

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_cloud(self):
        refiner = FakeRefiner(error=RefinementUnavailableError("down"))
        merger = SourceMerger(refiner=refiner)
        merger.on_source_text(WEB, "ola")
        merger.on_source_text(CLOUD, "hola")
        assert await merger.refine() is None
        assert merger.current_text() == "hola"
        assert merger.refinement_failures == 1
        merger.abandon()

    @pytest.mark.asyncio
    async def test_failure_clears_stale_refinement(self):
        refiner = FakeRefiner(result="Hola.")
        merger = SourceMerger(refiner=refiner)
        merger.on_source_text(CLOUD, "hola", chunk_id="c1")
        await merger.refine()
        refiner.error = ConnectionError("reset")
        merger.on_source_text(CLOUD, "adiós", chunk_id="c2")
        await merger.refine()
        assert merger.current_text() == "hola adiós"
        merger.abandon()

    @pytest.mark.asyncio
    async def test_empty_answer_is_failure(self):
        merger = SourceMerger(refiner=FakeRefiner(result="  "))
        merger.on_source_text(CLOUD, "hola")
        assert await merger.refine() is None
        assert merger.current_text() == "hola"
        merger.abandon()

    @pytest.mark.asyncio
    async def test_disabled_refinement_skips_call(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner)
        merger.refinement_enabled = False
        merger.on_source_text(CLOUD, "hola")
        assert await merger.refine() is None
        assert refiner.calls == []

    @pytest.mark.asyncio
    async def test_no_refiner(self):
        merger = SourceMerger()
        assert merger.refinement_enabled is False
        assert await merger.refine({CLOUD: "hola"}) is None


class TestDebounce:
    @pytest.mark.asyncio
    async def test_two_updates_within_window_make_one_call(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner, debounce_ms=500)
        merger.on_source_text(CLOUD, "hola")
        await asyncio.sleep(0.05)
        merger.on_source_text(CLOUD, "hola mundo")
        await asyncio.sleep(0.7)

        assert len(refiner.calls) == 1
        assert refiner.calls[0][CLOUD] == "hola mundo"
        assert merger.current_text() == "refined"

    @pytest.mark.asyncio
    async def test_non_trigger_source_does_not_refine(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner, debounce_ms=20)
        merger.on_source_text(WEB, "hola")
        merger.on_source_text(LOCAL, "hola")
        await asyncio.sleep(0.1)
        assert refiner.calls == []

    @pytest.mark.asyncio
    async def test_updates_apart_make_separate_calls(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner, debounce_ms=20)
        merger.on_source_text(CLOUD, "uno")
        await asyncio.sleep(0.1)
        merger.on_source_text(CLOUD, "dos")
        await asyncio.sleep(0.1)
        assert [c[CLOUD] for c in refiner.calls] == ["uno", "dos"]

    @pytest.mark.asyncio
    async def test_in_flight_call_defers_next(self):
        refiner = FakeRefiner(delay=0.15)
        merger = SourceMerger(refiner=refiner, debounce_ms=20)
        merger.on_source_text(CLOUD, "uno")
        await asyncio.sleep(0.06)
        assert merger.is_refining
        merger.on_source_text(CLOUD, "uno dos")
        await asyncio.sleep(0.06)
        # Second debounce fired while the first call is still running
        assert len(refiner.calls) == 1

        await asyncio.sleep(0.35)
        assert len(refiner.calls) == 2
        assert refiner.calls[1][CLOUD] == "uno dos"
        assert refiner.max_active == 1

    @pytest.mark.asyncio
    async def test_abandon_cancels_timer_and_call(self):
        refiner = FakeRefiner(delay=0.2)
        merger = SourceMerger(refiner=refiner, debounce_ms=20)
        merger.on_source_text(CLOUD, "uno")
        await asyncio.sleep(0.05)
        assert merger.is_refining

        merger.abandon()
        merger.on_source_text(CLOUD, "dos")
        await asyncio.sleep(0.3)

        assert len(refiner.calls) == 1
        assert merger.refinement_count == 0
        assert merger.is_refining is False
        assert merger.current_text() == "dos"

    @pytest.mark.asyncio
    async def test_reset_clears_and_reopens(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner, debounce_ms=10)
        merger.on_source_text(CLOUD, "uno")
        merger.reset()
        assert merger.current_text() == ""

        merger.on_source_text(CLOUD, "dos")
        await asyncio.sleep(0.1)
        assert [c[CLOUD] for c in refiner.calls] == ["dos"]

    def test_no_running_loop_skips_refinement(self):
        refiner = FakeRefiner()
        merger = SourceMerger(refiner=refiner)
        merger.on_source_text(CLOUD, "hola")
        assert merger.current_text() == "hola"
        assert refiner.calls == []

    @pytest.mark.asyncio
    async def test_snapshot(self):
        merger = SourceMerger(refiner=FakeRefiner(result="Hola."))
        merger.on_source_text(WEB, "hola")
        await merger.refine()
        snap = merger.snapshot()
        assert snap.refined_text == "Hola."
        assert snap.refining is False
        assert snap.to_dict()["by_source"] == {"web-speech": "hola"}
