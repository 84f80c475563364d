"""Tests for conversational_pipeline.logging setup, processors and performance logging."""

import json
import logging
import time

import pytest


def _last_json_line(err: str) -> dict:
    lines = [line for line in err.strip().split("\n") if line.strip()]
    return json.loads(lines[-1])


class TestSetupLogging:
    def test_json_output(self, capsys):
        from conversational_pipeline.logging import get_logger, setup_logging

        setup_logging(service_name="pipeline-test", log_format="json")
        logger = get_logger()
        logger.info("chunk_emitted", chunk_id="c1")
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "chunk_emitted"
        assert data["chunk_id"] == "c1"
        assert data["service"] == "pipeline-test"
        assert data["level"] == "info"
        assert "timestamp" in data

    def test_dev_output_no_json(self, capsys):
        from conversational_pipeline.logging import get_logger, setup_logging

        setup_logging(service_name="pipeline-test", log_format="dev")
        get_logger().info("hello_dev")
        output = capsys.readouterr().err.strip()
        assert "hello_dev" in output
        with pytest.raises(json.JSONDecodeError):
            json.loads(output.split("\n")[-1])

    def test_stdlib_logs_formatted(self, capsys):
        from conversational_pipeline.logging import setup_logging

        setup_logging(service_name="pipeline-test", log_format="json")
        logging.getLogger("aiohttp.client").warning("connection reset")
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "connection reset"
        assert data["level"] == "warning"

    def test_level_filters_debug(self, capsys):
        from conversational_pipeline.logging import get_logger, setup_logging

        setup_logging(service_name="pipeline-test", log_level="info")
        get_logger().debug("hidden_event")
        assert "hidden_event" not in capsys.readouterr().err

    def test_from_settings_debug_flag(self, capsys):
        from conversational_pipeline.config import ServiceSettings
        from conversational_pipeline.logging import get_logger, setup_logging_from_settings

        settings = ServiceSettings(log_level="WARNING", log_format="json", debug=True)
        setup_logging_from_settings(settings)
        get_logger().debug("visible_debug")
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "visible_debug"
        assert data["service"] == "conversational-pipeline"


class TestProcessors:
    def test_censor_sensitive_keys(self):
        from conversational_pipeline.logging.processors import censor_sensitive_data

        event_dict = {
            "event": "refine",
            "anthropic_api_key": "sk-ant",  # pragma: allowlist secret
            "Authorization": "Bearer x",
            "chunk_id": "c1",
        }
        result = censor_sensitive_data(None, None, event_dict)
        assert result["anthropic_api_key"] == "***REDACTED***"
        assert result["Authorization"] == "***REDACTED***"
        assert result["chunk_id"] == "c1"

    def test_truncate_long_transcripts(self):
        from conversational_pipeline.logging.processors import truncate_transcripts

        long_text = "palabra " * 50
        result = truncate_transcripts(None, None, {"event": "x", "transcript": long_text})
        assert result["transcript"].endswith("...")
        assert len(result["transcript"]) == 123

    def test_short_transcript_untouched(self):
        from conversational_pipeline.logging.processors import truncate_transcripts

        result = truncate_transcripts(None, None, {"event": "x", "text": "hola"})
        assert result["text"] == "hola"

    def test_service_name_processor(self):
        from conversational_pipeline.logging.processors import add_service_name

        processor = add_service_name("svc")
        assert processor(None, None, {"event": "x"})["service"] == "svc"


class TestLogPerformance:
    def test_logs_duration(self, capsys):
        from conversational_pipeline.logging import get_logger, log_performance, setup_logging

        setup_logging(service_name="test", log_level="DEBUG")
        logger = get_logger()
        with log_performance(logger, "refine", sources=["cloud-asr"]):
            time.sleep(0.01)
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "operation_completed"
        assert data["operation"] == "refine"
        assert data["sources"] == ["cloud-asr"]
        assert data["duration_ms"] >= 10

    def test_logs_on_exception(self, capsys):
        from conversational_pipeline.logging import get_logger, log_performance, setup_logging

        setup_logging(service_name="test")
        logger = get_logger()
        with pytest.raises(ValueError):
            with log_performance(logger, "failing_op"):
                raise ValueError("boom")
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "operation_failed"
        assert data["level"] == "warning"
        assert data["operation"] == "failing_op"

    def test_fields_set_inside_block(self, capsys):
        from conversational_pipeline.logging import get_logger, log_performance, setup_logging

        setup_logging(service_name="test", log_level="DEBUG")
        with log_performance(get_logger(), "refinement_request", url="http://x/refine") as perf:
            perf["status"] = 200
        data = _last_json_line(capsys.readouterr().err)
        assert data["status"] == 200
        assert data["url"] == "http://x/refine"

    def test_slow_operation_logged_at_warning(self, capsys):
        from conversational_pipeline.logging import get_logger, log_performance, setup_logging

        setup_logging(service_name="test")
        with log_performance(get_logger(), "refine", slow_ms=1):
            time.sleep(0.01)
        data = _last_json_line(capsys.readouterr().err)
        assert data["event"] == "operation_slow"
        assert data["level"] == "warning"
        assert data["slow_ms"] == 1

    def test_failure_names_error_type(self, capsys):
        from conversational_pipeline.logging import get_logger, log_performance, setup_logging

        setup_logging(service_name="test")
        with pytest.raises(TimeoutError):
            with log_performance(get_logger(), "refinement_request"):
                raise TimeoutError()
        assert _last_json_line(capsys.readouterr().err)["error_type"] == "TimeoutError"
