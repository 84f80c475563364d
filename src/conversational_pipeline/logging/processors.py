"""Structlog processors for the conversational chunk pipeline."""

from typing import Any

_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "anthropic_api_key",
        "deepgram_api_key",
        "authorization",
        "x-api-key",
        "token",
        "access_token",
        "secret",
        "password",
    }
)

# Transcript bodies can be long; keep log lines bounded.
_MAX_TEXT_CHARS = 120
_TEXT_KEYS = frozenset({"text", "transcript", "refined_text", "current_text"})


def censor_sensitive_data(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Redact values for keys that look like secrets."""
    for key in event_dict:
        if key.lower() in _SENSITIVE_KEYS:
            event_dict[key] = "***REDACTED***"
    return event_dict


def truncate_transcripts(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Shorten transcript-like values so a single event stays readable."""
    for key in _TEXT_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and len(value) > _MAX_TEXT_CHARS:
            event_dict[key] = value[:_MAX_TEXT_CHARS] + "..."
    return event_dict


def add_service_name(service_name: str) -> Any:
    """Return a processor that binds service=<name> to every event."""

    def processor(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor
