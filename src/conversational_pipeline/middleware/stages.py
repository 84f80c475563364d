"""
Built-in Enrichment Stages

Lightweight heuristics that tag an emitted chunk before delivery:
- quality: audio quality estimate derived from the VAD score (enabled)
- translation: language tagging placeholder (disabled)
- sentiment: keyword sentiment (disabled)
- intent: question / command / statement detection (disabled)

Each stage only writes to the context metadata, so disabling one never
changes the transcript another stage sees.
"""

import re

from conversational_pipeline.models import MiddlewareContext

from .pipeline import MiddlewarePipeline

_WORD_RE = re.compile(r"[\wáéíóúüñ¿?¡!']+", re.IGNORECASE)

POSITIVE_WORDS = frozenset(
    {"good", "great", "awesome", "excellent", "amazing", "bueno", "genial", "excelente"}
)
NEGATIVE_WORDS = frozenset({"bad", "terrible", "awful", "horrible", "worst", "malo", "peor"})
QUESTION_WORDS = frozenset(
    {"what", "how", "when", "where", "why", "who", "qué", "cómo", "cuándo", "dónde", "quién"}
)
COMMAND_WORDS = frozenset({"play", "stop", "start", "open", "close", "send"})


def _words(text: str) -> list[str]:
    return [w.strip("¿?¡!").lower() for w in _WORD_RE.findall(text or "")]


class QualityStage:
    """Attach an audio quality estimate."""

    name = "quality"

    async def process(self, ctx: MiddlewareContext) -> MiddlewareContext:
        score = ctx.chunk.vad_score if ctx.chunk.vad_score else 0.8
        ctx.metadata.update(
            {
                "audio_quality": score,
                "noise_level": 0.1,
                "clarity": 0.9,
                "enhancement": ["neural_denoising", "voice_enhancement"],
            }
        )
        return ctx


class TranslationStage:
    """Tag the transcript language; the text itself passes through."""

    name = "translation"

    def __init__(self, source_language: str = "es"):
        self.source_language = source_language

    async def process(self, ctx: MiddlewareContext) -> MiddlewareContext:
        ctx.metadata.update(
            {
                "original_language": self.source_language,
                "translated_text": ctx.chunk.transcript,
                "translation_confidence": 0.95,
            }
        )
        return ctx


class SentimentStage:
    name = "sentiment"

    async def process(self, ctx: MiddlewareContext) -> MiddlewareContext:
        words = _words(ctx.chunk.transcript)
        positive = sum(1 for w in words if w in POSITIVE_WORDS)
        negative = sum(1 for w in words if w in NEGATIVE_WORDS)

        if positive > negative:
            label, score, emotion = "positive", 0.7, "happy"
        elif negative > positive:
            label, score, emotion = "negative", 0.7, "sad"
        else:
            label, score, emotion = "neutral", 0.5, "neutral"

        ctx.metadata.update({"sentiment": label, "sentiment_score": score, "emotion": emotion})
        return ctx


class IntentStage:
    name = "intent"

    async def process(self, ctx: MiddlewareContext) -> MiddlewareContext:
        text = ctx.chunk.transcript or ""
        words = set(_words(text))

        if "?" in text or words & QUESTION_WORDS:
            intent, confidence = "question", 0.8
        elif words & COMMAND_WORDS:
            intent, confidence = "command", 0.8
        else:
            intent, confidence = "statement", 0.6

        ctx.metadata.update({"intent": intent, "intent_confidence": confidence, "entities": []})
        return ctx


def create_default_pipeline(source_language: str = "es", **kwargs) -> MiddlewarePipeline:
    """Pipeline with the built-in stages; only quality starts enabled."""
    pipeline = MiddlewarePipeline(**kwargs)
    pipeline.use(QualityStage())
    pipeline.use(TranslationStage(source_language), enabled=False)
    pipeline.use(SentimentStage(), enabled=False)
    pipeline.use(IntentStage(), enabled=False)
    return pipeline
