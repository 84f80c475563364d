"""Environment-based configuration."""

from conversational_pipeline.config.settings import PipelineSettings, ServiceSettings

__all__ = ["PipelineSettings", "ServiceSettings"]
