"""Pipeline steps that drive and consume AI conversations."""

from .ai_step import AIStep, StepExecutionError
from .publish_step import PublishStep

__all__ = ["AIStep", "PublishStep", "StepExecutionError"]
