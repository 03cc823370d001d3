"""Shared dependencies for API routes."""

from config import settings
from services.pipeline.orchestrator import MatchingPipeline

_pipeline: MatchingPipeline | None = None


def get_pipeline() -> MatchingPipeline:
    """Process-wide pipeline, created on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = MatchingPipeline(settings)
    return _pipeline
