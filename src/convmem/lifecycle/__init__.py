"""Fact lifecycle: temporal scoring and retention."""

from convmem.lifecycle.retention import RetentionService
from convmem.lifecycle.temporal import TemporalScorer, age_days

__all__ = ["RetentionService", "TemporalScorer", "age_days"]
