"""Temporal relevance scoring with per-category decay."""

from datetime import UTC, datetime

from convmem.config.models import TemporalConfig
from convmem.types import ConversationFact, FactCategory

SECONDS_PER_DAY = 86400


def age_days(reference: datetime | None, now: datetime) -> float:
    """Days from reference to now; 0 if unknown or in the future."""
    if reference is None:
        return 0.0
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return max(0.0, (now - reference).total_seconds() / SECONDS_PER_DAY)


class TemporalScorer:
    """Scores a fact's current relevance from its category, state and age.

    - infrastructure: durable, boosted by a constant multiplier
    - architecture: linear decay to a floor; superseded facts drop to a constant
    - debugging: full weight while fresh and unresolved, then a constant
    - pattern: discounted, slow linear decay to a floor

    Scores are never negative and never increase as `now` advances.
    """

    def __init__(self, config: TemporalConfig | None = None) -> None:
        self._cfg = config or TemporalConfig()

    def score(self, fact: ConversationFact, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        cfg = self._cfg
        base = max(0.0, fact.confidence)
        days = age_days(fact.reference_time, now)

        match fact.category:
            case FactCategory.INFRASTRUCTURE:
                return base * cfg.infra_multiplier
            case FactCategory.ARCHITECTURE:
                if fact.is_superseded:
                    return cfg.superseded_score
                recency = max(cfg.architecture_floor, 1 - days / cfg.architecture_decay_days)
                return base * recency
            case FactCategory.DEBUGGING:
                if fact.resolved:
                    return cfg.debugging_resolved_score
                if days > cfg.debugging_old_days:
                    return min(base, cfg.debugging_old_score)
                return base
            case FactCategory.PATTERN:
                decay = max(cfg.pattern_floor, 1 - days / cfg.pattern_decay_days)
                return base * cfg.pattern_base * decay
