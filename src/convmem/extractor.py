"""Fact extraction from conversation turns.

A single low-temperature LLM call turns the recent messages of a turn into
categorized fact candidates. Extraction never raises: provider failures and
unparseable output both yield an empty list.
"""

import logging
from collections import Counter
from typing import Any

from convmem.config.models import ExtractionConfig
from convmem.errors import ExtractionFailure
from convmem.llm.parsing import coerce_json
from convmem.protocols import JsonLLMProvider
from convmem.secrets import contains_secret
from convmem.types import (
    DEFAULT_CONFIDENCE,
    FactCandidate,
    FactCategory,
    Message,
    ProjectContext,
)

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are organizing technical facts for a {language} project.
Project: {workspace_name}
Framework: {framework}
Package Manager: {package_manager}

Categories:
- infrastructure: core tech stack, databases, deployment, tooling (persistent)
- architecture: design decisions and approaches (can be superseded)
- debugging: current problems and issues (temporary; resolved or aged out)
- pattern: solutions, conventions and lessons learned (persistent)

Only record facts a developer would want recalled in a later session.
Skip greetings, restatements of the question and anything transient.
Never include credentials or secrets.

CONVERSATION EPISODE:
{conversation}

Return JSON: {{"facts": [{{"content": string, "category": "infrastructure"|"architecture"|"debugging"|"pattern", "confidence": number}}]}}"""


class ConversationFactExtractor:
    """Extract categorized facts from a window of messages."""

    def __init__(self, config: ExtractionConfig | None = None):
        self._config = config or ExtractionConfig()

    def format_conversation(self, messages: list[Message]) -> str:
        """ROLE: content lines, skipping system messages and blanks."""
        lines = []
        for msg in messages:
            if msg.role == "system":
                continue
            text = msg.content.strip()
            if not text:
                continue
            if len(text) > self._config.message_chars:
                text = text[: self._config.message_chars] + "..."
            lines.append(f"{msg.role.upper()}: {text}")
        return "\n".join(lines)[: self._config.transcript_chars]

    def build_prompt(self, messages: list[Message], project: ProjectContext) -> str:
        return EXTRACTION_PROMPT.format(
            language=project.language,
            workspace_name=project.workspace_name,
            framework=project.framework or "none",
            package_manager=project.package_manager or "unknown",
            conversation=self.format_conversation(messages),
        )

    async def extract(
        self,
        messages: list[Message],
        project: ProjectContext,
        llm: JsonLLMProvider,
    ) -> list[FactCandidate]:
        """Analyze messages and return fact candidates in model order.

        Returns:
            Candidates; empty on provider failure or unparseable output.
        """
        if not messages:
            return []
        prompt = self.build_prompt(messages, project)
        if not self.format_conversation(messages):
            return []

        try:
            data = await self._generate(prompt, llm)
        except ExtractionFailure as e:
            logger.warning(
                "fact_extraction_failed",
                extra={
                    "error.message": str(e),
                    "error.type": type(e.__cause__ or e).__name__,
                },
            )
            return []

        drop_counts: Counter[str] = Counter()
        facts = self.parse_facts(data, drop_counts=drop_counts)
        total_candidates = len(facts) + sum(drop_counts.values())
        stats_level = logger.debug if total_candidates == 0 else logger.info
        stats_level(
            "fact_extraction_filter_stats",
            extra={
                "fact.total_candidates": total_candidates,
                "fact.accepted_count": len(facts),
                "fact.dropped_invalid": drop_counts.get("invalid", 0),
                "fact.dropped_empty_content": drop_counts.get("empty_content", 0),
                "fact.dropped_unknown_category": drop_counts.get("unknown_category", 0),
                "fact.dropped_secret": drop_counts.get("secret", 0),
            },
        )
        return facts

    async def _generate(self, prompt: str, llm: JsonLLMProvider) -> Any:
        """Call the model and decode its JSON.

        Raises:
            ExtractionFailure: the provider failed or the output was not JSON.
        """
        try:
            raw = await llm.generate_json(
                prompt,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
        except Exception as e:
            raise ExtractionFailure(f"fact extraction call failed: {e}") from e

        result = coerce_json(raw)
        if not result.ok:
            assert result.error is not None
            raise ExtractionFailure(f"unparseable extraction output: {result.error.message}")
        return result.value

    def parse_facts(
        self,
        data: Any,
        *,
        drop_counts: Counter[str] | None = None,
    ) -> list[FactCandidate]:
        """Accept {"facts": [...]} or a bare list."""
        counters = drop_counts if drop_counts is not None else Counter()
        items = data.get("facts") if isinstance(data, dict) else data
        if not isinstance(items, list):
            logger.debug("Extraction response has no fact list: %s", type(data))
            return []

        facts = []
        for item in items:
            if not isinstance(item, dict):
                counters["invalid"] += 1
                continue
            fact = self._parse_fact_item(item, counters)
            if fact is not None:
                facts.append(fact)
        return facts

    def _parse_fact_item(
        self, item: dict[str, Any], counters: Counter[str]
    ) -> FactCandidate | None:
        content = item.get("content")
        content = content.strip() if isinstance(content, str) else ""
        if not content:
            counters["empty_content"] += 1
            return None

        category = FactCategory.parse(item.get("category"))
        if category is None:
            counters["unknown_category"] += 1
            logger.debug(
                "fact_unknown_category",
                extra={"fact.category": str(item.get("category"))[:40]},
            )
            return None

        if contains_secret(content):
            counters["secret"] += 1
            return None

        confidence = item.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, int | float):
            confidence = DEFAULT_CONFIDENCE
        confidence = min(1.0, max(0.0, float(confidence)))

        return FactCandidate(content=content, category=category, confidence=confidence)
