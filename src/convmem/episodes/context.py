"""One-sentence descriptions for closed episodes."""

import logging

from convmem.llm.parsing import coerce_json
from convmem.protocols import HintsProvider, JsonLLMProvider
from convmem.types import Hints, Message, ProjectContext

logger = logging.getLogger(__name__)

DESCRIPTION_PROMPT = """Summarize this technical conversation episode in one sentence of at most 10 words, focusing on the main topic and outcome.
{project_line}
{hint_line}

Conversation:
{conversation}

Return JSON: {{"description": "your 10-word summary"}}"""

MESSAGE_PREVIEW_CHARS = 300


def fallback_description(message_count: int) -> str:
    return f"Episode with {message_count} messages"


def format_hints(hints: Hints) -> str:
    parts = []
    if hints.deps:
        parts.append(f"Dependencies: {', '.join(hints.deps[:5])}")
    if hints.tags:
        parts.append(f"Memory tags: {', '.join(hints.tags[:5])}")
    if hints.dirs:
        parts.append(f"Key dirs: {', '.join(hints.dirs[:5])}")
    if hints.extra:
        parts.append(f"Keywords: {', '.join(hints.extra[:3])}")
    return f"Context: {'; '.join(parts)}" if parts else ""


def format_project(project: ProjectContext | None) -> str:
    if project is None:
        return ""
    stack = project.language
    if project.framework:
        stack += f"/{project.framework}"
    return f"Project: {project.workspace_name} ({stack})"


class EpisodeContextGenerator:
    """Describes an episode with the LLM, never failing.

    Any LLM failure or empty answer falls back to "Episode with N messages";
    hint failures are logged and the prompt is built without hints.
    """

    def __init__(
        self,
        llm: JsonLLMProvider | None,
        hints_provider: HintsProvider | None = None,
    ):
        self._llm = llm
        self._hints_provider = hints_provider

    async def _get_hints(self, project: ProjectContext | None) -> Hints:
        if self._hints_provider is None:
            return Hints()
        try:
            return await self._hints_provider.get_hints(project)
        except Exception as e:
            logger.warning("episode_hints_failed", extra={"error.message": str(e)})
            return Hints()

    async def build_prompt(
        self, messages: list[Message], project: ProjectContext | None = None
    ) -> str:
        conversation = "\n".join(
            f"{m.role}: {m.content[:MESSAGE_PREVIEW_CHARS]}" for m in messages
        )
        hints = await self._get_hints(project)
        return DESCRIPTION_PROMPT.format(
            project_line=format_project(project),
            hint_line=format_hints(hints),
            conversation=conversation,
        )

    async def describe(
        self, messages: list[Message], project: ProjectContext | None = None
    ) -> str:
        fallback = fallback_description(len(messages))
        if self._llm is None or not messages:
            return fallback

        prompt = await self.build_prompt(messages, project)
        try:
            raw = await self._llm.generate_json(prompt, temperature=0.2, max_tokens=80)
        except Exception as e:
            logger.warning(
                "episode_description_failed",
                extra={"error.message": str(e), "message.count": len(messages)},
            )
            return fallback

        result = coerce_json(raw)
        if not result.ok or not isinstance(result.value, dict):
            return fallback
        text = result.value.get("description") or result.value.get("summary") or ""
        return text.strip() if isinstance(text, str) and text.strip() else fallback
