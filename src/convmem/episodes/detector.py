"""Episode boundary detection.

Messages are walked in order while an episode is collecting. A boundary
is found when the gap between consecutive timestamps exceeds the
configured threshold, when a topic pattern matches, or when the optional
message cap is reached. The open episode is then closed (count and time
span fixed), described, and a new one starts collecting. The last open
episode is always closed, even with a single message.

Optional segmentation modes add embedding centroid drift breakpoints
("semantic") and an LLM pass that refines the boundaries ("llm_verified").
"""

import asyncio
import hashlib
import json
import logging
import re
import statistics
from datetime import datetime, timedelta

import numpy as np

from convmem.config.models import SegmentationConfig
from convmem.episodes.context import EpisodeContextGenerator
from convmem.llm.parsing import coerce_json
from convmem.protocols import Embedder, JsonLLMProvider
from convmem.types import ConversationEpisode, Message, ProjectContext

logger = logging.getLogger(__name__)

REFINER_PROMPT = """You will segment a technical chat into coherent episodes.
Return JSON: {{"boundaries": number[], "titles": string[]}}
Rules: boundaries are 0-based message indices where a new episode begins; must include 0; {size_rule}prefer merging trivial one-liners into neighbors; minimize splits unless the topic clearly shifts.
Project: {project}
Messages: {messages}"""

REFINER_MESSAGE_CHARS = 400


def make_episode_id(workspace_id: str, first: Message) -> str:
    """Stable id anchored to the first message, so it survives episode growth."""
    fingerprint = f"{first.content[:120]}|{first.timestamp or ''}"
    digest = hashlib.sha256(f"{workspace_id}{fingerprint}".encode()).hexdigest()
    return f"ep_{digest[:10]}"


def adaptive_threshold(values: list[float], k: float) -> float:
    """median + k * MAD; infinite until there are three observations."""
    if len(values) < 3:
        return float("inf")
    med = statistics.median(values)
    mad = statistics.median(abs(v - med) for v in values) or 1e-6
    return med + k * mad


class EpisodeDetector:
    """Splits a message stream into described episodes."""

    def __init__(
        self,
        context_generator: EpisodeContextGenerator,
        config: SegmentationConfig | None = None,
        embedder: Embedder | None = None,
        llm: JsonLLMProvider | None = None,
    ):
        self._context = context_generator
        self._config = config or SegmentationConfig()
        self._embedder = embedder
        self._llm = llm
        self._time_gap = timedelta(minutes=self._config.time_gap_minutes)
        self._topic_patterns = [
            re.compile(p, re.IGNORECASE) for p in self._config.topic_patterns
        ]

    async def detect(
        self,
        messages: list[Message],
        workspace_id: str,
        project: ProjectContext | None = None,
    ) -> list[ConversationEpisode]:
        if not messages:
            return []

        breakpoints = set(self.find_heuristic_breakpoints(messages))
        if self._config.mode != "heuristic" and self._embedder is not None:
            breakpoints.update(await self._find_semantic_breakpoints(messages))

        segments = self._segment(messages, sorted(breakpoints))
        titles: list[str] = []
        if self._config.mode == "llm_verified" and self._llm is not None:
            refined = await self._refine_boundaries(messages, project)
            if refined is not None:
                segments, titles = refined

        episodes = []
        for idx, segment in enumerate(segments):
            if idx < len(titles) and titles[idx].strip():
                description = titles[idx].strip()
            else:
                description = await self._context.describe(segment, project)
            episodes.append(self._close(segment, workspace_id, description))

        logger.debug(
            "episodes_detected",
            extra={"message.count": len(messages), "episode.count": len(episodes)},
        )
        return episodes

    def find_heuristic_breakpoints(self, messages: list[Message]) -> list[int]:
        """Indices where a new episode starts (never 0)."""
        breakpoints = []
        for i in range(1, len(messages)):
            prev, curr = messages[i - 1].time, messages[i].time
            if prev is not None and curr is not None and curr - prev > self._time_gap:
                breakpoints.append(i)
            elif any(p.search(messages[i].content) for p in self._topic_patterns):
                breakpoints.append(i)
        return breakpoints

    def _segment(
        self, messages: list[Message], breakpoints: list[int]
    ) -> list[list[Message]]:
        """Slice at breakpoints, then enforce the optional message cap."""
        cap = self._config.max_messages
        segments = []
        start = 0
        for bp in [*breakpoints, len(messages)]:
            if bp <= start:
                continue
            while cap and bp - start > cap:
                segments.append(messages[start : start + cap])
                start += cap
            segments.append(messages[start:bp])
            start = bp
        return segments

    def _close(
        self, segment: list[Message], workspace_id: str, description: str
    ) -> ConversationEpisode:
        times: list[datetime] = [t for m in segment if (t := m.time) is not None]
        return ConversationEpisode(
            id=make_episode_id(workspace_id, segment[0]),
            workspace_id=workspace_id,
            context_description=description,
            message_count=len(segment),
            start_time=min(times) if times else None,
            end_time=max(times) if times else None,
            messages=tuple(segment),
        )

    def _distance(self, a: np.ndarray, b: np.ndarray) -> float:
        if self._config.distance == "dot":
            return max(0.0, 1.0 - float(a @ b))
        na, nb = np.linalg.norm(a), np.linalg.norm(b)
        if na == 0 or nb == 0:
            return 1.0
        return 1.0 - float(a @ b) / float(na * nb)

    async def _find_semantic_breakpoints(self, messages: list[Message]) -> list[int]:
        """Centroid drift: split when a message is unusually far from the episode so far."""
        assert self._embedder is not None
        indexed = [(i, m.content) for i, m in enumerate(messages) if m.content.strip()]
        try:
            vectors = await self._embedder.embed_batch([text for _, text in indexed])
        except Exception as e:
            logger.warning("semantic_segmentation_failed", extra={"error.message": str(e)})
            return []

        breakpoints = []
        centroid: np.ndarray | None = None
        distances: list[float] = []
        for (i, _), raw in zip(indexed, vectors, strict=True):
            v = np.asarray(raw, dtype=np.float32)
            if centroid is None:
                centroid = v.copy()
                continue

            d = self._distance(v, centroid)
            distances.append(d)
            threshold = adaptive_threshold(distances, self._config.drift_k)
            if i >= self._config.min_window and d > threshold:
                breakpoints.append(i)
                centroid = v.copy()
                distances.clear()
                continue

            n = min(i, 1000)
            centroid = (centroid * n + v) / (n + 1)
        return breakpoints

    async def _refine_boundaries(
        self, messages: list[Message], project: ProjectContext | None
    ) -> tuple[list[list[Message]], list[str]] | None:
        assert self._llm is not None
        convo = [
            {
                "i": i,
                "role": m.role,
                "t": m.timestamp,
                "c": m.content[:REFINER_MESSAGE_CHARS],
            }
            for i, m in enumerate(messages)
        ]
        cap = self._config.max_messages
        project_line = ""
        if project is not None:
            project_line = f"{project.workspace_name} ({project.language}"
            project_line += f" / {project.framework})" if project.framework else ")"
        prompt = REFINER_PROMPT.format(
            size_rule=f"keep episodes <= {cap} messages; " if cap else "",
            project=project_line,
            messages=json.dumps(convo),
        )

        timeout = self._config.refiner_timeout_seconds
        try:
            raw = await asyncio.wait_for(
                self._llm.generate_json(prompt, temperature=0.2, max_tokens=500),
                timeout=timeout,
            )
        except TimeoutError:
            logger.warning("boundary_refinement_timeout", extra={"timeout_s": timeout})
            return None
        except Exception as e:
            logger.warning("boundary_refinement_failed", extra={"error.message": str(e)})
            return None

        result = coerce_json(raw)
        if not result.ok or not isinstance(result.value, dict):
            return None
        boundaries = result.value.get("boundaries")
        if not isinstance(boundaries, list):
            return None
        sanitized = sorted(
            {
                b
                for b in boundaries
                if isinstance(b, int) and not isinstance(b, bool) and 0 < b < len(messages)
            }
        )
        titles = result.value.get("titles")
        titles = [t if isinstance(t, str) else "" for t in titles] if isinstance(titles, list) else []
        return self._segment(messages, sanitized), titles
