"""Tests for payload serialization of public types."""

from datetime import UTC, datetime

from convmem.types import (
    ConversationEpisode,
    ConversationFact,
    FactCategory,
    Message,
    parse_datetime,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestParseDatetime:
    """Tests for parse_datetime."""

    def test_z_suffix(self):
        assert parse_datetime("2026-03-01T12:00:00Z") == NOW

    def test_naive_assumed_utc(self):
        assert parse_datetime("2026-03-01T12:00:00") == NOW

    def test_invalid(self):
        assert parse_datetime("yesterday") is None
        assert parse_datetime(None) is None


class TestFactCategory:
    """Tests for FactCategory.parse."""

    def test_case_and_whitespace(self):
        assert FactCategory.parse(" Debugging ") == FactCategory.DEBUGGING

    def test_unknown(self):
        assert FactCategory.parse("personal") is None
        assert FactCategory.parse(3) is None


class TestConversationFact:
    """Tests for fact payload conversion."""

    def test_payload_omits_unset_optionals(self):
        fact = ConversationFact(id="f1", content="Uses Redis", category=FactCategory.INFRASTRUCTURE)
        payload = fact.to_payload()
        assert payload["category"] == "infrastructure"
        assert payload["resolved"] is False
        assert "superseded_by" not in payload
        assert "metadata" not in payload

    def test_from_payload(self):
        fact = ConversationFact(
            id="f1",
            content="Auth uses JWT",
            category=FactCategory.ARCHITECTURE,
            confidence=0.9,
            reference_time=NOW,
            superseded_by="f2",
            superseded_at=NOW,
            source_model="openai/gpt-test",
            metadata={"file_path": "src/auth.py"},
        )
        restored = ConversationFact.from_payload(fact.to_payload())
        assert restored == fact
        assert restored.is_superseded

    def test_unknown_category_payload(self):
        assert ConversationFact.from_payload({"content": "x", "category": "misc"}) is None

    def test_bad_confidence_defaults(self):
        fact = ConversationFact.from_payload({"content": "x", "category": "pattern", "confidence": "hi"})
        assert fact.confidence == 0.7


class TestConversationEpisode:
    """Tests for episode payloads."""

    def test_payload_excludes_messages(self):
        episode = ConversationEpisode(
            id="ep_1",
            workspace_id="/ws",
            context_description="Fix login",
            message_count=2,
            start_time=NOW,
            end_time=NOW,
            messages=(Message(role="user", content="hi"),),
        )
        payload = episode.to_payload()
        assert "messages" not in payload
        restored = ConversationEpisode.from_payload(payload)
        assert restored.message_count == 2
        assert restored.messages == ()
        assert restored.with_description("Other").context_description == "Other"
