"""Tests for inbound payload canonicalization."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from conversations.canonical import InboundMessage, canonicalize, extract_phone_number
from shared_types import MessageRole

AGENT = "6280000000000@s.whatsapp.net"


def _payload(**overrides):
    data = {
        "id": "m1",
        "chat_id": "1203@g.us",
        "sender_id": "628123456789@s.whatsapp.net",
        "push_name": "Budi",
        "text": "halo semua",
        "timestamp": "2024-05-01T12:00:00",
    }
    data.update(overrides)
    return data


class TestExtractPhoneNumber:
    def test_numeric_prefix(self):
        assert extract_phone_number("628123456789@s.whatsapp.net") == "628123456789"

    def test_non_numeric(self):
        assert extract_phone_number("budi@example") is None
        assert extract_phone_number(None) is None


class TestCanonicalize:
    def test_basic(self):
        m = canonicalize(_payload(), AGENT)
        assert m.id == "m1"
        assert m.conversation_id == "1203@g.us"
        assert m.sender_name == "Budi"
        assert m.content == "halo semua"
        assert m.role == MessageRole.USER
        assert not m.is_reply

    def test_naive_timestamp_becomes_utc(self):
        m = canonicalize(_payload(), AGENT)
        assert m.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_caption_used_when_no_text(self):
        m = canonicalize(_payload(text=None, caption="  lihat ini  "), AGENT)
        assert m.content == "lihat ini"

    def test_missing_name_falls_back_to_phone(self):
        m = canonicalize(_payload(push_name=None), AGENT)
        assert m.sender_name == "628123456789"

    def test_agent_role(self):
        m = canonicalize(_payload(sender_id=AGENT), AGENT)
        assert m.role == MessageRole.AGENT

    def test_reply(self):
        m = canonicalize(_payload(quoted_message_id="m0"), AGENT)
        assert m.is_reply
        assert m.replied_to_id == "m0"

    def test_missing_id_rejected(self):
        with pytest.raises(ValidationError):
            canonicalize(_payload(id=""), AGENT)

    def test_model_content_property(self):
        inbound = InboundMessage.model_validate(_payload(text="", caption=None))
        assert inbound.content == ""
