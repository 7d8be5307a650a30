"""Canonicalization boundary: transport payloads in, fixed Message records out."""

import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from shared_types import MessageRole

from .models import Message

_PHONE_PREFIX = re.compile(r"^(\d+)@")


def extract_phone_number(participant_id: str | None) -> str | None:
    """Numeric prefix of a ``<digits>@<domain>`` participant id, if any."""
    if not participant_id:
        return None
    match = _PHONE_PREFIX.match(participant_id)
    return match.group(1) if match else None


def fallback_name(participant_id: str) -> str:
    return extract_phone_number(participant_id) or participant_id.split("@")[0]


class InboundMessage(BaseModel):
    """Transport-agnostic inbound payload, validated before it reaches the engine."""

    id: str = Field(..., min_length=1)
    chat_id: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    push_name: Optional[str] = None
    text: Optional[str] = None
    caption: Optional[str] = None
    timestamp: datetime
    quoted_message_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @property
    def content(self) -> str:
        return (self.text or self.caption or "").strip()

    def to_message(self, agent_id: str | None = None) -> Message:
        """Build the canonical record; the agent's own sends get the agent role."""
        name = (self.push_name or "").strip() or fallback_name(self.sender_id)
        return Message(
            id=self.id,
            conversation_id=self.chat_id,
            sender_id=self.sender_id,
            sender_name=name,
            content=self.content,
            timestamp=self.timestamp,
            role=MessageRole.AGENT if agent_id and self.sender_id == agent_id else MessageRole.USER,
            is_reply=self.quoted_message_id is not None,
            replied_to_id=self.quoted_message_id,
        )


def canonicalize(payload: dict, agent_id: str | None = None) -> Message:
    """Validate a raw payload dict and return its Message. Raises pydantic.ValidationError."""
    return InboundMessage.model_validate(payload).to_message(agent_id)
