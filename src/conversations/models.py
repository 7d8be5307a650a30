"""Data models for conversations, their participants and messages."""

from dataclasses import dataclass, field
from datetime import datetime

from shared_types import ChatKind, MessageRole

PREVIEW_TRUNCATE = 200
IMAGE_ANALYSIS_PREFIX = "[IMAGE ANALYSIS:"


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    content: str
    timestamp: datetime
    role: MessageRole = MessageRole.USER
    topics: frozenset[str] = field(default_factory=frozenset)
    is_reply: bool = False
    replied_to_id: str | None = None

    @property
    def is_image_analysis(self) -> bool:
        return self.role == MessageRole.AGENT and self.content.startswith(IMAGE_ANALYSIS_PREFIX)


@dataclass
class ParticipantState:
    id: str
    display_name: str
    message_count: int
    first_seen_at: datetime
    last_active_at: datetime
    last_message_preview: str = ""
    is_agent: bool = False


@dataclass
class Conversation:
    id: str
    kind: ChatKind
    participants: dict[str, ParticipantState] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    last_active_at: datetime | None = None
    has_introduced: bool = False
    title: str = ""
    last_introduction_at: datetime | None = None

    @property
    def is_group(self) -> bool:
        return self.kind == ChatKind.GROUP

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        return "Group Chat" if self.is_group else "Private Chat"

    def add_message(self, message: Message, max_messages: int | None = None) -> None:
        """Append a message, refresh its sender's state and apply the retention cap."""
        state = self.participants.get(message.sender_id)
        if state is None:
            state = ParticipantState(
                id=message.sender_id,
                display_name=message.sender_name,
                message_count=0,
                first_seen_at=message.timestamp,
                last_active_at=message.timestamp,
            )
            self.participants[message.sender_id] = state
        elif message.sender_name and message.sender_name != state.display_name:
            state.display_name = message.sender_name

        if message.role == MessageRole.AGENT:
            state.is_agent = True
        state.message_count += 1
        state.last_active_at = message.timestamp
        state.last_message_preview = message.content[:PREVIEW_TRUNCATE]

        self.messages.append(message)
        if max_messages is not None and len(self.messages) > max_messages:
            self.messages = self.messages[-max_messages:]
        self.last_active_at = message.timestamp

    def other_participants(self, agent_id: str | None) -> list[ParticipantState]:
        return [p for p in self.participants.values() if p.id != agent_id and not p.is_agent]

    def most_active_participant(self, agent_id: str | None) -> ParticipantState | None:
        """Non-agent participant with the most messages; later activity breaks ties."""
        candidates = self.other_participants(agent_id)
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.message_count, p.last_active_at, p.id))
