"""External lookups the assembler consumes, and store-backed defaults."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol


@dataclass(frozen=True)
class ImageMatch:
    id: str
    similarity_score: float
    analysis: str | None = None


class ImageSimilarityLookup(Protocol):
    def __call__(
        self,
        text: str,
        *,
        conversation_id: str,
        since: timedelta,
        limit: int,
        threshold: float,
    ) -> list[ImageMatch]: ...


@dataclass(frozen=True)
class GroupMetadata:
    display_name: str
    member_count: int


class GroupMetadataLookup(Protocol):
    def __call__(self, conversation_id: str) -> GroupMetadata | None: ...


def as_image_match(item) -> ImageMatch:
    """Accept ImageMatch instances or plain dicts from lookup backends."""
    if isinstance(item, ImageMatch):
        return item
    return ImageMatch(
        id=str(item["id"]),
        similarity_score=float(item.get("similarity_score", item.get("similarityScore", 0.0))),
        analysis=item.get("analysis"),
    )


class StoreGroupMetadata:
    """Group metadata derived from what the conversation store has seen."""

    def __init__(self, conversations):
        self.conversations = conversations

    def __call__(self, conversation_id: str) -> GroupMetadata | None:
        conversation = self.conversations.get_conversation(conversation_id)
        if conversation is None:
            return None
        return GroupMetadata(
            display_name=conversation.display_title,
            member_count=len(conversation.participants),
        )
