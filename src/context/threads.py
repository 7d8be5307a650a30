"""Thread segmentation and ranking for group-activity summaries."""

import re
from collections import Counter
from dataclasses import dataclass, field

import structlog

from conversations.models import Message
from shared_types import MessageRole

logger = structlog.get_logger()

TOPIC_SHIFT = re.compile(
    r"^\s*(?:btw|by the way|anyway|anyways|ngomong[- ]?ngomong|ngomong2|omong[- ]omong|oh ya|oh iya)\b",
    re.IGNORECASE,
)
EMOTION_GLYPHS = frozenset("😂🤣😁😄😆😢😭😔😡🤬💢😱😍🥰😘🔥❤💔👏🎉🙏😤😩")

LENGTH_CAP = 5
QUESTION_BONUS = 3
AGENT_BONUS = 4
ACTIVE_SENDER_BONUS = 2
EMOTION_BONUS = 2


def is_topic_shift(content: str) -> bool:
    return bool(TOPIC_SHIFT.match(content)) or "?" in content


def is_emotional(content: str) -> bool:
    return "!" in content or any(ch in EMOTION_GLYPHS for ch in content)


@dataclass
class Thread:
    index: int
    messages: list[Message] = field(default_factory=list)
    score: int = 0

    @property
    def senders(self) -> set[str]:
        return {m.sender_id for m in self.messages}

    @property
    def has_question(self) -> bool:
        return any("?" in m.content for m in self.messages)


def segment_threads(messages: list[Message], max_messages: int = 5) -> list[Thread]:
    """Split a message sequence into short threads.

    A new thread starts on a sender change, on a topic-shift marker or a
    question, or once the current thread holds ``max_messages``.
    """
    threads: list[Thread] = []
    current: Thread | None = None
    for m in messages:
        if (
            current is None
            or m.sender_id != current.messages[-1].sender_id
            or is_topic_shift(m.content)
            or len(current.messages) >= max_messages
        ):
            current = Thread(index=len(threads))
            threads.append(current)
        current.messages.append(m)
    return threads


def most_active_senders(
    messages: list[Message], n: int = 3, exclude: str | None = None
) -> set[str]:
    """Top ``n`` senders by message count; earlier first appearance wins ties."""
    counts = Counter(
        m.sender_id for m in messages if m.sender_id != exclude and m.role != MessageRole.AGENT
    )
    return {sender for sender, _ in counts.most_common(n)}


class ThreadRanker:
    """Score threads and keep the top few for a group-activity summary."""

    def __init__(self, agent_id: str | None = None, config: dict | None = None):
        """
        Args:
            agent_id: the agent's participant id
            config: dict with max_messages, top_k, recent_window
        """
        cfg = config or {}
        self.agent_id = agent_id
        self._max_messages = cfg.get("max_messages", 5)
        self._top_k = cfg.get("top_k", 2)
        self._recent_window = cfg.get("recent_window", 50)

    def _agent_participated(self, thread: Thread) -> bool:
        return any(
            m.role == MessageRole.AGENT or (self.agent_id and m.sender_id == self.agent_id)
            for m in thread.messages
        )

    def score_thread(self, thread: Thread, active_senders: set[str]) -> int:
        score = min(LENGTH_CAP, len(thread.messages))
        if thread.has_question:
            score += QUESTION_BONUS
        if self._agent_participated(thread):
            score += AGENT_BONUS
        if thread.senders & active_senders:
            score += ACTIVE_SENDER_BONUS
        if any(is_emotional(m.content) for m in thread.messages):
            score += EMOTION_BONUS
        return score

    def rank_threads(self, threads: list[Thread], active_senders: set[str]) -> list[Thread]:
        """Top-k threads by score, highest first; ties keep original order."""
        for t in threads:
            t.score = self.score_thread(t, active_senders)
        ranked = sorted(threads, key=lambda t: -t.score)
        return ranked[: self._top_k]

    def top_threads(self, messages: list[Message]) -> list[Thread]:
        """Segment ``messages`` and return the highest scoring threads."""
        threads = segment_threads(messages, self._max_messages)
        active = most_active_senders(messages[-self._recent_window :], exclude=self.agent_id)
        ranked = self.rank_threads(threads, active)
        logger.debug(
            "threads_ranked",
            total=len(threads),
            kept=len(ranked),
            scores=[t.score for t in ranked],
        )
        return ranked
