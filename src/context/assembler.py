"""Relevance assembler: build the context window handed to the response generator.

The window is the recent conversation tail (augmented by topic and reply
neighbours) plus up to five injected system entries: a chat header,
cross-chat excerpts, a private-chat digest, an image analysis and the
participant's facts. Every injected step is optional; a failing step is
logged, recorded on the window and skipped.
"""

from datetime import datetime, timedelta, timezone

import structlog

from conversations.models import IMAGE_ANALYSIS_PREFIX, PREVIEW_TRUNCATE, Conversation, Message
from memory.decay import decayed_confidence
from observability import metrics
from shared_types import CrossChatType, EntryPriority, EntryRole, MessageRole

from .aliases import AliasDirectory
from .classifier import classify_cross_chat_intent, classify_topics, references_prior_image
from .errors import DegradedLookup, InvalidInput
from .lookups import GroupMetadata, StoreGroupMetadata, as_image_match
from .models import ContextEntry, ContextWindow, CrossChatIntent
from .settings import ContextSettings
from .threads import ThreadRanker

logger = structlog.get_logger()

PRIVATE_DIGEST_PER_CHAT = 3
HEADER_MAX_MEMBERS = 10
HEADER_MAX_SHARED_GROUPS = 3
IMAGE_FOLLOWUP_MESSAGES = 5
IMAGE_FOLLOWUP_TRUNCATE = 100


def truncate(text: str, limit: int = PREVIEW_TRUNCATE) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def describe_age(delta: timedelta) -> str:
    minutes = int(delta.total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minutes ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hours ago"
    return f"{hours // 24} days ago"


class RelevanceAssembler:
    """Builds a ContextWindow for an incoming message.

    All collaborators are injected; only ``conversations`` is required.
    """

    def __init__(
        self,
        conversations,
        facts=None,
        *,
        settings: ContextSettings | None = None,
        agent_id: str | None = None,
        agent_name: str = "Qi",
        aliases: AliasDirectory | None = None,
        image_lookup=None,
        group_lookup=None,
        ranker: ThreadRanker | None = None,
    ):
        self.conversations = conversations
        self.facts = facts
        self.settings = settings or ContextSettings()
        self.agent_id = agent_id
        self.agent_name = agent_name
        self.aliases = aliases or AliasDirectory(
            conversations, facts, min_score=self.settings.min_alias_score, agent_id=agent_id
        )
        self.image_lookup = image_lookup
        self.group_lookup = group_lookup or StoreGroupMetadata(conversations)
        self.ranker = ranker or ThreadRanker(
            agent_id=agent_id,
            config={
                "max_messages": self.settings.thread_max_messages,
                "top_k": self.settings.thread_top_k,
            },
        )

    def build_context(
        self, query: Message | None, conversation_id: str, now: datetime | None = None
    ) -> ContextWindow:
        """Assemble the context window for ``query`` in ``conversation_id``.

        Raises InvalidInput when no conversation id is given. An unknown
        conversation yields an empty window.
        """
        if not conversation_id:
            raise InvalidInput("conversation_id is required")

        with metrics.timer("context.build"):
            window = ContextWindow(conversation_id=conversation_id)
            metrics.counter("context.windows")

            conversation = self.conversations.get_conversation(conversation_id)
            if conversation is None:
                logger.info("context_conversation_missing", conversation_id=conversation_id)
                return window

            text = (query.content if query else "") or ""
            if now is None:
                now = query.timestamp if query else datetime.now(timezone.utc)

            entries: list[ContextEntry] = []
            header = self._guard(window, "chat_header", lambda: self._header_entry(conversation))
            if header:
                entries.append(header)
            entries.extend(self._message_entry(m) for m in self._core_messages(conversation, query, text))

            steps = (
                ("cross_chat", lambda: self._cross_chat_entry(conversation, text)),
                ("private_digest", lambda: self._private_digest_entry(conversation)),
                ("image", lambda: self._image_entry(conversation, text, now)),
                ("facts", lambda: self._facts_entry(conversation, now)),
            )
            for step, fn in steps:
                entry = self._guard(window, step, fn)
                if entry:
                    entries.append(entry)

            # stable: ties keep insertion order
            entries.sort(key=lambda e: e.priority)
            window.entries = entries

        logger.info(
            "context_built",
            conversation_id=conversation_id,
            entries=len(window.entries),
            messages=len(window.message_entries),
            degraded=[d.step for d in window.degraded],
        )
        return window

    def _guard(self, window: ContextWindow, step: str, fn):
        try:
            return fn()
        except Exception as e:
            window.degraded.append(DegradedLookup(step, str(e)))
            metrics.counter(f"context.degraded.{step}")
            logger.warning(
                "context_step_degraded",
                conversation_id=window.conversation_id,
                step=step,
                error=str(e),
            )
            return None

    def _is_agent(self, message: Message) -> bool:
        return message.role == MessageRole.AGENT or (
            self.agent_id is not None and message.sender_id == self.agent_id
        )

    def _speaker(self, message: Message) -> str:
        return self.agent_name if self._is_agent(message) else message.sender_name

    # Conversation messages ------------------------------------------------

    def _core_messages(self, conversation: Conversation, query: Message | None, text: str) -> list[Message]:
        """Recent tail plus topic and reply neighbours, deduplicated and time ordered."""
        messages = conversation.messages
        limit = self.settings.max_relevant_messages
        position = {m.id: i for i, m in enumerate(messages)}
        selected: dict[str, Message] = {m.id: m for m in messages[-limit:]}

        per_topic = self.settings.max_topic_specific_messages // 2
        if per_topic > 0:
            for tag in sorted(classify_topics(text)):
                tagged = [m for m in messages if tag in (m.topics or classify_topics(m.content))]
                for m in tagged[-per_topic:]:
                    selected.setdefault(m.id, m)

        if query is not None and query.is_reply and query.replied_to_id in position:
            idx = position[query.replied_to_id]
            span = self.settings.reply_window
            for m in messages[max(0, idx - span) : idx + span + 1]:
                selected.setdefault(m.id, m)

        ordered = sorted(selected.values(), key=lambda m: (m.timestamp, position[m.id]))
        return ordered[-limit:]

    def _message_entry(self, message: Message) -> ContextEntry:
        return ContextEntry(
            role=EntryRole.ASSISTANT if self._is_agent(message) else EntryRole.USER,
            content=message.content,
            source_label=f"conversation:{message.conversation_id}",
            priority=EntryPriority.CONVERSATION,
            timestamp=message.timestamp,
            message_id=message.id,
            name=self._speaker(message),
        )

    # Chat header -----------------------------------------------------------

    def _group_metadata(self, conversation: Conversation) -> GroupMetadata:
        meta = self.group_lookup(conversation.id)
        if meta is None:
            meta = GroupMetadata(conversation.display_title, len(conversation.participants))
        return meta

    def _header_entry(self, conversation: Conversation) -> ContextEntry | None:
        if conversation.is_group:
            meta = self._group_metadata(conversation)
            members = sorted(
                conversation.other_participants(self.agent_id),
                key=lambda p: p.last_active_at,
                reverse=True,
            )[:HEADER_MAX_MEMBERS]
            content = f'This is the group chat "{meta.display_name}" with {meta.member_count} members.'
            if members:
                content += " Recently active: " + ", ".join(p.display_name for p in members) + "."
        else:
            person = conversation.most_active_participant(self.agent_id)
            if person is None:
                return None
            name = self.aliases.display_name(person.id)
            content = (
                f"This is a private chat with {name}, "
                f"who has sent {person.message_count} messages here."
            )
            groups = self.aliases.shared_groups(person.id, exclude=conversation.id)
            if groups:
                titles = ", ".join(g.display_title for g in groups[:HEADER_MAX_SHARED_GROUPS])
                content += f" {name} is also in: {titles}."

        return ContextEntry(
            role=EntryRole.SYSTEM,
            content=content,
            source_label="chat_header",
            priority=EntryPriority.CONVERSATION,
        )

    # Cross-chat ------------------------------------------------------------

    def _cross_chat_entry(self, conversation: Conversation, text: str) -> ContextEntry | None:
        intent = classify_cross_chat_intent(text, self.agent_name)
        if not intent.is_cross_chat_question:
            return None

        metrics.counter(f"context.cross_chat.{intent.type}")
        logger.debug(
            "cross_chat_intent",
            conversation_id=conversation.id,
            type=str(intent.type),
            target_name=intent.target_name,
            target_chat=intent.target_chat,
        )
        if self.settings.max_cross_chat_messages == 0:
            return None
        if intent.type == CrossChatType.MOOD:
            return self._mood_entry(conversation, intent)
        if intent.type == CrossChatType.GROUP_ACTIVITY:
            return self._group_activity_entry(conversation, intent)
        return self._conversation_entry(conversation, intent)

    def _target_chat(
        self, conversation: Conversation, intent: CrossChatIntent
    ) -> tuple[Conversation | None, str | None]:
        """The named group, else the most recently active other group.

        The second item is the requested chat name when it matched no group.
        """
        missed = None
        if intent.target_chat:
            for match in self.aliases.resolve_chat_candidates(intent.target_chat):
                if match.conversation_id == conversation.id:
                    continue
                found = self.conversations.get_conversation(match.conversation_id)
                if found is not None:
                    return found, None
            missed = intent.target_chat
            logger.info("cross_chat_chat_unresolved", target_chat=missed)

        others = [
            c
            for c in self.conversations.list_conversations()
            if c.is_group and c.id != conversation.id and c.last_active_at is not None
        ]
        if not others:
            return None, missed
        return max(others, key=lambda c: c.last_active_at), missed

    @staticmethod
    def _fallback_note(missed: str | None, label: str) -> str:
        if missed is None:
            return ""
        return f'No group matching "{missed}" was found; showing {label} instead.\n'

    def _excerpt(self, chat_label: str, message: Message) -> str:
        return f"In {chat_label}: {self._speaker(message)} said: {truncate(message.content)}"

    def _cross_entry(self, cross_type: CrossChatType, header: str, lines: list[str], latest) -> ContextEntry:
        return ContextEntry(
            role=EntryRole.SYSTEM,
            content="\n".join([header, *lines]),
            source_label=f"cross_chat:{cross_type}",
            priority=EntryPriority.CROSS_CHAT,
            timestamp=latest,
        )

    def _mood_entry(self, conversation: Conversation, intent: CrossChatIntent) -> ContextEntry | None:
        chat, missed = self._target_chat(conversation, intent)
        if chat is None:
            return None

        msgs = chat.messages
        picked = [
            m
            for i, m in enumerate(msgs)
            if self._is_agent(m) or (i + 1 < len(msgs) and self._is_agent(msgs[i + 1]))
        ][-self.settings.max_cross_chat_messages :]
        if not picked:
            return None

        label = chat.display_title
        return self._cross_entry(
            CrossChatType.MOOD,
            self._fallback_note(missed, label) + f"Recent exchanges involving {self.agent_name} in {label}:",
            [self._excerpt(label, m) for m in picked],
            picked[-1].timestamp,
        )

    def _group_activity_entry(self, conversation: Conversation, intent: CrossChatIntent) -> ContextEntry | None:
        chat, missed = self._target_chat(conversation, intent)
        if chat is None:
            return None

        meta = self._group_metadata(chat)
        threads = self.ranker.top_threads(chat.messages)
        picked = [m for t in threads for m in t.messages][: self.settings.max_cross_chat_messages]
        if not picked:
            return self._cross_entry(
                CrossChatType.GROUP_ACTIVITY,
                self._fallback_note(missed, meta.display_name)
                + f"There has been no recent activity in {meta.display_name}.",
                [],
                None,
            )
        return self._cross_entry(
            CrossChatType.GROUP_ACTIVITY,
            self._fallback_note(missed, meta.display_name)
            + f"Recent activity in {meta.display_name} ({meta.member_count} members):",
            [self._excerpt(meta.display_name, m) for m in picked],
            max(m.timestamp for m in picked),
        )

    def _conversation_entry(self, conversation: Conversation, intent: CrossChatIntent) -> ContextEntry | None:
        if not intent.target_name:
            return None
        match = self.aliases.best_match(intent.target_name)
        if match is None:
            logger.info("cross_chat_target_unresolved", target_name=intent.target_name)
            return None

        person = match.participant_id
        name = self.aliases.display_name(person)
        found: list[tuple[datetime, str, Message]] = []
        for chat in self.conversations.list_conversations():
            if chat.id == conversation.id or person not in chat.participants:
                continue
            label = chat.display_title if chat.is_group else f"private chat with {name}"
            for m in chat.messages:
                if m.sender_id == person or (not chat.is_group and self._is_agent(m)):
                    found.append((m.timestamp, label, m))
        if not found:
            return None

        found.sort(key=lambda item: item[0])
        found = found[-self.settings.max_cross_chat_messages :]
        return self._cross_entry(
            CrossChatType.CONVERSATION,
            f"What {name} has said in other conversations:",
            [self._excerpt(label, m) for _, label, m in found],
            found[-1][0],
        )

    # Private digest ----------------------------------------------------------

    def _private_digest_entry(self, conversation: Conversation) -> ContextEntry | None:
        if not conversation.is_group or not self.settings.include_private_digest:
            return None
        limit = self.settings.max_cross_chat_messages
        if limit == 0:
            return None

        members = {p.id for p in conversation.other_participants(self.agent_id)}
        items: list[tuple[datetime, str]] = []
        for chat in self.conversations.list_conversations():
            if chat.is_group or chat.id == conversation.id:
                continue
            shared = [pid for pid in chat.participants if pid in members]
            if not shared:
                continue
            name = self.aliases.display_name(shared[0])
            for m in chat.messages[-PRIVATE_DIGEST_PER_CHAT:]:
                items.append(
                    (m.timestamp, f"[private chat with {name}] {self._speaker(m)}: {truncate(m.content)}")
                )
        if not items:
            return None

        items.sort(key=lambda item: item[0], reverse=True)
        items = items[:limit]
        return ContextEntry(
            role=EntryRole.SYSTEM,
            content="\n".join(["Recent private conversations with members of this group:", *(t for _, t in items)]),
            source_label="private_digest",
            priority=EntryPriority.CROSS_CHAT,
            timestamp=items[0][0],
        )

    # Image ---------------------------------------------------------------------

    @staticmethod
    def _analysis_text(message: Message) -> str:
        return message.content[len(IMAGE_ANALYSIS_PREFIX) :].rstrip("]").strip()

    def _image_sender(self, conversation: Conversation, analysis: Message) -> str | None:
        """Name of the nearest non-agent sender before ``analysis``."""
        idx = conversation.messages.index(analysis)
        for m in reversed(conversation.messages[:idx]):
            if not self._is_agent(m):
                return m.sender_name or self.aliases.display_name(m.sender_id)
        return None

    def _image_entry(self, conversation: Conversation, text: str, now: datetime) -> ContextEntry | None:
        if not references_prior_image(text):
            return None
        analyses = [m for m in reversed(conversation.messages) if m.is_image_analysis]
        if not analyses:
            return None

        chosen = analyses[0]
        analysis_text = None
        if self.image_lookup is not None and self.settings.max_image_analysis_messages > 0:
            by_id = {m.id: m for m in analyses}
            matches = sorted(
                (
                    as_image_match(r)
                    for r in self.image_lookup(
                        text,
                        conversation_id=conversation.id,
                        since=timedelta(days=self.settings.image_lookup_days),
                        limit=self.settings.max_image_analysis_messages,
                        threshold=self.settings.image_similarity_threshold,
                    )
                ),
                key=lambda r: r.similarity_score,
                reverse=True,
            )
            for match in matches:
                # an id outside this conversation's analyses has no age or sender to report
                if match.id not in by_id:
                    continue
                chosen = by_id[match.id]
                analysis_text = match.analysis
                break

        if analysis_text is None:
            analysis_text = self._analysis_text(chosen)
        lines = [f"An image shared {describe_age(now - chosen.timestamp)} was analysed as: {analysis_text}"]

        sender = self._image_sender(conversation, chosen)
        if sender:
            lines.append(f"It was sent by {sender}.")

        earlier_limit = max(self.settings.max_image_analysis_messages - 1, 0)
        earlier = [self._analysis_text(m) for m in analyses if m is not chosen][:earlier_limit]
        if earlier:
            lines.append("Earlier images: " + " | ".join(earlier))

        idx = conversation.messages.index(chosen)
        followups = conversation.messages[idx + 1 : idx + 1 + IMAGE_FOLLOWUP_MESSAGES]
        if followups:
            lines.append(
                "Follow-up: "
                + " | ".join(f"{self._speaker(m)}: {truncate(m.content, IMAGE_FOLLOWUP_TRUNCATE)}" for m in followups)
            )

        return ContextEntry(
            role=EntryRole.SYSTEM,
            content="\n".join(lines),
            source_label="image_analysis",
            priority=EntryPriority.CROSS_CHAT,
            timestamp=chosen.timestamp,
            message_id=None,
        )

    # Facts -------------------------------------------------------------------

    def _facts_entry(self, conversation: Conversation, now: datetime) -> ContextEntry | None:
        if self.facts is None or self.settings.max_context_facts == 0:
            return None
        person = conversation.most_active_participant(self.agent_id)
        if person is None:
            return None

        threshold = self.settings.fact_confidence_threshold
        scored = [(f, decayed_confidence(f, now)) for f in self.facts.get_facts(person.id).values()]
        kept = sorted(
            ((f, c) for f, c in scored if c >= threshold),
            key=lambda fc: (-fc[1], fc[0].key),
        )[: self.settings.max_context_facts]
        if not kept:
            return None

        name = self.aliases.display_name(person.id)
        lines = [f"- {f.key.replace('_', ' ')}: {f.value}" for f, _ in kept]
        return ContextEntry(
            role=EntryRole.SYSTEM,
            content="\n".join([f"Known facts about {name}:", *lines]),
            source_label=f"facts:{person.id}",
            priority=EntryPriority.FACTS,
        )
