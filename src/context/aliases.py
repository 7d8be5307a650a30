"""Alias directory: resolve free-text names to participant ids.

Aliases come from participant display names and from name-like facts.
The index is rebuilt only when one of the backing stores reports a new
``generation``.
"""

import re

import structlog

from conversations.canonical import extract_phone_number
from conversations.models import Conversation
from shared_types import ChatKind

from .classifier import HONORIFICS
from .errors import NotFound
from .models import AliasMatch, ChatMatch

logger = structlog.get_logger()

NAME_FACT_KEYS = ("name", "full_name", "nickname", "first_name", "last_name", "alias", "called")
_NAME_KEY = re.compile(r"^(?:name|full_name|nickname|first_name|last_name|alias|called)$|_nickname$")
_RELATIONSHIP_KEY = re.compile(r"^relationship_([a-z0-9_]+)$")
_HONORIFIC = re.compile(r"^(?:" + "|".join(HONORIFICS) + r")\s+(\S+)")
_PHONE_RUN = re.compile(r"\d{10,}")

EXACT_MATCH = 10
ALIAS_CONTAINS_QUERY = 5
QUERY_CONTAINS_ALIAS = 3
HONORIFIC_MATCH = 4
TOKEN_PREFIX = 2
TOKEN_SUFFIX = 3
LAST_TOKEN_MATCH = 5
PARTIAL_CAP = EXACT_MATCH - 1
PHONE_MATCH = 15

UNKNOWN_NAME = "Unknown User"


def normalize(text: str) -> str:
    return " ".join(text.lower().split())


def expand_alias(raw: str) -> set[str]:
    """An alias plus, for multi-word aliases, each non-honorific token longer than two characters."""
    alias = normalize(raw)
    if not alias:
        return set()
    out = {alias}
    tokens = alias.split()
    if len(tokens) > 1:
        out.update(t for t in tokens if len(t) > 2 and t not in HONORIFICS)
    return out


def relationship_alias(key: str) -> str | None:
    """``relationship_<name words>_<relation>`` -> ``"name words"``."""
    match = _RELATIONSHIP_KEY.match(key)
    if not match:
        return None
    parts = [p for p in match.group(1).split("_") if p]
    if len(parts) > 1:
        parts = parts[:-1]
    return " ".join(parts) or None


def score_alias(alias: str, query: str) -> int:
    """Score one alias against a normalized query.

    An exact match short-circuits; otherwise rule scores add up and are
    capped just below an exact match.
    """
    if alias == query:
        return EXACT_MATCH

    score = 0
    if query in alias:
        score += ALIAS_CONTAINS_QUERY
    if len(alias) > 2 and alias in query:
        score += QUERY_CONTAINS_ALIAS

    tokens = alias.split()
    honorific = _HONORIFIC.match(query)
    if honorific and honorific.group(1) in tokens:
        score += HONORIFIC_MATCH

    term = honorific.group(1) if honorific else query
    if any(t.startswith(term) for t in tokens):
        score += TOKEN_PREFIX
    if any(t.endswith(term) for t in tokens):
        score += TOKEN_SUFFIX
    if len(tokens) > 1 and tokens[-1] == term:
        score += LAST_TOKEN_MATCH

    return min(score, PARTIAL_CAP)


class AliasDirectory:
    """Case-insensitive name resolution over conversation participants."""

    def __init__(self, conversations, facts=None, min_score: int = 2, agent_id: str | None = None):
        self.conversations = conversations
        self.facts = facts
        self.min_score = min_score
        self.agent_id = agent_id
        self._key = None
        self._aliases: dict[str, set[str]] = {}
        self._names: dict[str, str] = {}
        self._chats: dict[str, tuple[str, ChatKind, set[str]]] = {}

    def _generation(self):
        if self.facts is None:
            return (getattr(self.conversations, "generation", None), 0)
        return (
            getattr(self.conversations, "generation", None),
            getattr(self.facts, "generation", None),
        )

    def _ensure_index(self):
        key = self._generation()
        if self._key is not None and None not in key and key == self._key:
            return
        self._rebuild()
        self._key = key

    def _rebuild(self):
        aliases: dict[str, set[str]] = {}
        names: dict[str, tuple] = {}
        chats: dict[str, tuple[str, ChatKind, set[str]]] = {}

        for conversation in self.conversations.list_conversations():
            if conversation.title:
                chats[conversation.id] = (conversation.title, conversation.kind, expand_alias(conversation.title))
            for p in conversation.other_participants(self.agent_id):
                aliases.setdefault(p.id, set()).update(expand_alias(p.display_name))
                # most recently active display name wins
                seen = names.get(p.id)
                if p.display_name and (seen is None or p.last_active_at > seen[1]):
                    names[p.id] = (p.display_name, p.last_active_at)

        if self.facts is not None:
            for participant_id in aliases:
                try:
                    facts = self.facts.get_facts(participant_id)
                except Exception as e:
                    logger.warning("alias_fact_lookup_failed", participant_id=participant_id, error=str(e))
                    continue
                for key, fact in facts.items():
                    if _NAME_KEY.search(key):
                        aliases[participant_id].update(expand_alias(fact.value))
                    else:
                        decoded = relationship_alias(key)
                        if decoded:
                            aliases[participant_id].update(expand_alias(decoded))

        self._aliases = aliases
        self._names = {pid: name for pid, (name, _) in names.items()}
        self._chats = chats
        logger.debug("alias_index_built", participants=len(aliases), chats=len(chats))

    def aliases_for(self, participant_id: str) -> set[str]:
        self._ensure_index()
        return set(self._aliases.get(participant_id, ()))

    def resolve_candidates(self, name_query: str | None) -> list[AliasMatch]:
        """Participants scoring at least ``min_score``, best first.

        A participant's score is its best alias score; a phone number in the
        query that equals the participant id's numeric prefix adds a bonus once.
        """
        query = normalize((name_query or "").strip(" @.,!?"))
        if not query:
            return []
        self._ensure_index()

        phones = set(_PHONE_RUN.findall(query))
        matches = []
        for participant_id, aliases in self._aliases.items():
            score = max((score_alias(a, query) for a in aliases), default=0)
            if phones and extract_phone_number(participant_id) in phones:
                score += PHONE_MATCH
            if score >= self.min_score:
                matches.append(AliasMatch(participant_id=participant_id, score=score))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def best_match(self, name_query: str | None) -> AliasMatch | None:
        candidates = self.resolve_candidates(name_query)
        return candidates[0] if candidates else None

    def resolve_one(self, name_query: str | None) -> str:
        match = self.best_match(name_query)
        if match is None:
            raise NotFound(f"No participant matches {name_query!r}")
        return match.participant_id

    def resolve_chat_candidates(self, chat_query: str | None, kind: ChatKind | None = ChatKind.GROUP) -> list[ChatMatch]:
        """Conversations whose title (or id) matches ``chat_query``, best first."""
        query = normalize((chat_query or "").strip(" .,!?"))
        if not query:
            return []
        self._ensure_index()

        matches = []
        for conversation_id, (title, chat_kind, aliases) in self._chats.items():
            if kind is not None and chat_kind != kind:
                continue
            if conversation_id.lower() == query:
                score = EXACT_MATCH
            else:
                score = max((score_alias(a, query) for a in aliases), default=0)
            if score >= self.min_score:
                matches.append(ChatMatch(conversation_id=conversation_id, score=score, title=title))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def display_name(self, participant_id: str) -> str:
        """Best human-readable name for a participant.

        Falls back from the stored display name to name facts, then to the
        phone prefix of the id.
        """
        self._ensure_index()
        name = self._names.get(participant_id)
        if name:
            return name

        if self.facts is not None:
            facts = self.facts.get_facts(participant_id)
            for key in NAME_FACT_KEYS:
                fact = facts.get(key)
                if fact and fact.value.strip():
                    return fact.value.strip()

        return extract_phone_number(participant_id) or UNKNOWN_NAME

    def shared_groups(self, participant_id: str, exclude: str | None = None) -> list[Conversation]:
        """Group conversations the participant has posted in, most recent first."""
        groups = [
            c
            for c in self.conversations.list_conversations()
            if c.is_group and c.id != exclude and participant_id in c.participants
        ]
        groups.sort(key=lambda c: (c.last_active_at is not None, c.last_active_at), reverse=True)
        return groups
