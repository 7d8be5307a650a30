"""Keyword classifiers: topic tags, cross-chat intent and image references.

All rules are data tables of compiled regexes so they can be extended
without touching the matching code. Patterns cover Indonesian and English
phrasing as used in casual chat.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from shared_types import CrossChatType, TopicTag

from .models import NO_INTENT, CrossChatIntent


@dataclass(frozen=True)
class TopicRule:
    pattern: re.Pattern
    tag: TopicTag


def _topic(pattern: str, tag: TopicTag) -> TopicRule:
    return TopicRule(re.compile(pattern, re.IGNORECASE), tag)


TOPIC_RULES: tuple[TopicRule, ...] = (
    _topic(
        r"\b(nama(ku|mu|nya)?|siapa (kamu|dia|namamu)|panggil (aku|saya)|my name|who are you|call me)\b",
        TopicTag.IDENTITY,
    ),
    _topic(
        r"\b(umur(ku|mu|nya)?|usia|ulang tahun|ultah|tahun lahir|how old|birthday|\d{1,2} (tahun|years? old))\b",
        TopicTag.AGE,
    ),
    _topic(
        r"\b(tinggal di|alamat|domisili|kota|asal(nya)? dari|rumah(ku|mu|nya)?|live in|where do you live|location|hometown)\b",
        TopicTag.LOCATION,
    ),
    _topic(
        r"\b(kerja(an)?|pekerjaan|kantor|gaji|lembur|bos|profesi|meeting|job|work(ing)?|office|career|boss)\b",
        TopicTag.WORK,
    ),
    _topic(
        r"\b(hobi|hobby|hobbies|kegemaran|favorit|favorite|interest(ed|s)?|passion)\b",
        TopicTag.INTERESTS,
    ),
    _topic(
        r"\b(makan(an)?|minum(an)?|lapar|laper|haus|nasi|bakso|sate|kopi|masak|resep|sarapan|food|eat|drink|hungry|lunch|dinner|breakfast|coffee)\b",
        TopicTag.FOOD,
    ),
    _topic(
        r"\b(musik|lagu|band|konser|nyanyi|penyanyi|playlist|spotify|music|song|singer|album|concert)\b",
        TopicTag.MUSIC,
    ),
    _topic(
        r"\b(film|movie|nonton|series|drakor|anime|netflix|youtube|game|gaming|tv)\b",
        TopicTag.ENTERTAINMENT,
    ),
    _topic(
        r"\b(bola|sepak ?bola|futsal|basket|badminton|olahraga|gym|renang|football|soccer|sports?|workout)\b",
        TopicTag.SPORTS,
    ),
    _topic(
        r"\b(sekolah|kuliah|kampus|kelas|ujian|tugas|skripsi|belajar|guru|dosen|school|college|university|exam|homework|study)\b",
        TopicTag.EDUCATION,
    ),
    _topic(r"\b(gambar|foto|image|picture|photo|pic)\b", TopicTag.IMAGE),
    _topic(
        r"\?|\b(apa|siapa|kapan|dimana|di mana|kenapa|mengapa|bagaimana|gimana|what|who|when|where|why|how)\b",
        TopicTag.QUESTION,
    ),
    _topic(
        r"\b(halo|hai|hallo|hello|hi|hey|selamat (pagi|siang|sore|malam)|assalamualaikum)\b",
        TopicTag.GREETING,
    ),
    _topic(
        r"\b(tolong|bantu(in)?|minta|please|help|can you|could you)\b",
        TopicTag.REQUEST,
    ),
)


def classify_topics(text: str | None) -> set[TopicTag]:
    """Tags whose keyword rule matches ``text``. Empty text has no topics."""
    if not text:
        return set()
    return {rule.tag for rule in TOPIC_RULES if rule.pattern.search(text)}


# Cross-chat intent -----------------------------------------------------------

HONORIFICS = ("si", "pak", "bu", "mas", "mbak", "bang", "kak")

INTENT_STOPWORDS = frozenset(
    {
        "apa", "dengan", "sama", "ama", "yang", "kamu", "aku", "saya", "dia",
        "siapa", "itu", "ini", "tadi", "grup", "group", "gc", "you", "me",
        "the", "lu", "lo", "gue", "gw", "kau", "mereka",
    }
)

_HON = "(?:" + "|".join(HONORIFICS) + ")"
_NAME = r"([\w][\w'-]*)"
_CHAT = r"([\w][\w '&-]*)"
_MOOD = (
    r"(?:marah|kesal|kesel|sedih|bete|badmood|bad mood|senang|seneng|happy|bahagia|galau"
    r"|emosi|ngambek|kecewa|angry|sad|upset|mad)"
)
_GROUP = r"(?:grup|group|gc)"
_TALK = r"(?:ngobrol|ngobrolin|bicara|chat|chatting|ngomong|ngomongin|cerita)"
_SAID = r"(?:bilang|ngomong|cerita|ngomongin|nanya|chat)"


@dataclass(frozen=True)
class IntentRule:
    """One cross-chat pattern. ``{you}`` expands to second-person forms plus the agent's name."""

    pattern: str
    type: CrossChatType
    name_group: int | None = None
    chat_group: int | None = None
    requires_target: bool = False


# Checked in order; the first match wins.
INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        rf"\b(?:kenapa|mengapa|napa|kok)\s+{{you}}\s+(?:(?:lagi|sedang|jadi|tadi)\s+)?{_MOOD}\b"
        rf"(?:.*?\b(?:di|dalam)\s+{_GROUP}\s+{_CHAT})?",
        CrossChatType.MOOD,
        chat_group=1,
    ),
    IntentRule(
        rf"\bwhy\s+(?:are|were)\s+you\s+(?:so\s+)?(?:angry|sad|upset|mad|happy)\b"
        rf"(?:.*?\bin\s+(?:the\s+)?(?:group|chat)\s+{_CHAT})?",
        CrossChatType.MOOD,
        chat_group=1,
    ),
    IntentRule(r"\b(?:mood|perasaan)\s*(?:{you}|mu)\b", CrossChatType.MOOD),
    IntentRule(
        rf"\b(?:ada apa|apa yang terjadi|(?:lagi\s+)?(?:ngomongin|ngobrolin|bahas)\s+apa(?:\s+aja)?|rame(?:nya)?\s+apa)\b"
        rf".*?\b(?:di|dalam)\s+{_GROUP}\b(?:\s+{_CHAT})?",
        CrossChatType.GROUP_ACTIVITY,
        chat_group=1,
    ),
    IntentRule(
        rf"\bwhat(?:'s| is| was)?\s+(?:happening|going on|new)\s+in\s+(?:the\s+)?(?:group|chat)\b(?:\s+{_CHAT})?",
        CrossChatType.GROUP_ACTIVITY,
        chat_group=1,
    ),
    IntentRule(
        rf"\b{{you}}\s+(?:tadi\s+)?{_TALK}\s+(?:apa\s+(?:aja\s+)?)?(?:dengan|sama|ama|bareng)\s+(?:{_HON}\s+)?{_NAME}",
        CrossChatType.CONVERSATION,
        name_group=1,
    ),
    IntentRule(
        rf"\bapa\s+(?:yang\s+)?{{you}}\s+(?:omongin|obrolin|bicarakan|bahas)\s+(?:dengan|sama|ama)\s+(?:{_HON}\s+)?{_NAME}",
        CrossChatType.CONVERSATION,
        name_group=1,
    ),
    IntentRule(
        rf"\bwhat\s+did\s+you\s+(?:talk|chat)\s+(?:about\s+)?with\s+{_NAME}",
        CrossChatType.CONVERSATION,
        name_group=1,
    ),
    IntentRule(
        rf"\b({_HON}\s+[\w][\w'-]*)\s+(?:tadi\s+)?{_SAID}\b",
        CrossChatType.CONVERSATION,
        name_group=1,
    ),
    IntentRule(
        rf"\bdid\s+{_NAME}\s+(?:say|tell you|talk to you|message you)\b",
        CrossChatType.CONVERSATION,
        name_group=1,
        requires_target=True,
    ),
    # generic name-first form; only meaningful with a real name in front
    IntentRule(
        rf"^\s*{_NAME}\s+(?:tadi\s+)?(?:bilang|ngomong|cerita|ngomongin|nanya)\s+apa\b",
        CrossChatType.CONVERSATION,
        name_group=1,
        requires_target=True,
    ),
)

_TRAILING_FILLER = frozenset({"tadi", "kemarin", "sih", "dong", "ya", "yah", "deh", "nih", "ini", "itu", "today"})


@lru_cache(maxsize=32)
def _compiled_rules(agent_name: str) -> tuple[tuple[re.Pattern, IntentRule], ...]:
    you = r"(?:kamu|kau|lu|lo|elu|loe"
    if agent_name:
        you += "|" + re.escape(agent_name.lower())
    you += ")"
    return tuple(
        (re.compile(rule.pattern.replace("{you}", you), re.IGNORECASE), rule)
        for rule in INTENT_RULES
    )


def _clean_name(raw: str | None, stopwords: frozenset[str]) -> str | None:
    if not raw:
        return None
    name = " ".join(raw.lower().split()).strip(" .,!?'\"")
    if not name:
        return None
    last = name.split()[-1]
    if last in stopwords:
        return None
    return name


def _clean_chat(raw: str | None, stopwords: frozenset[str]) -> str | None:
    if not raw:
        return None
    words = raw.lower().strip(" .,!?'\"").split()
    while words and words[-1] in _TRAILING_FILLER:
        words.pop()
    words = words[:4]
    if not words or all(w in stopwords for w in words):
        return None
    return " ".join(words)


def classify_cross_chat_intent(text: str | None, agent_name: str = "") -> CrossChatIntent:
    """Whether ``text`` asks about another chat, and which kind of question it is.

    Order of precedence: mood, then group activity, then conversation with a
    named person. A captured name or chat that is a stopword is dropped; for
    the name-first form that leaves no match at all.
    """
    if not text or not text.strip():
        return NO_INTENT

    stopwords = INTENT_STOPWORDS | ({agent_name.lower()} if agent_name else set())
    for pattern, rule in _compiled_rules(agent_name or ""):
        match = pattern.search(text)
        if not match:
            continue
        name = _clean_name(match.group(rule.name_group), stopwords) if rule.name_group else None
        chat = _clean_chat(match.group(rule.chat_group), stopwords) if rule.chat_group else None
        if rule.requires_target and not name:
            continue
        return CrossChatIntent(
            is_cross_chat_question=True,
            type=rule.type,
            target_name=name,
            target_chat=chat,
        )
    return NO_INTENT


# Image references ------------------------------------------------------------

IMAGE_KEYWORDS = re.compile(
    r"\b(gambar|foto|image|picture|photo|pic|screenshot|ss)\b", re.IGNORECASE
)
TEMPORAL_REFERENCE = re.compile(
    r"\b(tadi|sebelumnya|kemarin|barusan|tadi pagi|earlier|before|previous|previously|last|yesterday)\b",
    re.IGNORECASE,
)
DEMONSTRATIVE = re.compile(r"\b(itu|ini|tersebut|that|this|it)\b", re.IGNORECASE)
QUESTION_CUE = re.compile(
    r"\?|\b(apa|siapa|kenapa|gimana|bagaimana|what|who|why|how)\b", re.IGNORECASE
)


def references_prior_image(text: str | None) -> bool:
    """Heuristic: does the text point back at a previously shared image?

    True for explicit image words, or a demonstrative combined with either a
    temporal reference or a question.
    """
    if not text:
        return False
    if IMAGE_KEYWORDS.search(text):
        return True
    if not DEMONSTRATIVE.search(text):
        return False
    return bool(TEMPORAL_REFERENCE.search(text) or QUESTION_CUE.search(text))
