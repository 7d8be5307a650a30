"""Context engine: topic and intent classification, alias resolution and window assembly."""

from .aliases import AliasDirectory
from .assembler import RelevanceAssembler
from .classifier import classify_cross_chat_intent, classify_topics, references_prior_image
from .errors import ContextError, DegradedLookup, InvalidInput, NotFound
from .lookups import GroupMetadata, ImageMatch, StoreGroupMetadata
from .models import AliasMatch, ChatMatch, ContextEntry, ContextWindow, CrossChatIntent
from .settings import ContextSettings
from .threads import Thread, ThreadRanker, segment_threads

__all__ = [
    "AliasDirectory",
    "AliasMatch",
    "ChatMatch",
    "ContextEntry",
    "ContextError",
    "ContextSettings",
    "ContextWindow",
    "CrossChatIntent",
    "DegradedLookup",
    "GroupMetadata",
    "ImageMatch",
    "InvalidInput",
    "NotFound",
    "RelevanceAssembler",
    "StoreGroupMetadata",
    "Thread",
    "ThreadRanker",
    "classify_cross_chat_intent",
    "classify_topics",
    "references_prior_image",
    "segment_threads",
]
