"""structlog setup for the CLI: console or JSON lines on stderr, identifiers masked."""

import logging
import re
import sys

import structlog

# (pattern, replacement) applied to every string value of an event
_REDACT_PATTERNS = [
    # phone numbers and the numeric part of participant ids; a 4-digit prefix survives
    (re.compile(r"(?<!\d)(\d{4})\d{6,}(?!\d)"), r"\1******"),
    # e-mail addresses; chat ids share the shape but not the domain
    (
        re.compile(r"[a-zA-Z0-9._%+-]+@(?!(?:s\.whatsapp\.net|g\.us)\b)[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        "REDACTED@email",
    ),
]


def _redact_sensitive(_, __, event_dict: dict) -> dict:
    """Mask phone numbers and e-mail addresses in string values."""
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        for pattern, replacement in _REDACT_PATTERNS:
            value = pattern.sub(replacement, value)
        event_dict[key] = value
    return event_dict


def _processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        structlog.processors.StackInfoRenderer(),
        _redact_sensitive,
    ]


def setup_logging(json_mode: bool = False, level: str = "INFO") -> None:
    """Route structlog through stdlib logging with one stderr handler.

    Args:
        json_mode: one JSON object per line instead of the console renderer.
        level: root level name; unknown names fall back to INFO.
    """
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def bind_conversation(conversation_id: str) -> None:
    """Attach a conversation id to every log line emitted from this context."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)
