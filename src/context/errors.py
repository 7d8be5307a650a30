"""Context engine errors."""


class ContextError(Exception):
    """Base context engine error."""


class NotFound(ContextError):
    """A name, chat or conversation did not resolve."""


class InvalidInput(ContextError, ValueError):
    """Caller passed an unusable argument (e.g. no conversation id)."""


class DegradedLookup(ContextError):
    """An optional assembly step failed and was skipped."""

    def __init__(self, step: str, error: str):
        super().__init__(f"{step}: {error}")
        self.step = step
        self.error = error
