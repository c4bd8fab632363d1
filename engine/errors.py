# engine/errors.py


class EngineError(Exception):
    """Base class for everything the engine raises on purpose."""


class ValidationError(EngineError):
    """Bad caller input, e.g. blank content or an out-of-range max_questions."""


class NotFoundError(EngineError):
    """Session or question is absent, or is not owned by the caller."""


class ConflictError(EngineError):
    """The write lost against the current state of the session or question."""


class UpstreamGenerationError(EngineError):
    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(EngineError):
    """Storage layer failure. Never swallowed."""
