"""
Exception hierarchy shared by the store, backup and prompt layers.

Handlers in board_server.py map these onto HTTP status codes.
"""


class PromptBoardError(Exception):
    """Base class for all PromptBoard errors."""
    pass


class ConfigError(PromptBoardError):
    """Raised when a required secret or credential is missing."""
    pass


class LLMUnavailableError(ConfigError):
    """Raised when every LLM transport in the chain failed."""

    def __init__(self, message: str, attempts=None):
        super().__init__(message)
        self.attempts = attempts or []


class StoreError(PromptBoardError):
    """Raised when a store read or write fails."""
    pass


class RecordValidationError(StoreError):
    """Raised when a row or payload does not match the record schema."""
    pass


class RecordIntegrityError(StoreError):
    """Raised when a record references a project that does not exist."""
    pass


class RecordNotFound(StoreError):
    """Raised when a lookup by id finds nothing."""
    pass


class BackupError(PromptBoardError):
    """Raised when a backup step fails. The message names the step."""
    pass


class TransportError(PromptBoardError):
    """Raised by a single LLM transport attempt."""
    pass


class SessionStateError(PromptBoardError):
    """Raised when a prompt session operation is called from the wrong state."""
    pass
