"""Error taxonomy shared across services."""


class UploadBotError(Exception):
    """Base class for application errors."""


class ValidationError(UploadBotError):
    """Input has a bad format, size, or type."""


class AuthError(UploadBotError):
    """Wrong key, locked user, or inactive session."""


class IntegrityError(UploadBotError):
    """Encrypted payload is malformed or fails authentication."""


class NotFoundError(UploadBotError):
    """Requested entity does not exist."""


class SessionIdConflictError(UploadBotError):
    """A session with the same identifier already exists."""


class TransientProviderError(UploadBotError):
    """Network or server error from the storage provider."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TerminalUploadError(UploadBotError):
    """Upload attempt failed and will not be retried."""
