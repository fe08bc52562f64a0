class LibraryError(Exception):
    """Base class for every error raised by the circulation core."""


class ValidationError(LibraryError):
    """Malformed or missing input. Raised before any collaborator is touched."""


class NotFoundError(LibraryError):
    """The referenced item or open issue does not exist."""


class OutOfStockError(LibraryError):
    """No copies of the item are available."""


class EngineError(LibraryError):
    """The inventory engine failed or produced output that could not be used."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class PersistenceError(LibraryError):
    """The local store is unavailable or rejected an operation."""
