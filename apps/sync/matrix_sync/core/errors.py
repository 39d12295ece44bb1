"""Error hierarchy for the matrix sync engine."""


class MatrixSyncError(Exception):
    """Base exception for matrix sync errors."""

    pass


class ConfigurationError(MatrixSyncError):
    """Required settings are missing."""

    pass


class AuthError(MatrixSyncError):
    """Credential missing, JWT signing failed, or the token endpoint refused."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class ApiError(MatrixSyncError):
    """The Sheets API rejected a read or write (status 0 = request never completed)."""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}" if status else message)
        self.status = status
        self.message = message


class NotFoundError(MatrixSyncError):
    """A mutation referenced an unknown audience, topic or message."""

    pass


class ValidationError(MatrixSyncError):
    """Invalid row or field values."""

    pass


class VariantCapacityError(ValidationError):
    """All variant letters a-z are taken for a (topic, audience, number) cell."""

    pass
