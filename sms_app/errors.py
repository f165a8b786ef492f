class DataServiceError(Exception):
    """Base class for failures raised by the data service."""

    def __init__(self, message="", *, table=None):
        super().__init__(message)
        self.message = message
        self.table = table


class DataFetchError(DataServiceError):
    """A query or procedure call against the backend failed."""


class ConflictError(DataServiceError):
    """A write collided with an existing row (duplicate email, duplicate pair)."""


class ValidationError(ValueError):
    """Request parameters were rejected before anything was fetched."""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class PartialDataWarning(UserWarning):
    """A row carried a missing or malformed numeric field; it was counted as 0."""
