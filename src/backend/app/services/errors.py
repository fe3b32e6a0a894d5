"""Error taxonomy shared by the device registry and measurement sources."""


class DataAccessError(Exception):
    """Base exception for data access errors."""

    def __init__(
        self,
        message: str,
        source: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.source = source
        self.original_error = original_error


class NotFoundError(DataAccessError):
    """Requested account, relay or sensor does not exist."""
    pass


class MalformedInputError(DataAccessError):
    """Request input could not be parsed."""
    pass


class BackendUnavailableError(DataAccessError):
    """A storage backend failed to answer a query."""
    pass


class UnsupportedQueryError(DataAccessError):
    """The selected measurement backend cannot answer this kind of query."""
    pass
