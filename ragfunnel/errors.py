"""Error taxonomy for the retrieval funnel."""


class RetrievalError(Exception):
    """Base class for every error raised by the retrieval engine."""


class EmptyQueryError(RetrievalError, ValueError):
    """Raised when a search is requested with empty query text."""


class InvalidQueryError(RetrievalError, ValueError):
    """Raised for malformed vectors or query/candidate dimension mismatches."""


class ProviderUnavailableError(RetrievalError):
    """Raised when an embedding or completion call fails or times out."""


class NotConfiguredError(ProviderUnavailableError):
    """Raised when a provider is requested without the credentials it needs."""


class StorageError(RetrievalError):
    """Raised when a persistence read or write fails."""


class MessageNotFoundError(RetrievalError, LookupError):
    """Raised when citations are requested for an unknown message."""
