class KeelError(Exception):
    """Base class for all Keel exceptions."""


class ConfigurationError(KeelError):
    """Raised when a model, relation or connection is misconfigured."""


class QueryValidationError(KeelError, ValueError):
    """Raised when query input is rejected before any SQL is issued."""


class RelationNotLoadedError(KeelError, AttributeError):
    """Raised when reading a relation that was never loaded on a record."""
