class RelayError(Exception):
    """Base class for delivery engine errors."""


class DuplicateRecordError(RelayError):
    """Insert hit a uniqueness constraint (dedup key already stored)."""


class DeliveryError(RelayError, RuntimeError):
    """A sink reported that it could not deliver a record."""
