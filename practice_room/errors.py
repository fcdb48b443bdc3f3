class BookingError(Exception):
    """Base class for every failure the booking core reports."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Bad user input: caught before the store is touched."""


class NotFound(BookingError):
    """The reservation id does not exist (usually a stale snapshot)."""


class InvalidInput(BookingError):
    """The store refused the values it was given."""


class BackendUnavailable(BookingError):
    """Reading from the backend failed."""


class PersistenceError(BookingError):
    """The backend rejected or failed a write."""


class OperationInProgress(BookingError):
    """A mutation for the same slot or reservation has not settled yet."""
