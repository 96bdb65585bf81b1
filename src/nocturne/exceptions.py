"""Custom exceptions for nocturne."""

from nocturne import config

logger = config.get_logger()


class LoggedException(Exception):
    """Base class that automatically logs messages."""

    def __init__(self, message: str) -> None:
        """Initialize a new instance of the LoggedException class.

        Args:
            message: The message to display.
        """
        logger.error(message)
        super().__init__(message)


class NocturneError(LoggedException):
    """Base class for nocturne errors."""

    pass


class StoreUnavailableError(NocturneError):
    """The sample store could not complete a read or a transaction."""

    pass


class MalformedSampleError(NocturneError):
    """A raw sample or chunk group has the wrong shape or non-finite values."""

    pass


class ChunkOrderError(NocturneError):
    """A chunk would break timestamp monotonicity within its session."""

    pass


class InvalidSessionError(NocturneError, ValueError):
    """A session cannot be completed, evaluated or scored as given."""

    pass


class SessionStateError(NocturneError):
    """A write-once session field or the single-active-session rule was violated."""

    pass


class InvalidAlarmWindowError(NocturneError, ValueError):
    """An alarm configuration has an unusable wake window or day set."""

    pass
