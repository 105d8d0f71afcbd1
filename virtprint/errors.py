class PrintError(Exception):
    """Base class for everything the ingestion/conversion core raises."""


class ProtocolError(PrintError):
    """Malformed or unsupported IPP request; carries the IPP status to answer with."""

    def __init__(self, message: str, status: int = 0x0400) -> None:
        super().__init__(message)
        self.status = status


class AttributionError(PrintError):
    """A submission could not be attributed to an account."""


class AuthenticationError(AttributionError):
    """An IPP credential was presented but did not verify."""


class SpoolError(PrintError):
    """Writing input bytes to the spool failed.

    ``exhausted`` marks storage exhaustion (disk full, quota), which is an
    operational fault rather than a per-job failure.
    """

    def __init__(self, message: str, exhausted: bool = False) -> None:
        super().__init__(message)
        self.exhausted = exhausted


class ConversionError(PrintError):
    TIMEOUT = "timeout"
    EXIT_STATUS = "exit-status"
    UNSUPPORTED = "unsupported"
    CANCELLED = "cancelled"
    INTERNAL = "internal"

    def __init__(self, message: str, code: str = INTERNAL, retryable: bool = True) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class CapacityError(PrintError):
    """The conversion queue is full; new submissions are refused."""


class JobStateError(PrintError):
    """Requested transition is not allowed from the job's current state."""


class JobNotFound(KeyError):
    pass


class NotAuthorized(PrintError):
    """The caller does not own the job it tried to act on."""
