"""Exception types shared across the fuzzer."""


class FuzzerError(Exception):
    """Base class for all fuzzer errors."""


class SchemaError(FuzzerError):
    """The API document could not be loaded or dereferenced."""


class GenerationError(FuzzerError):
    """A schema node has no generator. Raised at compile time."""


class TransportError(FuzzerError):
    """The request could not be completed (network, timeout, backoff exhausted)."""


class ReportError(FuzzerError):
    """A finding or stats record could not be written."""


class ContractViolation(AssertionError):
    """The service answered with a response the schema does not allow."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
