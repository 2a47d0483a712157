"""Exception hierarchy for the ledger context framework."""

from typing import Any


class LedgerContextError(Exception):
    """Base exception for all ledger context errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidContextError(LedgerContextError):
    """Raised when a required ancestor or sibling state is not resolvable."""

    def __init__(
        self,
        message: str,
        node: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.node = node


class DecodeError(LedgerContextError):
    """Raised when account bytes exist but do not match the expected layout."""

    def __init__(
        self,
        message: str,
        address: str | None = None,
        kind: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.address = address
        self.kind = kind


class ValidationError(LedgerContextError):
    """Raised when caller-supplied arguments fail validation."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value


class SubmissionError(LedgerContextError):
    """Raised when the ledger rejects a simulation or an execution."""

    def __init__(
        self,
        message: str,
        signature: str | None = None,
        diagnostics: Any | None = None,
        logs: list[str] | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.signature = signature
        self.diagnostics = diagnostics
        self.logs = list(logs or [])


class ChainMisconfigurationError(LedgerContextError):
    """Raised when chained execution is requested without a usable decider."""

    pass


class NetworkError(LedgerContextError):
    """Raised when network/connection issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


def require(value: Any, message: str, *, node: str | None = None) -> Any:
    """Return ``value`` or raise :class:`InvalidContextError` when it is None."""

    if value is None:
        raise InvalidContextError(message, node=node)
    return value
