"""
Exception hierarchy for specwatch.

Fetch errors carry a ``retryable`` flag so the poller can decide whether to
back off and try again; invariant violations signal a caller contract bug and
are never caught inside the engine.
"""

from typing import Optional


class SpecwatchError(Exception):
    """Base class for all specwatch errors."""


class FetchError(SpecwatchError):
    """
    Raised when the interface description of a target cannot be obtained.

    Attributes:
        target_id: Target whose fetch failed
        retryable: Whether a later attempt may succeed
    """

    retryable = False
    reason = "fetch_failed"

    def __init__(self, target_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{target_id}: {message}")
        self.target_id = target_id
        self.message = message
        self.cause = cause


class UnreachableError(FetchError):
    """The document source could not be reached or answered with an error status."""

    retryable = True
    reason = "unreachable"


class FetchTimeoutError(FetchError):
    """The document source did not answer within the configured timeout."""

    retryable = True
    reason = "timeout"


class InvalidDocumentError(FetchError):
    """The retrieved document is not a parsable OpenAPI/Swagger description."""

    retryable = False
    reason = "invalid_document"


class InvariantViolation(SpecwatchError):
    """
    A caller broke an engine contract.

    Examples are diffing snapshots that belong to two different targets or
    building a changelog entry without any classified change records.
    """
