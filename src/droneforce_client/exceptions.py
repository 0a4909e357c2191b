"""Error taxonomy for the settlement client.

Every error carries a machine-readable ``error`` code, a human message and a
``details`` dict, mirroring the error envelope used by the platform services.
"""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base class for all settlement client failures."""

    default_error = "SETTLEMENT_ERROR"

    def __init__(
        self,
        message: str,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error or self.default_error
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Return the error envelope."""
        return {"error": self.error, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(error={self.error!r}, message={self.message!r})"


class InputValidationError(SettlementError):
    """Caller input could not be normalized into a valid instruction argument."""

    default_error = "INPUT_VALIDATION"


class PreconditionError(SettlementError):
    """A business rule or capability check failed before any network call."""

    default_error = "PRECONDITION_VIOLATION"


class AddressDerivationError(SettlementError):
    """No program-derived address could be produced for the given seeds."""

    default_error = "NO_VALID_ADDRESS"


class TransportError(SettlementError):
    """RPC unreachable, submission rejected, or confirmation failed.

    ``signature`` is set whenever the transaction was submitted, so the caller
    can inspect the chain manually.
    """

    default_error = "RPC_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        error: str | None = None,
        details: dict[str, Any] | None = None,
        signature: str | None = None,
    ) -> None:
        super().__init__(message, error, details)
        self.signature = signature
        if signature is not None:
            self.details.setdefault("signature", signature)


class PartialPipelineError(SettlementError):
    """A flow stopped after some of its transactions were confirmed.

    ``pending_record`` holds the document write that did not happen when the
    chain is ahead of the task store; it is None when a transaction failed.
    """

    default_error = "PARTIAL_PIPELINE"

    def __init__(
        self,
        message: str,
        completed_steps: dict[str, str],
        failed_step: str,
        cause: SettlementError,
        task_id: str | None = None,
        pending_record: Any = None,
    ) -> None:
        details: dict[str, Any] = {
            "completed_steps": dict(completed_steps),
            "failed_step": failed_step,
            "cause": cause.to_dict(),
        }
        if task_id is not None:
            details["task_id"] = task_id
        super().__init__(message, details=details)
        self.completed_steps = dict(completed_steps)
        self.failed_step = failed_step
        self.cause = cause
        self.task_id = task_id
        self.pending_record = pending_record
