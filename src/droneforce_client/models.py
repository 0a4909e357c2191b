"""Domain models for tasks, escrow records and settlement results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from solders.instruction import Instruction
    from solders.pubkey import Pubkey


class TaskStatus(StrEnum):
    """Lifecycle of a task document."""

    CREATED = "created"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    VERIFIED = "verified"


class EscrowState(StrEnum):
    """Lifecycle of a task's escrow. ACCEPTED and CANCELLED are terminal."""

    NO_ESCROW = "no_escrow"
    INITIALIZED = "initialized"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase shape held by the document store."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class EscrowPaymentRecord(_DocumentModel):
    """
    Escrow bookkeeping attached to a task.

    At most one of ``accepted_tx_signature`` and ``cancelled_tx_signature``
    is ever set. Records are frozen; use ``with_accepted`` / ``with_cancelled``
    to produce the next state.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    initialized: bool
    token_mint: str
    amount: int
    escrow_tx_signature: str
    accepted_tx_signature: str | None = None
    cancelled_tx_signature: str | None = None

    @model_validator(mode="after")
    def _check_terminal_exclusive(self) -> EscrowPaymentRecord:
        if self.accepted_tx_signature is not None and self.cancelled_tx_signature is not None:
            msg = "Escrow cannot be both accepted and cancelled"
            raise ValueError(msg)
        return self

    @property
    def state(self) -> EscrowState:
        if self.accepted_tx_signature is not None:
            return EscrowState.ACCEPTED
        if self.cancelled_tx_signature is not None:
            return EscrowState.CANCELLED
        if self.initialized:
            return EscrowState.INITIALIZED
        return EscrowState.NO_ESCROW

    def with_accepted(self, signature: str) -> EscrowPaymentRecord:
        data = self.model_dump()
        data["accepted_tx_signature"] = signature
        return EscrowPaymentRecord(**data)

    def with_cancelled(self, signature: str) -> EscrowPaymentRecord:
        data = self.model_dump()
        data["cancelled_tx_signature"] = signature
        return EscrowPaymentRecord(**data)


class Task(_DocumentModel):
    """Task document as held by the external store. Timestamps are epoch ms."""

    id: str
    creator: str
    operator: str | None = None
    location: str
    area_size: float
    altitude: float
    duration: float
    geofencing_enabled: bool
    description: str
    status: TaskStatus = TaskStatus.CREATED
    created_at: int
    accepted_at: int | None = None
    completed_at: int | None = None
    verified_at: int | None = None
    arweave_tx_id: str | None = None
    log_hash: str | None = None
    signature: str | None = None
    verification_result: bool | None = None
    verification_report_hash: str | None = None
    payment_escrow: EscrowPaymentRecord | None = None
    payment_amount: int | None = None
    selected_token: str | None = None
    payment_claimed: bool | None = None
    payment_claim_tx: str | None = None

    @property
    def escrow_state(self) -> EscrowState:
        if self.payment_escrow is None:
            return EscrowState.NO_ESCROW
        return self.payment_escrow.state


class TaskCreationRequest(BaseModel):
    """Caller input for a task plus optional escrow funding."""

    model_config = ConfigDict(extra="forbid")

    task_id: str
    location: str
    area_size: float
    altitude: float
    task_type: float
    geofencing_enabled: bool
    description: str
    payment_amount: int | None = None
    payment_mint: str | None = None
    service_type: str = "drone-service"

    @model_validator(mode="after")
    def _check_payment_pair(self) -> TaskCreationRequest:
        if (self.payment_amount is None) != (self.payment_mint is None):
            msg = "payment_amount and payment_mint must be given together"
            raise ValueError(msg)
        return self

    @property
    def has_payment(self) -> bool:
        return self.payment_amount is not None


@dataclass(frozen=True)
class BuiltInstruction:
    """A task-program instruction with the task address it targets."""

    instruction: Instruction
    task_address: Pubkey
    task_id: str


@dataclass(frozen=True)
class EscrowInitPlan:
    """Instructions for one atomic escrow-initialization transaction."""

    instructions: list[Instruction]
    escrow_address: Pubkey
    escrowed_tokens_address: Pubkey
    client_token_account: Pubkey


@dataclass(frozen=True)
class TaskCreationOutcome:
    """Result of task creation, with the escrow step when a payment was given."""

    task_id: str
    task_address: Pubkey
    task_signature: str
    escrow_signature: str | None = None
    escrow_address: Pubkey | None = None
    escrowed_tokens_address: Pubkey | None = None


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of a single-transaction flow.

    ``signature`` is None when the flow short-circuited without sending a
    transaction; ``skipped_reason`` then says why.
    """

    task_id: str
    signature: str | None
    skipped_reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def submitted(self) -> bool:
        return self.signature is not None
