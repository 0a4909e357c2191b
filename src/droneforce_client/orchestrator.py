"""
Escrow lifecycle orchestration.

Sequences task creation with escrow initialization, and runs the
single-transaction task and escrow flows. Every guard is evaluated against
the task document before any RPC call. Results are mirrored into the
document store only after the transaction confirmed.

Per-task escrow states: NO_ESCROW -> INITIALIZED -> {ACCEPTED | CANCELLED}.

Flows on one task are serialized by a per-task lock held from the guard
check through the store write. When a store write fails after its
transaction confirmed, the task is blocked until ``record_pending``
replays that write.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from solders.pubkey import Pubkey

from droneforce_client.config import SameWalletPolicy
from droneforce_client.exceptions import (
    PartialPipelineError,
    PreconditionError,
    SettlementError,
    TransportError,
)
from droneforce_client.logging import get_logger
from droneforce_client.models import (
    EscrowPaymentRecord,
    EscrowState,
    SettlementOutcome,
    Task,
    TaskCreationOutcome,
    TaskStatus,
)
from droneforce_client.normalize import validate_payment_amount
from droneforce_client.wallet import require_wallet_capability

if TYPE_CHECKING:
    from solders.instruction import Instruction

    from droneforce_client.config import NetworkConfig
    from droneforce_client.document_store import TaskDocumentStore
    from droneforce_client.escrow_instructions import EscrowInstructionBuilder
    from droneforce_client.models import EscrowInitPlan, TaskCreationRequest
    from droneforce_client.submitter import TransactionSubmitter
    from droneforce_client.task_instructions import TaskInstructionBuilder
    from droneforce_client.wallet import WalletCapability

logger = get_logger(__name__)

STEP_TASK_CREATED = "task_created"
STEP_TASK_RECORDED = "task_recorded"
STEP_ESCROW_INITIALIZED = "escrow_initialized"
STEP_ESCROW_RECORDED = "escrow_recorded"
STEP_ESCROW_ACCEPTED = "escrow_accepted"
STEP_CLAIM_RECORDED = "claim_recorded"
STEP_ESCROW_CANCELLED = "escrow_cancelled"
STEP_CANCELLATION_RECORDED = "cancellation_recorded"
STEP_TASK_ACCEPTED = "task_accepted"
STEP_ACCEPTANCE_RECORDED = "acceptance_recorded"
STEP_TASK_COMPLETED = "task_completed"
STEP_COMPLETION_RECORDED = "completion_recorded"
STEP_VERIFICATION_SUBMITTED = "verification_submitted"
STEP_VERIFICATION_RECORDED = "verification_recorded"

SAME_WALLET_SKIP_REASON = "same_wallet"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_pubkey(value: str, field: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise PreconditionError(
            f"{field} is not a valid public key",
            error="INVALID_ADDRESS",
            details={"field": field, "value": value},
        ) from exc


class EscrowLifecycleOrchestrator:
    """Drives task and escrow flows for one deployment."""

    def __init__(
        self,
        task_builder: TaskInstructionBuilder,
        escrow_builder: EscrowInstructionBuilder,
        submitter: TransactionSubmitter,
        store: TaskDocumentStore,
        config: NetworkConfig,
    ) -> None:
        self._task_builder = task_builder
        self._escrow_builder = escrow_builder
        self._submitter = submitter
        self._store = store
        self._config = config
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._unrecorded: dict[str, PartialPipelineError] = {}

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        return self._task_locks.setdefault(task_id, asyncio.Lock())

    async def _submit(self, instructions: list[Instruction], wallet: WalletCapability) -> str:
        try:
            return await self._submitter.submit(instructions, wallet)
        except SettlementError:
            raise
        except Exception as exc:
            raise TransportError(f"Transaction submission failed: {exc}", error="SUBMISSION_FAILED") from exc

    async def _load_task(self, task_id: str) -> Task:
        try:
            task = await self._store.read(task_id)
        except SettlementError:
            raise
        except Exception as exc:
            raise SettlementError(
                "Cannot read task from document store",
                error="STORE_UNAVAILABLE",
                details={"task_id": task_id},
            ) from exc

        if task is None:
            raise PreconditionError(
                f"Task {task_id} not found",
                error="TASK_NOT_FOUND",
                details={"task_id": task_id},
            )
        return task

    async def _write(self, task_id: str, record: Task | dict[str, Any]) -> None:
        """Create the task document or update its fields."""
        try:
            if isinstance(record, Task):
                await self._store.create(record)
            else:
                await self._store.update(task_id, record)
        except SettlementError:
            raise
        except Exception as exc:
            raise SettlementError(
                "Cannot write task to document store",
                error="STORE_UNAVAILABLE",
                details={"task_id": task_id},
            ) from exc

    async def _record_confirmed(
        self,
        task_id: str,
        completed: dict[str, str],
        failed_step: str,
        record: Task | dict[str, Any],
    ) -> None:
        try:
            await self._write(task_id, record)
        except SettlementError as exc:
            error = self._partial(task_id, completed, failed_step, exc, pending_record=record)
            self._unrecorded[task_id] = error
            raise error from exc

    async def record_pending(self, error: PartialPipelineError) -> None:
        """Replay the store write of a flow whose transactions confirmed.

        Raises:
            PreconditionError: If ``error`` carries no pending write.
        """
        if error.task_id is None or error.pending_record is None:
            raise PreconditionError(
                "Nothing to record: no transaction of this flow is ahead of the store",
                error="NOTHING_TO_RECORD",
                details={"failed_step": error.failed_step},
            )

        async with self._lock_for(error.task_id):
            await self._write(error.task_id, error.pending_record)
            self._unrecorded.pop(error.task_id, None)
        logger.info(
            "Pending store write recorded",
            extra={"task_id": error.task_id, "completed_steps": error.completed_steps},
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_recorded(self, task_id: str) -> None:
        pending = self._unrecorded.get(task_id)
        if pending is not None:
            raise PreconditionError(
                f"Task {task_id} has a confirmed transaction not yet recorded",
                error="STORE_WRITE_PENDING",
                details={"task_id": task_id, "completed_steps": pending.completed_steps},
            )

    @staticmethod
    def _require_status(task: Task, expected: TaskStatus) -> None:
        if task.status != expected:
            raise PreconditionError(
                f"Task {task.id} is {task.status.value}, expected {expected.value}",
                error="INVALID_TASK_STATUS",
                details={"task_id": task.id, "status": task.status.value, "expected": expected.value},
            )

    @staticmethod
    def _require_role(task: Task, caller: str, recorded: str | None, role: str) -> None:
        if recorded is None or recorded != caller:
            raise PreconditionError(
                f"Caller is not the task {role}",
                error=f"NOT_TASK_{role.upper()}",
                details={"task_id": task.id, "caller": caller},
            )

    @staticmethod
    def _require_open_escrow(task: Task) -> EscrowPaymentRecord:
        state = task.escrow_state
        if state is EscrowState.NO_ESCROW or task.payment_escrow is None:
            raise PreconditionError(
                f"Task {task.id} has no initialized escrow",
                error="ESCROW_NOT_INITIALIZED",
                details={"task_id": task.id},
            )
        if state is EscrowState.ACCEPTED or task.payment_claimed:
            raise PreconditionError(
                f"Escrow payment for task {task.id} was already claimed",
                error="ESCROW_ALREADY_CLAIMED",
                details={"task_id": task.id},
            )
        if state is EscrowState.CANCELLED:
            raise PreconditionError(
                f"Escrow for task {task.id} was cancelled",
                error="ESCROW_CANCELLED",
                details={"task_id": task.id},
            )
        return task.payment_escrow

    # ------------------------------------------------------------------
    # Task creation with escrow
    # ------------------------------------------------------------------

    async def create_task_with_escrow(
        self,
        wallet: object,
        request: TaskCreationRequest,
    ) -> TaskCreationOutcome:
        """Create a task and, when the request carries a payment, fund its escrow.

        Task creation and escrow initialization are two transactions. If the
        second fails after the first confirmed, PartialPipelineError lists the
        confirmed steps so ``initialize_escrow_for_task`` can finish the job.
        """
        signer = require_wallet_capability(wallet)
        creator = signer.public_key

        payment_mint: Pubkey | None = None
        if request.has_payment:
            validate_payment_amount(request.payment_amount)  # type: ignore[arg-type]
            payment_mint = _parse_pubkey(request.payment_mint, "payment_mint")  # type: ignore[arg-type]

        built = self._task_builder.create_task(
            creator,
            request.task_id,
            request.location,
            request.area_size,
            request.altitude,
            request.task_type,
            request.geofencing_enabled,
            request.description,
        )
        task_id = built.task_id

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task_signature = await self._submit([built.instruction], signer)
            completed = {STEP_TASK_CREATED: task_signature}
            logger.info("Task created on chain", extra={"task_id": task_id, "signature": task_signature})

            task = Task(
                id=task_id,
                creator=str(creator),
                location=request.location,
                area_size=request.area_size,
                altitude=request.altitude,
                duration=request.task_type,
                geofencing_enabled=request.geofencing_enabled,
                description=request.description,
                status=TaskStatus.CREATED,
                created_at=_now_ms(),
                payment_amount=request.payment_amount,
                selected_token=request.payment_mint,
            )
            await self._record_confirmed(task_id, completed, STEP_TASK_RECORDED, task)

            if payment_mint is None:
                return TaskCreationOutcome(
                    task_id=task_id,
                    task_address=built.task_address,
                    task_signature=task_signature,
                )

            try:
                escrow_signature, plan = await self._initialize_escrow(
                    signer,
                    task_id,
                    payment_mint,
                    request.payment_amount,  # type: ignore[arg-type]
                    request.service_type,
                )
            except SettlementError as exc:
                raise self._partial(task_id, completed, STEP_ESCROW_INITIALIZED, exc) from exc

            completed[STEP_ESCROW_INITIALIZED] = escrow_signature
            await self._record_confirmed(
                task_id,
                completed,
                STEP_ESCROW_RECORDED,
                self._escrow_fields(payment_mint, request.payment_amount, escrow_signature),  # type: ignore[arg-type]
            )

        return TaskCreationOutcome(
            task_id=task_id,
            task_address=built.task_address,
            task_signature=task_signature,
            escrow_signature=escrow_signature,
            escrow_address=plan.escrow_address,
            escrowed_tokens_address=plan.escrowed_tokens_address,
        )

    @staticmethod
    def _partial(
        task_id: str,
        completed: dict[str, str],
        failed_step: str,
        cause: SettlementError,
        pending_record: Task | dict[str, Any] | None = None,
    ) -> PartialPipelineError:
        logger.error(
            "Pipeline stopped part-way",
            extra={
                "task_id": task_id,
                "completed_steps": sorted(completed),
                "failed_step": failed_step,
                "cause": cause.error,
            },
        )
        return PartialPipelineError(
            f"Task {task_id} stopped at {failed_step}: {cause.message}",
            completed_steps=completed,
            failed_step=failed_step,
            cause=cause,
            task_id=task_id,
            pending_record=pending_record,
        )

    @staticmethod
    def _escrow_fields(payment_mint: Pubkey, payment_amount: int, signature: str) -> dict[str, Any]:
        record = EscrowPaymentRecord(
            initialized=True,
            token_mint=str(payment_mint),
            amount=payment_amount,
            escrow_tx_signature=signature,
        )
        return {
            "payment_escrow": record,
            "payment_amount": payment_amount,
            "selected_token": str(payment_mint),
        }

    async def _initialize_escrow(
        self,
        signer: WalletCapability,
        task_id: str,
        payment_mint: Pubkey,
        payment_amount: int,
        service_type: str,
    ) -> tuple[str, EscrowInitPlan]:
        plan = await self._escrow_builder.initialize_escrow(
            signer.public_key,
            payment_mint,
            payment_amount,
            service_type,
            task_id,
        )
        signature = await self._submit(plan.instructions, signer)
        logger.info(
            "Escrow initialized on chain",
            extra={
                "task_id": task_id,
                "signature": signature,
                "escrow_address": str(plan.escrow_address),
            },
        )
        return signature, plan

    async def initialize_escrow_for_task(
        self,
        wallet: object,
        task_id: str,
        payment_amount: int,
        payment_mint: str,
        service_type: str = "drone-service",
    ) -> SettlementOutcome:
        """Fund the escrow of an existing task, e.g. after a partial pipeline."""
        signer = require_wallet_capability(wallet)
        caller = str(signer.public_key)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_role(task, caller, task.creator, "creator")
            if task.escrow_state is not EscrowState.NO_ESCROW:
                raise PreconditionError(
                    f"Task {task_id} already has an escrow",
                    error="ESCROW_ALREADY_INITIALIZED",
                    details={"task_id": task_id, "escrow_state": task.escrow_state.value},
                )
            validate_payment_amount(payment_amount)
            mint = _parse_pubkey(payment_mint, "payment_mint")

            signature, plan = await self._initialize_escrow(signer, task_id, mint, payment_amount, service_type)
            await self._record_confirmed(
                task_id,
                {STEP_ESCROW_INITIALIZED: signature},
                STEP_ESCROW_RECORDED,
                self._escrow_fields(mint, payment_amount, signature),
            )

        return SettlementOutcome(
            task_id=task_id,
            signature=signature,
            details={
                "escrow_address": plan.escrow_address,
                "escrowed_tokens_address": plan.escrowed_tokens_address,
            },
        )

    # ------------------------------------------------------------------
    # Escrow settlement
    # ------------------------------------------------------------------

    async def claim_payment(self, wallet: object, task_id: str) -> SettlementOutcome:
        """Release the escrowed payment to the task operator.

        Requires a verified task, the recorded operator as caller, and an
        initialized escrow that is neither claimed nor cancelled.
        """
        signer = require_wallet_capability(wallet)
        caller = str(signer.public_key)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_status(task, TaskStatus.VERIFIED)
            self._require_role(task, caller, task.operator, "operator")
            escrow = self._require_open_escrow(task)

            if task.creator == task.operator:
                if self._config.same_wallet_policy is SameWalletPolicy.REJECT:
                    raise PreconditionError(
                        "Task creator and operator are the same wallet",
                        error="SAME_WALLET_ESCROW",
                        details={"task_id": task_id},
                    )
                logger.warning(
                    "Same-wallet escrow claim skipped",
                    extra={"task_id": task_id, "wallet": caller},
                )
                return SettlementOutcome(
                    task_id=task_id,
                    signature=None,
                    skipped_reason=SAME_WALLET_SKIP_REASON,
                )

            client = _parse_pubkey(task.creator, "creator")
            mint = _parse_pubkey(escrow.token_mint, "token_mint")
            instructions = await self._escrow_builder.accept_escrow(signer.public_key, client, task_id, mint)
            signature = await self._submit(instructions, signer)
            logger.info("Escrow payment claimed", extra={"task_id": task_id, "signature": signature})

            await self._record_confirmed(
                task_id,
                {STEP_ESCROW_ACCEPTED: signature},
                STEP_CLAIM_RECORDED,
                {
                    "payment_escrow": escrow.with_accepted(signature),
                    "payment_claimed": True,
                    "payment_claim_tx": signature,
                },
            )
        return SettlementOutcome(task_id=task_id, signature=signature)

    async def cancel_escrow(self, wallet: object, task_id: str) -> SettlementOutcome:
        """Return the escrowed payment to the task creator."""
        signer = require_wallet_capability(wallet)
        caller = str(signer.public_key)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_role(task, caller, task.creator, "creator")
            escrow = self._require_open_escrow(task)

            mint = _parse_pubkey(escrow.token_mint, "token_mint")
            instructions = self._escrow_builder.cancel_escrow(signer.public_key, task_id, mint)
            signature = await self._submit(instructions, signer)
            logger.info("Escrow cancelled", extra={"task_id": task_id, "signature": signature})

            await self._record_confirmed(
                task_id,
                {STEP_ESCROW_CANCELLED: signature},
                STEP_CANCELLATION_RECORDED,
                {"payment_escrow": escrow.with_cancelled(signature)},
            )
        return SettlementOutcome(task_id=task_id, signature=signature)

    # ------------------------------------------------------------------
    # Single-transaction task flows
    # ------------------------------------------------------------------

    async def accept_task(self, wallet: object, task_id: str) -> SettlementOutcome:
        signer = require_wallet_capability(wallet)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_status(task, TaskStatus.CREATED)

            built = self._task_builder.accept_task(signer.public_key, task_id)
            signature = await self._submit([built.instruction], signer)
            logger.info("Task accepted", extra={"task_id": task_id, "signature": signature})

            await self._record_confirmed(
                task_id,
                {STEP_TASK_ACCEPTED: signature},
                STEP_ACCEPTANCE_RECORDED,
                {
                    "operator": str(signer.public_key),
                    "status": TaskStatus.ACCEPTED,
                    "accepted_at": _now_ms(),
                },
            )
        return SettlementOutcome(task_id=task_id, signature=signature)

    async def complete_task(
        self,
        wallet: object,
        task_id: str,
        arweave_tx_id: str,
        log_hash: str,
        signature: str,
    ) -> SettlementOutcome:
        signer = require_wallet_capability(wallet)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_status(task, TaskStatus.ACCEPTED)
            self._require_role(task, str(signer.public_key), task.operator, "operator")

            built = self._task_builder.complete_task(
                signer.public_key, task_id, arweave_tx_id, log_hash, signature
            )
            tx_signature = await self._submit([built.instruction], signer)
            logger.info("Task completed", extra={"task_id": task_id, "signature": tx_signature})

            await self._record_confirmed(
                task_id,
                {STEP_TASK_COMPLETED: tx_signature},
                STEP_COMPLETION_RECORDED,
                {
                    "arweave_tx_id": arweave_tx_id,
                    "log_hash": log_hash,
                    "signature": signature,
                    "status": TaskStatus.COMPLETED,
                    "completed_at": _now_ms(),
                },
            )
        return SettlementOutcome(task_id=task_id, signature=tx_signature)

    async def record_verification(
        self,
        wallet: object,
        task_id: str,
        result: bool,
        report_hash: str,
    ) -> SettlementOutcome:
        """Record the validator's verdict. Only the configured validator may call this."""
        signer = require_wallet_capability(wallet)

        async with self._lock_for(task_id):
            self._require_recorded(task_id)
            task = await self._load_task(task_id)
            self._require_status(task, TaskStatus.COMPLETED)

            validator = self._config.validator_pubkey
            if validator is not None and signer.public_key != validator:
                raise PreconditionError(
                    "Caller is not the configured validator",
                    error="NOT_VALIDATOR",
                    details={"task_id": task_id, "caller": str(signer.public_key)},
                )

            built = self._task_builder.record_verification(signer.public_key, task_id, result, report_hash)
            tx_signature = await self._submit([built.instruction], signer)
            logger.info(
                "Verification recorded",
                extra={"task_id": task_id, "signature": tx_signature, "result": result},
            )

            await self._record_confirmed(
                task_id,
                {STEP_VERIFICATION_SUBMITTED: tx_signature},
                STEP_VERIFICATION_RECORDED,
                {
                    "verification_result": result,
                    "verification_report_hash": report_hash,
                    "status": TaskStatus.VERIFIED,
                    "verified_at": _now_ms(),
                },
            )
        return SettlementOutcome(task_id=task_id, signature=tx_signature)
