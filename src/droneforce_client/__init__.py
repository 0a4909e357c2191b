"""DroneForce settlement client: task program instructions and escrow lifecycle on Solana."""

from droneforce_client.accounts import fetch_escrow_account, fetch_task_account
from droneforce_client.attestation import hash_flight_log, sign_log_hash, verify_log_signature
from droneforce_client.client import DroneForceClient
from droneforce_client.escrow_instructions import EscrowInstructionBuilder
from droneforce_client.orchestrator import EscrowLifecycleOrchestrator
from droneforce_client.submitter import TransactionSubmitter
from droneforce_client.task_instructions import TaskInstructionBuilder
from droneforce_client.wallet import KeypairWallet

__version__ = "0.1.0"

__all__ = [
    "DroneForceClient",
    "EscrowInstructionBuilder",
    "EscrowLifecycleOrchestrator",
    "KeypairWallet",
    "TaskInstructionBuilder",
    "TransactionSubmitter",
    "fetch_escrow_account",
    "fetch_task_account",
    "hash_flight_log",
    "sign_log_hash",
    "verify_log_signature",
]
