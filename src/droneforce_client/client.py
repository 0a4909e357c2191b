"""Top-level facade wiring the settlement components together."""

from __future__ import annotations

from typing import TYPE_CHECKING

from droneforce_client.config import build_network_config
from droneforce_client.document_store import InMemoryTaskStore
from droneforce_client.escrow_instructions import EscrowInstructionBuilder
from droneforce_client.logging import get_logger
from droneforce_client.orchestrator import EscrowLifecycleOrchestrator
from droneforce_client.rpc import RpcConnection
from droneforce_client.submitter import TransactionSubmitter
from droneforce_client.task_instructions import TaskInstructionBuilder

if TYPE_CHECKING:
    from droneforce_client.config import NetworkConfig, Settings
    from droneforce_client.document_store import TaskDocumentStore


class DroneForceClient:
    """
    Owns the shared RPC connection and the components built on it.

    Use ``from_settings`` at startup and ``close`` at shutdown. The instance
    may serve concurrent operations.
    """

    def __init__(self, config: NetworkConfig, connection: RpcConnection, store: TaskDocumentStore) -> None:
        self.config = config
        self.connection = connection
        self.store = store
        self.task_builder = TaskInstructionBuilder(config, config.normalization)
        self.escrow_builder = EscrowInstructionBuilder(config, connection)
        self.submitter = TransactionSubmitter(connection)
        self.orchestrator = EscrowLifecycleOrchestrator(
            self.task_builder,
            self.escrow_builder,
            self.submitter,
            store,
            config,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: TaskDocumentStore | None = None,
    ) -> DroneForceClient:
        """Build a client from loaded settings.

        Without a store, debug mode falls back to an in-memory store;
        production requires one.
        """
        config = build_network_config(settings)
        if store is None:
            if not config.debug_mode:
                msg = "A task document store is required when debug_mode is off"
                raise ValueError(msg)
            store = InMemoryTaskStore()

        connection = RpcConnection(config.rpc_url, config.commitment)
        get_logger(__name__).info(
            "Settlement client ready",
            extra={
                "rpc_url": config.rpc_url,
                "task_program_id": str(config.task_program_id),
                "escrow_program_id": str(config.escrow_program_id),
                "debug_mode": config.debug_mode,
            },
        )
        return cls(config, connection, store)

    async def close(self) -> None:
        await self.connection.close()
