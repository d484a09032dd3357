"""Resilient request pipeline public API."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "ConnectivityMonitor",
    "CredentialGuard",
    "EntityType",
    "ForcedLogoutError",
    "MutationIntent",
    "NetworkUnreachable",
    "OperationKind",
    "OperationQueue",
    "PipelineConfig",
    "PipelineError",
    "QueueReplayConflict",
    "QueuedAck",
    "ResilientClient",
    "TokenPair",
    "ValidationRejected",
    "__version__",
    "create_sync_router",
    "register_exception_handlers",
]

if TYPE_CHECKING:
    from erp_client.client import ResilientClient
    from erp_client.config import PipelineConfig
    from erp_client.connectivity import ConnectivityMonitor
    from erp_client.credentials import CredentialGuard
    from erp_client.exceptions import (
        ForcedLogoutError,
        NetworkUnreachable,
        PipelineError,
        QueueReplayConflict,
        ValidationRejected,
        register_exception_handlers,
    )
    from erp_client.queue import OperationQueue
    from erp_client.router import create_sync_router
    from erp_client.schemas import (
        EntityType,
        MutationIntent,
        OperationKind,
        QueuedAck,
        TokenPair,
    )

_EXCEPTIONS = {
    "ForcedLogoutError",
    "NetworkUnreachable",
    "PipelineError",
    "QueueReplayConflict",
    "ValidationRejected",
    "register_exception_handlers",
}
_SCHEMAS = {
    "EntityType",
    "MutationIntent",
    "OperationKind",
    "QueuedAck",
    "TokenPair",
}


def __getattr__(name: str):
    # Lazy imports to avoid loading FastAPI and httpx on package import.
    if name == "PipelineConfig":
        from erp_client.config import PipelineConfig

        return PipelineConfig
    if name == "ResilientClient":
        from erp_client.client import ResilientClient

        return ResilientClient
    if name == "CredentialGuard":
        from erp_client.credentials import CredentialGuard

        return CredentialGuard
    if name == "OperationQueue":
        from erp_client.queue import OperationQueue

        return OperationQueue
    if name == "ConnectivityMonitor":
        from erp_client.connectivity import ConnectivityMonitor

        return ConnectivityMonitor
    if name == "create_sync_router":
        from erp_client.router import create_sync_router

        return create_sync_router
    if name in _EXCEPTIONS:
        from erp_client import exceptions

        return getattr(exceptions, name)
    if name in _SCHEMAS:
        from erp_client import schemas

        return getattr(schemas, name)
    raise AttributeError(f"module 'erp_client' has no attribute {name!r}")
