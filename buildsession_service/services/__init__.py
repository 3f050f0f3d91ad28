from .build_session import BuildSession
from .confirmation import ConfirmationError, ConfirmationGate
from .dispatcher import EventDispatcher, SessionBusyError
from .identity_store import (
    SessionIdentityStore,
    FileIdentityStore,
    OracleIdentityStore,
    create_identity_store,
)
from .platform_client import PlatformClient, PlatformError
from .reconciler import ResourceReconciler
from .registry import SessionRegistry
from .save_reconciler import AutosaveTask, WorkflowSaveReconciler
from .stream_coordinator import StreamCoordinator, StreamHandle

__all__ = [
    "BuildSession",
    "ConfirmationError",
    "ConfirmationGate",
    "EventDispatcher",
    "SessionBusyError",
    "SessionIdentityStore",
    "FileIdentityStore",
    "OracleIdentityStore",
    "create_identity_store",
    "PlatformClient",
    "PlatformError",
    "ResourceReconciler",
    "SessionRegistry",
    "AutosaveTask",
    "WorkflowSaveReconciler",
    "StreamCoordinator",
    "StreamHandle",
]
