"""Observable session state and the instance manager."""

from .data_store import SessionDataStore
from .instances import EngineInstance, InstanceKind, InstanceManager
from .observable import Derived, Observable
from .viewer import SessionViewer

__all__ = [
    "SessionDataStore",
    "EngineInstance",
    "InstanceKind",
    "InstanceManager",
    "Derived",
    "Observable",
    "SessionViewer",
]
