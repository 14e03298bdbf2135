"""Engine instances and the manager that keeps them isolated.

One engine type serves both lifecycles. A document instance is a disposable
read-only viewer over a stored session; the global instance is the live
recording session, a process-wide singleton whose cleanup means reset.
"""

import logging
import uuid
from enum import Enum
from typing import Any, Callable

from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..execution.machine import ExecutionStateMachine
from ..graph.session import SessionAnalysis
from .data_store import SessionDataStore
from .viewer import SessionViewer

log = logging.getLogger(__name__)

GLOBAL_INSTANCE_ID = "global"


class InstanceKind(Enum):
    DOCUMENT = "document"
    GLOBAL = "global"


def generate_instance_id(kind: InstanceKind) -> str:
    return f"{kind.value}_{uuid.uuid4().hex[:12]}"


class EngineInstance:
    """Data store, viewer and execution state bound to one id."""

    def __init__(
        self,
        kind: InstanceKind,
        instance_id: str,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        on_dispose: Callable[[str], None] | None = None,
    ):
        self.id = instance_id
        self.kind = kind
        self.config = config
        self.session_id: str | None = None
        self.disposed = False
        self._on_dispose = on_dispose

        self.data_store = SessionDataStore(instance_id, config)
        self.viewer = SessionViewer(
            self.data_store, instance_id, interactive=kind == InstanceKind.GLOBAL
        )
        self.execution = ExecutionStateMachine(config)

    def __repr__(self) -> str:
        return f"EngineInstance(id={self.id!r}, kind={self.kind.value!r})"

    def load_session(self, data: dict[str, Any] | SessionAnalysis) -> None:
        if self.disposed:
            log.debug(f"Ignoring session load on disposed instance {self.id}")
            return
        self.data_store.load_session(data)

    def process_event(self, payload: dict[str, Any]) -> bool:
        """Apply one raw execution event. Late events after cleanup are no-ops."""
        if self.disposed:
            log.debug(f"Ignoring event on disposed instance {self.id}")
            return False
        return self.execution.process_payload(payload)

    def reset(self) -> None:
        """Return every component to its initial state, keeping subscribers."""
        self.data_store.clear_session()
        self.data_store.set_thresholds(self.config.thresholds)
        self.viewer.reset_viewer_state()
        self.execution.reset()
        self.session_id = None

    def cleanup(self) -> None:
        """Dispose a document instance, or reset the global one. Idempotent."""
        if self.kind == InstanceKind.GLOBAL:
            log.info("Global instance cleanup requested, resetting to initial state")
            self.reset()
            return

        if self.disposed:
            return
        log.info(f"Cleaning up document instance {self.id}")
        self.viewer.cleanup()
        self.data_store.cleanup()
        self.execution.dispose()
        self.disposed = True
        if self._on_dispose is not None:
            self._on_dispose(self.id)


class InstanceManager:
    """Registry of document instances plus the lazily created global one."""

    def __init__(self, config: EngineConfig = DEFAULT_ENGINE_CONFIG):
        self.config = config
        self._instances: dict[str, EngineInstance] = {}
        self._global: EngineInstance | None = None

    def create_document_instance(
        self, initial_data: dict[str, Any] | SessionAnalysis | None = None
    ) -> EngineInstance:
        instance_id = generate_instance_id(InstanceKind.DOCUMENT)
        log.info(f"Creating document instance {instance_id}")
        instance = EngineInstance(
            InstanceKind.DOCUMENT,
            instance_id,
            self.config,
            on_dispose=self._forget,
        )
        if initial_data is not None:
            instance.load_session(initial_data)
        self._instances[instance_id] = instance
        return instance

    def get_global_instance(self, session_id: str | None = None) -> EngineInstance:
        """Return the live-session singleton.

        Passing a new session id resets the instance and starts execution
        tracking for that session.
        """
        if self._global is None:
            self._global = EngineInstance(
                InstanceKind.GLOBAL, GLOBAL_INSTANCE_ID, self.config
            )
        instance = self._global
        if session_id is not None and session_id != instance.session_id:
            if instance.session_id is not None:
                log.info(
                    f"Live session changed {instance.session_id} -> {session_id}, resetting"
                )
                instance.reset()
            instance.session_id = session_id
            instance.execution.initialize(session_id)
        return instance

    def _forget(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)

    def cleanup_instance(self, instance_id: str) -> bool:
        if instance_id == GLOBAL_INSTANCE_ID and self._global is not None:
            self._global.cleanup()
            return True
        instance = self._instances.get(instance_id)
        if instance is None:
            log.warning(f"Attempted to clean up unknown instance {instance_id}")
            return False
        instance.cleanup()
        return True

    def cleanup_all(self) -> int:
        """Dispose every document instance; returns how many there were."""
        instances = list(self._instances.values())
        log.info(f"Cleaning up {len(instances)} document instances")
        for instance in instances:
            instance.cleanup()
        self._instances.clear()
        return len(instances)

    def active_instances(self) -> list[dict[str, str]]:
        return [
            {"id": instance.id, "kind": instance.kind.value}
            for instance in self._instances.values()
        ]

    def has_instance(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def instance_count(self) -> int:
        return len(self._instances)


_manager: InstanceManager | None = None


def init_manager(config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> InstanceManager:
    """Replace the process-wide manager, disposing the previous one's documents."""
    global _manager
    if _manager is not None:
        _manager.cleanup_all()
    _manager = InstanceManager(config)
    return _manager


def get_manager() -> InstanceManager:
    global _manager
    if _manager is None:
        _manager = InstanceManager()
    return _manager


def create_document_instance(
    initial_data: dict[str, Any] | SessionAnalysis | None = None,
) -> EngineInstance:
    return get_manager().create_document_instance(initial_data)


def get_global_instance(session_id: str | None = None) -> EngineInstance:
    return get_manager().get_global_instance(session_id)


def cleanup_instance(instance_id: str) -> bool:
    return get_manager().cleanup_instance(instance_id)


def cleanup_all() -> int:
    return get_manager().cleanup_all()


def active_instances() -> list[dict[str, str]]:
    return get_manager().active_instances()


def has_instance(instance_id: str) -> bool:
    return get_manager().has_instance(instance_id)


def instance_count() -> int:
    return get_manager().instance_count()
