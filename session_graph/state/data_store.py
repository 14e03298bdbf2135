"""Session data store: the loaded snapshot and every view derived from it."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from ..analysis.index import build_relationship_index
from ..analysis.path import calculate_path
from ..analysis.sankey import transform_to_sankey
from ..analysis.scoring import pending_only, sort_actions
from ..analysis.thresholds import apply_thresholds
from ..analysis.config import ThresholdConfig
from ..analysis.types import (
    FilterResult,
    HiddenCounts,
    PathResult,
    RelationshipIndex,
    SankeyView,
)
from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..graph.model import GraphModel, Link
from ..graph.schema import ActionStatus, ActionType
from ..graph.session import SessionAnalysis, display_name, parse_session, session_to_graph
from .observable import Derived, Observable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionComputed:
    """A loaded session with the structures rebuilt on every load."""

    session: SessionAnalysis
    graph: GraphModel
    relationship_index: RelationshipIndex
    node_map: dict[str, dict[str, Any]]
    link_map: dict[str, Link]
    is_loading: bool = False
    error: str | None = None


@dataclass(frozen=True)
class UserAction:
    action: str
    target_id: str
    reason: str | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "targetId": self.target_id,
            "reason": self.reason,
        }


def _is_action_type(action: dict[str, Any], action_type: ActionType) -> bool:
    return action.get("actionType") == action_type.value


def _mentions(action: dict[str, Any], node_ids: set[str]) -> bool:
    return any(
        isinstance(rel, dict) and rel.get("nodeId") in node_ids
        for rel in action.get("relationships") or []
    )


def _link_endpoints(link: Link | dict[str, Any]) -> set[str]:
    if isinstance(link, Link):
        return {link.source, link.target}
    ends = set()
    for key in ("source", "target"):
        end = link.get(key)
        if isinstance(end, dict):
            end = end.get("id")
        if end:
            ends.add(str(end))
    return ends


class SessionDataStore:
    """Holds one session snapshot and exposes derived, memoized views.

    Every load replaces the snapshot wholesale; the relationship index and
    lookup maps are rebuilt from it and the derived views recompute on the
    next read.
    """

    def __init__(
        self,
        instance_id: str | None = None,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    ):
        self.id = instance_id or f"session_data_{uuid.uuid4().hex[:8]}"
        self.config = config
        self.store: Observable[SessionComputed | None] = Observable(None)
        self.thresholds: Observable[ThresholdConfig] = Observable(config.thresholds)

        self.session_data: Derived[SessionAnalysis | None] = Derived(
            [self.store], lambda s: s.session if s else None
        )
        self.relationship_index: Derived[RelationshipIndex | None] = Derived(
            [self.store], lambda s: s.relationship_index if s else None
        )
        self.node_map: Derived[dict[str, dict[str, Any]]] = Derived(
            [self.store], lambda s: s.node_map if s else {}
        )
        self.link_map: Derived[dict[str, Link]] = Derived(
            [self.store], lambda s: s.link_map if s else {}
        )
        self.is_loading: Derived[bool] = Derived(
            [self.store], lambda s: s.is_loading if s else False
        )
        self.error: Derived[str | None] = Derived(
            [self.store], lambda s: s.error if s else None
        )

        self.sankey_data: Derived[SankeyView | None] = Derived(
            [self.session_data],
            lambda session: (
                transform_to_sankey(session, config.sankey) if session else None
            ),
        )
        self._filtered: Derived[FilterResult | None] = Derived(
            [self.sankey_data, self.thresholds],
            lambda view, thresholds: (
                apply_thresholds(view, thresholds) if view else None
            ),
        )
        self.sankey_data_filtered: Derived[SankeyView | None] = Derived(
            [self._filtered], lambda result: result.visible if result else None
        )
        self.hidden_counts: Derived[HiddenCounts] = Derived(
            [self._filtered],
            lambda result: result.hidden_counts if result else HiddenCounts(),
        )

        self.questions: Derived[list[dict[str, Any]]] = Derived(
            [self.session_data], lambda s: self._actions_of(s, ActionType.QUESTION)
        )
        self.alerts: Derived[list[dict[str, Any]]] = Derived(
            [self.session_data], lambda s: self._actions_of(s, ActionType.ALERT)
        )
        self.pending_questions: Derived[list[dict[str, Any]]] = Derived(
            [self.questions], pending_only
        )
        self.pending_alerts: Derived[list[dict[str, Any]]] = Derived(
            [self.alerts], pending_only
        )
        self.sorted_questions: Derived[list[dict[str, Any]]] = Derived(
            [self.questions, self.store], self._sort_questions
        )
        self.sorted_pending_questions: Derived[list[dict[str, Any]]] = Derived(
            [self.sorted_questions], pending_only
        )

        self._views = [
            self.session_data,
            self.relationship_index,
            self.node_map,
            self.link_map,
            self.is_loading,
            self.error,
            self.sankey_data,
            self._filtered,
            self.sankey_data_filtered,
            self.hidden_counts,
            self.questions,
            self.alerts,
            self.pending_questions,
            self.pending_alerts,
            self.sorted_questions,
            self.sorted_pending_questions,
        ]
        log.debug(f"Created session data store {self.id}")

    @staticmethod
    def _actions_of(
        session: SessionAnalysis | None, action_type: ActionType
    ) -> list[dict[str, Any]]:
        if session is None:
            return []
        return [a for a in session.actions if _is_action_type(a, action_type)]

    def _sort_questions(
        self, questions: list[dict[str, Any]], computed: SessionComputed | None
    ) -> list[dict[str, Any]]:
        if not questions or computed is None:
            return list(questions)
        return sort_actions(
            questions,
            computed.session,
            computed.relationship_index,
            self.config.scoring,
        )

    # -- session actions --------------------------------------------------

    def load_session(self, data: dict[str, Any] | SessionAnalysis | None) -> None:
        """Replace the snapshot and rebuild the index and lookup maps."""
        session = parse_session(data)
        graph = session_to_graph(session)
        computed = SessionComputed(
            session=session,
            graph=graph,
            relationship_index=build_relationship_index(graph),
            node_map={str(raw["id"]): raw for _, raw in session.all_nodes()},
            link_map={link.id: link for link in graph.links},
        )
        self.store.set(computed)
        log.debug(
            f"Loaded session {session.session_id or '<unnamed>'} "
            f"v{session.analysis_version} into {self.id}: {len(graph)} nodes"
        )

    def update_session(self, data: dict[str, Any] | SessionAnalysis) -> None:
        self.load_session(data)

    def clear_session(self) -> None:
        log.debug(f"Clearing session data in {self.id}")
        self.store.set(None)

    def get_current_session_data(self) -> SessionAnalysis | None:
        computed = self.store.get()
        return computed.session if computed else None

    def calculate_path(self, node_id: str) -> PathResult | None:
        computed = self.store.get()
        if computed is None:
            return None
        return calculate_path(node_id, computed.relationship_index)

    def set_loading(self, loading: bool) -> None:
        computed = self.store.get()
        if computed is not None:
            self.store.set(replace(computed, is_loading=loading))

    def set_error(self, error: str | None) -> None:
        computed = self.store.get()
        if computed is not None:
            self.store.set(replace(computed, error=error))

    def set_thresholds(self, thresholds: ThresholdConfig) -> None:
        self.thresholds.set(thresholds)

    # -- data actions -----------------------------------------------------

    def _update_actions(self, action_id: str, action_type: ActionType, **changes: Any) -> bool:
        session = self.get_current_session_data()
        if session is None:
            return False
        found = False
        actions = []
        for action in session.actions:
            if action.get("id") == action_id and _is_action_type(action, action_type):
                action = {**action, **changes}
                found = True
            actions.append(action)
        if not found:
            log.warning(f"No {action_type.value} {action_id} to update")
            return False
        self.load_session(session.with_group("actions", actions))
        return True

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self._update_actions(
            alert_id, ActionType.ALERT, status=ActionStatus.ACKNOWLEDGED.value
        )

    def answer_question(
        self, question_id: str, answer: str, confidence: float | None = None
    ) -> bool:
        return self._update_actions(
            question_id,
            ActionType.QUESTION,
            status=ActionStatus.ANSWERED.value,
            answer=answer,
            confidence=confidence,
        )

    def handle_node_action(
        self, action: str, target_id: str, reason: str | None = None
    ) -> None:
        """Record a clinician action on a node; "suppress" also flags a diagnosis."""
        session = self.get_current_session_data()
        if session is None:
            return

        if action == "suppress":
            diagnoses = [
                (
                    {
                        **d,
                        "suppressed": True,
                        "suppressionReason": reason or "User suppressed",
                    }
                    if d.get("id") == target_id
                    else d
                )
                for d in session.diagnoses
            ]
            session = session.with_group("diagnoses", diagnoses)

        entry = UserAction(action=action, target_id=target_id, reason=reason)
        session = replace(
            session, user_actions=session.user_actions + (entry.to_dict(),)
        )
        self.load_session(session)

    def find_node_by_id(self, node_id: str) -> dict[str, Any] | None:
        return self.node_map.get().get(node_id)

    def get_node_display_text(self, node_id: str) -> str:
        node = self.find_node_by_id(node_id)
        if node is None:
            return node_id
        name = display_name(node)
        return node_id if name == "unknown" else name

    # -- node and link queries --------------------------------------------

    def questions_for_node(self, node_id: str) -> list[dict[str, Any]]:
        return [q for q in self.questions.get() if _mentions(q, {node_id})]

    def alerts_for_node(self, node_id: str) -> list[dict[str, Any]]:
        return [a for a in self.alerts.get() if _mentions(a, {node_id})]

    def questions_for_link(self, link: Link | dict[str, Any] | None) -> list[dict[str, Any]]:
        if not link:
            return []
        ends = _link_endpoints(link)
        return [q for q in self.questions.get() if _mentions(q, ends)]

    def alerts_for_link(self, link: Link | dict[str, Any] | None) -> list[dict[str, Any]]:
        if not link:
            return []
        ends = _link_endpoints(link)
        return [a for a in self.alerts.get() if _mentions(a, ends)]

    # -- lifecycle --------------------------------------------------------

    def cleanup(self) -> None:
        """Drop the snapshot, restore default thresholds and detach listeners."""
        log.debug(f"Cleaning up session data store {self.id}")
        self.store.set(None)
        self.thresholds.set(self.config.thresholds)
        for view in self._views:
            view.clear_subscribers()
        self.store.clear_subscribers()
        self.thresholds.clear_subscribers()
