"""Viewer state: selection, highlight path, zoom and threshold controls."""

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from ..analysis.config import ThresholdConfig
from ..graph.schema import PRIORITY_RANGE, PROBABILITY_RANGE, SEVERITY_RANGE, clamp
from .data_store import SessionDataStore
from .observable import Derived, Observable

log = logging.getLogger(__name__)

ZOOM_RANGE = (0.1, 5.0)
THRESHOLD_KINDS = ("symptoms", "diagnoses", "treatments")
FILTER_KEYS = ("show_symptoms", "show_diagnoses", "show_treatments", "show_actions")


@dataclass(frozen=True)
class SelectedItem:
    kind: str  # "node" or "link"
    id: str
    item: Any = None


@dataclass(frozen=True)
class ActivePath:
    nodes: tuple[str, ...]
    links: tuple[str, ...]


@dataclass(frozen=True)
class ViewerState:
    selected_item: SelectedItem | None = None
    hovered_item: SelectedItem | None = None
    highlighted_nodes: frozenset[str] = frozenset()
    highlighted_links: frozenset[str] = frozenset()
    active_path: ActivePath | None = None
    zoom_level: float = 1.0
    pan_offset: tuple[float, float] = (0.0, 0.0)
    filter_options: dict[str, bool] = field(
        default_factory=lambda: {key: True for key in FILTER_KEYS}
    )
    is_dragging: bool = False
    is_interactive: bool = False


class SessionViewer:
    """UI-facing controls over one data store.

    Threshold setters write to the data store's thresholds so the filtered
    flow view and hidden counts follow.
    """

    def __init__(
        self,
        data_store: SessionDataStore,
        instance_id: str | None = None,
        interactive: bool = False,
    ):
        self.id = instance_id or f"viewer_{data_store.id}"
        self.data_store = data_store
        self._initial = ViewerState(is_interactive=interactive)
        self.store: Observable[ViewerState] = Observable(self._initial)

        self.selected_item = Derived([self.store], lambda s: s.selected_item)
        self.active_path = Derived([self.store], lambda s: s.active_path)
        self.zoom_level = Derived([self.store], lambda s: s.zoom_level)
        self.is_interactive = Derived([self.store], lambda s: s.is_interactive)

    @property
    def state(self) -> ViewerState:
        return self.store.get()

    def _update(self, **changes: Any) -> None:
        self.store.set(replace(self.store.get(), **changes))

    # -- selection --------------------------------------------------------

    def select_item(self, kind: str, item_id: str, item: Any = None) -> None:
        """Select a node or link; selecting a node highlights its one-hop path."""
        self._update(selected_item=SelectedItem(kind=kind, id=item_id, item=item))
        if kind == "node":
            self.calculate_and_set_active_path(item_id)
        log.debug(f"Selected {kind} {item_id} in {self.id}")

    def clear_selection(self) -> None:
        self._update(selected_item=None)
        self.clear_active_path()

    def set_hovered_item(self, kind: str | None, item_id: str | None = None, item: Any = None) -> None:
        hovered = SelectedItem(kind=kind, id=item_id or "", item=item) if kind else None
        self._update(hovered_item=hovered)

    # -- path highlight ---------------------------------------------------

    def set_active_path(self, nodes: list[str] | tuple[str, ...], links: list[str] | tuple[str, ...]) -> None:
        self._update(
            active_path=ActivePath(nodes=tuple(nodes), links=tuple(links)),
            highlighted_nodes=frozenset(nodes),
            highlighted_links=frozenset(links),
        )

    def clear_active_path(self) -> None:
        self._update(
            active_path=None,
            highlighted_nodes=frozenset(),
            highlighted_links=frozenset(),
        )

    def calculate_and_set_active_path(self, node_id: str) -> None:
        path = self.data_store.calculate_path(node_id)
        if path is None:
            self.clear_active_path()
            return
        self.set_active_path(path.nodes, path.links)

    def highlight_nodes(self, node_ids: list[str]) -> None:
        self._update(highlighted_nodes=frozenset(node_ids))

    def highlight_links(self, link_ids: list[str]) -> None:
        self._update(highlighted_links=frozenset(link_ids))

    def clear_highlights(self) -> None:
        self._update(highlighted_nodes=frozenset(), highlighted_links=frozenset())

    # -- zoom and pan -----------------------------------------------------

    def set_zoom(self, level: float) -> None:
        self._update(zoom_level=clamp(level, *ZOOM_RANGE, 1.0))

    def set_pan(self, x: float, y: float) -> None:
        self._update(pan_offset=(float(x), float(y)))

    def reset_view(self) -> None:
        self._update(zoom_level=1.0, pan_offset=(0.0, 0.0))

    # -- interaction ------------------------------------------------------

    def set_dragging(self, dragging: bool) -> None:
        self._update(is_dragging=dragging)

    def set_interactive(self, interactive: bool) -> None:
        self._update(is_interactive=interactive)

    def set_filter(self, key: str, enabled: bool) -> None:
        if key not in FILTER_KEYS:
            log.warning(f"Unknown filter option {key}")
            return
        options = dict(self.state.filter_options)
        options[key] = enabled
        self._update(filter_options=options)

    # -- thresholds -------------------------------------------------------

    @property
    def thresholds(self) -> ThresholdConfig:
        return self.data_store.thresholds.get()

    def set_symptom_threshold(self, threshold: float) -> None:
        value = clamp(threshold, *SEVERITY_RANGE, self.thresholds.symptoms.severity_threshold)
        self.data_store.thresholds.update(lambda t: t.with_symptom_threshold(value))

    def set_diagnosis_threshold(self, threshold: float) -> None:
        value = clamp(
            threshold, *PROBABILITY_RANGE, self.thresholds.diagnoses.probability_threshold
        )
        self.data_store.thresholds.update(lambda t: t.with_diagnosis_threshold(value))

    def set_treatment_threshold(self, threshold: float) -> None:
        value = clamp(
            threshold, *PRIORITY_RANGE, self.thresholds.treatments.priority_threshold
        )
        self.data_store.thresholds.update(lambda t: t.with_treatment_threshold(value))

    def toggle_show_all(self, kind: str) -> None:
        if kind not in THRESHOLD_KINDS:
            raise ValueError(f"Unknown threshold kind: {kind}")
        self.data_store.thresholds.update(lambda t: t.toggled(kind))

    def toggle_show_all_symptoms(self) -> None:
        self.toggle_show_all("symptoms")

    def toggle_show_all_diagnoses(self) -> None:
        self.toggle_show_all("diagnoses")

    def toggle_show_all_treatments(self) -> None:
        self.toggle_show_all("treatments")

    # -- lifecycle --------------------------------------------------------

    def reset_viewer_state(self) -> None:
        self.store.set(self._initial)

    def cleanup(self) -> None:
        log.debug(f"Cleaning up viewer {self.id}")
        self.store.set(self._initial)
        for view in (self.selected_item, self.active_path, self.zoom_level, self.is_interactive):
            view.clear_subscribers()
        self.store.clear_subscribers()
