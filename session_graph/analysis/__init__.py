"""Derived views over a session: index, paths, scoring, flow view, filters."""

from .index import build_relationship_index
from .path import calculate_path
from .sankey import transform_to_sankey
from .scoring import composite_score, pending_only, score_action, sort_actions
from .thresholds import apply_thresholds

__all__ = [
    "build_relationship_index",
    "calculate_path",
    "transform_to_sankey",
    "composite_score",
    "pending_only",
    "score_action",
    "sort_actions",
    "apply_thresholds",
]
