"""Session snapshot normalization, hashing and diff utilities."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from .schema import SESSION_GROUPS
from .session import SessionAnalysis, parse_session


def _canonical_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def normalize_snapshot(snapshot: dict[str, Any] | SessionAnalysis) -> dict[str, Any]:
    """Order-independent view of a session: groups sorted by node id."""
    session = parse_session(snapshot)
    return {
        "sessionId": session.session_id,
        "nodes": {
            group: sorted(
                (dict(node) for node in session.group(group)),
                key=lambda n: str(n["id"]),
            )
            for group in SESSION_GROUPS
        },
    }


def session_hash(snapshot: dict[str, Any] | SessionAnalysis) -> str:
    normalized = normalize_snapshot(snapshot)
    payload = _canonical_dumps(normalized).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def diff_snapshots(
    old_snapshot: dict[str, Any] | SessionAnalysis,
    new_snapshot: dict[str, Any] | SessionAnalysis,
) -> dict[str, Any]:
    """Per-group added/removed/updated node ids between two snapshots."""
    old_norm = normalize_snapshot(old_snapshot)
    new_norm = normalize_snapshot(new_snapshot)

    groups: dict[str, dict[str, list[str]]] = {}
    summary = {"added": 0, "removed": 0, "updated": 0}

    for group in SESSION_GROUPS:
        old_nodes = {str(n["id"]): n for n in old_norm["nodes"][group]}
        new_nodes = {str(n["id"]): n for n in new_norm["nodes"][group]}

        added = sorted(set(new_nodes) - set(old_nodes))
        removed = sorted(set(old_nodes) - set(new_nodes))
        updated = [
            node_id
            for node_id in sorted(set(old_nodes) & set(new_nodes))
            if _canonical_dumps(old_nodes[node_id]) != _canonical_dumps(new_nodes[node_id])
        ]

        groups[group] = {"added": added, "removed": removed, "updated": updated}
        summary["added"] += len(added)
        summary["removed"] += len(removed)
        summary["updated"] += len(updated)

    return {
        "nodes": groups,
        "summary": summary,
        "changed": any(summary.values()),
    }
