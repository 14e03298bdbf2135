"""Schema definitions for the session graph.

Defines node kinds, relationship types, link directions and the value
ranges every node and link is held to.
"""

from dataclasses import dataclass
from enum import Enum


class NodeKind(Enum):
    """Valid node kinds in the session graph."""

    SYMPTOM = "symptom"
    DIAGNOSIS = "diagnosis"
    TREATMENT = "treatment"
    ACTION = "action"
    EXPERT = "expert"  # QOM reasoning node produced by the orchestration layer


class ActionType(Enum):
    """Sub-kinds of action nodes."""

    QUESTION = "question"
    ALERT = "alert"


class ActionStatus(Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    ACKNOWLEDGED = "acknowledged"
    SKIPPED = "skipped"
    RESOLVED = "resolved"


class NodeState(Enum):
    """Lifecycle of AI-generated (expert) nodes."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({NodeState.COMPLETED, NodeState.FAILED})


class ExpertRole(Enum):
    """Roles an expert node plays in the orchestration flow."""

    INPUT = "input"
    DETECTOR = "detector"
    PRIMARY = "primary"
    SPECIALIST = "specialist"
    SUB_SPECIALIST = "sub-specialist"
    FUNCTIONAL = "functional"
    MERGER = "merger"
    SAFETY = "safety"
    CONSENSUS = "consensus"
    OUTPUT = "output"


class LinkDirection(Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BIDIRECTIONAL = "bidirectional"


# Event payloads use the flow vocabulary for the same three directions.
_DIRECTION_ALIASES = {
    "forward": LinkDirection.OUTGOING,
    "reverse": LinkDirection.INCOMING,
    "both": LinkDirection.BIDIRECTIONAL,
}


class RelationshipType(Enum):
    """Clinical relationship tags embedded in session nodes."""

    SUPPORTS = "supports"
    CONTRADICTS = "contradicts"
    CONFIRMS = "confirms"
    RULES_OUT = "rules_out"
    SUGGESTS = "suggests"
    TREATS = "treats"
    MANAGES = "manages"
    PREVENTS = "prevents"
    RELIEVES = "relieves"
    INVESTIGATES = "investigates"
    CLARIFIES = "clarifies"
    EXPLORES = "explores"
    EXCLUDES = "excludes"
    REVEALS = "reveals"
    INDICATES = "indicates"
    REQUIRES = "requires"
    MONITORS = "monitors"


class FlowLinkType(Enum):
    """Link types between expert nodes."""

    DATA_FLOW = "data_flow"
    ANALYSIS_INPUT = "analysis_input"
    SAFETY_INPUT = "safety_input"
    BYPASS_FLOW = "bypass_flow"
    TRIGGERS = "triggers"
    REFINES = "refines"
    CONTRIBUTES = "contributes"
    MERGES = "merges"


# Node groups of a session snapshot, in the order they are processed.
SESSION_GROUPS: dict[str, NodeKind] = {
    "symptoms": NodeKind.SYMPTOM,
    "diagnoses": NodeKind.DIAGNOSIS,
    "treatments": NodeKind.TREATMENT,
    "actions": NodeKind.ACTION,
}

SEVERITY_RANGE = (1.0, 10.0)
PRIORITY_RANGE = (1.0, 10.0)
PROBABILITY_RANGE = (0.0, 1.0)


def clamp(value: float | int | None, low: float, high: float, default: float) -> float:
    """Clamp a numeric value into [low, high], falling back to default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    if number < low:
        return low
    if number > high:
        return high
    return number


def clamp_01(value: float | int | None, default: float = 0.0) -> float:
    """Clamp a numeric score into [0, 1]."""
    return clamp(value, 0.0, 1.0, default)


def parse_direction(value: str | LinkDirection | None) -> LinkDirection:
    """Normalize a direction string; unknown values read as outgoing."""
    if isinstance(value, LinkDirection):
        return value
    raw = str(value or "").strip().lower()
    if raw in _DIRECTION_ALIASES:
        return _DIRECTION_ALIASES[raw]
    try:
        return LinkDirection(raw)
    except ValueError:
        return LinkDirection.OUTGOING


def parse_node_state(value: str | NodeState | None) -> NodeState:
    if isinstance(value, NodeState):
        return value
    try:
        return NodeState(str(value or "").strip().lower())
    except ValueError:
        return NodeState.PENDING


@dataclass
class ValidationResult:
    """Result of a validation check."""

    valid: bool
    errors: list[str]
    warnings: list[str]

    def __bool__(self) -> bool:
        return self.valid


def validate_node_kind(kind: str) -> bool:
    """Check if a node kind is valid."""
    return kind in [k.value for k in NodeKind]


def validate_relationship(relationship: str) -> bool:
    """Check if a relationship tag is known (clinical or flow)."""
    known = {t.value for t in RelationshipType} | {t.value for t in FlowLinkType}
    return relationship in known


def validate_link(
    source_kind: str, target_kind: str, relationship: str, strict: bool = False
) -> ValidationResult:
    """Validate a link's endpoint kinds and relationship tag.

    Args:
        source_kind: Kind of the source node
        target_kind: Kind of the target node
        relationship: Relationship tag
        strict: If True, reject unknown values. If False, allow with warnings.

    Returns:
        ValidationResult with valid status and any errors/warnings
    """
    errors = []
    warnings = []

    for label, kind in (("source", source_kind), ("target", target_kind)):
        if not validate_node_kind(kind):
            msg = f"Unknown {label} node kind: {kind}"
            if strict:
                errors.append(msg)
            else:
                warnings.append(msg)

    if not validate_relationship(relationship):
        msg = f"Unknown relationship type: {relationship}"
        if strict:
            errors.append(msg)
        else:
            warnings.append(msg)

    expert = NodeKind.EXPERT.value
    if (source_kind == expert) != (target_kind == expert):
        msg = f"Link mixes expert and clinical nodes: {source_kind} -> {target_kind}"
        if strict:
            errors.append(msg)
        else:
            warnings.append(msg)

    return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)


def generate_link_id(source: str, target: str) -> str:
    """Canonical id for a link between two nodes."""
    return f"{source}-{target}"
