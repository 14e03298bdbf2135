"""Engine configuration and YAML loading."""

import copy
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .analysis.config import (
    DEFAULT_SANKEY_CONFIG,
    DEFAULT_SCORING_CONFIG,
    DEFAULT_THRESHOLD_CONFIG,
    DiagnosisThreshold,
    SankeyConfig,
    ScoringConfig,
    SymptomThreshold,
    ThresholdConfig,
    TreatmentThreshold,
)
from .layout.engine import DEFAULT_LAYOUT_CONFIG, LayoutConfig

log = logging.getLogger(__name__)

CONSENSUS_NODE_ID = "consensus_merger"

# Expert flow laid out when a live session starts.
DEFAULT_FLOW: dict[str, Any] = {
    "id": "default",
    "description": "General practitioner with consensus review",
    "version": "1.0.0",
    "defaultFlow": {
        "nodes": [
            {"id": "input", "name": "Transcript Input", "type": "input", "category": "input"},
            {"id": "gp", "name": "General Practitioner", "type": "primary", "category": "primary"},
            {
                "id": CONSENSUS_NODE_ID,
                "name": "Consensus Merger",
                "type": "consensus",
                "category": "merger",
            },
            {"id": "output", "name": "Final Analysis", "type": "output", "category": "output"},
        ],
        "connections": [
            {"from": "input", "to": "gp", "type": "data_flow"},
            {"from": "gp", "to": CONSENSUS_NODE_ID, "type": "analysis_input"},
            {"from": CONSENSUS_NODE_ID, "to": "output", "type": "data_flow"},
        ],
    },
}


@dataclass(frozen=True)
class EngineConfig:
    """Everything an engine instance needs to start."""

    layout: LayoutConfig = DEFAULT_LAYOUT_CONFIG
    scoring: ScoringConfig = DEFAULT_SCORING_CONFIG
    thresholds: ThresholdConfig = DEFAULT_THRESHOLD_CONFIG
    sankey: SankeyConfig = DEFAULT_SANKEY_CONFIG
    flow: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_FLOW))
    consensus_node_id: str = CONSENSUS_NODE_ID
    default_provider: str = "openai"
    default_model: str = "gpt-4"

    @property
    def model_id(self) -> str:
        return str(self.flow.get("id") or "dynamic")


DEFAULT_ENGINE_CONFIG = EngineConfig()


def _overlay(instance: Any, values: Any, section: str) -> Any:
    """Return a copy of a dataclass with known keys from `values` applied."""
    if values is None:
        return instance
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{section}' must be a mapping")
    known = {f.name for f in fields(instance)}
    unknown = sorted(set(values) - known)
    if unknown:
        log.warning(f"Ignoring unknown keys in '{section}': {', '.join(unknown)}")
    return replace(instance, **{k: v for k, v in values.items() if k in known})


def _thresholds(values: Any) -> ThresholdConfig:
    if values is None:
        return DEFAULT_THRESHOLD_CONFIG
    if not isinstance(values, dict):
        raise ValueError("Config section 'thresholds' must be a mapping")
    base = DEFAULT_THRESHOLD_CONFIG
    unknown = sorted(set(values) - {"symptoms", "diagnoses", "treatments", "prune_orphans"})
    if unknown:
        log.warning(f"Ignoring unknown keys in 'thresholds': {', '.join(unknown)}")
    return ThresholdConfig(
        symptoms=_overlay(SymptomThreshold(), values.get("symptoms"), "thresholds.symptoms"),
        diagnoses=_overlay(
            DiagnosisThreshold(), values.get("diagnoses"), "thresholds.diagnoses"
        ),
        treatments=_overlay(
            TreatmentThreshold(), values.get("treatments"), "thresholds.treatments"
        ),
        prune_orphans=bool(values.get("prune_orphans", base.prune_orphans)),
    )


def load_config(path: str | Path) -> EngineConfig:
    """Load an EngineConfig from YAML, overlaying defaults.

    Raises:
        FileNotFoundError: path does not exist
        ValueError: the file is not valid YAML or has the wrong shape
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config root in {path} must be a mapping")

    sections = {
        "layout",
        "scoring",
        "thresholds",
        "sankey",
        "flow",
        "consensus_node_id",
        "default_provider",
        "default_model",
    }
    unknown = sorted(set(data) - sections)
    if unknown:
        log.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

    flow = data.get("flow")
    if flow is not None and not isinstance(flow, dict):
        raise ValueError("Config section 'flow' must be a mapping")

    config = EngineConfig(
        layout=_overlay(DEFAULT_LAYOUT_CONFIG, data.get("layout"), "layout"),
        scoring=_overlay(DEFAULT_SCORING_CONFIG, data.get("scoring"), "scoring"),
        thresholds=_thresholds(data.get("thresholds")),
        sankey=_overlay(DEFAULT_SANKEY_CONFIG, data.get("sankey"), "sankey"),
        flow=flow if flow is not None else copy.deepcopy(DEFAULT_FLOW),
        consensus_node_id=str(data.get("consensus_node_id") or CONSENSUS_NODE_ID),
        default_provider=str(data.get("default_provider") or "openai"),
        default_model=str(data.get("default_model") or "gpt-4"),
    )
    log.info(f"Loaded config from {path}")
    return config
