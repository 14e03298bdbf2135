"""Configuration for derived session views."""

from dataclasses import dataclass, field, replace

from ..graph.schema import PRIORITY_RANGE, PROBABILITY_RANGE, SEVERITY_RANGE, clamp

DEFAULT_URGENCY_SCORES: dict[str, float] = {
    "red_flag": 10.0,
    "drug_interaction": 9.0,
    "contraindication": 9.0,
    "allergy": 9.0,
    "warning": 8.0,
    "risk_assessment": 7.0,
    "diagnostic_clarification": 6.0,
    "symptom_exploration": 5.0,
    "treatment_selection": 4.0,
}


@dataclass(frozen=True)
class ScoringConfig:
    """Constants controlling question prioritization."""

    urgency_scores: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_URGENCY_SCORES)
    )
    default_urgency: float = 3.0

    # Linking to a symptom at or above this severity adds the urgency boost.
    high_severity_cutoff: float = 7.0
    high_severity_boost: float = 3.0

    urgency_weight: float = 0.4
    relevance_weight: float = 0.4
    priority_weight: float = 0.2

    probability_multiplier: float = 10.0
    priority_inversion: float = 11.0
    default_priority: float = 5.0

    def urgency_for(self, category: str | None) -> float:
        if not category:
            return self.default_urgency
        return self.urgency_scores.get(category, self.default_urgency)


@dataclass(frozen=True)
class SymptomThreshold:
    severity_threshold: float = 7.0
    show_all: bool = False


@dataclass(frozen=True)
class DiagnosisThreshold:
    probability_threshold: float = 0.35
    show_all: bool = False


@dataclass(frozen=True)
class TreatmentThreshold:
    priority_threshold: float = 10.0
    show_all: bool = True


@dataclass(frozen=True)
class ThresholdConfig:
    """Per-kind visibility cutoffs.

    Symptoms and treatments use a ceiling (value <= threshold is shown);
    diagnoses use a floor (probability >= threshold is shown).
    """

    symptoms: SymptomThreshold = field(default_factory=SymptomThreshold)
    diagnoses: DiagnosisThreshold = field(default_factory=DiagnosisThreshold)
    treatments: TreatmentThreshold = field(default_factory=TreatmentThreshold)
    prune_orphans: bool = True

    def __post_init__(self):
        object.__setattr__(
            self,
            "symptoms",
            replace(
                self.symptoms,
                severity_threshold=clamp(
                    self.symptoms.severity_threshold, *SEVERITY_RANGE, 7.0
                ),
            ),
        )
        object.__setattr__(
            self,
            "diagnoses",
            replace(
                self.diagnoses,
                probability_threshold=clamp(
                    self.diagnoses.probability_threshold, *PROBABILITY_RANGE, 0.35
                ),
            ),
        )
        object.__setattr__(
            self,
            "treatments",
            replace(
                self.treatments,
                priority_threshold=clamp(
                    self.treatments.priority_threshold, *PRIORITY_RANGE, 10.0
                ),
            ),
        )

    @property
    def shows_everything(self) -> bool:
        return (
            self.symptoms.show_all
            and self.diagnoses.show_all
            and self.treatments.show_all
        )

    def with_symptom_threshold(self, threshold: float) -> "ThresholdConfig":
        return replace(
            self, symptoms=replace(self.symptoms, severity_threshold=threshold)
        )

    def with_diagnosis_threshold(self, threshold: float) -> "ThresholdConfig":
        return replace(
            self, diagnoses=replace(self.diagnoses, probability_threshold=threshold)
        )

    def with_treatment_threshold(self, threshold: float) -> "ThresholdConfig":
        return replace(
            self, treatments=replace(self.treatments, priority_threshold=threshold)
        )

    def toggled(self, kind: str) -> "ThresholdConfig":
        """Flip show_all for 'symptoms', 'diagnoses' or 'treatments'."""
        current = getattr(self, kind)
        return replace(self, **{kind: replace(current, show_all=not current.show_all)})


@dataclass(frozen=True)
class SankeyConfig:
    """Constants for the flow view node sizing."""

    min_height: float = 20.0
    priority_multiplier: float = 3.0
    probability_multiplier: float = 5.0
    link_value_scale: float = 20.0
    impact_value_scale: float = 50.0


DEFAULT_SCORING_CONFIG = ScoringConfig()
DEFAULT_THRESHOLD_CONFIG = ThresholdConfig()
DEFAULT_SANKEY_CONFIG = SankeyConfig()
