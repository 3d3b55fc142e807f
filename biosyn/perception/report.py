"""
Health perception report model.

Responsibilities:
- Typed representation of the oracle's structured report
- Validation at the boundary: missing fields, wrong types and unknown
  severity/criticality values raise MalformedResponse
- camelCase dict conversion (the cache and profile store hold these dicts)

Non-responsibilities:
- No network calls
- No defaults for missing required data
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from biosyn.constants import DEFAULT_LANGUAGE
from biosyn.errors import MalformedResponse


class Severity(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"
    EMERGENCY = "Emergency"


class Criticality(str, Enum):
    WARNING = "Warning"
    ALERT = "Alert"
    STABLE = "Stable"


# ---------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class SymptomInput:
    """
    One analysis request.

    image:
        Optional base64 photo (raw base64 or a data: URL).
    """
    description: str
    duration: str
    age: int
    gender: str
    medical_history: str = ""
    language: str = DEFAULT_LANGUAGE
    image: str | None = None


# ---------------------------------------------------------------------
# Field validation helpers
# ---------------------------------------------------------------------

def _require(data: Mapping[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise MalformedResponse(f"report missing field {key!r}")
    return data[key]


def _str(data: Mapping[str, Any], key: str) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise MalformedResponse(f"field {key!r} must be a string")
    return value


def _str_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = _require(data, key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedResponse(f"field {key!r} must be a list of strings")
    return list(value)


def _obj(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = _require(data, key)
    if not isinstance(value, dict):
        raise MalformedResponse(f"field {key!r} must be an object")
    return value


def _obj_list(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    value = _require(data, key)
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise MalformedResponse(f"field {key!r} must be a list of objects")
    return value


def _enum(enum_cls: type[Enum], raw: Any, key: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError as e:
        raise MalformedResponse(f"field {key!r} has unrecognised value {raw!r}") from e


# ---------------------------------------------------------------------
# Report sections
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RecommendedMedicine:
    name: str
    reason: str
    mechanism_of_action: str
    safety_profile: list[str]
    image_url: str | None = None

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> RecommendedMedicine:
        return RecommendedMedicine(
            name=_str(d, "name"),
            reason=_str(d, "reason"),
            mechanism_of_action=_str(d, "mechanismOfAction"),
            safety_profile=_str_list(d, "safetyProfile"),
            image_url=d.get("imageUrl"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "reason": self.reason,
            "mechanismOfAction": self.mechanism_of_action,
            "safetyProfile": list(self.safety_profile),
        }
        if self.image_url is not None:
            out["imageUrl"] = self.image_url
        return out


@dataclass(frozen=True)
class ReasoningStep:
    observation: str
    inference: str
    confidence: float

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> ReasoningStep:
        confidence = _require(d, "confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise MalformedResponse("field 'confidence' must be a number")
        return ReasoningStep(
            observation=_str(d, "observation"),
            inference=_str(d, "inference"),
            confidence=float(confidence),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "observation": self.observation,
            "inference": self.inference,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class EvolutionStage:
    timeframe: str
    untreated_progression: str
    intervention_effect: str

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> EvolutionStage:
        return EvolutionStage(
            timeframe=_str(d, "timeframe"),
            untreated_progression=_str(d, "untreatedProgression"),
            intervention_effect=_str(d, "interventionEffect"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeframe": self.timeframe,
            "untreatedProgression": self.untreated_progression,
            "interventionEffect": self.intervention_effect,
        }


@dataclass(frozen=True)
class Anomaly:
    finding: str
    risk_factor: str
    criticality: Criticality

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> Anomaly:
        return Anomaly(
            finding=_str(d, "finding"),
            risk_factor=_str(d, "riskFactor"),
            criticality=_enum(Criticality, d.get("criticality"), "criticality"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "finding": self.finding,
            "riskFactor": self.risk_factor,
            "criticality": self.criticality.value,
        }


@dataclass(frozen=True)
class SimulatedVitals:
    stress_level: str
    inflammation_marker: str
    circulatory_impact: str


@dataclass(frozen=True)
class DigitalTwin:
    status: str
    organ_systems_affected: list[str]
    simulated_vitals: SimulatedVitals

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> DigitalTwin:
        vitals = _obj(d, "simulatedVitals")
        return DigitalTwin(
            status=_str(d, "status"),
            organ_systems_affected=_str_list(d, "organSystemsAffected"),
            simulated_vitals=SimulatedVitals(
                stress_level=_str(vitals, "stressLevel"),
                inflammation_marker=_str(vitals, "inflammationMarker"),
                circulatory_impact=_str(vitals, "circulatoryImpact"),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "organSystemsAffected": list(self.organ_systems_affected),
            "simulatedVitals": {
                "stressLevel": self.simulated_vitals.stress_level,
                "inflammationMarker": self.simulated_vitals.inflammation_marker,
                "circulatoryImpact": self.simulated_vitals.circulatory_impact,
            },
        }


@dataclass(frozen=True)
class HolisticInsight:
    nutritional_synergy: str
    mental_state_perception: str
    environmental_impact: str

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> HolisticInsight:
        return HolisticInsight(
            nutritional_synergy=_str(d, "nutritionalSynergy"),
            mental_state_perception=_str(d, "mentalStatePerception"),
            environmental_impact=_str(d, "environmentalImpact"),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "nutritionalSynergy": self.nutritional_synergy,
            "mentalStatePerception": self.mental_state_perception,
            "environmentalImpact": self.environmental_impact,
        }


# ---------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class HealthPerception:
    """A validated perception report."""
    potential_causes: list[str]
    severity: Severity
    recommended_specialist: str
    lifestyle_advice: list[str]
    preventative_measures: list[str]
    warning_signs: list[str]
    recommended_medicines: list[RecommendedMedicine]
    digital_twin: DigitalTwin
    evolution_simulator: list[EvolutionStage]
    explainable_reasoning: list[ReasoningStep]
    anomaly_detection: list[Anomaly]
    holistic_insights: HolisticInsight
    disclaimer: str
    language: str = DEFAULT_LANGUAGE
    extra: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(d: Mapping[str, Any], language: str | None = None) -> HealthPerception:
        """
        Build from the camelCase wire shape.

        Raises:
            MalformedResponse on any missing or invalid field.
        """
        known = {
            "potentialCauses", "severity", "recommendedSpecialist",
            "lifestyleAdvice", "preventativeMeasures", "warningSigns",
            "recommendedMedicines", "digitalTwin", "evolutionSimulator",
            "explainableReasoning", "anomalyDetection", "holisticInsights",
            "disclaimer", "language",
        }
        return HealthPerception(
            potential_causes=_str_list(d, "potentialCauses"),
            severity=_enum(Severity, d.get("severity"), "severity"),
            recommended_specialist=_str(d, "recommendedSpecialist"),
            lifestyle_advice=_str_list(d, "lifestyleAdvice"),
            preventative_measures=_str_list(d, "preventativeMeasures"),
            warning_signs=_str_list(d, "warningSigns"),
            recommended_medicines=[
                RecommendedMedicine.from_dict(m) for m in _obj_list(d, "recommendedMedicines")
            ],
            digital_twin=DigitalTwin.from_dict(_obj(d, "digitalTwin")),
            evolution_simulator=[
                EvolutionStage.from_dict(s) for s in _obj_list(d, "evolutionSimulator")
            ],
            explainable_reasoning=[
                ReasoningStep.from_dict(s) for s in _obj_list(d, "explainableReasoning")
            ],
            anomaly_detection=[Anomaly.from_dict(a) for a in _obj_list(d, "anomalyDetection")],
            holistic_insights=HolisticInsight.from_dict(_obj(d, "holisticInsights")),
            disclaimer=_str(d, "disclaimer"),
            language=language or d.get("language") or DEFAULT_LANGUAGE,
            extra={k: v for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update({
            "potentialCauses": list(self.potential_causes),
            "severity": self.severity.value,
            "recommendedSpecialist": self.recommended_specialist,
            "lifestyleAdvice": list(self.lifestyle_advice),
            "preventativeMeasures": list(self.preventative_measures),
            "warningSigns": list(self.warning_signs),
            "recommendedMedicines": [m.to_dict() for m in self.recommended_medicines],
            "digitalTwin": self.digital_twin.to_dict(),
            "evolutionSimulator": [s.to_dict() for s in self.evolution_simulator],
            "explainableReasoning": [s.to_dict() for s in self.explainable_reasoning],
            "anomalyDetection": [a.to_dict() for a in self.anomaly_detection],
            "holisticInsights": self.holistic_insights.to_dict(),
            "disclaimer": self.disclaimer,
            "language": self.language,
        })
        return out


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_report(text: str, language: str) -> HealthPerception:
    """
    Parse the oracle's raw report text.

    Raises:
        MalformedResponse if the text is not a JSON object with every
        required field.
    """
    try:
        data = json.loads(_strip_code_fence(text))
    except ValueError as e:
        raise MalformedResponse("Failed to parse perception data.") from e

    if not isinstance(data, dict):
        raise MalformedResponse("perception data must be a JSON object")
    return HealthPerception.from_dict(data, language=language)
