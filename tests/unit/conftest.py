# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from biosyn.observability import logger


@pytest.fixture
def logged(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every event written through log_event during the test, decoded."""
    captured: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        captured.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    return captured


@pytest.fixture
def report_dict() -> dict[str, Any]:
    """A complete, valid report in wire shape."""
    return {
        "potentialCauses": ["Tension headache", "Dehydration"],
        "severity": "Moderate",
        "recommendedSpecialist": "Neurologist",
        "lifestyleAdvice": ["Sleep 8 hours"],
        "preventativeMeasures": ["Limit screen time"],
        "warningSigns": ["Sudden vision loss"],
        "recommendedMedicines": [
            {
                "name": "Paracetamol",
                "reason": "Pain relief",
                "mechanismOfAction": "COX inhibition in the CNS",
                "safetyProfile": ["Max 4 g per day"],
            }
        ],
        "digitalTwin": {
            "status": "Mild strain",
            "organSystemsAffected": ["Nervous"],
            "simulatedVitals": {
                "stressLevel": "Elevated",
                "inflammationMarker": "Normal",
                "circulatoryImpact": "None",
            },
        },
        "evolutionSimulator": [
            {
                "timeframe": "48 hours",
                "untreatedProgression": "Persistent pain",
                "interventionEffect": "Resolution",
            }
        ],
        "explainableReasoning": [
            {
                "observation": "Bilateral pressure",
                "inference": "Tension-type pattern",
                "confidence": 0.8,
            }
        ],
        "anomalyDetection": [
            {
                "finding": "Long duration",
                "riskFactor": "Chronic course",
                "criticality": "Warning",
            }
        ],
        "holisticInsights": {
            "nutritionalSynergy": "Hydrate",
            "mentalStatePerception": "Stressed",
            "environmentalImpact": "Bright screens",
        },
        "disclaimer": "Not a diagnosis.",
    }
