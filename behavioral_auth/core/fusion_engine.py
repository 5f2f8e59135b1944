# behavioral_auth/core/fusion_engine.py
"""
Multi-modal fusion: combines per-modality confidences into one decision
"""
import math
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Optional, Any

import numpy as np

logger = logging.getLogger(__name__)


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class FusionResult:
    confidence: float
    risk_score: float
    success: bool
    risk_level: RiskLevel
    modality_count: int
    device_risk: float = 0.0
    consistency_risk: float = 0.0


@dataclass(frozen=True)
class UncertaintyReport:
    """Reliability/availability/history/context weighted fusion, all in [0, 1]"""
    weights: Dict[str, float]
    fused_confidence: float
    uncertainty: float
    risk: float
    environmental_risk: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MultiModalFusionEngine:
    """Heuristic fusion is the decision of record; the weighted report is advisory"""

    RELIABILITY_WEIGHTS = {
        'keystroke': 1.0,
        'pointer': 0.9,
        'mouse': 0.9,
        'touch': 0.8,
        'behavioral': 0.7,
    }

    DEVICE_RISK = {
        'mobile': 15.0,
        'tablet': 10.0,
        'desktop': 5.0,
    }

    def __init__(self, config: Dict[str, Any]):
        self.config = config

        self.success_confidence = config.get('success_confidence', 70.0)
        self.success_max_risk = config.get('success_max_risk', 50.0)
        self.unknown_reliability = config.get('unknown_reliability', 0.5)
        self.unknown_device_risk = config.get('unknown_device_risk', 20.0)
        self.max_consistency_risk = config.get('max_consistency_risk', 30.0)

        # w_k = alpha*R + beta*A + gamma*H + delta*C
        self.alpha = config.get('alpha', 0.35)
        self.beta = config.get('beta', 0.25)
        self.gamma = config.get('gamma', 0.25)
        self.delta = config.get('delta', 0.15)
        self.uncertainty_penalty = config.get('lambda', 0.3)
        self.environment_penalty = config.get('mu', 0.2)

    def reliability(self, modality: str) -> float:
        return self.RELIABILITY_WEIGHTS.get(modality, self.unknown_reliability)

    def is_success(self, confidence: float, risk: float) -> bool:
        return confidence >= self.success_confidence and risk < self.success_max_risk

    def fuse(self, scores: Dict[str, float], device_type: str = 'desktop') -> FusionResult:
        """Reliability-weighted confidence and additive risk on the 0-100 scale"""
        if not scores:
            return FusionResult(confidence=0.0, risk_score=100.0, success=False,
                                risk_level=RiskLevel.CRITICAL, modality_count=0)

        total_weight = 0.0
        weighted = 0.0
        for modality, score in scores.items():
            weight = self.reliability(modality)
            weighted += score * weight
            total_weight += weight
        confidence = weighted / total_weight if total_weight > 0 else 0.0

        device_risk = self.DEVICE_RISK.get(device_type, self.unknown_device_risk)
        consistency_risk = self._consistency_risk(list(scores.values()))

        risk = 100.0 - confidence - 10.0 * len(scores) + device_risk + consistency_risk
        risk = float(np.clip(risk, 0.0, 100.0))
        confidence = float(np.clip(confidence, 0.0, 100.0))

        return FusionResult(
            confidence=confidence,
            risk_score=risk,
            success=self.is_success(confidence, risk),
            risk_level=self.risk_level(risk),
            modality_count=len(scores),
            device_risk=device_risk,
            consistency_risk=consistency_risk
        )

    def _consistency_risk(self, values) -> float:
        if len(values) < 2:
            return 0.0
        variance = float(np.var(values))
        return min(self.max_consistency_risk, variance / 10.0)

    def modality_weights(self, reliability: Dict[str, float], availability: Dict[str, float],
                         history: Dict[str, float], context: Dict[str, float]) -> Dict[str, float]:
        """Normalized fusion weights per modality"""
        modalities = sorted(set(reliability) | set(availability) | set(history) | set(context))
        weights = {
            m: (self.alpha * reliability.get(m, 0.0) +
                self.beta * availability.get(m, 0.0) +
                self.gamma * history.get(m, 0.0) +
                self.delta * context.get(m, 0.0))
            for m in modalities
        }
        total = sum(weights.values())
        if total > 0:
            weights = {m: w / total for m, w in weights.items()}
        return weights

    def uncertainty_report(self, scores: Dict[str, float], history: Optional[Dict[str, float]] = None,
                           context: Optional[Dict[str, float]] = None,
                           environmental_risk: float = 0.0) -> UncertaintyReport:
        """Principled fusion over scores given on the 0-100 scale"""
        environmental_risk = float(np.clip(environmental_risk, 0.0, 1.0))
        if not scores:
            return UncertaintyReport(weights={}, fused_confidence=0.0, uncertainty=0.0, risk=1.0,
                                     environmental_risk=environmental_risk)

        normalized = {m: float(np.clip(s / 100.0, 0.0, 1.0)) for m, s in scores.items()}
        reliability = {m: self.reliability(m) for m in normalized}
        availability = {m: 1.0 for m in normalized}
        history = {m: (history or {}).get(m, 0.0) for m in normalized}
        context = {m: (context or {}).get(m, 0.0) for m in normalized}

        weights = self.modality_weights(reliability, availability, history, context)
        total = sum(weights.values())
        if total <= 0:
            return UncertaintyReport(weights=weights, fused_confidence=0.0, uncertainty=0.0, risk=1.0,
                                     environmental_risk=environmental_risk)

        fused = sum(weights[m] * normalized[m] for m in normalized) / total
        variance = sum(weights[m] * (normalized[m] - fused) ** 2 for m in normalized) / total
        uncertainty = math.sqrt(variance)

        risk = 1.0 - fused + self.uncertainty_penalty * uncertainty + self.environment_penalty * environmental_risk
        return UncertaintyReport(
            weights=weights,
            fused_confidence=float(fused),
            uncertainty=float(uncertainty),
            risk=float(np.clip(risk, 0.0, 1.0)),
            environmental_risk=environmental_risk
        )

    @staticmethod
    def risk_level(risk: float) -> RiskLevel:
        if risk < 25:
            return RiskLevel.LOW
        if risk < 50:
            return RiskLevel.MEDIUM
        if risk < 75:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL
