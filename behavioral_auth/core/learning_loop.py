# behavioral_auth/core/learning_loop.py
"""
Continuous learning: drift-protected template adaptation, learning metrics
and per-user model weight updates
"""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple

import numpy as np

from behavioral_auth.core.feature_extractor import feature_dimension
from behavioral_auth.core.locks import UserLockRegistry
from behavioral_auth.core.matcher import TemplateMatcher, cosine_similarity
from behavioral_auth.models.patterns import Modality
from behavioral_auth.models import weights as model_weights
from behavioral_auth.models.weights import ModelWeights

logger = logging.getLogger(__name__)


class ProfileStatus(str, Enum):
    LEARNING = "learning"
    ACTIVE = "active"
    LOCKED = "locked"


class LearningOutcome(str, Enum):
    BOOTSTRAPPED = "bootstrapped"
    BLENDED = "blended"
    DRIFT_REJECTED = "drift_rejected"
    SKIPPED = "skipped"
    LOCKED = "locked"


@dataclass(frozen=True)
class LearningResult:
    modality: Modality
    outcome: LearningOutcome
    similarity: Optional[float] = None
    rate: Optional[float] = None


@dataclass
class LearningMetrics:
    adaptation_rate: float
    stability_score: float
    improvement_trend: float
    confidence_growth: float
    adaptive_confidence: float
    status: ProfileStatus
    pattern_count: int
    drift_rejections: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'adaptation_rate': self.adaptation_rate,
            'stability_score': self.stability_score,
            'improvement_trend': self.improvement_trend,
            'confidence_growth': self.confidence_growth,
            'adaptive_confidence': self.adaptive_confidence,
            'status': self.status.value,
            'pattern_count': self.pattern_count,
            'drift_rejections': self.drift_rejections
        }


def blend(template: np.ndarray, vector: np.ndarray, rate: float) -> np.ndarray:
    """Exponential blend of a new vector into the template"""
    return np.asarray(template, dtype=float) * (1.0 - rate) + np.asarray(vector, dtype=float) * rate


def blend_rate(hours_since_update: float) -> float:
    """Longer gaps adapt faster, bounded to [0.01, 0.1]"""
    return min(0.1, max(0.01, hours_since_update / 24.0))


def _stability(values: List[float]) -> float:
    if not values:
        return 0.0
    mean = float(np.mean(values))
    if mean == 0:
        return 0.0
    return max(0.0, 1.0 - float(np.std(values)) / mean)


class ContinuousLearningLoop:
    """Evolves user templates from accepted attempts"""

    def __init__(self, config: Dict[str, Any], matcher: TemplateMatcher,
                 locks: Optional[UserLockRegistry] = None):
        self.config = config
        self.matcher = matcher
        self.locks = locks or matcher.locks

        self.min_confidence = config.get('min_confidence', 70.0)
        self.drift_floor = config.get('drift_protection_threshold', 0.3)
        self.max_patterns = config.get('max_patterns_stored', 50)
        self.stability_threshold = config.get('stability_threshold', 0.85)
        self.min_patterns_for_stability = config.get('min_patterns_for_stability', 10)
        self.lock_after_rejections = config.get('lock_after_rejections', 3)
        self.weights_learning_rate = config.get('weights_learning_rate', 0.001)
        self.weights_momentum = config.get('weights_momentum', 0.9)

        self._accepted: Dict[Tuple[str, Modality], deque] = {}
        self._rejections: Dict[Tuple[str, Modality], int] = {}
        self._weights: Dict[Tuple[str, Modality], ModelWeights] = {}

    def learn(self, user_id: str, vectors: Dict[Modality, np.ndarray], success: bool,
              confidence: float, now: Optional[datetime] = None) -> Dict[Modality, LearningResult]:
        """Apply one decided attempt to the user's templates"""
        now = now or datetime.now(timezone.utc)
        results = {}
        eligible = success and confidence > self.min_confidence

        with self.locks.hold(user_id):
            for modality, vector in vectors.items():
                modality = Modality(modality)
                results[modality] = self._learn_one(user_id, modality, np.asarray(vector, dtype=float),
                                                    eligible, now)

        applied = [m.value for m, r in results.items()
                   if r.outcome in (LearningOutcome.BLENDED, LearningOutcome.BOOTSTRAPPED)]
        if applied:
            logger.info(f"Templates updated for user {user_id}: {', '.join(applied)}")
        return results

    def _learn_one(self, user_id: str, modality: Modality, vector: np.ndarray,
                   eligible: bool, now: datetime) -> LearningResult:
        template = self.matcher.get_template(user_id, modality)
        key = (user_id, modality)

        if template.vector is None:
            if not np.any(vector):
                return LearningResult(modality, LearningOutcome.SKIPPED)
            self.matcher.set_template(user_id, modality, vector, updated_at=now)
            self._record_accepted(key, vector)
            logger.info(f"Bootstrapped {modality.value} template for user {user_id}")
            return LearningResult(modality, LearningOutcome.BOOTSTRAPPED, similarity=None, rate=1.0)

        if not eligible:
            return LearningResult(modality, LearningOutcome.SKIPPED)

        if self._status(key) == ProfileStatus.LOCKED:
            logger.warning(f"{modality.value} profile of user {user_id} is locked, update skipped")
            return LearningResult(modality, LearningOutcome.LOCKED)

        similarity = cosine_similarity(template.vector, vector)
        if similarity <= self.drift_floor:
            self._rejections[key] = self._rejections.get(key, 0) + 1
            logger.warning(f"Drift protection rejected {modality.value} update for user {user_id} "
                           f"(similarity {similarity:.3f})")
            return LearningResult(modality, LearningOutcome.DRIFT_REJECTED, similarity=similarity)

        hours = self._hours_since(template.updated_at, now)
        rate = blend_rate(hours)
        self.matcher.set_template(user_id, modality, blend(template.vector, vector, rate), updated_at=now)
        self._rejections[key] = 0
        self._record_accepted(key, vector)
        return LearningResult(modality, LearningOutcome.BLENDED, similarity=similarity, rate=rate)

    @staticmethod
    def _hours_since(updated_at: Optional[datetime], now: datetime) -> float:
        if updated_at is None:
            return 24.0
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return max(0.0, (now - updated_at).total_seconds() / 3600.0)

    def _record_accepted(self, key: Tuple[str, Modality], vector: np.ndarray):
        history = self._accepted.setdefault(key, deque(maxlen=self.max_patterns))
        history.append(float(np.linalg.norm(vector)))

    def _status(self, key: Tuple[str, Modality]) -> ProfileStatus:
        if self._rejections.get(key, 0) >= self.lock_after_rejections:
            return ProfileStatus.LOCKED
        history = list(self._accepted.get(key, ()))
        if len(history) < self.min_patterns_for_stability:
            return ProfileStatus.LEARNING
        if _stability(history) >= self.stability_threshold:
            return ProfileStatus.ACTIVE
        return ProfileStatus.LEARNING

    def metrics(self, user_id: str, modality: Modality) -> LearningMetrics:
        """Learning progress computed from accepted vector magnitudes"""
        key = (user_id, Modality(modality))
        history = list(self._accepted.get(key, ()))
        n = len(history)
        status = self._status(key)

        adaptation_rate = 0.0
        if n >= 5:
            half = n // 2
            early, late = float(np.var(history[:half])), float(np.var(history[half:]))
            adaptation_rate = 1.0 if early == 0 else max(0.0, min(1.0, (early - late) / early))

        stability = _stability(history) if n >= 2 else 0.0
        recent_stability = _stability(history[-5:]) if n >= 2 else 0.0
        trend = max(-1.0, min(1.0, recent_stability - stability)) if n >= 3 else 0.0

        growth = 0.0
        if n >= 3:
            growth = min(1.0 if status == ProfileStatus.ACTIVE else 0.7, n / 20.0)

        adaptive = 50.0 + 2.0 * n
        if n >= self.min_patterns_for_stability:
            adaptive += 30.0 * stability + 10.0 * recent_stability
        if n >= 20:
            adaptive += 5.0

        return LearningMetrics(
            adaptation_rate=adaptation_rate,
            stability_score=stability,
            improvement_trend=trend,
            confidence_growth=growth,
            adaptive_confidence=min(95.0, adaptive),
            status=status,
            pattern_count=n,
            drift_rejections=self._rejections.get(key, 0)
        )

    def reset_profile(self, user_id: str, modality: Modality):
        """Forget learning state and the template so the user re-enrolls"""
        key = (user_id, Modality(modality))
        with self.locks.hold(user_id):
            self._accepted.pop(key, None)
            self._rejections.pop(key, None)
            self._weights.pop(key, None)
            self.matcher.reset(user_id, key[1])
        logger.info(f"Learning profile reset for user {user_id}/{key[1].value}")

    def model_weights(self, user_id: str, modality: Modality) -> ModelWeights:
        modality = Modality(modality)
        weights = self._weights.get((user_id, modality))
        if weights is None:
            weights = model_weights.initial_weights(
                modality.value, feature_dimension(modality),
                learning_rate=self.weights_learning_rate, momentum=self.weights_momentum
            )
        return weights

    def acceptance_probability(self, user_id: str, modality: Modality, vector: np.ndarray) -> float:
        return model_weights.predict(self.model_weights(user_id, modality), vector)

    def update_model_weights(self, user_id: str, vectors: Dict[Modality, np.ndarray],
                             success: bool) -> Dict[Modality, ModelWeights]:
        """Move each modality's weights toward the attempt outcome"""
        target = 1.0 if success else 0.0
        updated = {}
        with self.locks.hold(user_id):
            for modality, vector in vectors.items():
                modality = Modality(modality)
                current = self.model_weights(user_id, modality)
                error = target - model_weights.predict(current, vector)
                new_weights = model_weights.update(current, vector, error)
                self._weights[(user_id, modality)] = new_weights
                updated[modality] = new_weights
        return updated
