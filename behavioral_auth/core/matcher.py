# behavioral_auth/core/matcher.py
"""
Template store and matcher: cosine similarity against the user template and
nearest-neighbour anomaly scoring against a bounded pool of normal vectors
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as sk_cosine_similarity
from sklearn.metrics.pairwise import euclidean_distances

from behavioral_auth.core.errors import TemplateCorrupt
from behavioral_auth.core.feature_extractor import feature_dimension
from behavioral_auth.core.locks import UserLockRegistry
from behavioral_auth.models.patterns import Modality

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of the angle between two vectors; 0 for mismatched or zero vectors"""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape or a.size == 0:
        return 0.0
    if not np.any(a) or not np.any(b):
        return 0.0
    return float(sk_cosine_similarity(a.reshape(1, -1), b.reshape(1, -1))[0, 0])


@dataclass
class UserTemplate:
    """Reference vector plus the recent normal pool for one (user, modality)"""
    modality: Modality
    vector: Optional[np.ndarray] = None
    pool: deque = field(default_factory=lambda: deque(maxlen=50))
    updated_at: Optional[datetime] = None
    update_count: int = 0


@dataclass(frozen=True)
class ModalityScore:
    modality: Modality
    similarity: float
    anomaly_score: float
    confidence: float
    cold_start: bool


class TemplateMatcher:
    """Owns the per-(user, modality) templates and normal pools"""

    def __init__(self, config: Dict[str, Any], profile_store=None,
                 locks: Optional[UserLockRegistry] = None):
        self.config = config
        self.profile_store = profile_store
        self.locks = locks or UserLockRegistry()

        self.pool_size = config.get('pool_size', 50)
        self.anomaly_threshold = config.get('anomaly_threshold', 0.5)
        self.anomaly_scale_floor = config.get('anomaly_scale_floor', 0.1)
        self.similarity_weight = config.get('similarity_weight', 0.7)

        self._templates: Dict[Tuple[str, Modality], UserTemplate] = {}

    def get_template(self, user_id: str, modality: Modality) -> UserTemplate:
        """Cached template, loaded lazily from the profile store"""
        modality = Modality(modality)
        key = (user_id, modality)
        template = self._templates.get(key)
        if template is not None:
            return template

        template = UserTemplate(modality=modality, pool=deque(maxlen=self.pool_size))
        record = self._load(user_id, modality)
        if record is not None:
            try:
                template.vector = self._validate(modality, record.vector)
                template.updated_at = record.updated_at
                template.update_count = record.update_count
            except TemplateCorrupt as e:
                logger.error(f"Resetting template for user {user_id}: {e}")

        return self._templates.setdefault(key, template)

    def has_template(self, user_id: str, modality: Modality) -> bool:
        return self.get_template(user_id, modality).vector is not None

    def compare(self, user_id: str, modality: Modality, vector: np.ndarray) -> float:
        """Similarity in [0, 1] against the template; 0 on cold start"""
        template = self.get_template(user_id, modality)
        reference = template.vector
        if reference is None:
            return 0.0
        if reference.shape != np.shape(vector):
            logger.error(f"Template dimension mismatch for user {user_id}/{modality.value}, treating as cold start")
            self.reset(user_id, modality)
            return 0.0
        return float(np.clip(cosine_similarity(reference, vector), 0.0, 1.0))

    def anomaly_score(self, user_id: str, modality: Modality, vector: np.ndarray) -> float:
        """Distance to the nearest normal vector relative to the pool's spread"""
        vector = np.asarray(vector, dtype=float)
        template = self.get_template(user_id, modality)

        with self.locks.hold(user_id):
            pool = template.pool
            if not pool:
                pool.append(vector.copy())
                return 0.0

            pooled = np.vstack(list(pool))
            if pooled.shape[1] != vector.shape[0]:
                logger.error(f"Pool dimension mismatch for user {user_id}/{modality.value}, reseeding")
                pool.clear()
                pool.append(vector.copy())
                return 0.0

            nearest = float(euclidean_distances(vector.reshape(1, -1), pooled).min())
            score = float(np.clip(nearest / self._pool_scale(pooled), 0.0, 1.0))

            if score < self.anomaly_threshold:
                # deque(maxlen) evicts the oldest entry
                pool.append(vector.copy())
        return score

    def _pool_scale(self, pooled: np.ndarray) -> float:
        """Average pairwise distance, floored relative to the pool's magnitude"""
        spread = 0.0
        if len(pooled) > 1:
            distances = euclidean_distances(pooled)
            upper = distances[np.triu_indices(len(pooled), k=1)]
            spread = float(np.mean(upper))
        magnitude = float(np.mean(np.linalg.norm(pooled, axis=1)))
        return max(spread, self.anomaly_scale_floor * magnitude, 1e-9)

    def confidence(self, similarity: float, anomaly: float) -> float:
        """Blend of similarity and normality scaled to [0, 100]"""
        value = similarity * self.similarity_weight + (1.0 - anomaly) * (1.0 - self.similarity_weight)
        return float(np.clip(value * 100.0, 0.0, 100.0))

    def score(self, user_id: str, modality: Modality, vector: np.ndarray) -> ModalityScore:
        modality = Modality(modality)
        cold_start = not self.has_template(user_id, modality)
        similarity = self.compare(user_id, modality, vector)
        anomaly = self.anomaly_score(user_id, modality, vector)
        return ModalityScore(
            modality=modality,
            similarity=similarity,
            anomaly_score=anomaly,
            confidence=self.confidence(similarity, anomaly),
            cold_start=cold_start
        )

    def set_template(self, user_id: str, modality: Modality, vector: np.ndarray,
                     updated_at: Optional[datetime] = None) -> UserTemplate:
        """Commit a new reference vector; callers hold the user's lock"""
        modality = Modality(modality)
        template = self.get_template(user_id, modality)
        # Replace rather than mutate so lock-free readers see a consistent vector
        template.vector = np.array(vector, dtype=float)
        template.updated_at = updated_at or datetime.now(timezone.utc)
        template.update_count += 1

        if self.profile_store is not None:
            try:
                self.profile_store.save_template(user_id, modality, template.vector,
                                                 updated_at=template.updated_at,
                                                 update_count=template.update_count)
            except Exception as e:
                logger.error(f"Failed to persist template for user {user_id}/{modality.value}: {e}")
        return template

    def reset(self, user_id: str, modality: Modality):
        """Drop the template and pool; the next vector bootstraps"""
        modality = Modality(modality)
        with self.locks.hold(user_id):
            self._templates[(user_id, modality)] = UserTemplate(
                modality=modality, pool=deque(maxlen=self.pool_size)
            )

    def pool(self, user_id: str, modality: Modality) -> List[np.ndarray]:
        return [v.copy() for v in self.get_template(user_id, modality).pool]

    def _validate(self, modality: Modality, vector) -> np.ndarray:
        vector = np.asarray(vector, dtype=float)
        expected = feature_dimension(modality)
        if vector.ndim != 1 or vector.shape[0] != expected:
            raise TemplateCorrupt(
                f"stored {modality.value} template has shape {vector.shape}, expected ({expected},)",
                modality=modality.value
            )
        return vector

    def _load(self, user_id: str, modality: Modality):
        if self.profile_store is None:
            return None
        try:
            return self.profile_store.load_template(user_id, modality)
        except Exception as e:
            logger.error(f"Failed to load template for user {user_id}/{modality.value}: {e}")
            return None
