# behavioral_auth/models/weights.py
"""
Versioned per-modality model weights with pure momentum updates
"""
import math
from dataclasses import dataclass, replace
from typing import Dict, Sequence, Any

import numpy as np


@dataclass(frozen=True)
class ModelWeights:
    """Immutable weight vector; every update yields a new version"""
    modality: str
    values: tuple
    velocity: tuple
    learning_rate: float = 0.001
    momentum: float = 0.9
    version: int = 0

    @property
    def dimension(self) -> int:
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'modality': self.modality,
            'values': list(self.values),
            'velocity': list(self.velocity),
            'learning_rate': self.learning_rate,
            'momentum': self.momentum,
            'version': self.version
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ModelWeights':
        return cls(
            modality=data['modality'],
            values=tuple(float(v) for v in data['values']),
            velocity=tuple(float(v) for v in data['velocity']),
            learning_rate=float(data.get('learning_rate', 0.001)),
            momentum=float(data.get('momentum', 0.9)),
            version=int(data.get('version', 0))
        )


def initial_weights(modality: str, dimension: int, learning_rate: float = 0.001,
                    momentum: float = 0.9) -> ModelWeights:
    """Zero weights predict 0.5 until the first update"""
    zeros = tuple(0.0 for _ in range(dimension))
    return ModelWeights(modality=modality, values=zeros, velocity=zeros,
                        learning_rate=learning_rate, momentum=momentum)


def _normalize(features: Sequence[float], dimension: int) -> np.ndarray:
    x = np.zeros(dimension, dtype=float)
    data = np.nan_to_num(np.asarray(features, dtype=float)[:dimension])
    x[:len(data)] = data
    norm = np.linalg.norm(x)
    return x / norm if norm > 0 else x


def predict(weights: ModelWeights, features: Sequence[float]) -> float:
    """Sigmoid of the weighted, L2-normalized features"""
    x = _normalize(features, weights.dimension)
    z = float(np.dot(np.asarray(weights.values), x))
    return 1.0 / (1.0 + math.exp(-max(-500.0, min(500.0, z))))


def update(weights: ModelWeights, features: Sequence[float], error: float) -> ModelWeights:
    """One momentum gradient step; the input weights are left untouched"""
    x = _normalize(features, weights.dimension)
    velocity = weights.momentum * np.asarray(weights.velocity) + weights.learning_rate * error * x
    values = np.asarray(weights.values) + velocity
    return replace(
        weights,
        values=tuple(float(v) for v in values),
        velocity=tuple(float(v) for v in velocity),
        version=weights.version + 1
    )


def adapt_learning_rate(weights: ModelWeights, accuracy_trend: Sequence[float]) -> ModelWeights:
    """Speed up while accuracy improves, back off otherwise"""
    if len(accuracy_trend) < 3:
        return weights
    recent = list(accuracy_trend)[-3:]
    if recent[2] > recent[0]:
        rate = min(0.01, weights.learning_rate * 1.05)
    else:
        rate = max(0.0001, weights.learning_rate * 0.95)
    return replace(weights, learning_rate=rate)
