# behavioral_auth/core/feature_extractor.py
"""
Feature extraction for keystroke, pointer and touch behavioral biometrics
Every modality maps to a fixed-length vector: 27 keystroke, 30 pointer, 26 touch
"""
import logging
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from behavioral_auth.models.patterns import (
    Modality, Pattern, KeystrokePattern, Movement, Click, Scroll, Drag,
    Tap, Swipe, Pinch
)

logger = logging.getLogger(__name__)

DISTRIBUTION_STATS = ['mean', 'std', 'skew', 'kurtosis', 'median', 'min', 'max']
TOP_KEYS = 5


def _distribution(prefix: str) -> List[str]:
    return [f'{prefix}_{stat}' for stat in DISTRIBUTION_STATS]


KEYSTROKE_FEATURES = (
    _distribution('dwell') + _distribution('flight') +
    ['rhythm_cv', 'typing_speed_kps', 'key_count'] +
    [f'top_key_{i + 1}_dwell_{stat}' for i in range(TOP_KEYS) for stat in ('mean', 'std')]
)

POINTER_FEATURES = (
    _distribution('velocity') + [
        'acceleration_mean', 'acceleration_std', 'acceleration_max', 'jerk_mean',
        'curvature_mean', 'curvature_std', 'straightness_mean',
        'direction_changes_mean', 'pause_ratio',
        'click_dwell_mean', 'click_dwell_std', 'double_click_ratio',
        'scroll_speed_mean', 'scroll_speed_std', 'vertical_scroll_ratio',
        'drag_distance_mean', 'drag_velocity_mean',
        'movement_count', 'click_count', 'scroll_count', 'drag_count',
        'path_distance_total', 'movement_duration_mean'
    ]
)

TOUCH_FEATURES = (
    _distribution('tap_dwell') + [
        'tap_pressure_mean', 'tap_pressure_max', 'contact_area_mean', 'contact_area_std'
    ] + _distribution('swipe_velocity') + [
        'swipe_curvature_mean', 'swipe_acceleration_mean',
        'swipe_up_ratio', 'swipe_down_ratio', 'swipe_left_ratio', 'swipe_right_ratio',
        'pinch_scale_mean', 'pinch_rotation_mean'
    ]
)

FEATURE_NAMES = {
    Modality.KEYSTROKE: KEYSTROKE_FEATURES,
    Modality.POINTER: POINTER_FEATURES,
    Modality.TOUCH: TOUCH_FEATURES,
}


def feature_names(modality: Modality) -> List[str]:
    return list(FEATURE_NAMES[Modality(modality)])


def feature_dimension(modality: Modality) -> int:
    return len(FEATURE_NAMES[Modality(modality)])


def distribution_stats(values: Sequence[float]) -> List[float]:
    """mean, std, skew, kurtosis, median, min, max with zeros where undefined"""
    data = np.asarray(values, dtype=float)
    n = len(data)
    if n == 0:
        return [0.0] * len(DISTRIBUTION_STATS)

    std = float(np.std(data)) if n > 1 else 0.0
    skew = float(stats.skew(data, bias=True)) if n >= 3 and std > 0 else 0.0
    kurtosis = float(stats.kurtosis(data, fisher=True, bias=True)) if n >= 4 and std > 0 else 0.0

    return [
        float(np.mean(data)),
        std,
        skew,
        kurtosis,
        float(np.median(data)),
        float(np.min(data)),
        float(np.max(data)),
    ]


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) > 0 else 0.0


def _std(values: Sequence[float]) -> float:
    return float(np.std(values)) if len(values) > 1 else 0.0


class BehavioralFeatureExtractor:
    """Turn a batch of patterns of one modality into a fixed-length vector"""

    def extract(self, modality: Modality, patterns: Sequence[Pattern]) -> np.ndarray:
        modality = Modality(modality)
        if modality not in FEATURE_NAMES:
            raise ValueError(f"No feature layout for modality {modality.value}")

        relevant = [p for p in patterns if p.modality == modality]
        if len(relevant) != len(patterns):
            logger.debug(f"Ignoring {len(patterns) - len(relevant)} patterns of other modalities")

        if modality == Modality.KEYSTROKE:
            values = self._keystroke_features(relevant)
        elif modality == Modality.POINTER:
            values = self._pointer_features(relevant)
        else:
            values = self._touch_features(relevant)

        return self._fit(values, len(FEATURE_NAMES[modality]))

    def extract_named(self, modality: Modality, patterns: Sequence[Pattern]) -> Dict[str, float]:
        """Same vector keyed by feature name"""
        vector = self.extract(modality, patterns)
        return dict(zip(feature_names(modality), vector.tolist()))

    @staticmethod
    def _fit(values: List[float], dimension: int) -> np.ndarray:
        """Truncate or zero-pad to the modality dimension and zero out NaN/inf"""
        vector = np.zeros(dimension, dtype=float)
        count = min(len(values), dimension)
        vector[:count] = values[:count]
        return np.nan_to_num(vector, nan=0.0, posinf=0.0, neginf=0.0)

    def _keystroke_features(self, patterns: List[KeystrokePattern]) -> List[float]:
        dwell_times = []
        flight_times = []
        intervals = []
        timings = []
        active_ms = 0.0

        for pattern in patterns:
            ordered = sorted(pattern.timings, key=lambda t: t.press_time)
            timings.extend(ordered)
            dwell_times.extend(t.duration for t in ordered)
            for current, following in zip(ordered, ordered[1:]):
                flight_times.append(following.press_time - current.release_time)
                intervals.append(following.press_time - current.press_time)
            active_ms += pattern.end_time - pattern.start_time

        features = distribution_stats(dwell_times) + distribution_stats(flight_times)

        interval_mean = _mean(intervals)
        features.append(_std(intervals) / interval_mean if interval_mean > 0 else 0.0)
        features.append(len(timings) / (active_ms / 1000.0) if active_ms > 0 else 0.0)
        features.append(float(len(timings)))
        features.extend(self._top_key_dwell(timings))
        return features

    @staticmethod
    def _top_key_dwell(timings) -> List[float]:
        """Dwell mean and std for the most frequent keys, ties broken by key name"""
        values = [0.0] * (TOP_KEYS * 2)
        if not timings:
            return values

        df = pd.DataFrame({
            'key': [t.key for t in timings],
            'dwell': [t.duration for t in timings]
        })
        grouped = df.groupby('key')['dwell'].agg(
            count='count',
            mean='mean',
            std=lambda s: float(np.std(s)) if len(s) > 1 else 0.0
        ).reset_index()
        grouped = grouped.sort_values(['count', 'key'], ascending=[False, True]).head(TOP_KEYS)

        for i, row in enumerate(grouped.itertuples(index=False)):
            values[2 * i] = float(row.mean)
            values[2 * i + 1] = float(row.std)
        return values

    def _pointer_features(self, patterns: List[Pattern]) -> List[float]:
        movements = [p for p in patterns if isinstance(p, Movement)]
        clicks = [p for p in patterns if isinstance(p, Click)]
        scrolls = [p for p in patterns if isinstance(p, Scroll)]
        drags = [p for p in patterns if isinstance(p, Drag)]

        velocities = [v for m in movements for v in m.velocities]
        accelerations = [a for m in movements for a in m.accelerations]
        jerks = [j for m in movements for j in m.jerks]
        pauses = sum(m.pauses for m in movements)

        features = distribution_stats(velocities)
        features += [
            _mean(accelerations),
            _std(accelerations),
            float(np.max(np.abs(accelerations))) if accelerations else 0.0,
            _mean(jerks),
            _mean([m.curvature for m in movements]),
            _std([m.curvature for m in movements]),
            _mean([m.straightness for m in movements]),
            _mean([m.direction_changes for m in movements]),
            pauses / len(velocities) if velocities else 0.0,
            _mean([c.dwell for c in clicks]),
            _std([c.dwell for c in clicks]),
            sum(1 for c in clicks if c.click_count >= 2) / len(clicks) if clicks else 0.0,
            _mean([s.speed for s in scrolls]),
            _std([s.speed for s in scrolls]),
            sum(1 for s in scrolls if s.direction in ('up', 'down')) / len(scrolls) if scrolls else 0.0,
            _mean([d.distance for d in drags]),
            _mean([d.velocity for d in drags]),
            float(len(movements)),
            float(len(clicks)),
            float(len(scrolls)),
            float(len(drags)),
            float(sum(m.total_distance for m in movements)),
            _mean([m.end_time - m.start_time for m in movements]),
        ]
        return features

    def _touch_features(self, patterns: List[Pattern]) -> List[float]:
        taps = [p for p in patterns if isinstance(p, Tap)]
        swipes = [p for p in patterns if isinstance(p, Swipe)]
        pinches = [p for p in patterns if isinstance(p, Pinch)]

        pressures = [t.pressure_mean for t in taps if t.pressure_mean > 0]
        areas = [t.contact_area for t in taps if t.contact_area > 0]

        features = distribution_stats([t.dwell for t in taps])
        features += [
            _mean(pressures),
            max((t.pressure_max for t in taps), default=0.0),
            _mean(areas),
            _std(areas),
        ]
        features += distribution_stats([s.velocity for s in swipes])
        features += [
            _mean([s.curvature for s in swipes]),
            _mean([s.acceleration for s in swipes]),
        ]
        for direction in ('up', 'down', 'left', 'right'):
            features.append(
                sum(1 for s in swipes if s.direction == direction) / len(swipes) if swipes else 0.0
            )
        features += [
            _mean([p.scale_change for p in pinches]),
            _mean([p.rotation for p in pinches]),
        ]
        return features
