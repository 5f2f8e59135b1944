# behavioral_auth/core/sampling_controller.py
"""
Context-aware sampling controller: decides how long and how deeply each
modality is captured, and keeps the per-user context profile up to date
"""
import logging
from collections import deque
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple

from behavioral_auth.core.locks import UserLockRegistry
from behavioral_auth.models.patterns import Modality

logger = logging.getLogger(__name__)


class BehaviorState(str, Enum):
    FOCUSED = "focused"
    RELAXED = "relaxed"
    DISTRACTED = "distracted"
    RUSHED = "rushed"
    SUSPICIOUS = "suspicious"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class AnalysisDepth(str, Enum):
    SHALLOW = "shallow"
    STANDARD = "standard"
    DEEP = "deep"


@dataclass(frozen=True)
class SamplingContext:
    """Snapshot of the circumstances of one authentication attempt"""
    time_of_day: int
    day_of_week: int
    behavior_state: BehaviorState = BehaviorState.RELAXED
    network_stability: float = 1.0
    device_type: DeviceType = DeviceType.DESKTOP
    location_consistency: float = 1.0
    session_duration: float = 0.0
    interaction_frequency: float = 5.0
    last_confidence: float = 100.0
    recent_failures: int = 0

    @classmethod
    def at(cls, moment: Optional[datetime] = None, **kwargs) -> 'SamplingContext':
        """Context for a point in time; day_of_week is ISO (1 = Monday)"""
        moment = moment or datetime.now()
        return cls(time_of_day=moment.hour, day_of_week=moment.isoweekday(), **kwargs)


@dataclass(frozen=True)
class UserContextProfile:
    """Slowly learned habits of one user"""
    active_hours: Tuple[int, ...] = tuple(range(8, 20))
    active_days: Tuple[int, ...] = (1, 2, 3, 4, 5)
    avg_interaction_frequency: float = 5.0
    typical_session_duration: float = 120000.0
    update_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['active_hours'] = list(self.active_hours)
        data['active_days'] = list(self.active_days)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserContextProfile':
        defaults = cls()
        return cls(
            active_hours=tuple(sorted(int(h) for h in data.get('active_hours', defaults.active_hours))),
            active_days=tuple(sorted(int(d) for d in data.get('active_days', defaults.active_days))),
            avg_interaction_frequency=float(data.get('avg_interaction_frequency', defaults.avg_interaction_frequency)),
            typical_session_duration=float(data.get('typical_session_duration', defaults.typical_session_duration)),
            update_count=int(data.get('update_count', 0))
        )


@dataclass(frozen=True)
class AdaptiveSamplingConfig:
    base_duration_ms: float
    min_ms: float
    max_ms: float
    risk_multiplier: float
    risk_score: float
    adjustments: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SamplingDepth:
    modality_weights: Dict[str, float]
    analysis_depth: AnalysisDepth
    frequency_multiplier: float


@dataclass(frozen=True)
class SamplingRecommendation:
    recommended_duration_ms: float
    confidence_prediction: float
    risk_factors: List[str]
    optimizations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def update_profile(profile: UserContextProfile, context: SamplingContext) -> UserContextProfile:
    """Fold one attempt's context into the profile with a decaying rate"""
    count = profile.update_count + 1
    rate = min(0.1, 1.0 / count)

    hours = set(profile.active_hours)
    hours.add(context.time_of_day)
    days = set(profile.active_days)
    days.add(context.day_of_week)

    return replace(
        profile,
        active_hours=tuple(sorted(hours)),
        active_days=tuple(sorted(days)),
        avg_interaction_frequency=(profile.avg_interaction_frequency * (1 - rate) +
                                   context.interaction_frequency * rate),
        typical_session_duration=(profile.typical_session_duration * (1 - rate) +
                                  context.session_duration * rate),
        update_count=count
    )


class AdaptiveSamplingController:
    """Trades capture duration against contextual risk"""

    BEHAVIOR_ADJUSTMENTS = {
        BehaviorState.FOCUSED: 0.9,
        BehaviorState.RELAXED: 1.0,
        BehaviorState.DISTRACTED: 1.2,
        BehaviorState.RUSHED: 0.8,
        BehaviorState.SUSPICIOUS: 1.0,
    }

    DEVICE_ADJUSTMENTS = {
        DeviceType.MOBILE: 0.8,
        DeviceType.TABLET: 0.9,
        DeviceType.DESKTOP: 1.0,
        DeviceType.UNKNOWN: 1.0,
    }

    def __init__(self, config: Dict[str, Any], profile_store=None,
                 locks: Optional[UserLockRegistry] = None):
        self.config = config
        self.profile_store = profile_store
        self.locks = locks or UserLockRegistry()

        self.base_duration_ms = config.get('base_duration_ms', 3000)
        self.min_duration_ms = config.get('min_duration_ms', 1000)
        self.max_duration_ms = config.get('max_duration_ms', 8000)
        self.history_size = config.get('history_size', 100)

        self._profiles: Dict[str, UserContextProfile] = {}
        self._history: Dict[str, deque] = {}

    def plan(self, user_id: str, context: SamplingContext) -> AdaptiveSamplingConfig:
        """Compute the sampling plan and fold the context into the user's profile"""
        with self.locks.hold(user_id):
            profile = self._current_profile(user_id)
            sampling_config = self._compute_config(profile, context)

            updated = update_profile(profile, context)
            self._profiles[user_id] = updated
            self._persist_profile(user_id, updated)

            history = self._history.setdefault(user_id, deque(maxlen=self.history_size))
            history.append({
                'timestamp': datetime.now().isoformat(),
                'duration_ms': sampling_config.base_duration_ms,
                'risk_score': sampling_config.risk_score,
                'device_type': context.device_type.value,
                'behavior_state': context.behavior_state.value
            })

        logger.info(f"Sampling plan for user {user_id}: {sampling_config.base_duration_ms:.0f}ms "
                    f"(risk {sampling_config.risk_score:.0f})")
        return sampling_config

    def depth(self, context: SamplingContext, last_confidence: float) -> SamplingDepth:
        """How deeply to analyze and which modalities the device supports"""
        if last_confidence < 50:
            analysis_depth, frequency = AnalysisDepth.DEEP, 1.5
        elif last_confidence > 85:
            analysis_depth, frequency = AnalysisDepth.SHALLOW, 0.7
        else:
            analysis_depth, frequency = AnalysisDepth.STANDARD, 1.0

        if context.behavior_state == BehaviorState.RUSHED:
            analysis_depth = AnalysisDepth.SHALLOW
            frequency *= 0.8
        elif context.behavior_state in (BehaviorState.DISTRACTED, BehaviorState.SUSPICIOUS):
            analysis_depth = AnalysisDepth.DEEP
            frequency *= 1.3

        desktop = context.device_type == DeviceType.DESKTOP
        weights = {
            Modality.KEYSTROKE.value: 1.0 if desktop else 0.5,
            Modality.POINTER.value: 1.0 if desktop else 0.0,
            Modality.TOUCH.value: 0.0 if desktop else 1.0,
            Modality.BEHAVIORAL.value: 1.0,
        }
        return SamplingDepth(modality_weights=weights, analysis_depth=analysis_depth,
                             frequency_multiplier=frequency)

    def recommendations(self, user_id: str, context: SamplingContext) -> SamplingRecommendation:
        """Advisory output for the UI; touches neither profile nor history"""
        profile = self._profiles.get(user_id)
        if profile is None:
            profile = self._load_profile(user_id) or UserContextProfile()
        sampling_config = self._compute_config(profile, context)

        risk_factors = []
        if context.network_stability < 0.7:
            risk_factors.append('Unstable network connection')
        if context.location_consistency < 0.5:
            risk_factors.append('Unusual location pattern')
        if context.recent_failures > 0:
            risk_factors.append('Recent authentication failures')
        if context.last_confidence < 60:
            risk_factors.append('Low recent confidence scores')

        optimizations = []
        if sampling_config.base_duration_ms > 5000:
            optimizations.append('Extended sampling for enhanced security')
        if context.device_type != DeviceType.DESKTOP:
            optimizations.append('Touch-optimized biometric analysis')
        if context.behavior_state == BehaviorState.RUSHED:
            optimizations.append('Streamlined capture for efficiency')

        return SamplingRecommendation(
            recommended_duration_ms=sampling_config.base_duration_ms,
            confidence_prediction=max(60.0, 100.0 - sampling_config.risk_score),
            risk_factors=risk_factors,
            optimizations=optimizations
        )

    def profile(self, user_id: str) -> UserContextProfile:
        return self._current_profile(user_id)

    def sampling_history(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self._history.get(user_id, ()))

    def risk_score(self, profile: UserContextProfile, context: SamplingContext) -> float:
        """Additive contextual risk, clamped to [0, 100]"""
        risk = 0.0
        if not self._is_usual_time(profile, context):
            risk += 20
        if context.location_consistency < 0.5:
            risk += 25
        if context.network_stability < 0.7:
            risk += 15
        risk += context.recent_failures * 10
        if context.last_confidence < 60:
            risk += 20
        if (context.behavior_state == BehaviorState.DISTRACTED or
                context.interaction_frequency > profile.avg_interaction_frequency * 2):
            risk += 15
        return float(min(100.0, max(0.0, risk)))

    @staticmethod
    def risk_multiplier(risk: float) -> float:
        if risk > 70:
            return 1.8
        if risk > 50:
            return 1.4
        if risk > 30:
            return 1.2
        if risk < 10:
            return 0.8
        return 1.0

    def _compute_config(self, profile: UserContextProfile, context: SamplingContext) -> AdaptiveSamplingConfig:
        risk = self.risk_score(profile, context)
        multiplier = self.risk_multiplier(risk)
        adjustments = self._adjustments(profile, context)

        duration = self.base_duration_ms * multiplier
        for value in adjustments.values():
            duration *= value
        duration = max(self.min_duration_ms, min(self.max_duration_ms, duration))

        return AdaptiveSamplingConfig(
            base_duration_ms=float(round(duration)),
            min_ms=float(self.min_duration_ms),
            max_ms=float(self.max_duration_ms),
            risk_multiplier=multiplier,
            risk_score=risk,
            adjustments=adjustments
        )

    def _adjustments(self, profile: UserContextProfile, context: SamplingContext) -> Dict[str, float]:
        """Independent per-factor duration ratios"""
        if context.network_stability < 0.5:
            network = 0.7
        elif context.network_stability < 0.8:
            network = 0.9
        else:
            network = 1.0

        if context.location_consistency < 0.3:
            location = 1.4
        elif context.location_consistency < 0.6:
            location = 1.2
        else:
            location = 1.0

        if context.session_duration < 30000:
            session = 1.2
        elif context.session_duration > 300000:
            session = 0.9
        else:
            session = 1.0

        if context.interaction_frequency > 20:
            frequency = 1.3
        elif context.interaction_frequency < 2:
            frequency = 1.1
        else:
            frequency = 1.0

        performance = 1.0
        if context.last_confidence < 60:
            performance *= 1.2
        if context.recent_failures > 2:
            performance *= 1.3
        elif context.recent_failures > 0:
            performance *= 1.1

        return {
            'time_of_day': 1.0 if context.time_of_day in profile.active_hours else 1.3,
            'behavior_state': self.BEHAVIOR_ADJUSTMENTS.get(context.behavior_state, 1.0),
            'network_quality': network,
            'device_type': self.DEVICE_ADJUSTMENTS.get(context.device_type, 1.0),
            'location_consistency': location,
            'session_duration': session,
            'interaction_frequency': frequency,
            'recent_performance': performance,
        }

    @staticmethod
    def _is_usual_time(profile: UserContextProfile, context: SamplingContext) -> bool:
        return context.time_of_day in profile.active_hours and context.day_of_week in profile.active_days

    def _current_profile(self, user_id: str) -> UserContextProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            profile = self._load_profile(user_id) or UserContextProfile()
            self._profiles[user_id] = profile
        return profile

    def _load_profile(self, user_id: str) -> Optional[UserContextProfile]:
        if self.profile_store is None:
            return None
        try:
            return self.profile_store.load_context_profile(user_id)
        except Exception as e:
            logger.error(f"Failed to load context profile for user {user_id}: {e}")
            return None

    def _persist_profile(self, user_id: str, profile: UserContextProfile):
        if self.profile_store is None:
            return
        try:
            self.profile_store.save_context_profile(user_id, profile)
        except Exception as e:
            logger.error(f"Failed to save context profile for user {user_id}: {e}")
