# behavioral_auth/services/auth_service.py
"""
Continuous authentication service: runs one capture session per attempt and
turns it into an authentication decision
"""
import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Any, Iterable

from behavioral_auth.core.amplitude_checks import amplitude_flags
from behavioral_auth.core.capturers import BaseCapturer, InputChannel, create_capturer
from behavioral_auth.core.errors import (
    CaptureTimeout, InputUnavailable, InsufficientSamples, SessionNotFound
)
from behavioral_auth.core.feature_extractor import BehavioralFeatureExtractor
from behavioral_auth.core.fusion_engine import MultiModalFusionEngine, RiskLevel, UncertaintyReport
from behavioral_auth.core.learning_loop import ContinuousLearningLoop, LearningOutcome, LearningMetrics
from behavioral_auth.core.locks import UserLockRegistry
from behavioral_auth.core.matcher import ModalityScore, TemplateMatcher
from behavioral_auth.core.sampling_controller import (
    AdaptiveSamplingConfig, AdaptiveSamplingController, DeviceType, SamplingContext,
    SamplingDepth, SamplingRecommendation
)
from behavioral_auth.models.patterns import Modality, Pattern, RawSample
from behavioral_auth.services.capability_probe import (
    CapabilityProbe, StaticCapabilityProbe, UserAgentCapabilityProbe
)
from behavioral_auth.services.profile_store import InMemoryProfileStore, ProfileStore
from behavioral_auth.utils.helpers import generate_session_id

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    PLANNED = "planned"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    MATCHING = "matching"
    FUSING = "fusing"
    DECIDED = "decided"
    LEARNING = "learning"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


FINAL_STATES = (AttemptState.DECIDED, AttemptState.LEARNING, AttemptState.REJECTED, AttemptState.CANCELLED)


@dataclass(frozen=True)
class AuthDecision:
    """Outcome of one authentication attempt"""
    success: bool
    confidence: float
    risk_score: float
    per_modality_scores: Dict[str, float]
    modalities_used: List[str]

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.CRITICAL
    uncertainty: Optional[UncertaintyReport] = None
    excluded_modalities: Dict[str, str] = field(default_factory=dict)
    enrolled_modalities: List[str] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'confidence': round(self.confidence, 2),
            'risk_score': round(self.risk_score, 2),
            'risk_level': self.risk_level.value,
            'per_modality_scores': {m: round(s, 2) for m, s in self.per_modality_scores.items()},
            'modalities_used': list(self.modalities_used),
            'excluded_modalities': dict(self.excluded_modalities),
            'enrolled_modalities': list(self.enrolled_modalities),
            'flags': list(self.flags),
            'uncertainty': self.uncertainty.to_dict() if self.uncertainty else None,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class SessionHandle:
    """Live capture session for one attempt"""
    session_id: str
    user_id: str
    context: SamplingContext
    plan: AdaptiveSamplingConfig
    depth: SamplingDepth
    device_type: DeviceType
    channels: Dict[Modality, InputChannel]
    capturers: Dict[Modality, BaseCapturer]
    futures: Dict[Modality, Future] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: AttemptState = AttemptState.PLANNED
    state_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def modalities(self) -> List[Modality]:
        return list(self.channels)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def transition(self, to_state: AttemptState, expected: Iterable[AttemptState] = ()) -> bool:
        """Compare-and-set the attempt state; a cancelled attempt never moves again"""
        with self.state_lock:
            if self.state == AttemptState.CANCELLED:
                return False
            if expected and self.state not in expected:
                return False
            self.state = to_state
            return True

    def publish(self, sample: RawSample) -> bool:
        """Route one raw sample to its modality's channel"""
        if self.cancel_event.is_set():
            return False
        channel = self.channels.get(Modality(sample.modality))
        if channel is None:
            return False
        return channel.publish(sample)

    def publish_many(self, samples: Iterable[RawSample]) -> int:
        return sum(1 for sample in samples if self.publish(sample))


@dataclass
class AttemptHistory:
    last_confidence: float = 100.0
    outcomes: deque = field(default_factory=lambda: deque(maxlen=5))

    @property
    def recent_failures(self) -> int:
        return sum(1 for ok in self.outcomes if not ok)


class ContinuousAuthenticationService:
    """Explicitly constructed pipeline owning its templates, profiles and capture workers"""

    def __init__(self, config: Dict[str, Any], profile_store: Optional[ProfileStore] = None,
                 capability_probe: Optional[CapabilityProbe] = None,
                 capturer_factory: Callable[[Modality, Dict[str, Any]], BaseCapturer] = create_capturer):
        self.config = config
        self.profile_store = profile_store or InMemoryProfileStore()
        self.capability_probe = capability_probe or StaticCapabilityProbe()
        self.capturer_factory = capturer_factory

        self.capture_config = config.get('capture', {})
        self.amplitude_config = config.get('amplitude', {})
        self.join_timeout_ms = config.get('capture_join_timeout_ms', 8000)
        self.min_patterns = self.capture_config.get('min_patterns', 1)
        self.flag_risk = self.amplitude_config.get('flag_risk', 0.25)

        self.locks = UserLockRegistry()
        self.extractor = BehavioralFeatureExtractor()
        self.sampling = AdaptiveSamplingController(config.get('sampling', {}), self.profile_store, self.locks)
        self.matcher = TemplateMatcher(config.get('matcher', {}), self.profile_store, self.locks)
        self.fusion = MultiModalFusionEngine(config.get('fusion', {}))
        self.learning = ContinuousLearningLoop(config.get('learning', {}), self.matcher, self.locks)

        self._executor = ThreadPoolExecutor(max_workers=config.get('max_workers', 16),
                                            thread_name_prefix='capture')
        self._sessions: Dict[str, SessionHandle] = {}
        self._sessions_lock = threading.Lock()
        self._attempts: Dict[str, AttemptHistory] = {}

    def begin_capture(self, user_id: str, context: Optional[SamplingContext] = None,
                      user_agent: Optional[str] = None) -> SessionHandle:
        """Plan sampling and start one capturer per available modality"""
        probe = UserAgentCapabilityProbe(user_agent) if user_agent else self.capability_probe
        capabilities = probe.probe()

        if context is None:
            context = self._default_context(user_id, capabilities.device_type)
        device_type = context.device_type

        plan = self.sampling.plan(user_id, context)
        depth = self.sampling.depth(context, context.last_confidence)

        channel_size = self.capture_config.get('channel_size', 2048)
        handle = SessionHandle(
            session_id=generate_session_id(),
            user_id=user_id,
            context=context,
            plan=plan,
            depth=depth,
            device_type=device_type,
            channels={m: InputChannel(m, maxsize=channel_size) for m in capabilities.modalities},
            capturers={m: self.capturer_factory(m, self.capture_config) for m in capabilities.modalities}
        )

        for modality, capturer in handle.capturers.items():
            capturer.start()
            handle.futures[modality] = self._executor.submit(
                capturer.run, handle.channels[modality], plan.base_duration_ms, handle.cancel_event
            )
        handle.state = AttemptState.CAPTURING

        with self._sessions_lock:
            self._sessions[handle.session_id] = handle

        logger.info(f"Capture session {handle.session_id} started for user {user_id} "
                    f"({', '.join(m.value for m in handle.modalities) or 'no modalities'})")
        return handle

    def get_session(self, session_id: str) -> SessionHandle:
        with self._sessions_lock:
            handle = self._sessions.get(session_id)
        if handle is None:
            raise SessionNotFound(f"Unknown capture session {session_id}")
        return handle

    def cancel(self, handle: SessionHandle):
        """Abort the attempt; buffers are discarded and no template changes"""
        with handle.state_lock:
            if handle.state in FINAL_STATES:
                return
            handle.state = AttemptState.CANCELLED
            handle.cancel_event.set()
        for channel in handle.channels.values():
            channel.close()
        for capturer in handle.capturers.values():
            capturer.cancel()
        self._forget(handle)
        logger.info(f"Capture session {handle.session_id} cancelled")

    def end_capture_and_authenticate(self, handle: SessionHandle) -> AuthDecision:
        """Stop capture and decide; always returns a decision"""
        try:
            return self._authenticate(handle)
        except Exception as e:
            logger.error(f"Authentication failed for user {handle.user_id}: {e}", exc_info=True)
            self._cancel_capture(handle)
            return self._failed_decision(handle, {'pipeline': 'internal_error'})
        finally:
            self._forget(handle)

    def get_recommendations(self, user_id: str, context: Optional[SamplingContext] = None) -> SamplingRecommendation:
        if context is None:
            context = self._default_context(user_id, self.capability_probe.probe().device_type)
        return self.sampling.recommendations(user_id, context)

    def learning_metrics(self, user_id: str, modality: Modality) -> LearningMetrics:
        return self.learning.metrics(user_id, modality)

    def shutdown(self, wait_for_workers: bool = True):
        with self._sessions_lock:
            handles = list(self._sessions.values())
        for handle in handles:
            self.cancel(handle)
        self._executor.shutdown(wait=wait_for_workers)

    def _authenticate(self, handle: SessionHandle) -> AuthDecision:
        with handle.state_lock:
            state = handle.state
            if state == AttemptState.CAPTURING:
                handle.state = AttemptState.EXTRACTING
        if state == AttemptState.CANCELLED:
            logger.warning(f"Session {handle.session_id} was cancelled before authentication")
            return self._cancelled_decision(handle)
        if state != AttemptState.CAPTURING:
            logger.warning(f"Session {handle.session_id} already finished ({state.value})")
            return self._failed_decision(handle, {'session': state.value})

        if not handle.capturers:
            error = InputUnavailable(f"No input modality available for user {handle.user_id}")
            logger.warning(str(error))
            handle.transition(AttemptState.DECIDED)
            return self._failed_decision(handle, {'device': error.kind})

        patterns, excluded = self._collect(handle)
        if handle.cancelled:
            return self._cancelled_decision(handle)

        vectors = {}
        for modality, modality_patterns in patterns.items():
            if not modality_patterns:
                excluded[modality.value] = InsufficientSamples.kind
                logger.info(f"No {modality.value} patterns captured for user {handle.user_id}")
                continue
            if len(modality_patterns) < self.min_patterns:
                logger.warning(str(InsufficientSamples(
                    f"{len(modality_patterns)} {modality.value} patterns, fewer than {self.min_patterns}",
                    modality=modality.value
                )))
            try:
                vectors[modality] = self.extractor.extract(modality, modality_patterns)
            except Exception as e:
                logger.error(f"Feature extraction failed for {modality.value}: {e}")
                excluded[modality.value] = 'extraction_error'

        if not handle.transition(AttemptState.MATCHING):
            return self._cancelled_decision(handle)
        scores: Dict[Modality, ModalityScore] = {}
        for modality, vector in vectors.items():
            try:
                scores[modality] = self.matcher.score(handle.user_id, modality, vector)
            except Exception as e:
                logger.error(f"Matching failed for {modality.value}: {e}")
                excluded[modality.value] = 'matching_error'
        vectors = {m: v for m, v in vectors.items() if m in scores}

        if not handle.transition(AttemptState.FUSING):
            return self._cancelled_decision(handle)
        confidences = {m.value: s.confidence for m, s in scores.items()}
        fusion = self.fusion.fuse(confidences, handle.device_type.value)

        keystrokes = patterns.get(Modality.KEYSTROKE, [])
        flags = amplitude_flags(keystrokes, self.amplitude_config) if keystrokes else []
        report = self.fusion.uncertainty_report(
            confidences,
            history={m.value: self.learning.acceptance_probability(handle.user_id, m, v)
                     for m, v in vectors.items()},
            context=handle.depth.modality_weights,
            environmental_risk=handle.plan.risk_score / 100.0 + self.flag_risk * len(flags)
        )

        # past this point cancel() is a no-op
        if not handle.transition(AttemptState.DECIDED, expected=(AttemptState.FUSING,)):
            return self._cancelled_decision(handle)

        for modality, score in scores.items():
            self._log_patterns(handle.user_id, modality, patterns[modality], score.confidence)

        decision_fields = dict(
            success=fusion.success,
            confidence=fusion.confidence,
            risk_score=fusion.risk_score,
            per_modality_scores=confidences,
            modalities_used=[m.value for m in scores],
            user_id=handle.user_id,
            session_id=handle.session_id,
            risk_level=fusion.risk_level,
            uncertainty=report,
            excluded_modalities=excluded,
            flags=flags
        )

        results = self.learning.learn(handle.user_id, vectors, fusion.success, fusion.confidence)
        self.learning.update_model_weights(handle.user_id, vectors, fusion.success)
        enrolled = [m.value for m, r in results.items() if r.outcome == LearningOutcome.BOOTSTRAPPED]
        learned = any(r.outcome in (LearningOutcome.BLENDED, LearningOutcome.BOOTSTRAPPED)
                      for r in results.values())
        handle.transition(AttemptState.LEARNING if learned else AttemptState.REJECTED,
                          expected=(AttemptState.DECIDED,))

        decision = AuthDecision(enrolled_modalities=enrolled, **decision_fields)
        self._record_attempt(handle.user_id, decision)

        logger.info(f"Authentication for user {handle.user_id}: success={decision.success} "
                    f"confidence={decision.confidence:.1f} risk={decision.risk_score:.1f} "
                    f"modalities={decision.modalities_used}")
        return decision

    def _collect(self, handle: SessionHandle):
        """Close channels, join capturers with a timeout and gather their patterns"""
        for channel in handle.channels.values():
            channel.close()

        done, _ = wait(list(handle.futures.values()), timeout=self.join_timeout_ms / 1000.0)

        patterns: Dict[Modality, List[Pattern]] = {}
        excluded: Dict[str, str] = {}
        for modality, future in handle.futures.items():
            capturer = handle.capturers[modality]
            if future not in done:
                error = CaptureTimeout(f"{modality.value} capture did not finish within "
                                       f"{self.join_timeout_ms}ms", modality=modality.value)
                logger.warning(str(error))
                excluded[modality.value] = error.kind
                future.cancel()
                capturer.cancel()
                continue

            exception = future.exception()
            if exception is not None:
                logger.error(f"{modality.value} capture failed: {exception}")
                excluded[modality.value] = 'capture_error'
                capturer.cancel()
                continue

            patterns[modality] = capturer.stop()
        return patterns, excluded

    def _cancel_capture(self, handle: SessionHandle):
        handle.cancel_event.set()
        for channel in handle.channels.values():
            channel.close()
        for capturer in handle.capturers.values():
            try:
                capturer.cancel()
            except Exception as e:
                logger.error(f"Failed to cancel {capturer.modality.value} capturer: {e}")

    def _log_patterns(self, user_id: str, modality: Modality, patterns: List[Pattern], score: float):
        try:
            self.profile_store.append_pattern_logs(user_id, modality, patterns, score)
        except Exception as e:
            logger.error(f"Pattern log rejected for user {user_id}: {e}")

    def _cancelled_decision(self, handle: SessionHandle) -> AuthDecision:
        logger.info(f"Session {handle.session_id} cancelled before a decision; nothing learned")
        return self._failed_decision(handle, {'session': 'cancelled'})

    def _failed_decision(self, handle: SessionHandle, excluded: Dict[str, str]) -> AuthDecision:
        return AuthDecision(
            success=False,
            confidence=0.0,
            risk_score=100.0,
            per_modality_scores={},
            modalities_used=[],
            user_id=handle.user_id,
            session_id=handle.session_id,
            risk_level=RiskLevel.CRITICAL,
            excluded_modalities=excluded
        )

    def _default_context(self, user_id: str, device_type: DeviceType) -> SamplingContext:
        history = self._attempts.get(user_id) or AttemptHistory()
        return SamplingContext.at(
            device_type=device_type,
            last_confidence=history.last_confidence,
            recent_failures=history.recent_failures
        )

    def _record_attempt(self, user_id: str, decision: AuthDecision):
        with self.locks.hold(user_id):
            history = self._attempts.setdefault(user_id, AttemptHistory())
            history.last_confidence = decision.confidence
            history.outcomes.append(decision.success)

    def _forget(self, handle: SessionHandle):
        with self._sessions_lock:
            self._sessions.pop(handle.session_id, None)
