"""Tests for behavioral_auth.core.sampling_controller."""
from dataclasses import replace
from datetime import datetime

import pytest

from behavioral_auth.core.sampling_controller import (
    AdaptiveSamplingController, AnalysisDepth, BehaviorState, DeviceType,
    SamplingContext, UserContextProfile, update_profile
)
from behavioral_auth.services.profile_store import InMemoryProfileStore


@pytest.fixture
def controller():
    return AdaptiveSamplingController({}, InMemoryProfileStore())


class TestPlan:
    """Test sampling duration planning."""

    def test_usual_context_is_short(self, controller, weekday_context):
        plan = controller.plan('alice', weekday_context)
        assert plan.risk_score == 0.0
        assert plan.risk_multiplier == 0.8
        assert plan.base_duration_ms == 2400.0
        assert plan.min_ms == 1000.0
        assert plan.max_ms == 8000.0

    def test_unusual_time_adds_risk(self, controller):
        sunday_night = SamplingContext.at(datetime(2024, 3, 10, 3, 0), session_duration=60000.0)
        plan = controller.plan('alice', sunday_night)
        assert plan.risk_score == 20.0
        assert plan.adjustments['time_of_day'] == 1.3
        assert plan.base_duration_ms == 3900.0

    def test_duration_monotonic_in_failures(self, controller, weekday_context):
        durations = [
            controller.plan(f'user-{failures}', replace(weekday_context, recent_failures=failures)).base_duration_ms
            for failures in range(8)
        ]
        assert durations == sorted(durations)
        assert durations[-1] > durations[0]

    def test_duration_clamped_to_max(self, controller):
        hostile = SamplingContext(
            time_of_day=3, day_of_week=7, behavior_state=BehaviorState.DISTRACTED,
            network_stability=0.9, location_consistency=0.1, session_duration=0.0,
            interaction_frequency=50.0, last_confidence=20.0, recent_failures=5
        )
        plan = controller.plan('mallory', hostile)
        assert plan.risk_score == 100.0
        assert plan.base_duration_ms == 8000.0

    def test_duration_clamped_to_min(self, weekday_context):
        controller = AdaptiveSamplingController({'base_duration_ms': 1000})
        fast = replace(weekday_context, behavior_state=BehaviorState.RUSHED,
                       device_type=DeviceType.MOBILE, session_duration=400000.0)
        assert controller.plan('bob', fast).base_duration_ms == 1000.0

    def test_history_is_bounded(self, weekday_context):
        controller = AdaptiveSamplingController({'history_size': 3})
        for _ in range(5):
            controller.plan('alice', weekday_context)
        history = controller.sampling_history('alice')
        assert len(history) == 3
        assert history[-1]['duration_ms'] == 2400.0


class TestProfile:
    """Test context profile learning and persistence."""

    def test_update_profile_is_pure(self):
        profile = UserContextProfile()
        context = SamplingContext.at(datetime(2024, 3, 9, 22, 0), interaction_frequency=15.0)
        updated = update_profile(profile, context)
        assert profile.update_count == 0
        assert updated.update_count == 1
        assert 22 in updated.active_hours
        assert 6 in updated.active_days
        assert updated.avg_interaction_frequency == pytest.approx(6.0)

    def test_plan_persists_profile(self):
        store = InMemoryProfileStore()
        controller = AdaptiveSamplingController({}, store)
        controller.plan('alice', SamplingContext.at(datetime(2024, 3, 9, 22, 0)))
        stored = store.load_context_profile('alice')
        assert stored is not None
        assert stored.update_count == 1
        assert 22 in stored.active_hours

    def test_profile_loaded_from_store(self):
        store = InMemoryProfileStore()
        store.save_context_profile('alice', UserContextProfile(active_hours=(2, 3), update_count=7))
        controller = AdaptiveSamplingController({}, store)
        assert controller.profile('alice').active_hours == (2, 3)

    def test_profile_round_trip(self):
        profile = UserContextProfile(active_hours=(9, 10), active_days=(1,), update_count=3)
        assert UserContextProfile.from_dict(profile.to_dict()) == profile


class TestRecommendations:
    """Test advisory recommendations."""

    def test_does_not_touch_profile_or_history(self, controller, weekday_context):
        controller.plan('alice', weekday_context)
        before = controller.profile('alice')

        troubled = replace(weekday_context, network_stability=0.5, recent_failures=2, last_confidence=40.0)
        result = controller.recommendations('alice', troubled)

        assert controller.profile('alice') == before
        assert len(controller.sampling_history('alice')) == 1
        assert 'Unstable network connection' in result.risk_factors
        assert 'Recent authentication failures' in result.risk_factors
        assert 'Low recent confidence scores' in result.risk_factors
        assert result.confidence_prediction == 60.0

    def test_mobile_optimizations(self, controller, weekday_context):
        mobile = replace(weekday_context, device_type=DeviceType.MOBILE, behavior_state=BehaviorState.RUSHED)
        result = controller.recommendations('carol', mobile)
        assert 'Touch-optimized biometric analysis' in result.optimizations
        assert 'Streamlined capture for efficiency' in result.optimizations
        assert result.to_dict()['recommended_duration_ms'] == result.recommended_duration_ms


class TestDepth:
    """Test analysis depth and modality weights."""

    def test_low_confidence_is_deep(self, controller, weekday_context):
        depth = controller.depth(weekday_context, 40.0)
        assert depth.analysis_depth == AnalysisDepth.DEEP
        assert depth.frequency_multiplier == 1.5

    def test_high_confidence_is_shallow(self, controller, weekday_context):
        depth = controller.depth(weekday_context, 95.0)
        assert depth.analysis_depth == AnalysisDepth.SHALLOW

    def test_suspicious_forces_deep(self, controller, weekday_context):
        suspicious = replace(weekday_context, behavior_state=BehaviorState.SUSPICIOUS)
        depth = controller.depth(suspicious, 95.0)
        assert depth.analysis_depth == AnalysisDepth.DEEP
        assert depth.frequency_multiplier == pytest.approx(0.91)

    def test_modality_weights_follow_device(self, controller, weekday_context):
        desktop = controller.depth(weekday_context, 70.0).modality_weights
        assert desktop['pointer'] == 1.0
        assert desktop['touch'] == 0.0

        mobile = controller.depth(replace(weekday_context, device_type=DeviceType.MOBILE), 70.0).modality_weights
        assert mobile['touch'] == 1.0
        assert mobile['pointer'] == 0.0
        assert mobile['keystroke'] == 0.5
