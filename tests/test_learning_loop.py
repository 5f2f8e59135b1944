"""Tests for behavioral_auth.core.learning_loop."""
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from behavioral_auth.core.learning_loop import (
    ContinuousLearningLoop, LearningOutcome, ProfileStatus, blend, blend_rate
)
from behavioral_auth.core.matcher import TemplateMatcher
from behavioral_auth.models.patterns import Modality

K = Modality.KEYSTROKE
T0 = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def matcher(store):
    return TemplateMatcher({}, store)


@pytest.fixture
def loop(matcher):
    return ContinuousLearningLoop({}, matcher)


def _enroll(matcher, vector=None):
    matcher.set_template('alice', K, np.ones(27) if vector is None else vector, updated_at=T0)


class TestBlend:
    """Test the blend primitives."""

    def test_blend(self):
        result = blend(np.zeros(3), np.ones(3), 0.1)
        np.testing.assert_allclose(result, np.full(3, 0.1))

    @pytest.mark.parametrize('hours,rate', [(0.0, 0.01), (0.12, 0.01), (1.0, 1 / 24), (2.4, 0.1), (500.0, 0.1)])
    def test_rate_bounds(self, hours, rate):
        assert blend_rate(hours) == pytest.approx(rate)


class TestLearn:
    """Test template adaptation."""

    def test_first_vector_bootstraps_even_on_failure(self, loop, matcher):
        results = loop.learn('alice', {K: np.ones(27)}, success=False, confidence=30.0)
        assert results[K].outcome == LearningOutcome.BOOTSTRAPPED
        assert matcher.has_template('alice', K)

    def test_zero_vector_does_not_bootstrap(self, loop, matcher):
        results = loop.learn('alice', {K: np.zeros(27)}, success=True, confidence=90.0)
        assert results[K].outcome == LearningOutcome.SKIPPED
        assert not matcher.has_template('alice', K)

    def test_failed_attempt_leaves_template(self, loop, matcher):
        _enroll(matcher)
        results = loop.learn('alice', {K: np.full(27, 2.0)}, success=False, confidence=90.0)
        assert results[K].outcome == LearningOutcome.SKIPPED
        np.testing.assert_array_equal(matcher.get_template('alice', K).vector, np.ones(27))

    def test_low_confidence_success_is_skipped(self, loop, matcher):
        _enroll(matcher)
        results = loop.learn('alice', {K: np.full(27, 2.0)}, success=True, confidence=70.0)
        assert results[K].outcome == LearningOutcome.SKIPPED

    def test_drift_protection_keeps_template(self, loop, matcher):
        _enroll(matcher)
        results = loop.learn('alice', {K: -np.ones(27)}, success=True, confidence=95.0, now=T0 + timedelta(hours=1))
        assert results[K].outcome == LearningOutcome.DRIFT_REJECTED
        np.testing.assert_array_equal(matcher.get_template('alice', K).vector, np.ones(27))

    def test_blend_uses_time_since_update(self, loop, matcher):
        _enroll(matcher)
        now = T0 + timedelta(hours=1)
        results = loop.learn('alice', {K: np.full(27, 2.0)}, success=True, confidence=90.0, now=now)

        assert results[K].outcome == LearningOutcome.BLENDED
        assert results[K].rate == pytest.approx(1 / 24)
        template = matcher.get_template('alice', K)
        np.testing.assert_allclose(template.vector, np.full(27, 1 + 1 / 24))
        assert template.updated_at == now

    def test_naive_timestamps_are_utc(self, loop, matcher):
        matcher.set_template('alice', K, np.ones(27), updated_at=T0.replace(tzinfo=None))
        results = loop.learn('alice', {K: np.full(27, 2.0)}, success=True, confidence=90.0,
                             now=T0 + timedelta(hours=2))
        assert results[K].rate == pytest.approx(2 / 24)

    def test_profile_locks_after_repeated_drift(self, loop, matcher):
        _enroll(matcher)
        for _ in range(3):
            loop.learn('alice', {K: -np.ones(27)}, success=True, confidence=95.0)

        results = loop.learn('alice', {K: np.full(27, 2.0)}, success=True, confidence=95.0)
        assert results[K].outcome == LearningOutcome.LOCKED
        assert loop.metrics('alice', K).status == ProfileStatus.LOCKED
        np.testing.assert_array_equal(matcher.get_template('alice', K).vector, np.ones(27))

    def test_accepted_update_clears_rejection_streak(self, loop, matcher):
        _enroll(matcher)
        loop.learn('alice', {K: -np.ones(27)}, success=True, confidence=95.0)
        loop.learn('alice', {K: np.ones(27)}, success=True, confidence=95.0)
        assert loop.metrics('alice', K).drift_rejections == 0

    def test_reset_profile(self, loop, matcher):
        loop.learn('alice', {K: np.ones(27)}, success=True, confidence=95.0)
        loop.reset_profile('alice', K)
        assert not matcher.has_template('alice', K)
        assert loop.metrics('alice', K).pattern_count == 0


class TestMetrics:
    """Test learning progress metrics."""

    def test_new_user(self, loop):
        metrics = loop.metrics('nobody', K)
        assert metrics.pattern_count == 0
        assert metrics.status == ProfileStatus.LEARNING
        assert metrics.adaptive_confidence == 50.0

    def test_stable_user_becomes_active(self, loop):
        for _ in range(11):
            loop.learn('alice', {K: np.ones(27)}, success=True, confidence=95.0)
        metrics = loop.metrics('alice', K)
        assert metrics.pattern_count == 11
        assert metrics.stability_score == pytest.approx(1.0)
        assert metrics.status == ProfileStatus.ACTIVE
        assert metrics.adaptive_confidence == 95.0
        assert metrics.confidence_growth == pytest.approx(0.55)
        assert metrics.to_dict()['status'] == 'active'


class TestModelWeights:
    """Test per-user weight updates."""

    def test_initial_probability(self, loop):
        assert loop.acceptance_probability('alice', K, np.ones(27)) == pytest.approx(0.5)

    def test_successes_raise_probability(self, loop):
        for _ in range(5):
            updated = loop.update_model_weights('alice', {K: np.ones(27)}, success=True)
        assert updated[K].version == 5
        assert loop.acceptance_probability('alice', K, np.ones(27)) > 0.5
