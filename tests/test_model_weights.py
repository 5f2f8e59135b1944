"""Tests for behavioral_auth.models.weights."""
import pytest

from behavioral_auth.models import weights as model_weights
from behavioral_auth.models.weights import ModelWeights


@pytest.fixture
def initial():
    return model_weights.initial_weights('keystroke', 4, learning_rate=0.1, momentum=0.5)


class TestUpdate:
    """Test momentum updates."""

    def test_update_returns_new_version(self, initial):
        updated = model_weights.update(initial, [1.0, 0.0, 0.0, 0.0], error=1.0)
        assert initial.version == 0
        assert initial.values == (0.0, 0.0, 0.0, 0.0)
        assert updated.version == 1
        assert updated.values[0] == pytest.approx(0.1)
        assert updated.velocity[0] == pytest.approx(0.1)

    def test_momentum_carries_velocity(self, initial):
        first = model_weights.update(initial, [1.0, 0.0, 0.0, 0.0], error=1.0)
        second = model_weights.update(first, [0.0, 1.0, 0.0, 0.0], error=0.0)
        assert second.velocity[0] == pytest.approx(0.05)
        assert second.values[0] == pytest.approx(0.15)

    def test_features_are_normalized(self, initial):
        small = model_weights.update(initial, [1.0, 0.0, 0.0, 0.0], error=1.0)
        large = model_weights.update(initial, [100.0, 0.0, 0.0, 0.0], error=1.0)
        assert small.values == large.values


class TestPredict:
    """Test sigmoid prediction."""

    def test_zero_weights_predict_half(self, initial):
        assert model_weights.predict(initial, [3.0, 1.0, 2.0, 0.0]) == pytest.approx(0.5)

    def test_extreme_weights_do_not_overflow(self):
        weights = ModelWeights('touch', values=(1e6,), velocity=(0.0,))
        assert model_weights.predict(weights, [1.0]) == pytest.approx(1.0)
        assert model_weights.predict(weights, [-1.0]) == pytest.approx(0.0)


class TestLearningRate:
    """Test learning rate adaptation."""

    def test_improving_trend_speeds_up(self, initial):
        assert model_weights.adapt_learning_rate(initial, [0.5, 0.6, 0.7]).learning_rate == pytest.approx(0.01)

    def test_declining_trend_backs_off(self):
        weights = model_weights.initial_weights('keystroke', 2, learning_rate=0.001)
        adapted = model_weights.adapt_learning_rate(weights, [0.7, 0.6, 0.5])
        assert adapted.learning_rate == pytest.approx(0.00095)

    def test_short_trend_is_ignored(self, initial):
        assert model_weights.adapt_learning_rate(initial, [0.5, 0.9]) is initial

    def test_round_trip(self, initial):
        updated = model_weights.update(initial, [1.0, 2.0, 3.0, 4.0], error=0.5)
        assert ModelWeights.from_dict(updated.to_dict()) == updated
