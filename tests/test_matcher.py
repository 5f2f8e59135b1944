"""Tests for behavioral_auth.core.matcher."""
import numpy as np
import pytest

from behavioral_auth.core.errors import TemplateCorrupt
from behavioral_auth.core.matcher import TemplateMatcher, cosine_similarity
from behavioral_auth.models.patterns import Modality
from behavioral_auth.services.profile_store import InMemoryProfileStore

K = Modality.KEYSTROKE


@pytest.fixture
def matcher(store):
    return TemplateMatcher({}, store)


class TestCosineSimilarity:
    """Test the similarity primitive."""

    def test_identical(self):
        v = np.arange(1, 6, dtype=float)
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_shape_mismatch(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0


class TestCompare:
    """Test template comparison."""

    def test_cold_start_scores_zero_similarity(self, matcher):
        score = matcher.score('alice', K, np.ones(27))
        assert score.cold_start
        assert score.similarity == 0.0
        assert score.anomaly_score == 0.0
        assert score.confidence == pytest.approx(30.0)

    def test_similarity_clipped_to_unit_interval(self, matcher):
        matcher.set_template('alice', K, np.ones(27))
        assert matcher.compare('alice', K, -np.ones(27)) == 0.0
        assert matcher.compare('alice', K, 2 * np.ones(27)) == pytest.approx(1.0)

    def test_confidence_blend(self, matcher):
        assert matcher.confidence(1.0, 0.0) == pytest.approx(100.0)
        assert matcher.confidence(0.5, 0.5) == pytest.approx(50.0)
        assert matcher.confidence(0.0, 1.0) == 0.0


class TestAnomalyPool:
    """Test nearest-neighbour anomaly scoring."""

    def test_first_vector_seeds_pool(self, matcher):
        assert matcher.anomaly_score('alice', K, np.ones(27)) == 0.0
        assert len(matcher.pool('alice', K)) == 1

    def test_pool_is_bounded(self, matcher):
        base = np.ones(27)
        for i in range(60):
            vector = base.copy()
            vector[0] += 0.01 * i
            matcher.anomaly_score('alice', K, vector)

        pool = matcher.pool('alice', K)
        assert len(pool) == 50
        assert pool[0][0] == pytest.approx(1.1)

    def test_outlier_not_admitted(self, matcher):
        matcher.anomaly_score('alice', K, np.ones(27))
        score = matcher.anomaly_score('alice', K, -np.ones(27))
        assert score == 1.0
        assert len(matcher.pool('alice', K)) == 1

    def test_users_have_separate_pools(self, matcher):
        matcher.anomaly_score('alice', K, np.ones(27))
        assert matcher.pool('bob', K) == []


class TestTemplateStorage:
    """Test template persistence and validation."""

    def test_set_template_persists(self, matcher, store):
        matcher.set_template('alice', K, np.full(27, 2.0))
        record = store.load_template('alice', K)
        np.testing.assert_array_equal(record.vector, np.full(27, 2.0))
        assert record.update_count == 1
        assert record.updated_at is not None

    def test_template_loaded_lazily(self, store):
        store.save_template('alice', K, np.full(27, 3.0))
        matcher = TemplateMatcher({}, store)
        assert matcher.has_template('alice', K)
        np.testing.assert_array_equal(matcher.get_template('alice', K).vector, np.full(27, 3.0))

    def test_wrong_dimension_is_corrupt(self, matcher):
        with pytest.raises(TemplateCorrupt):
            matcher._validate(K, np.zeros(10))

    def test_corrupt_template_resets_to_cold_start(self):
        store = InMemoryProfileStore()
        store.save_template('alice', K, np.ones(10))
        matcher = TemplateMatcher({}, store)
        assert not matcher.has_template('alice', K)
        assert matcher.score('alice', K, np.ones(27)).cold_start

    def test_reset(self, matcher):
        matcher.set_template('alice', K, np.ones(27))
        matcher.anomaly_score('alice', K, np.ones(27))
        matcher.reset('alice', K)
        assert not matcher.has_template('alice', K)
        assert matcher.pool('alice', K) == []
