import pytest

from hnreader.services.ranker import decay_score


class TestDecayScore:
    """Score formula: (score - 1) / (age_hours + 2) ^ 1.5"""

    def test_fresh_story(self):
        assert decay_score(100, 0) == pytest.approx(35.0, abs=0.01)

    def test_day_old_story(self):
        assert decay_score(100, 22) == pytest.approx(0.842, abs=0.001)

    def test_older_story_scores_lower(self):
        assert decay_score(100, 1) > decay_score(100, 10) > decay_score(100, 100)

    def test_single_point_scores_zero(self):
        assert decay_score(1, 5) == 0

    def test_zero_score_is_negative_not_clamped(self):
        assert decay_score(0, 0) < 0
