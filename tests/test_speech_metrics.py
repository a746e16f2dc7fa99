"""Tests for speech_metrics: word counting, rate window, trigger and pace bands."""

import pytest

from speech_metrics import (
    SpeechRateEstimator,
    count_words,
    last_words,
    pace_feedback,
    should_trigger,
)


def _text(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


class TestTranscriptHelpers:
    def test_count_words_splits_on_any_whitespace(self):
        assert count_words("  hello   there\nfriend\t ok ") == 4
        assert count_words("") == 0

    def test_last_words_keeps_tail(self):
        text = _text(60)
        tail = last_words(text, 50)
        assert tail.split() == text.split()[10:]

    def test_last_words_short_text_unchanged(self):
        assert last_words("just a few   words") == "just a few words"


class TestShouldTrigger:
    @pytest.mark.parametrize("total,last,expected", [
        (15, 0, True),
        (30, 15, True),
        (15, 15, False),
        (0, 0, False),
        (14, 0, False),
        (16, 0, False),
        (30, 45, False),
    ])
    def test_trigger_table(self, total, last, expected):
        assert should_trigger(total, last) is expected

    def test_fires_once_per_threshold(self):
        """Walking word counts upward fires exactly at 15, 30, 45."""
        last = 0
        fired = []
        for total in [3, 9, 15, 15, 16, 22, 30, 30, 31, 44, 45, 47]:
            if should_trigger(total, last):
                fired.append(total)
                last = total
        assert fired == [15, 30, 45]


class TestSpeechRateEstimator:
    def test_window_prunes_old_samples(self):
        est = SpeechRateEstimator()
        est.observe("", now=0.0)
        est.observe(_text(20), now=5.0)
        rate = est.observe(_text(40), now=11.0)

        assert [s.timestamp for s in est.samples] == [5.0, 11.0]
        assert rate == 120

    def test_single_sample_keeps_previous_rate(self):
        est = SpeechRateEstimator()
        assert est.observe(_text(5), now=0.0) == 0
        est.observe(_text(15), now=2.0)
        assert est.words_per_minute == 60

        # A long pause leaves only the new sample in the window
        assert est.observe(_text(16), now=30.0) == 60
        assert len(est.samples) == 1

    def test_rate_is_integer_truncated(self):
        est = SpeechRateEstimator()
        est.observe(_text(0), now=0.0)
        assert est.observe(_text(7), now=3.0) == 42

    def test_sample_at_window_edge_is_kept(self):
        est = SpeechRateEstimator()
        est.observe(_text(10), now=0.0)
        est.observe(_text(30), now=10.0)
        assert len(est.samples) == 2
        assert est.words_per_minute == 120

    def test_revised_partial_does_not_shrink_window(self):
        est = SpeechRateEstimator()
        est.observe(_text(10), now=0.0)
        est.observe(_text(8), now=1.0)
        counts = [s.cumulative_word_count for s in est.samples]
        assert counts == sorted(counts)
        assert est.words_per_minute == 0

    def test_reset(self):
        est = SpeechRateEstimator()
        est.observe(_text(3), now=0.0)
        est.observe(_text(9), now=1.0)
        est.reset()
        assert est.samples == []
        assert est.words_per_minute == 0


class TestPaceFeedback:
    def test_optimal(self):
        fb = pace_feedback(140)
        assert fb.zone == "optimal"
        assert fb.intensity == 1.0

    def test_acceptable_band(self):
        fb = pace_feedback(120)
        assert fb.zone == "acceptable"
        assert fb.intensity == pytest.approx(0.75)

    def test_off_pace_fades_with_distance(self):
        near = pace_feedback(170)
        far = pace_feedback(260)
        assert near.zone == far.zone == "off_pace"
        assert near.intensity == pytest.approx(0.875)
        assert far.intensity == pytest.approx(0.5)
