"""Live speech metrics: word counting, words-per-minute and the suggestion trigger."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
RATE_WINDOW_SECONDS = 10
TRIGGER_EVERY_WORDS = 15
CONTEXT_WORDS = 50

OPTIMAL_RATE = 140.0
ACCEPTABLE_RATE = (120.0, 160.0)
RATE_FADE = 40.0


# ---------------------------------------------------------------------------
# Transcript helpers
# ---------------------------------------------------------------------------

def count_words(text: str) -> int:
    return len(text.split())


def last_words(text: str, limit: int = CONTEXT_WORDS) -> str:
    """Return the last `limit` whitespace-separated tokens of `text`."""
    return " ".join(text.split()[-limit:])


def should_trigger(total_words: int, last_queried_count: int) -> bool:
    return total_words > last_queried_count and total_words % TRIGGER_EVERY_WORDS == 0


# ---------------------------------------------------------------------------
# Speech-rate estimation
# ---------------------------------------------------------------------------

@dataclass
class TranscriptSample:
    timestamp: float
    cumulative_word_count: int


@dataclass
class SpeechRateEstimator:
    """Words-per-minute over a sliding window of (time, word count) samples.

    Every partial transcript appends a sample. Samples more than
    `window_seconds` older than the newest one are dropped, and the rate is
    the growth across what is left, scaled from the window to a minute.
    """

    window_seconds: int = RATE_WINDOW_SECONDS
    words_per_minute: int = 0
    samples: list[TranscriptSample] = field(default_factory=list)

    def observe(self, current_text: str, now: float | None = None) -> int:
        if now is None:
            now = time.monotonic()
        total = count_words(current_text)

        # A revised partial can shrink; keep the window non-decreasing.
        if self.samples and total < self.samples[-1].cumulative_word_count:
            total = self.samples[-1].cumulative_word_count

        self.samples.append(TranscriptSample(now, total))
        self.samples = [
            s for s in self.samples if now - s.timestamp <= self.window_seconds
        ]

        if len(self.samples) >= 2:
            words_in_window = total - self.samples[0].cumulative_word_count
            self.words_per_minute = (words_in_window * 60) // self.window_seconds
        return self.words_per_minute

    def reset(self) -> None:
        self.samples = []
        self.words_per_minute = 0


# ---------------------------------------------------------------------------
# Pace feedback
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaceFeedback:
    zone: str  # "optimal", "acceptable" or "off_pace"
    intensity: float


def pace_feedback(rate: float) -> PaceFeedback:
    low, high = ACCEPTABLE_RATE
    if low <= rate <= high:
        proximity = abs(rate - OPTIMAL_RATE)
        if proximity == 0:
            return PaceFeedback("optimal", 1.0)
        alpha = max(0.0, 1 - proximity / RATE_FADE)
        return PaceFeedback("acceptable", alpha * 0.5 + 0.5)

    distance = min(abs(rate - low), abs(rate - high))
    alpha = max(0.0, 1 - distance / RATE_FADE)
    return PaceFeedback("off_pace", alpha * 0.5 + 0.5)
