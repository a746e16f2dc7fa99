"""Recording-session state and the event handling that drives it.

A `SessionController` has one owner thread (the terminal loop or the server's
event loop). Recognition results, suggestion completions and timer ticks all
arrive as events and are applied through `handle`, one at a time.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from session_limits import SessionLimitReached, SessionRateLimiter
from speech_metrics import (
    CONTEXT_WORDS,
    SpeechRateEstimator,
    count_words,
    last_words,
    should_trigger,
)
from suggestion_client import DEFAULT_PROVIDER, fetch_suggestions

logger = logging.getLogger(__name__)

MAX_SESSION_SECONDS = float(os.getenv("MAX_SESSION_SECONDS", "180"))
MAX_DISPLAYED_SUGGESTIONS = 5
IDLE_TICK = 0.25


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PartialTranscript:
    text: str


@dataclass(frozen=True)
class RecognitionEnded:
    error: str | None = None


@dataclass(frozen=True)
class SuggestionsReady:
    seq: int
    lines: list[str]


@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class StopRequested:
    pass


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

@dataclass
class SessionState:
    is_recording: bool = False
    recognized_text: str = ""
    full_transcript: str = ""
    words_per_minute: int = 0
    total_words: int = 0
    last_queried_count: int = 0
    suggestions: list[str] = field(default_factory=list)
    suggestions_seq: int = 0
    issued_seq: int = 0
    is_loading: bool = False
    started_at: float | None = None
    stop_reason: str | None = None
    recording_stopped: bool = False


Dispatch = Callable[[int, str], None]


class SessionController:
    def __init__(
        self,
        limiter: SessionRateLimiter,
        dispatch: Dispatch,
        clock: Callable[[], float] = time.monotonic,
        max_seconds: float = MAX_SESSION_SECONDS,
    ):
        self.limiter = limiter
        self.dispatch = dispatch
        self.clock = clock
        self.max_seconds = max_seconds
        self.state = SessionState()
        self.estimator = SpeechRateEstimator()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if not self.limiter.can_start_session():
            raise SessionLimitReached(self.limiter.daily_limit)
        self.limiter.record_session()

        # Sequence numbers keep counting across sessions of one controller.
        issued = self.state.issued_seq
        self.state = SessionState(
            is_recording=True, started_at=self.clock(), issued_seq=issued
        )
        self.estimator.reset()
        logger.info("Recording started (limit %.0fs)", self.max_seconds)

    def _stop(self, reason: str) -> None:
        if not self.state.is_recording:
            return
        s = self.state
        s.full_transcript = s.recognized_text
        s.recognized_text = ""
        s.suggestions = []
        s.is_recording = False
        s.is_loading = False
        s.last_queried_count = 0
        s.stop_reason = reason
        s.recording_stopped = True
        logger.info("Recording stopped (%s), %d words", reason, count_words(s.full_transcript))

    # -- events ------------------------------------------------------------

    def handle(self, event: Any) -> dict[str, Any]:
        if isinstance(event, PartialTranscript):
            self._on_partial(event.text)
        elif isinstance(event, SuggestionsReady):
            self._on_suggestions(event)
        elif isinstance(event, RecognitionEnded):
            if event.error:
                logger.warning("Recognition error: %s", event.error)
            self._stop("error" if event.error else "final")
        elif isinstance(event, Tick):
            self._on_tick(event.now)
        elif isinstance(event, StopRequested):
            self._stop("user")
        else:
            raise TypeError(f"unsupported session event: {event!r}")
        return self.snapshot()

    def _on_partial(self, text: str) -> None:
        s = self.state
        if not s.is_recording:
            return
        s.recognized_text = text
        s.words_per_minute = self.estimator.observe(text, self.clock())
        s.total_words = count_words(text)

        if should_trigger(s.total_words, s.last_queried_count):
            s.issued_seq += 1
            s.is_loading = True
            s.last_queried_count = s.total_words
            logger.debug("Suggestion #%d at %d words", s.issued_seq, s.total_words)
            self.dispatch(s.issued_seq, last_words(text, CONTEXT_WORDS))

    def _on_suggestions(self, event: SuggestionsReady) -> None:
        s = self.state
        if not s.is_recording:
            logger.debug("Dropping suggestion #%d after stop", event.seq)
            return
        if event.seq < s.suggestions_seq:
            logger.debug("Suggestion #%d completed after #%d", event.seq, s.suggestions_seq)
        s.suggestions = list(event.lines)
        s.suggestions_seq = event.seq
        s.is_loading = False

    def _on_tick(self, now: float) -> None:
        s = self.state
        if s.is_recording and s.started_at is not None and now - s.started_at >= self.max_seconds:
            self._stop("timeout")

    # -- consumers ---------------------------------------------------------

    def run(self, events: queue.Queue, on_update: Callable[[dict[str, Any]], None] | None = None) -> None:
        """Apply events from `events` until the session stops."""
        while self.state.is_recording:
            try:
                event = events.get(timeout=IDLE_TICK)
            except queue.Empty:
                event = Tick(self.clock())
            snap = self.handle(event)
            if on_update is not None:
                on_update(snap)

    def snapshot(self) -> dict[str, Any]:
        s = self.state
        return {
            "is_recording": s.is_recording,
            "recognized_text": s.recognized_text,
            "full_transcript": s.full_transcript,
            "words_per_minute": s.words_per_minute,
            "total_words": s.total_words,
            "suggestions": s.suggestions[:MAX_DISPLAYED_SUGGESTIONS],
            "suggestions_seq": s.suggestions_seq,
            "is_loading": s.is_loading,
            "stop_reason": s.stop_reason,
            "recording_stopped": s.recording_stopped,
            "elapsed": (self.clock() - s.started_at) if s.is_recording and s.started_at else 0.0,
        }


# ---------------------------------------------------------------------------
# Background suggestion requests
# ---------------------------------------------------------------------------

class SuggestionWorker:
    """Runs each suggestion request on its own thread and posts the result back."""

    def __init__(self, events: queue.Queue, provider: str = DEFAULT_PROVIDER):
        self.events = events
        self.provider = provider

    def _run(self, seq: int, context: str) -> None:
        lines = fetch_suggestions(context, self.provider)
        self.events.put(SuggestionsReady(seq, lines))

    def __call__(self, seq: int, context: str) -> None:
        threading.Thread(target=self._run, args=(seq, context), daemon=True).start()
