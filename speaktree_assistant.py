#!/usr/bin/env python3
"""SpeakTree: mic → faster-whisper partial transcripts → live pace + suggestions → analysis.

Keys while recording:
  q / Enter / ESC  stop recording (Ctrl-C too)
  g                fetch an interview question to practise with
"""

import argparse
import logging
import os
import queue
import re
import select
import sys
import termios
import threading
import time
import tty
from pathlib import Path

import numpy as np
import sounddevice as sd

from coach_session import (
    MAX_SESSION_SECONDS,
    PartialTranscript,
    RecognitionEnded,
    SessionController,
    StopRequested,
    SuggestionWorker,
)
from session_limits import JsonFileStore, SessionLimitReached, SessionRateLimiter
from speech_metrics import pace_feedback
from suggestion_client import DEFAULT_PROVIDER, PROVIDERS, fetch_interview_question
from transcript_analysis import TranscriptAnalysis, analyze

logger = logging.getLogger("speaktree")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SAMPLE_RATE = 16000
CHANNELS = 1
DTYPE = "int16"
BLOCK_SIZE = 1024
SILENCE_THRESHOLD = 500  # RMS threshold below which a clip is treated as silence
PARTIAL_INTERVAL = 1.5  # seconds between partial transcription passes
COMMIT_SECONDS = 10.0  # pending audio longer than this is committed to the transcript

WHISPER_MODEL = os.getenv("WHISPER_MODEL", "base.en")
STATE_PATH = Path(os.getenv("SPEAKTREE_STATE", str(Path.home() / ".speaktree" / "state.json")))
DEFAULT_OUTPUT_DIR = Path.home() / "Documents" / "speaktree"

KOKORO_MODEL_PATH = Path(__file__).parent / "models" / "kokoro-v1.0.onnx"
KOKORO_VOICES_PATH = Path(__file__).parent / "models" / "voices-v1.0.bin"
DEFAULT_VOICE = os.getenv("DEFAULT_VOICE", "af_heart")

# ---------------------------------------------------------------------------
# Terminal helpers for non-blocking key input
# ---------------------------------------------------------------------------

def _set_raw_mode(fd):
    old = termios.tcgetattr(fd)
    tty.setraw(fd)
    return old


def _restore_mode(fd, old):
    termios.tcsetattr(fd, termios.TCSADRAIN, old)


def _key_pressed(timeout=0.0):
    fd = sys.stdin.fileno()
    rlist, _, _ = select.select([fd], [], [], timeout)
    if rlist:
        return sys.stdin.read(1)
    return None


# ---------------------------------------------------------------------------
# Speech-to-Text (faster-whisper, partial results)
# ---------------------------------------------------------------------------

_whisper_model = None

# Whisper hallucinates these during silence or noise; ignore them
WHISPER_HALLUCINATIONS = {
    "", "you", "thank you", "thanks", "thank you.", "thanks.", "bye",
    "the end", "the end.", "thanks for watching", "thanks for watching.",
    "thank you for watching", "thank you for watching.",
    "please subscribe", "subscribe", "like and subscribe",
    "...", "…",
}


def _get_whisper(model_name: str = WHISPER_MODEL):
    global _whisper_model
    if _whisper_model is None:
        from faster_whisper import WhisperModel
        _whisper_model = WhisperModel(model_name, device="cpu", compute_type="int8")
    return _whisper_model


def transcribe(audio: np.ndarray) -> str:
    rms = np.sqrt(np.mean(audio.astype(np.float32) ** 2))
    if rms < SILENCE_THRESHOLD * 0.5:
        return ""

    audio_f32 = audio.astype(np.float32) / 32768.0
    segments, _ = _get_whisper().transcribe(
        audio_f32,
        language="en",
        beam_size=1,
        condition_on_previous_text=False,
    )
    text = " ".join(seg.text.strip() for seg in segments).strip()

    if text.lower().strip(".!? ") in WHISPER_HALLUCINATIONS:
        return ""
    return text


class PartialRecognizer:
    """Re-transcribes the uncommitted tail of the recording on every pass.

    The tail is committed once it grows past `COMMIT_SECONDS`, so each pass
    stays short while earlier words can still be revised for a while.
    """

    def __init__(self, commit_seconds: float = COMMIT_SECONDS):
        self.commit_seconds = commit_seconds
        self.committed = ""
        self.pending: list[np.ndarray] = []

    def add(self, block: np.ndarray) -> None:
        self.pending.append(block)

    def partial(self) -> str:
        if not self.pending:
            return self.committed
        audio = np.concatenate(self.pending, axis=0).flatten()
        text = transcribe(audio)
        if len(audio) / SAMPLE_RATE >= self.commit_seconds:
            self.committed = " ".join(t for t in (self.committed, text) if t)
            self.pending = []
            return self.committed
        return " ".join(t for t in (self.committed, text) if t)


def _recognize_loop(recognizer: PartialRecognizer, audio_q: queue.Queue,
                    events: queue.Queue, stop: threading.Event):
    last_text = ""
    try:
        while not stop.wait(PARTIAL_INTERVAL):
            got_audio = False
            while True:
                try:
                    recognizer.add(audio_q.get_nowait())
                    got_audio = True
                except queue.Empty:
                    break
            if not got_audio:
                continue
            text = recognizer.partial()
            if text and text != last_text:
                last_text = text
                events.put(PartialTranscript(text))
    except Exception as e:
        events.put(RecognitionEnded(error=str(e)))


# ---------------------------------------------------------------------------
# Keyboard listener
# ---------------------------------------------------------------------------

def _ask_question(provider: str):
    question = fetch_interview_question(provider)
    if question:
        print(f"\r\n  Suggested question: {question}\r\n", flush=True)
    else:
        print("\r\n  [No question available]\r\n", flush=True)


def _key_loop(events: queue.Queue, stop: threading.Event, provider: str):
    fd = sys.stdin.fileno()
    old_settings = _set_raw_mode(fd)
    try:
        while not stop.is_set():
            ch = _key_pressed(timeout=0.1)
            if ch in ("q", "\r", "\n", "\x1b", "\x03"):
                events.put(StopRequested())
                return
            if ch == "g":
                threading.Thread(target=_ask_question, args=(provider,), daemon=True).start()
    finally:
        _restore_mode(fd, old_settings)


# ---------------------------------------------------------------------------
# Live display
# ---------------------------------------------------------------------------

class LiveDisplay:
    def __init__(self):
        self.shown_seq = 0

    def __call__(self, snap: dict):
        if snap["suggestions_seq"] != self.shown_seq:
            self.shown_seq = snap["suggestions_seq"]
            print("\r\n  Suggestions:" + " " * 40 + "\r", flush=True)
            if not snap["suggestions"]:
                print("\r\n    (none)\r", flush=True)
            for line in snap["suggestions"]:
                print(f"\r\n    - {line}\r", flush=True)
            print("\r", flush=True)

        if snap["is_recording"]:
            pace = pace_feedback(snap["words_per_minute"])
            loading = "  thinking..." if snap["is_loading"] else ""
            print(
                f"\r  {snap['words_per_minute']:4d} wpm ({pace.zone})  "
                f"{snap['total_words']:4d} words  {snap['elapsed']:5.0f}s{loading}      ",
                end="", flush=True,
            )


# ---------------------------------------------------------------------------
# Recording session
# ---------------------------------------------------------------------------

def run_session(controller: SessionController, events: queue.Queue, provider: str) -> str:
    audio_q: queue.Queue = queue.Queue()
    stop = threading.Event()

    def _on_audio(indata, frames, time_info, status):
        if status:
            logger.debug("Input stream status: %s", status)
        audio_q.put(indata.copy())

    recognizer = PartialRecognizer()
    rec_thread = threading.Thread(
        target=_recognize_loop, args=(recognizer, audio_q, events, stop), daemon=True
    )
    key_thread = threading.Thread(target=_key_loop, args=(events, stop, provider), daemon=True)

    stream = sd.InputStream(
        samplerate=SAMPLE_RATE, channels=CHANNELS, dtype=DTYPE,
        blocksize=BLOCK_SIZE, callback=_on_audio,
    )
    print("\n  Recording... [q/Enter:stop  g:question]\n")
    stream.start()
    try:
        rec_thread.start()
        key_thread.start()
        controller.run(events, on_update=LiveDisplay())
    finally:
        stop.set()
        stream.stop()
        stream.close()
        key_thread.join(timeout=1.0)

    reason = controller.state.stop_reason
    if reason == "timeout":
        print(f"\n\n  [Stopped after {controller.max_seconds:.0f} seconds]")
    elif reason == "error":
        print("\n\n  [Speech recognition stopped]")
    else:
        print("\n\n  Stopped.")
    return controller.state.full_transcript


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------

def print_analysis(result: TranscriptAnalysis):
    print("=" * 60)
    print("  Analysis")
    print("=" * 60)
    if result.flesch_score is None:
        print("  Flesch score: n/a")
    else:
        print(f"  Flesch score: {result.flesch_score:.2f}")
    print(f"  {result.explanation}")
    print(f"\n  Words: {result.word_count}")

    if result.top_words:
        print("\n  Top word frequencies:")
        top = result.top_words[0][1]
        for word, count in result.top_words:
            bar = "#" * max(1, round(count / top * 30))
            print(f"    {word:<15} {count:4d}  {bar}")

    if result.questions:
        print("\n  Questions you asked:")
        for q in result.questions:
            print(f"    - {q}")

    print("\n  Recording:")
    print(f"    {result.transcript or '(empty)'}")


def save_report(result: TranscriptAnalysis) -> Path:
    DEFAULT_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    ts = time.strftime("%Y%m%d_%H%M%S")
    path = DEFAULT_OUTPUT_DIR / f"session_{ts}.md"

    score = "n/a" if result.flesch_score is None else f"{result.flesch_score:.2f}"
    lines = [f"# SpeakTree Session, {time.strftime('%Y-%m-%d %H:%M')}\n\n"]
    lines.append(f"**Flesch score:** {score}\n\n{result.explanation}\n\n")
    lines.append("## Top words\n\n")
    for word, count in result.top_words:
        lines.append(f"- {word}: {count}\n")
    if result.questions:
        lines.append("\n## Questions\n\n")
        for q in result.questions:
            lines.append(f"- {q}\n")
    lines.append(f"\n## Recording\n\n{result.transcript}\n")

    path.write_text("".join(lines))
    print(f"  [Report saved to {path}]")
    return path


# ---------------------------------------------------------------------------
# Text-to-Speech for the practice question (Kokoro ONNX)
# ---------------------------------------------------------------------------

def _clean_for_tts(text: str) -> str:
    text = re.sub(r"[*_#`]+", "", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def speak(text: str, voice: str = DEFAULT_VOICE, speed: float = 1.0):
    text = _clean_for_tts(text)
    if not text:
        return

    from kokoro_onnx import Kokoro
    tts = Kokoro(str(KOKORO_MODEL_PATH), str(KOKORO_VOICES_PATH))
    try:
        samples, sample_rate = tts.create(text, voice=voice, speed=speed, lang="en-us")
        sd.play(samples, samplerate=sample_rate)
        sd.wait()
    except Exception as e:
        print(f"  [TTS error: {e}]")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="SpeakTree speaking coach")
    parser.add_argument("--provider", default=DEFAULT_PROVIDER, choices=PROVIDERS,
                        help="Text-generation provider for suggestions")
    parser.add_argument("--whisper-model", default=WHISPER_MODEL, help="faster-whisper model name")
    parser.add_argument("--max-seconds", type=float, default=MAX_SESSION_SECONDS,
                        help="Auto-stop a recording after this many seconds")
    parser.add_argument("--state-file", type=Path, default=STATE_PATH,
                        help="Where the daily session count is kept")
    parser.add_argument("--exclude-common", action="store_true",
                        help="Drop common and short words from the frequency list")
    parser.add_argument("--save", action="store_true", help="Save a markdown report after the session")
    parser.add_argument("--question", action="store_true",
                        help="Fetch and speak one interview question, then exit")
    parser.add_argument("--voice", default=DEFAULT_VOICE, help="Kokoro TTS voice for --question")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.question:
        question = fetch_interview_question(args.provider)
        if not question:
            print("  [No question available]")
            return 1
        print(f"\n  Suggested question: {question}\n")
        speak(question, voice=args.voice)
        return 0

    limiter = SessionRateLimiter(JsonFileStore(args.state_file))
    if not limiter.can_start_session():
        print(f"\n  Limit Reached: {SessionLimitReached(limiter.daily_limit)}")
        return 1

    print("=" * 60)
    print("  SpeakTree")
    print(f"  Provider: {args.provider}  |  Whisper: {args.whisper_model}  |  "
          f"Sessions left today: {limiter.remaining_sessions()}")
    print("=" * 60)

    print("\n  Loading models...")
    print("    Whisper STT (faster-whisper)...", end=" ", flush=True)
    model = _get_whisper(args.whisper_model)
    model.transcribe(np.zeros(SAMPLE_RATE, dtype=np.float32), language="en", beam_size=1)
    print("done")

    events: queue.Queue = queue.Queue()
    controller = SessionController(
        limiter, SuggestionWorker(events, args.provider), max_seconds=args.max_seconds
    )
    try:
        controller.start()
    except SessionLimitReached as e:
        print(f"\n  Limit Reached: {e}")
        return 1

    try:
        transcript = run_session(controller, events, args.provider)
    except KeyboardInterrupt:
        controller.handle(StopRequested())
        transcript = controller.state.full_transcript
        print("\n\n  Interrupted.")

    result = analyze(transcript, exclude_common_words=args.exclude_common)
    print_analysis(result)
    if args.save:
        save_report(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
