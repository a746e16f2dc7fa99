from __future__ import annotations

import asyncio
import logging
import os
import uuid
import wave
from pathlib import Path
from typing import Any

import numpy as np
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from kokoro_onnx import Kokoro
from pydantic import BaseModel

from coach_session import (
    MAX_SESSION_SECONDS,
    PartialTranscript,
    RecognitionEnded,
    SessionController,
    StopRequested,
    SuggestionsReady,
    Tick,
)
from session_limits import JsonFileStore, SessionLimitReached, SessionRateLimiter
from speech_metrics import pace_feedback
from suggestion_client import DEFAULT_PROVIDER, PROVIDERS, fetch_interview_question, fetch_suggestions
from transcript_analysis import analyze

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_VOICE = os.getenv("DEFAULT_VOICE", "af_heart")
DEFAULT_SPEED = float(os.getenv("DEFAULT_SPEED", "1.0"))
STATE_PATH = Path(os.getenv("SPEAKTREE_STATE", str(Path.home() / ".speaktree" / "state.json")))

ROOT = Path(__file__).resolve().parent
MODELS_DIR = ROOT / "models"
REPLIES_DIR = ROOT / "question_replies"
REPLIES_DIR.mkdir(parents=True, exist_ok=True)

KOKORO_MODEL_PATH = MODELS_DIR / "kokoro-v1.0.onnx"
KOKORO_VOICES_PATH = MODELS_DIR / "voices-v1.0.bin"

app = FastAPI(title="SpeakTree Bridge", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/replies", StaticFiles(directory=str(REPLIES_DIR)), name="replies")

# Session state is only touched from the event loop thread.
_tts: Kokoro | None = None
_limiter: SessionRateLimiter | None = None
_sessions: dict[str, SessionController] = {}
_providers: dict[str, str] = {}
_background: set[asyncio.Task] = set()


class NewSession(BaseModel):
    provider: str = DEFAULT_PROVIDER


class PartialText(BaseModel):
    text: str


class RecognitionEnd(BaseModel):
    error: str | None = None


class QuestionRequest(BaseModel):
    provider: str = DEFAULT_PROVIDER
    speak: bool = False
    voice: str = DEFAULT_VOICE
    speed: float = DEFAULT_SPEED


def _get_limiter() -> SessionRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = SessionRateLimiter(JsonFileStore(STATE_PATH))
    return _limiter


def _get_tts() -> Kokoro:
    global _tts
    if _tts is None:
        _tts = Kokoro(str(KOKORO_MODEL_PATH), str(KOKORO_VOICES_PATH))
    return _tts


def _check_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=422, detail=f"Unknown provider {provider!r}")


def _get_session(session_id: str) -> SessionController:
    controller = _sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return controller


def _prune_finished() -> None:
    # Only one session records at a time; finished ones are kept until the next start
    for sid in [s for s, c in _sessions.items() if not c.state.is_recording]:
        del _sessions[sid]
        _providers.pop(sid, None)
        logger.debug("Dropped finished session %s", sid)


def _view(session_id: str, snap: dict[str, Any]) -> dict[str, Any]:
    pace = pace_feedback(snap["words_per_minute"])
    return {
        "session_id": session_id,
        **snap,
        "pace": {"zone": pace.zone, "intensity": pace.intensity},
    }


async def _suggest(controller: SessionController, provider: str, seq: int, context: str) -> None:
    lines = await asyncio.to_thread(fetch_suggestions, context, provider)
    controller.handle(SuggestionsReady(seq, lines))


def _dispatcher(session_id: str):
    def dispatch(seq: int, context: str) -> None:
        task = asyncio.get_running_loop().create_task(
            _suggest(_sessions[session_id], _providers[session_id], seq, context)
        )
        _background.add(task)
        task.add_done_callback(_background.discard)
    return dispatch


def _tts_to_wav_url(text: str, voice: str, speed: float) -> str:
    samples, sample_rate = _get_tts().create(text, voice=voice, speed=speed, lang="en-us")
    samples_f32 = np.asarray(samples, dtype=np.float32)
    samples_i16 = np.clip(samples_f32 * 32767.0, -32768, 32767).astype(np.int16)

    fname = f"{uuid.uuid4().hex}.wav"
    path = REPLIES_DIR / fname
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(samples_i16.tobytes())
    _cleanup_replies(max_files=40)
    return f"/replies/{fname}"


def _cleanup_replies(max_files: int = 40) -> None:
    files = sorted(REPLIES_DIR.glob("*.wav"), key=lambda p: p.stat().st_mtime, reverse=True)
    for old in files[max_files:]:
        try:
            old.unlink()
        except OSError:
            pass


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/limits")
async def limits() -> dict[str, Any]:
    limiter = _get_limiter()
    return {
        "can_start": limiter.can_start_session(),
        "remaining_sessions": limiter.remaining_sessions(),
        "daily_limit": limiter.daily_limit,
    }


@app.post("/session/new")
async def new_session(req: NewSession) -> dict[str, Any]:
    _check_provider(req.provider)
    if any(c.state.is_recording for c in _sessions.values()):
        raise HTTPException(status_code=409, detail="A recording session is already active")

    sid = uuid.uuid4().hex
    controller = SessionController(_get_limiter(), _dispatcher(sid), max_seconds=MAX_SESSION_SECONDS)
    try:
        controller.start()
    except SessionLimitReached as e:
        raise HTTPException(status_code=429, detail=str(e))

    _prune_finished()
    _sessions[sid] = controller
    _providers[sid] = req.provider
    logger.info("Session %s started with %s", sid, req.provider)
    loop = asyncio.get_running_loop()
    loop.call_later(
        controller.max_seconds + 0.1, lambda: controller.handle(Tick(controller.clock()))
    )
    return {
        **_view(sid, controller.snapshot()),
        "remaining_sessions": _get_limiter().remaining_sessions(),
        "max_seconds": controller.max_seconds,
    }


@app.get("/session/{session_id}")
async def get_session(session_id: str) -> dict[str, Any]:
    controller = _get_session(session_id)
    return _view(session_id, controller.handle(Tick(controller.clock())))


@app.post("/session/{session_id}/partial")
async def partial(session_id: str, body: PartialText) -> dict[str, Any]:
    controller = _get_session(session_id)
    controller.handle(Tick(controller.clock()))
    return _view(session_id, controller.handle(PartialTranscript(body.text)))


@app.post("/session/{session_id}/end")
async def recognition_end(session_id: str, body: RecognitionEnd) -> dict[str, Any]:
    controller = _get_session(session_id)
    return _view(session_id, controller.handle(RecognitionEnded(error=body.error)))


@app.post("/session/{session_id}/stop")
async def stop(session_id: str) -> dict[str, Any]:
    controller = _get_session(session_id)
    return _view(session_id, controller.handle(StopRequested()))


@app.get("/session/{session_id}/analysis")
async def analysis(session_id: str, exclude_common: bool = False) -> dict[str, Any]:
    controller = _get_session(session_id)
    if controller.state.is_recording:
        raise HTTPException(status_code=409, detail="Stop the recording before analysing it")
    return analyze(controller.state.full_transcript, exclude_common_words=exclude_common).to_dict()


@app.post("/question")
def question(req: QuestionRequest) -> dict[str, Any]:
    _check_provider(req.provider)
    text = fetch_interview_question(req.provider)
    audio_url = _tts_to_wav_url(text, req.voice, req.speed) if text and req.speak else None
    return {"question": text, "audio_url": audio_url}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("speaktree_bridge_server:app", host="0.0.0.0", port=8000)
