"""Conversation suggestions from a hosted (or local) text-generation provider.

Every call is a single request/response with no retry. Any failure is logged
and comes back as empty output, which the front-ends show as an empty
suggestion panel.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_URL = os.getenv("OPENAI_URL", "https://api.openai.com/v1/chat/completions")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4")
SPEECH_HELP_URL = os.getenv(
    "SPEECH_HELP_URL",
    "https://jf7n4wdqn1.execute-api.us-east-1.amazonaws.com/dev/speechHelp",
)
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://127.0.0.1:11434/api/chat")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:8b")
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "openai")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))

PROVIDERS = ("openai", "cohere", "ollama")

THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)
NUMBER_PREFIX = re.compile(r"^\d+\.\s")

SYSTEM_PROMPT = (
    "You are a helpful assistant. Confidently give a straightforward response to the "
    "speaker, even if you don't understand them. DO NOT ask to repeat, and DO NOT ask "
    "for clarification. Just answer the speaker directly."
)
SUGGESTION_PROMPT = (
    "You are a helpful assistant. Given the context of a conversation, list topics or "
    "ideas that can help take the conversation forward. Each topic or idea (keep it "
    "concise) should be on a new line. Here is the transcription of the conversation: {context}"
)
QUESTION_PROMPT = (
    "return me one interview question that I can answer to help me improve my speaking "
    "and have no other text in the output except that sentence"
)


class UnknownProvider(ValueError):
    pass


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _openai_chat(user_text: str) -> str:
    payload: dict[str, Any] = {
        "model": OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_text},
        ],
        "temperature": 0.7,
        "max_tokens": 50,
    }
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}
    resp = httpx.post(OPENAI_URL, json=payload, headers=headers, timeout=LLM_TIMEOUT)
    resp.raise_for_status()
    choices = resp.json().get("choices") or []
    if not choices:
        return ""
    return _as_text((choices[0].get("message") or {}).get("content"))


def _speech_help(prompt: str) -> str:
    resp = httpx.get(SPEECH_HELP_URL, params={"prompt": prompt}, timeout=LLM_TIMEOUT)
    resp.raise_for_status()
    body = resp.json().get("body") or {}
    generations = body.get("generations") or []
    if not generations:
        return ""
    return _as_text(generations[0].get("text"))


def _ollama_chat(user_text: str) -> str:
    payload: dict[str, Any] = {
        "model": OLLAMA_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_text},
        ],
        "stream": False,
        "keep_alive": "30m",
        "options": {"temperature": 0.7, "num_predict": 96},
    }
    resp = httpx.post(OLLAMA_URL, json=payload, timeout=LLM_TIMEOUT)
    resp.raise_for_status()
    content = _as_text((resp.json().get("message") or {}).get("content"))
    return THINK_PATTERN.sub("", content).strip()


_CALLS = {
    "openai": _openai_chat,
    "cohere": _speech_help,
    "ollama": _ollama_chat,
}


def generate(prompt_text: str, provider: str = DEFAULT_PROVIDER) -> str:
    call = _CALLS.get(provider)
    if call is None:
        raise UnknownProvider(f"unknown provider {provider!r}; choose from {', '.join(PROVIDERS)}")

    try:
        return call(prompt_text)
    except httpx.ConnectError as e:
        logger.warning("%s: cannot connect: %s", provider, e)
    except httpx.HTTPStatusError as e:
        logger.warning("%s returned %s", provider, e.response.status_code)
    except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
        logger.warning("%s request failed: %s", provider, e)
    return ""


# ---------------------------------------------------------------------------
# Response shaping
# ---------------------------------------------------------------------------

def clean_line(line: str) -> str:
    if line.startswith("- "):
        line = line[2:]
    return NUMBER_PREFIX.sub("", line, count=1)


def parse_suggestions(response: str) -> list[str]:
    return [clean_line(line) for line in response.split("\n") if line]


def fetch_suggestions(context: str, provider: str = DEFAULT_PROVIDER) -> list[str]:
    # The speech-help endpoint wraps the transcript in its own prompt.
    prompt = context if provider == "cohere" else SUGGESTION_PROMPT.format(context=context)
    response = generate(prompt, provider)
    lines = parse_suggestions(response)
    logger.debug("%s returned %d suggestion lines", provider, len(lines))
    return lines


def fetch_interview_question(provider: str = DEFAULT_PROVIDER) -> str:
    return generate(QUESTION_PROMPT, provider).strip()
