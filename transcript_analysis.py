"""Post-session transcript analysis: Flesch Reading Ease, word frequency, questions."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

LETTER_RUN = re.compile(r"[^\W\d_]+")
SENTENCE_SPLIT = re.compile(r"[.!?]")
QUESTION_PATTERN = re.compile(r"[\w\s,'\"-]+\?")

VOWELS = set("aeiouy")

COMMON_WORDS = {
    "a", "an", "the", "and", "or", "but", "if", "of", "at", "by", "for",
    "with", "to", "in", "on", "he", "she", "it", "they", "them",
}

TOP_WORDS_LIMIT = 5

# Lower bound of each band, highest first; scores outside 0-100 have no band
SCORE_BANDS = [
    (90, "Very Easy - Like listening to a casual conversation. It feels natural and effortless to follow."),
    (80, "Easy - Like hearing a friend explain something clearly. It's comfortable and straightforward to understand."),
    (70, "Fairly Easy - Comparable to a well-told story. Engaging and easy to listen to, without needing much effort."),
    (60, "Standard - Similar to a professional presentation. Clear enough, but requires a bit more focus to grasp everything."),
    (50, "Fairly Difficult - Like a technical discussion in a familiar field. Understandable, but demands attention and some prior knowledge."),
    (30, "Difficult - Equivalent to an academic lecture on a complex topic. It can be challenging and might require additional context to fully appreciate."),
    (0, "Very Difficult - Like listening to an expert speak in highly specialized language. It's dense and requires significant effort or expertise to follow."),
]
OUT_OF_RANGE = "Score out of range - The clarity of the speech cannot be determined without a proper score."


class EmptyTranscriptError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Counting
# ---------------------------------------------------------------------------

def words_in(text: str) -> list[str]:
    return LETTER_RUN.findall(text)


def sentence_count(text: str) -> int:
    return sum(1 for seg in SENTENCE_SPLIT.split(text) if seg)


def syllable_count(word: str) -> int:
    """Vowel-group onsets, skipping a final silent "e"; never less than 1."""
    chars = word.lower()
    count = 0
    for i, ch in enumerate(chars):
        if ch not in VOWELS:
            continue
        if i == len(chars) - 1 and ch == "e":
            continue
        if i > 0 and chars[i - 1] in VOWELS:
            continue
        count += 1
    return max(count, 1)


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

def flesch_reading_ease(text: str) -> float:
    words = words_in(text)
    sentences = sentence_count(text)
    if not words or not sentences:
        raise EmptyTranscriptError("transcript has no words to score")

    syllables = sum(syllable_count(w) for w in words)
    return (
        206.835
        - 1.015 * (len(words) / sentences)
        - 84.6 * (syllables / len(words))
    )


def score_explanation(score: float | None) -> str:
    if score is None or not 0 <= score <= 100:
        return OUT_OF_RANGE
    for low, text in SCORE_BANDS:
        if score >= low:
            return text
    return OUT_OF_RANGE


def top_word_frequencies(
    text: str, exclude_common_words: bool = False, limit: int = TOP_WORDS_LIMIT
) -> list[tuple[str, int]]:
    words = words_in(text.lower())
    if exclude_common_words:
        words = [w for w in words if w not in COMMON_WORDS and len(w) > 3]
    # most_common keeps first-seen order among equal counts
    return Counter(words).most_common(limit)


def extract_questions(text: str) -> list[str]:
    return [m.group(0).strip() for m in QUESTION_PATTERN.finditer(text)]


# ---------------------------------------------------------------------------
# Full report
# ---------------------------------------------------------------------------

@dataclass
class TranscriptAnalysis:
    transcript: str
    flesch_score: float | None
    explanation: str
    word_count: int
    top_words: list[tuple[str, int]] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["top_words"] = [{"word": w, "count": c} for w, c in self.top_words]
        return data


def analyze(transcript: str, exclude_common_words: bool = False) -> TranscriptAnalysis:
    try:
        score = flesch_reading_ease(transcript)
    except EmptyTranscriptError:
        score = None

    return TranscriptAnalysis(
        transcript=transcript,
        flesch_score=score,
        explanation=score_explanation(score),
        word_count=len(words_in(transcript)),
        top_words=top_word_frequencies(transcript, exclude_common_words),
        questions=extract_questions(transcript),
    )
