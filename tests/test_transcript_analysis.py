"""Tests for transcript_analysis: syllables, Flesch score, word frequency."""

import pytest

from transcript_analysis import (
    COMMON_WORDS,
    EmptyTranscriptError,
    OUT_OF_RANGE,
    analyze,
    extract_questions,
    flesch_reading_ease,
    score_explanation,
    sentence_count,
    syllable_count,
    top_word_frequencies,
)

FIXTURE = "The cat sat on the mat. It was happy."


class TestSyllableCount:
    @pytest.mark.parametrize("word,expected", [
        ("the", 1),
        ("beautiful", 3),
        ("happy", 2),
        ("cake", 1),
        ("queue", 1),
        ("rhythm", 1),
        ("e", 1),
        ("Reading", 2),
    ])
    def test_heuristic(self, word, expected):
        assert syllable_count(word) == expected


class TestFleschReadingEase:
    def test_fixture_score(self):
        # 9 words, 2 sentences, 10 syllables
        expected = 206.835 - 1.015 * (9 / 2) - 84.6 * (10 / 9)
        assert flesch_reading_ease(FIXTURE) == pytest.approx(expected)
        assert flesch_reading_ease(FIXTURE) == pytest.approx(108.2675)

    def test_whitespace_segment_counts_as_sentence(self):
        assert sentence_count("The cat sat on the mat. It was happy. ") == 3
        assert sentence_count("Hello there.") == 1
        assert sentence_count("Wait... what?!") == 2

    def test_trailing_space_changes_score(self):
        # 9 words, 3 sentences, 10 syllables
        expected = 206.835 - 1.015 * (9 / 3) - 84.6 * (10 / 9)
        assert flesch_reading_ease(FIXTURE + " ") == pytest.approx(expected)

    def test_no_punctuation_is_one_sentence(self):
        assert sentence_count("no punctuation at all") == 1

    @pytest.mark.parametrize("text", ["", "   ", "...", "123 456."])
    def test_empty_transcript_raises(self, text):
        with pytest.raises(EmptyTranscriptError):
            flesch_reading_ease(text)


class TestTopWordFrequencies:
    TEXT = "Apple banana apple cherry banana apple the the the the and date"

    def test_counts_sorted_with_first_seen_ties(self):
        assert top_word_frequencies(self.TEXT) == [
            ("the", 4), ("apple", 3), ("banana", 2), ("cherry", 1), ("and", 1),
        ]

    def test_exclude_common_and_short_words(self):
        result = top_word_frequencies(self.TEXT + " cat dog it's", exclude_common_words=True)
        assert result == [("apple", 3), ("banana", 2), ("cherry", 1), ("date", 1)]
        for word, _ in result:
            assert word not in COMMON_WORDS
            assert len(word) > 3

    def test_at_most_five_entries(self):
        text = "alpha bravo charlie delta echoes foxtrot golfing"
        assert len(top_word_frequencies(text)) == 5

    def test_splits_on_non_letters(self):
        assert top_word_frequencies("well-known, WELL.known") == [("well", 2), ("known", 2)]


class TestExplanationsAndQuestions:
    @pytest.mark.parametrize("score,prefix", [
        (100, "Very Easy"),
        (95.5, "Very Easy"),
        (85, "Easy"),
        (65, "Standard"),
        (40, "Difficult"),
        (0, "Very Difficult"),
    ])
    def test_bands(self, score, prefix):
        assert score_explanation(score).startswith(prefix + " -")

    @pytest.mark.parametrize("score", [None, -3.0, 108.27])
    def test_out_of_range(self, score):
        assert score_explanation(score) == OUT_OF_RANGE

    def test_extract_questions(self):
        text = "How are you? I am fine. What is next?"
        assert extract_questions(text) == ["How are you?", "What is next?"]


class TestAnalyze:
    def test_full_report(self):
        result = analyze(FIXTURE)
        assert result.flesch_score == pytest.approx(108.2675)
        assert result.explanation == OUT_OF_RANGE
        assert result.word_count == 9
        assert result.top_words[0] == ("the", 2)

        data = result.to_dict()
        assert data["top_words"][0] == {"word": "the", "count": 2}

    def test_empty_transcript_has_no_score(self):
        result = analyze("")
        assert result.flesch_score is None
        assert result.top_words == []
        assert result.questions == []
