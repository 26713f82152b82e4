"""Unit tests for transcript fact extractors."""
import pytest

from future_self.services.extraction import (
    extract_problem_description,
    extract_user_name,
    make_problem_extractor,
)


class TestExtractUserName:
    """Test name extraction."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Hi, my name is Sarah and I need help", "Sarah"),
            ("I'm Alex", "Alex"),
            ("i am jordan", "Jordan"),
            ("You can call me Sam.", "Sam"),
            ("MY NAME IS RILEY", "RILEY"),
        ],
    )
    def test_patterns(self, text, expected):
        assert extract_user_name(text) == expected

    def test_skips_common_words(self):
        """'I'm feeling' is not a name; a later introduction still is."""
        assert extract_user_name("I'm feeling lost. My name is Dana.") == "Dana"
        assert extract_user_name("I am so tired") is None

    def test_requires_word_boundary(self):
        assert extract_user_name("hi amanda") is None

    def test_no_match(self):
        assert extract_user_name("Hello there") is None
        assert extract_user_name("") is None


class TestExtractProblemDescription:
    """Test problem description capture."""

    def test_long_utterance(self):
        text = "  I have been struggling with my career and feel stuck every single day.  "
        assert extract_problem_description(text) == text.strip()

    def test_short_utterance(self):
        assert extract_problem_description("I'm sad") is None

    def test_custom_minimum(self):
        extractor = make_problem_extractor(5)
        assert extractor("Work stress") == "Work stress"
        assert extractor("Hi") is None
