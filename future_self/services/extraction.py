"""Fact extractors for counseling transcripts.

Each extractor takes one utterance and returns a structured fact, or None
when the utterance does not carry one.
"""
import re
from typing import Callable, Optional

Extractor = Callable[[str], Optional[str]]

NAME_PATTERN = re.compile(
    r"\b(?:my name is (\w+)|i'm (\w+)|i am (\w+)|call me (\w+))",
    re.IGNORECASE,
)

# Words that follow "I'm" / "I am" in ordinary speech and are not names
NON_NAME_WORDS = {
    "a",
    "an",
    "the",
    "so",
    "not",
    "just",
    "really",
    "very",
    "feeling",
    "going",
    "trying",
    "having",
    "being",
    "doing",
    "here",
    "fine",
    "good",
    "okay",
    "ok",
    "sorry",
    "sure",
    "tired",
    "stressed",
    "worried",
    "scared",
    "sad",
    "struggling",
    "thinking",
    "calling",
    "looking",
    "still",
    "also",
    "kind",
    "gonna",
}

DEFAULT_PROBLEM_MIN_LENGTH = 50


def extract_user_name(text: str) -> Optional[str]:
    """Extract a self-introduced name ("my name is Sam", "call me Sam")."""
    if not text:
        return None

    for match in NAME_PATTERN.finditer(text):
        candidate = next(group for group in match.groups() if group)
        if candidate.lower() in NON_NAME_WORDS or candidate.isdigit():
            continue
        return candidate[:1].upper() + candidate[1:]
    return None


def extract_problem_description(
    text: str, min_length: int = DEFAULT_PROBLEM_MIN_LENGTH
) -> Optional[str]:
    """Treat a sufficiently long utterance as the problem description."""
    if not text:
        return None
    stripped = text.strip()
    if len(stripped) > min_length:
        return stripped
    return None


def make_problem_extractor(min_length: int) -> Extractor:
    """Bind the minimum length into an Extractor."""

    def _extract(text: str) -> Optional[str]:
        return extract_problem_description(text, min_length=min_length)

    return _extract
