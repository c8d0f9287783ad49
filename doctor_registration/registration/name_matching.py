"""
Name comparison between the name typed by a doctor and the name on the
professional registry record.

Two independent comparisons are provided:

- a strict one (exact match after normalization) that gates registration,
  reporting a word-overlap ratio as diagnostic confidence when it fails;
- a soft one (Levenshtein similarity ratio with a 0.8 threshold) used for
  informational matching only.
"""
import re
import unicodedata
from typing import List

from .schemas import NameMatch

SIMILARITY_THRESHOLD = 0.8

_NON_LETTERS = re.compile(r"[^A-Z\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """
    Normalize a person name for comparison.

    Upper-cases, folds accented vowels and Ñ to their base letters, drops
    everything that is not a letter or a space and collapses whitespace.
    """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", name.upper())
    folded = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    letters_only = _NON_LETTERS.sub("", folded)
    return _WHITESPACE.sub(" ", letters_only).strip()


def _words(name: str) -> List[str]:
    normalized = normalize_name(name)
    return normalized.split(" ") if normalized else []


def exact_normalized_match(provided: str, official: str) -> bool:
    normalized = normalize_name(provided)
    return bool(normalized) and normalized == normalize_name(official)


def word_overlap_ratio(provided: str, official: str) -> float:
    """
    Share of the provided words found verbatim among the official words.

    The count is divided by the longer of the two word lists, so a name with
    missing or extra words never reaches 1.0.
    """
    provided_words = _words(provided)
    official_words = set(_words(official))
    if not provided_words or not official_words:
        return 0.0
    matching = sum(1 for word in provided_words if word in official_words)
    return matching / max(len(provided_words), len(official_words))


def levenshtein_distance(provided: str, official: str) -> int:
    """Classic dynamic-programming edit distance with unit costs."""
    # matrix[j][i]: distance between official[:j] and provided[:i]
    matrix = [[0] * (len(provided) + 1) for _ in range(len(official) + 1)]
    for i in range(len(provided) + 1):
        matrix[0][i] = i
    for j in range(len(official) + 1):
        matrix[j][0] = j

    for j in range(1, len(official) + 1):
        for i in range(1, len(provided) + 1):
            substitution_cost = 0 if provided[i - 1] == official[j - 1] else 1
            matrix[j][i] = min(
                matrix[j][i - 1] + 1,  # insertion
                matrix[j - 1][i] + 1,  # deletion
                matrix[j - 1][i - 1] + substitution_cost,  # substitution
            )
    return matrix[len(official)][len(provided)]


def edit_distance_similarity(provided: str, official: str) -> float:
    """(maxLen - distance) / maxLen over the normalized names, 1.0 for two empty names."""
    first = normalize_name(provided)
    second = normalize_name(official)
    max_length = max(len(first), len(second))
    if max_length == 0:
        return 1.0
    return (max_length - levenshtein_distance(first, second)) / max_length


class NameMatcher:
    """Composes the strict and the soft name comparisons."""

    def __init__(self, similarity_threshold: float = SIMILARITY_THRESHOLD):
        self.similarity_threshold = similarity_threshold

    def compare(self, provided: str, official: str) -> NameMatch:
        """
        Strict comparison used to gate registration.

        Only an exact match after normalization matches; otherwise the word
        overlap ratio is reported as diagnostic confidence.
        """
        if not official:
            return NameMatch(
                matches=False,
                confidence=0.0,
                message="The registry record does not include a name"
            )

        if exact_normalized_match(provided, official):
            return NameMatch(matches=True, confidence=1.0, message="Name verified against the official registry")

        confidence = round(word_overlap_ratio(provided, official), 4)
        return NameMatch(
            matches=False,
            confidence=confidence,
            message=f"The name does not match the official registry record: {normalize_name(official)}"
        )

    def compare_similar(self, provided: str, official: str) -> NameMatch:
        """Soft comparison for informational display, based on edit distance."""
        if not official:
            return NameMatch(matches=False, confidence=0.0, message="The registry record does not include a name")

        similarity = round(edit_distance_similarity(provided, official), 4)
        matches = similarity >= self.similarity_threshold
        return NameMatch(
            matches=matches,
            confidence=similarity,
            message=(
                "Name verified (basic comparison)"
                if matches
                else f"Possible name discrepancy. Official: {official}"
            )
        )
