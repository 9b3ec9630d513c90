"""
Similarity Scoring Primitives

String and hash similarity functions shared by the field comparators. All
functions are pure, total over their inputs and return values in [0, 1]
unless stated otherwise.
"""

import re
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

WINKLER_SCALING = 0.1
WINKLER_MAX_PREFIX = 4


@dataclass(frozen=True)
class ConfidenceThresholds:
    """Score cut-offs that turn field scores into reason tags."""

    identical: float = 0.95
    very_similar: float = 0.8
    similar: float = 0.6
    identical_specs: float = 0.9
    similar_specs: float = 0.7
    identical_images: float = 0.9
    similar_images: float = 0.7
    hash_exact: float = 0.95
    hash_similar: float = 0.8
    filename_similar: float = 0.9


DEFAULT_THRESHOLDS = ConfidenceThresholds()


def normalize_text(text: Optional[str]) -> str:
    """Lowercase, turn punctuation into spaces and collapse whitespace."""
    if not text:
        return ""
    cleaned = _NON_WORD.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def jaro_similarity(s1: str, s2: str) -> float:
    """Jaro similarity. Half the transposition count is kept fractional."""
    len1, len2 = len(s1), len(s2)
    if len1 == 0 or len2 == 0:
        return 0.0

    window = max(len1, len2) // 2 - 1
    s1_matched = [False] * len1
    s2_matched = [False] * len2

    matches = 0
    for i, ch in enumerate(s1):
        for j in range(max(0, i - window), min(i + window + 1, len2)):
            if s2_matched[j] or s2[j] != ch:
                continue
            s1_matched[i] = s2_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, ch in enumerate(s1):
        if not s1_matched[i]:
            continue
        while not s2_matched[k]:
            k += 1
        if ch != s2[k]:
            transpositions += 1
        k += 1

    return (
        matches / len1
        + matches / len2
        + (matches - transpositions / 2) / matches
    ) / 3


def jaro_winkler_similarity(a: str, b: str) -> float:
    """Jaro similarity with the Winkler prefix bonus always applied.

    The bonus is ``0.1 * common_prefix * (1 - jaro)`` with the prefix capped at
    four characters. Unlike the common variant there is no boost threshold, so
    low-similarity strings sharing a prefix still get the bonus. The pair is
    put in canonical order first, which makes the result symmetric.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    s1, s2 = (a, b) if a <= b else (b, a)
    jaro = jaro_similarity(s1, s2)

    prefix = 0
    for c1, c2 in zip(s1[:WINKLER_MAX_PREFIX], s2[:WINKLER_MAX_PREFIX]):
        if c1 != c2:
            break
        prefix += 1

    return jaro + WINKLER_SCALING * prefix * (1.0 - jaro)


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard index of the space-separated token sets."""
    tokens_a = set(a.split(" ")) if a else set()
    tokens_b = set(b.split(" ")) if b else set()
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def containment_similarity(a: str, b: str) -> float:
    """Length ratio of whichever string is a substring of the other, else 0."""
    if not a or not b:
        return 0.0
    return max(
        len(b) / len(a) if b in a else 0.0,
        len(a) / len(b) if a in b else 0.0,
    )


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Blend of Jaro-Winkler, token Jaccard and containment on normalized text.

    Returns 1.0 when the normalized strings are equal and 0.0 when either
    side normalizes to nothing.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)

    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    return (
        0.5 * jaro_winkler_similarity(norm_a, norm_b)
        + 0.3 * jaccard_similarity(norm_a, norm_b)
        + 0.2 * containment_similarity(norm_a, norm_b)
    )


def hamming_distance(a: str, b: str) -> int:
    """Count of differing positions.

    Strings of different length are treated as maximally distant and yield
    the longer length.
    """
    if len(a) != len(b):
        return max(len(a), len(b))
    return sum(1 for c1, c2 in zip(a, b) if c1 != c2)


def hash_similarity(a: str, b: str) -> float:
    """``1 - hamming / len`` for two perceptual hash strings, floored at 0."""
    if not a or not b:
        return 0.0
    return max(0.0, 1.0 - hamming_distance(a, b) / len(a))


def extract_filename(url: str) -> str:
    """Last path segment of a URL, or of the raw string if it is not a URL."""
    if not url:
        return ""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url.split("/")[-1]
    if parsed.scheme and parsed.netloc:
        return parsed.path.split("/")[-1]
    return url.split("/")[-1]
