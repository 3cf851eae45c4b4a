"""
Text Matching Utilities

Text normalization and similarity scoring shared by every matching stage
(track resolution, Wikipedia page resolution, wikitext parsing, discography
joins and catalogue matching).

Functions in this module are stateless and can be used independently.
"""

import re
import logging
from enum import Flag
from typing import Iterable, Optional, Set

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)


class NormalizeOptions(Flag):
    NONE = 0
    STRIP_FEATURING = 1
    STRIP_PARENTHETICAL = 2
    ALPHANUMERIC_ONLY = 4
    COLLAPSE_WHITESPACE = 8
    DEFAULT = ALPHANUMERIC_ONLY | COLLAPSE_WHITESPACE


# Frequently used combinations
TITLE_OPTIONS = (NormalizeOptions.STRIP_FEATURING | NormalizeOptions.ALPHANUMERIC_ONLY
                 | NormalizeOptions.COLLAPSE_WHITESPACE)
CANONICAL_TITLE_OPTIONS = TITLE_OPTIONS | NormalizeOptions.STRIP_PARENTHETICAL

# Bounded by non-alphanumerics; \b would treat '_' as part of a word
FEATURING_PATTERN = re.compile(r'(?<![^\W_])(feat\.?|featuring)(?![^\W_]).*$')
PARENTHETICAL_PATTERN = re.compile(r'\([^)]*\)')
NON_ALPHANUMERIC_PATTERN = re.compile(r'[^\w\s]|_')
WHITESPACE_PATTERN = re.compile(r'\s+')


def normalize(text: Optional[str], options: NormalizeOptions = NormalizeOptions.DEFAULT) -> str:
    """
    Canonicalize free text for comparison.

    The steps always run in the same order: lowercase, strip "feat." clause,
    strip parentheticals, reduce to alphanumerics, collapse whitespace, trim.
    Lowercasing and trimming always apply; the rest depend on `options`.

    Examples:
        normalize("Take Five (Remastered) feat. Someone",
                  TITLE_OPTIONS | STRIP_PARENTHETICAL) -> "take five"
    """
    if not text:
        return ''

    result = text.lower()
    if options & NormalizeOptions.STRIP_FEATURING:
        result = FEATURING_PATTERN.sub('', result)
    if options & NormalizeOptions.STRIP_PARENTHETICAL:
        result = PARENTHETICAL_PATTERN.sub(' ', result)
    if options & NormalizeOptions.ALPHANUMERIC_ONLY:
        result = NON_ALPHANUMERIC_PATTERN.sub(' ', result)
    if options & NormalizeOptions.COLLAPSE_WHITESPACE:
        result = WHITESPACE_PATTERN.sub(' ', result)
    return result.strip()


def token_set(text: Optional[str]) -> Set[str]:
    """Whitespace tokens of the DEFAULT-normalized text"""
    return set(normalize(text).split())


def similarity(a: Optional[str], b: Optional[str], contains_score: float = 0.87) -> float:
    """
    Similarity between two strings in [0, 1].

    Both inputs are normalized with DEFAULT options first. Identical strings
    score 1.0, a substring match scores `contains_score`, anything else is the
    Jaccard index of the token sets. An empty side always scores 0, including
    two empty strings.

    Args:
        a: First string
        b: Second string
        contains_score: Score for a substring match (typically 0.86 - 0.96)

    Returns:
        Score from 0.0 to 1.0
    """
    norm_a = normalize(a)
    norm_b = normalize(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return contains_score

    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def artist_overlap(names_a: Iterable[str], names_b: Iterable[str]) -> float:
    """
    Fraction of the smaller artist-name set that also appears in the other.

    Returns:
        0.0 when either side has no usable names
    """
    set_a = {normalize(n) for n in names_a if normalize(n)}
    set_b = {normalize(n) for n in names_b if normalize(n)}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / min(len(set_a), len(set_b))


def normalize_isrc(isrc: Optional[str]) -> str:
    """Uppercase an ISRC and drop separators ("us-rc1-76-07839" -> "USRC17607839")"""
    if not isrc:
        return ''
    return re.sub(r'[^0-9A-Za-z]', '', isrc).upper()


# ============================================================================
# CATALOGUE CANDIDATE SCORING
# ============================================================================

def fuzzy_title_score(title1: Optional[str], title2: Optional[str]) -> float:
    """
    Fuzzy title similarity in [0, 1] for catalogue search results.

    Uses token_sort_ratio on feat.-stripped text. Below 0.80 the comparison
    is retried with parentheticals removed, which handles "Who Cares?" vs
    "Who Cares (As Long As You Care For Me)".
    """
    norm1 = normalize(title1, TITLE_OPTIONS)
    norm2 = normalize(title2, TITLE_OPTIONS)
    if not norm1 or not norm2:
        return 0.0

    score = fuzz.token_sort_ratio(norm1, norm2) / 100.0
    if score < 0.80:
        stripped1 = normalize(title1, CANONICAL_TITLE_OPTIONS)
        stripped2 = normalize(title2, CANONICAL_TITLE_OPTIONS)
        if stripped1 and stripped2 and (stripped1 != norm1 or stripped2 != norm2):
            stripped_score = fuzz.token_sort_ratio(stripped1, stripped2) / 100.0
            if stripped_score > score:
                logger.debug(f"      Parenthetical fallback: {score:.2f} → {stripped_score:.2f}")
                score = stripped_score
    return score


def artist_matches(expected_artist: str, candidate_artists: Iterable[str]) -> bool:
    """True if any candidate artist name matches the expected one (exact or contained)"""
    expected = normalize(expected_artist)
    if not expected:
        return False
    for name in candidate_artists:
        candidate = normalize(name)
        if not candidate:
            continue
        if candidate == expected or expected in candidate or candidate in expected:
            return True
        if fuzz.token_sort_ratio(candidate, expected) >= 85:
            return True
    return False


def relaxed_title(title: Optional[str]) -> str:
    """
    Strip parentheticals, bracketed tags and the feat. clause, keeping case.

    Examples:
        "So What (Remastered 2009)" -> "So What"
        "Song [Live] feat. X" -> "Song"
    """
    if not title:
        return ''
    result = re.sub(r'\s*\([^)]*\)', ' ', title)
    result = re.sub(r'\s*\[[^\]]*\]', ' ', result)
    result = re.sub(r'\s*[-–]?\s*\b(feat\.?|featuring|ft\.)\s.*$', '', result, flags=re.IGNORECASE)
    return ' '.join(result.split())
