"""
Wikipedia Page Resolver

Finds the Wikipedia article describing the album a track belongs to (or the
song itself when the player reports no album).
"""

import logging

from sideman.errors import NotFoundError, ProviderError, RateLimitedError
from sideman.models import (
    NowPlayingTrack, ResolutionOutcome, WikipediaPageResolution, WikipediaSearchResult,
)
from sideman.text_matching import NormalizeOptions, normalize, similarity

logger = logging.getLogger(__name__)

PAGE_NORMALIZE_OPTIONS = (NormalizeOptions.STRIP_PARENTHETICAL | NormalizeOptions.ALPHANUMERIC_ONLY
                          | NormalizeOptions.COLLAPSE_WHITESPACE)

# Wikipedia titles often append descriptors, hence a mid-range substring score
CONTAINS_SCORE = 0.87
ALBUM_WORD_BOOST = 0.12
DISAMBIGUATION_BOOST = 0.18
ARTIST_IN_SNIPPET_BOOST = 0.18

MINIMUM_SCORE = 0.45
AMBIGUOUS_BEST_SCORE = 0.60
AMBIGUOUS_SECOND_SCORE = 0.55
AMBIGUOUS_MARGIN = 0.07
HIGH_CONFIDENCE_SCORE = 0.95

SEARCH_LIMIT = 10


def build_primary_query(track: NowPlayingTrack) -> str:
    album = track.album.strip()
    artist = track.artist.strip()
    if album and artist:
        return f"{album} {artist} album"
    if album:
        return f"{album} album"
    return f"{track.title} {artist} song"


def build_fallback_query(track: NowPlayingTrack) -> str:
    album = track.album.strip()
    if album:
        return f"{album} album"
    return f"{track.title} {track.artist}"


class WikipediaPageResolver:
    """Scores Wikipedia search results against the album (or song) name"""

    def __init__(self, wikipedia_client):
        self.wikipedia_client = wikipedia_client

    def resolve(self, track: NowPlayingTrack) -> ResolutionOutcome:
        """
        Returns:
            ResolutionOutcome; on success its result is a WikipediaPageResolution
        """
        primary_query = build_primary_query(track)
        fallback_query = build_fallback_query(track)
        logger.debug(f"wikipedia resolve start album='{track.album}' artist='{track.artist}'")

        try:
            results = self.wikipedia_client.search_pages(primary_query, SEARCH_LIMIT)
            if not results and fallback_query != primary_query:
                results = self.wikipedia_client.search_pages(fallback_query, SEARCH_LIMIT)
        except NotFoundError:
            return ResolutionOutcome.not_found()
        except RateLimitedError:
            return ResolutionOutcome.rate_limited()
        except ProviderError as e:
            logger.warning(f"Wikipedia search failed: {e.describe()}")
            return ResolutionOutcome.network_error(str(e))

        if not results:
            return ResolutionOutcome.not_found()

        scored = sorted(((self.score_result(r, track), r) for r in results),
                        key=lambda pair: pair[0], reverse=True)
        best_score, best = scored[0]
        second_score = scored[1][0] if len(scored) > 1 else 0.0
        margin = best_score - second_score

        logger.debug(f"wikipedia candidate pageID={best.page_id} title='{best.title}' "
                     f"score={best_score:.3f} margin={margin:.3f}")

        if best_score < MINIMUM_SCORE:
            return ResolutionOutcome.not_found()

        both_very_confident = best_score >= HIGH_CONFIDENCE_SCORE and second_score >= HIGH_CONFIDENCE_SCORE
        if (best_score >= AMBIGUOUS_BEST_SCORE and second_score >= AMBIGUOUS_SECOND_SCORE
                and margin < AMBIGUOUS_MARGIN and not both_very_confident):
            return ResolutionOutcome.ambiguous()

        return ResolutionOutcome.resolved(WikipediaPageResolution(
            page_id=best.page_id, title=best.title, confidence=best_score))

    @staticmethod
    def score_result(result: WikipediaSearchResult, track: NowPlayingTrack) -> float:
        basis = track.album if track.album.strip() else track.title

        normalized_title = normalize(result.title, PAGE_NORMALIZE_OPTIONS)
        normalized_basis = normalize(basis, PAGE_NORMALIZE_OPTIONS)
        normalized_artist = normalize(track.artist, PAGE_NORMALIZE_OPTIONS)
        normalized_snippet = normalize(result.snippet, PAGE_NORMALIZE_OPTIONS)

        score = similarity(normalized_title, normalized_basis, CONTAINS_SCORE)
        if 'album' in normalized_title:
            score += ALBUM_WORD_BOOST
        if '(album)' in result.title.lower():
            score += DISAMBIGUATION_BOOST
        if normalized_artist and normalized_artist in normalized_snippet:
            score += ARTIST_IN_SNIPPET_BOOST
        return min(1.0, score)
