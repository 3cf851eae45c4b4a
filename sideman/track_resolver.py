"""
Track Resolver

Resolves a now-playing track to one MusicBrainz recording by scoring the
recording search candidates. Low-confidence or close results are reported
as ambiguous rather than guessed.
"""

import logging
from typing import Optional

from sideman.errors import NotFoundError, ProviderError, RateLimitedError
from sideman.models import (
    NowPlayingTrack, RecordingCandidate, RecordingQuery, ResolutionOutcome,
    ResolutionResult,
)
from sideman.text_matching import NormalizeOptions, TITLE_OPTIONS, normalize, similarity

logger = logging.getLogger(__name__)

# Candidate score weights
PROVIDER_SCORE_WEIGHT = 0.45
TITLE_WEIGHT = 0.30
ARTIST_WEIGHT = 0.20
ALBUM_WEIGHT = 0.05

# Album similarity used when the player reports no album
MISSING_ALBUM_SCORE = 0.6
CONTAINS_SCORE = 0.88


def _title_similarity(a: str, b: str) -> float:
    return similarity(normalize(a, TITLE_OPTIONS), normalize(b, TITLE_OPTIONS), CONTAINS_SCORE)


def _album_similarity(a: str, b: str) -> float:
    return similarity(normalize(a, NormalizeOptions.DEFAULT), normalize(b, NormalizeOptions.DEFAULT),
                      CONTAINS_SCORE)


class TrackResolver:
    """Scores MusicBrainz recording candidates against a NowPlayingTrack"""

    def __init__(self, mb_client, confidence_threshold: float = 0.78, minimum_margin: float = 0.10):
        self.mb_client = mb_client
        self.confidence_threshold = confidence_threshold
        self.minimum_margin = minimum_margin

    def resolve(self, track: NowPlayingTrack) -> ResolutionOutcome:
        """
        Resolve a track to a recording

        Args:
            track: The track reported by the player

        Returns:
            ResolutionOutcome; on success its result is a ResolutionResult
        """
        try:
            candidates = self.mb_client.search_recordings(
                RecordingQuery(title=track.title, artist=track.artist, album=track.album))

            if not candidates and track.album.strip():
                logger.debug(f"No candidates with album '{track.album}', retrying without it")
                candidates = self.mb_client.search_recordings(
                    RecordingQuery(title=track.title, artist=track.artist, album=''))
        except NotFoundError:
            return ResolutionOutcome.not_found()
        except RateLimitedError:
            return ResolutionOutcome.rate_limited()
        except ProviderError as e:
            logger.warning(f"Recording search failed: {e.describe()}")
            return ResolutionOutcome.network_error(str(e))

        if not candidates:
            return ResolutionOutcome.not_found()

        scored = sorted(((self.score_candidate(c, track), c) for c in candidates),
                        key=lambda pair: pair[0], reverse=True)
        best_score, best = scored[0]
        second_score = scored[1][0] if len(scored) > 1 else 0.0
        margin = best_score - second_score

        logger.debug(f"Best candidate {best.recording_mbid} score={best_score:.3f} margin={margin:.3f}")

        if best_score < self.confidence_threshold or margin < self.minimum_margin:
            return ResolutionOutcome.ambiguous()

        return ResolutionOutcome.resolved(ResolutionResult(
            recording_mbid=best.recording_mbid,
            release_mbid=self.select_release_id(best, track.album),
            work_mbids=(),
            confidence=best_score,
        ))

    def score_candidate(self, candidate: RecordingCandidate, track: NowPlayingTrack) -> float:
        provider_score = min(max(candidate.score / 100.0, 0.0), 1.0)
        title_score = _title_similarity(candidate.title, track.title)
        artist_score = _title_similarity(' '.join(candidate.artist_names), track.artist)

        if not track.album.strip():
            album_score = MISSING_ALBUM_SCORE
        else:
            album_score = max((_album_similarity(t, track.album) for t in candidate.release_titles),
                              default=0.0)

        return (PROVIDER_SCORE_WEIGHT * provider_score
                + TITLE_WEIGHT * title_score
                + ARTIST_WEIGHT * artist_score
                + ALBUM_WEIGHT * album_score)

    @staticmethod
    def select_release_id(candidate: RecordingCandidate, album: str) -> Optional[str]:
        """Release whose title is most similar to the album; the first one when album is blank"""
        if not candidate.release_ids:
            return None
        if not album.strip():
            return candidate.release_ids[0]

        best_id, best_score = candidate.release_ids[0], -1.0
        for release_id, release_title in zip(candidate.release_ids, candidate.release_titles):
            score = _album_similarity(release_title, album)
            if score > best_score:
                best_id, best_score = release_id, score
        return best_id
