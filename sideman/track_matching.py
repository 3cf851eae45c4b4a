"""
Track-to-Catalogue Matcher

Resolves discography recordings to Spotify tracks.

Matching Strategy:
1. ISRC lookup: embedded ISRCs, else up to 3 fetched from MusicBrainz;
   the first ISRC Spotify knows wins
2. Text search: every artist credit in order, then any fallback artist
   queries not already tried; per artist the exact title, then a relaxed
   title (parentheticals and feat. removed). The best-scoring result is
   accepted when it clears the thresholds below.
3. Discogs hints: when there was no artist to search with, or every artist
   failed, artists Discogs credits on releases carrying the title are tried
   the same way (names already searched are skipped)

Recordings are processed in batches on a thread pool. A batch that hits
Spotify's rate limit halves the worker count (floor 1), pauses and requeues
only the rate-limited recordings; a clean batch adds one worker back, up to
the configured maximum.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sideman.cancellation import check_cancelled
from sideman.config import DEFAULT_MATCH_CONCURRENCY
from sideman.errors import NotAuthenticatedError, ProviderError, RateLimitedError
from sideman.models import (
    ArtistRecordingRel, ResolvedTrack, SpotifyTrack, TrackMatchStrategy, TrackMatchSummary,
    UnresolvedReason, UnresolvedRecording,
)
from sideman.text_matching import artist_matches, fuzzy_title_score, normalize, normalize_isrc, relaxed_title

logger = logging.getLogger(__name__)

MAX_FETCHED_ISRCS = 3

TITLE_WEIGHT = 0.75
ARTIST_WEIGHT = 0.25
MIN_TITLE_SCORE = 0.70
MIN_MATCH_SCORE = 0.60

# A recording rate-limited this many times is given up on
MAX_REQUEUES = 3

DISCOGS_HINT_LIMIT = 3


@dataclass
class _MatchOutcome:
    track: Optional[ResolvedTrack] = None
    reason: Optional[UnresolvedReason] = None


def score_candidate(recording_title: str, artist: str, track: SpotifyTrack) -> float:
    """
    Weighted title/artist score for a text-search result

    Returns:
        Score in [0, 1], or 0.0 when the title similarity is below MIN_TITLE_SCORE
    """
    title_score = fuzzy_title_score(recording_title, track.name)
    if title_score < MIN_TITLE_SCORE:
        return 0.0
    artist_score = 1.0 if artist_matches(artist, track.artist_names) else 0.0
    return TITLE_WEIGHT * title_score + ARTIST_WEIGHT * artist_score


def best_candidate(recording_title: str, artist: str, tracks: Iterable[SpotifyTrack]) -> Optional[SpotifyTrack]:
    best, best_score = None, 0.0
    for track in tracks:
        if not track.uri:
            continue
        score = score_candidate(recording_title, artist, track)
        if score >= MIN_MATCH_SCORE and score > best_score:
            best, best_score = track, score
    return best


class TrackMatcher:
    """Matches recordings to Spotify tracks with adaptive concurrency"""

    def __init__(self, mb_client, spotify_client, max_concurrency: int = DEFAULT_MATCH_CONCURRENCY,
                 rate_limit_pause: float = 1.0, sleep: Callable[[float], None] = time.sleep,
                 discogs_client=None):
        """
        Args:
            mb_client: MusicBrainz client (ISRC lookups)
            spotify_client: Spotify client (search)
            max_concurrency: Starting and maximum number of concurrent lookups
            rate_limit_pause: Seconds to pause after a rate-limited batch
            sleep: Injected for tests
            discogs_client: Optional DiscogsClient for artist hints
        """
        self.mb_client = mb_client
        self.spotify_client = spotify_client
        self.discogs_client = discogs_client
        self.max_concurrency = max(1, max_concurrency)
        self.rate_limit_pause = rate_limit_pause
        self._sleep = sleep
        self._concurrency = self.max_concurrency
        self._limit_lock = threading.Lock()

        self.stats = {
            'isrc_matches': 0,
            'text_matches': 0,
            'unresolved': 0,
            'rate_limited_batches': 0,
        }

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def _decrease_concurrency(self):
        with self._limit_lock:
            self._concurrency = max(1, self._concurrency // 2)

    def _increase_concurrency(self):
        with self._limit_lock:
            self._concurrency = min(self.max_concurrency, self._concurrency + 1)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def resolve(self, recordings: List[ArtistRecordingRel], on_progress=None,
                fallback_artist_queries: Iterable[str] = (), cancel_token=None) -> List[ResolvedTrack]:
        """Resolved tracks only, in input order"""
        return self.resolve_detailed(recordings, on_progress=on_progress,
                                     fallback_artist_queries=fallback_artist_queries,
                                     cancel_token=cancel_token).resolved

    def resolve_detailed(self, recordings: List[ArtistRecordingRel], on_progress=None,
                         fallback_artist_queries: Iterable[str] = (),
                         cancel_token=None) -> TrackMatchSummary:
        """
        Resolve recordings to Spotify tracks

        Args:
            recordings: Recordings to resolve
            on_progress: Optional callback(done, total), called as results come in
            fallback_artist_queries: Extra artist names for the text search
            cancel_token: Optional CancellationToken

        Returns:
            TrackMatchSummary; both lists follow the input order

        Raises:
            OperationCancelled: If cancelled
            NotAuthenticatedError: If Spotify rejects the access token
        """
        fallback_artist_queries = tuple(fallback_artist_queries)
        total = len(recordings)
        outcomes = {}
        requeues = {}
        done = 0

        self._concurrency = self.max_concurrency
        pending = deque(range(total))
        if on_progress:
            on_progress(0, total)

        while pending:
            check_cancelled(cancel_token)
            batch = [pending.popleft() for _ in range(min(self._concurrency, len(pending)))]
            rate_limited = []

            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {
                    executor.submit(self._resolve_one, recordings[index], fallback_artist_queries,
                                    cancel_token): index
                    for index in batch
                }
                for future in as_completed(futures):
                    index = futures[future]
                    try:
                        outcomes[index] = future.result()
                    except RateLimitedError:
                        requeues[index] = requeues.get(index, 0) + 1
                        if requeues[index] <= MAX_REQUEUES:
                            rate_limited.append(index)
                            continue
                        logger.warning(f"Giving up on '{recordings[index].recording_title}' "
                                       f"after {MAX_REQUEUES} rate-limited attempts")
                        outcomes[index] = _MatchOutcome(reason=UnresolvedReason.NO_CATALOGUE_MATCH)
                    done += 1
                    if on_progress:
                        on_progress(done, total)

            if rate_limited:
                self.stats['rate_limited_batches'] += 1
                self._decrease_concurrency()
                logger.info(f"Rate limited: requeueing {len(rate_limited)} recordings, "
                            f"concurrency now {self._concurrency}")
                self._sleep(self.rate_limit_pause)
                pending.extendleft(sorted(rate_limited, reverse=True))
            else:
                self._increase_concurrency()

        summary = TrackMatchSummary()
        for index in range(total):
            outcome = outcomes[index]
            if outcome.track is not None:
                summary.resolved.append(outcome.track)
                if outcome.track.match_strategy is TrackMatchStrategy.ISRC:
                    self.stats['isrc_matches'] += 1
                else:
                    self.stats['text_matches'] += 1
            else:
                summary.unresolved.append(UnresolvedRecording(recordings[index], outcome.reason))

        self.stats['unresolved'] += len(summary.unresolved)
        logger.info(f"Track matching complete: {len(summary.resolved)}/{total} resolved")
        return summary

    # ========================================================================
    # PER-RECORDING MATCHING
    # ========================================================================

    def _resolve_one(self, recording: ArtistRecordingRel, fallback_artist_queries, cancel_token) -> _MatchOutcome:
        check_cancelled(cancel_token)

        track = self._resolve_via_isrc(recording, cancel_token)
        if track is not None:
            return _MatchOutcome(track=track)

        artists = self._artist_queries(recording, fallback_artist_queries)
        if artists:
            track = self._resolve_via_text_search(recording, artists, cancel_token)
            if track is not None:
                return _MatchOutcome(track=track)

        hints = self._discogs_hints(recording, artists)
        if hints:
            track = self._resolve_via_text_search(recording, hints, cancel_token)
            if track is not None:
                return _MatchOutcome(track=track)

        if not artists and not hints:
            logger.debug(f"track skip: no artist credits for '{recording.recording_title}'")
            return _MatchOutcome(reason=UnresolvedReason.MISSING_ARTIST_CREDITS)

        logger.debug(f"track skip: no match for '{recording.recording_title}' ({recording.recording_mbid})")
        return _MatchOutcome(reason=UnresolvedReason.NO_CATALOGUE_MATCH)

    def _discogs_hints(self, recording: ArtistRecordingRel, tried_artists: List[str]) -> List[str]:
        """Discogs artist hints not already queried, or [] without a Discogs client"""
        if self.discogs_client is None:
            return []
        try:
            hints = self.discogs_client.artist_hints_for_track(
                recording.recording_title, artist_hints=tried_artists, limit=DISCOGS_HINT_LIMIT)
        except ProviderError as e:
            logger.debug(f"Discogs hints failed for '{recording.recording_title}': {e.describe()}")
            return []

        tried = {normalize(name) for name in tried_artists}
        fresh = []
        for name in hints:
            key = normalize(name)
            if key and key not in tried:
                tried.add(key)
                fresh.append(name)
        if fresh:
            logger.debug(f"Discogs hints for '{recording.recording_title}': {fresh}")
        return fresh

    def _isrcs_for(self, recording: ArtistRecordingRel) -> List[str]:
        isrcs = [normalize_isrc(i) for i in recording.isrcs]
        if not any(isrcs):
            try:
                fetched = self.mb_client.get_recording_isrcs(recording.recording_mbid)
            except ProviderError as e:
                logger.debug(f"ISRC lookup failed for {recording.recording_mbid}: {e.describe()}")
                return []
            isrcs = [normalize_isrc(i) for i in fetched[:MAX_FETCHED_ISRCS]]

        unique = []
        for isrc in isrcs:
            if isrc and isrc not in unique:
                unique.append(isrc)
        return unique

    def _resolve_via_isrc(self, recording: ArtistRecordingRel, cancel_token) -> Optional[ResolvedTrack]:
        for isrc in self._isrcs_for(recording):
            check_cancelled(cancel_token)
            try:
                tracks = self.spotify_client.search_track_by_isrc(isrc)
            except (RateLimitedError, NotAuthenticatedError):
                raise
            except ProviderError as e:
                logger.debug(f"ISRC search failed for {isrc}: {e.describe()}")
                continue
            for track in tracks:
                if track.uri:
                    return ResolvedTrack(
                        recording_mbid=recording.recording_mbid,
                        recording_title=recording.recording_title,
                        spotify_uri=track.uri,
                        spotify_popularity=track.popularity,
                        match_strategy=TrackMatchStrategy.ISRC,
                    )
        return None

    @staticmethod
    def _artist_queries(recording: ArtistRecordingRel, fallback_artist_queries) -> List[str]:
        artists = []
        tried = set()
        for name in list(recording.artist_credits) + list(fallback_artist_queries):
            key = normalize(name)
            if not key or key in tried:
                continue
            tried.add(key)
            artists.append(name)
        return artists

    def _resolve_via_text_search(self, recording: ArtistRecordingRel, artists: List[str],
                                 cancel_token) -> Optional[ResolvedTrack]:
        titles = [recording.recording_title]
        relaxed = relaxed_title(recording.recording_title)
        if relaxed and relaxed.lower() != recording.recording_title.lower():
            titles.append(relaxed)

        for artist in artists:
            for title in titles:
                check_cancelled(cancel_token)
                try:
                    tracks = self.spotify_client.search_tracks(title, artist)
                except (RateLimitedError, NotAuthenticatedError):
                    raise
                except ProviderError as e:
                    logger.debug(f"text search failed for '{title}' / '{artist}': {e.describe()}")
                    continue

                match = best_candidate(recording.recording_title, artist, tracks)
                if match is not None:
                    return ResolvedTrack(
                        recording_mbid=recording.recording_mbid,
                        recording_title=recording.recording_title,
                        spotify_uri=match.uri,
                        spotify_popularity=match.popularity,
                        match_strategy=TrackMatchStrategy.TEXT_SEARCH,
                    )
        return None
