"""
Playlist Builder

Turns an artist's credited discography (or two artists' shared one) into a
Spotify playlist.

Phases:
1. Fetch discography (single artist or co-credit intersection)
2. Rank by ListenBrainz popularity; fall back to the artist's top recordings,
   then to alphabetical order
3. Keep the top 1.5x the target size and resolve those to Spotify tracks
4. Drop duplicate URIs (highest-ranked occurrence wins), re-sort by Spotify
   popularity and truncate to the target size
5. Create the playlist and add the tracks (skipped on a dry run)

Every recording that does not make it into the playlist is recorded in the
result with a DropReason.
"""

import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

from sideman.cancellation import check_cancelled
from sideman.errors import (
    ArtistResolutionFailedError, NoRecordingsFoundError, NoTracksResolvedError, NotFoundError,
    ProviderError,
)
from sideman.models import (
    ArtistRecordingRel, CoCreditArtist, CoCreditConfig, DropReason,
    DroppedRecording, PlaylistBuildRequest, PlaylistBuildResult, PlaylistBuildStage,
    ResolvedTrack, UnresolvedReason,
)

logger = logging.getLogger(__name__)

CANDIDATE_MULTIPLIER = 1.5

_UNRESOLVED_DROP_REASONS = {
    UnresolvedReason.MISSING_ARTIST_CREDITS: DropReason.MISSING_ARTIST_CREDITS,
    UnresolvedReason.NO_CATALOGUE_MATCH: DropReason.NO_CATALOGUE_MATCH,
}


def playlist_name_for(request: PlaylistBuildRequest) -> str:
    """
    Examples:
        Ron Carter, musicians -> "Ron Carter — Musicians Credits"
        Ron Carter, no filter -> "Ron Carter — All Credits"
        co-credit -> "Ron Carter × Herbie Hancock — Co-Credits"
    """
    if request.co_credit is not None:
        return f"{request.co_credit.artist_a.name} × {request.co_credit.artist_b.name} — Co-Credits"
    if request.role_filter is not None:
        return f"{request.artist_name} — {request.role_filter.title} Credits"
    return f"{request.artist_name} — All Credits"


def playlist_description_for(request: PlaylistBuildRequest, track_count: int) -> str:
    if request.co_credit is not None:
        return (f"Tracks crediting both {request.co_credit.artist_a.name} and "
                f"{request.co_credit.artist_b.name}. {track_count} tracks. Generated by Sideman.")
    if request.role_filter is not None:
        role_description = f"on {request.role_filter.title.lower()}"
    else:
        role_description = 'across all roles'
    return (f"Tracks featuring {request.artist_name} {role_description}. "
            f"{track_count} tracks. Generated by Sideman.")


def _dropped(recording: ArtistRecordingRel, reason: DropReason) -> DroppedRecording:
    return DroppedRecording(recording.recording_mbid, recording.recording_title, reason)


class PlaylistBuilder:
    """Orchestrates discography, ranking, matching and playlist creation"""

    def __init__(self, discography, listenbrainz, matcher, spotify, mb_client=None):
        """
        Args:
            discography: DiscographyService
            listenbrainz: ListenBrainzClient (popularity ranking)
            matcher: TrackMatcher
            spotify: SpotifyClient (playlist creation)
            mb_client: MusicBrainzClient, needed only to resolve co-credit
                       artists given without an MBID
        """
        self.discography = discography
        self.listenbrainz = listenbrainz
        self.matcher = matcher
        self.spotify = spotify
        self.mb_client = mb_client

    def build(self, request: PlaylistBuildRequest,
              on_stage: Optional[Callable[[PlaylistBuildStage], None]] = None,
              cancel_token=None, dry_run: bool = False) -> PlaylistBuildResult:
        """
        Build a playlist

        Args:
            request: What to build
            on_stage: Optional callback receiving each PlaylistBuildStage
            cancel_token: Optional CancellationToken
            dry_run: Resolve tracks but do not create the playlist

        Returns:
            PlaylistBuildResult (playlist_uri is None on a dry run)

        Raises:
            NoRecordingsFoundError, NoIntersectionFoundError,
            NoTracksResolvedError, ArtistResolutionFailedError: Empty results
            OperationCancelled: If cancelled
            ProviderError: Unrecoverable provider failure
        """
        def emit(stage: PlaylistBuildStage):
            if on_stage is not None:
                on_stage(stage)

        # Phase 1: discography
        emit(PlaylistBuildStage.fetching_discography())
        check_cancelled(cancel_token)

        if request.co_credit is not None:
            co_credit = self.resolve_co_credit_artists(request.co_credit)
            artist_mbids = [co_credit.artist_a.mbid, co_credit.artist_b.mbid]
            discography = self.discography.fetch_co_credit_discography(co_credit, cancel_token=cancel_token)
        else:
            artist = self.resolve_artist(CoCreditArtist(request.artist_name, request.artist_mbid or None))
            artist_mbids = [artist.mbid]
            discography = self.discography.fetch_all_discography(
                artist.mbid, request.artist_name,
                role_filter=request.role_filter, cancel_token=cancel_token)

        if not discography.recordings:
            raise NoRecordingsFoundError()

        # Phase 2: ranking
        emit(PlaylistBuildStage.ranking(len(discography.recordings)))
        check_cancelled(cancel_token)

        ranked = self.rank_by_popularity(discography.recordings, artist_mbids, cancel_token=cancel_token)

        candidate_limit = math.ceil(request.max_tracks * CANDIDATE_MULTIPLIER)
        candidates = ranked[:candidate_limit]
        dropped = [_dropped(r, DropReason.RANKED_OUT) for r in ranked[candidate_limit:]]

        # Phase 3: matching
        check_cancelled(cancel_token)
        summary = self.matcher.resolve_detailed(
            candidates,
            on_progress=lambda done, total: emit(PlaylistBuildStage.resolving(done, total)),
            fallback_artist_queries=self._fallback_artist_queries(request),
            cancel_token=cancel_token,
        )
        dropped.extend(_dropped(u.recording, _UNRESOLVED_DROP_REASONS[u.reason]) for u in summary.unresolved)

        if not summary.resolved:
            raise NoTracksResolvedError()

        # Phase 4: dedupe, sort, truncate
        tracks, duplicates = self.dedupe_by_uri(summary.resolved)
        dropped.extend(DroppedRecording(t.recording_mbid, t.recording_title, DropReason.DUPLICATE_URI)
                       for t in duplicates)

        tracks = sorted(tracks, key=lambda t: t.spotify_popularity or 0, reverse=True)
        dropped.extend(DroppedRecording(t.recording_mbid, t.recording_title, DropReason.TRUNCATED)
                       for t in tracks[request.max_tracks:])
        tracks = tracks[:request.max_tracks]

        # Phase 5: playlist
        track_count = len(tracks)
        emit(PlaylistBuildStage.creating(track_count))
        check_cancelled(cancel_token)

        name = playlist_name_for(request)
        description = playlist_description_for(request, track_count)
        uris = [t.spotify_uri for t in tracks]

        playlist_uri = None
        if dry_run:
            logger.info(f"[DRY RUN] Would create '{name}' with {track_count} tracks")
        else:
            playlist = self.spotify.create_playlist(name, description, request.is_public)
            self.spotify.add_tracks_to_playlist(playlist.id, uris)
            playlist_uri = f"spotify:playlist:{playlist.id}"

        result = PlaylistBuildResult(
            playlist_name=name,
            playlist_uri=playlist_uri,
            track_count=track_count,
            skipped_count=len(candidates) - track_count,
            dropped=dropped,
            track_uris=uris,
        )

        emit(PlaylistBuildStage.complete(name, track_count))
        logger.info(f"playlist built: {name} tracks={track_count} skipped={result.skipped_count} "
                    f"drops={result.drop_counts()}")
        return result

    # ========================================================================
    # ARTISTS
    # ========================================================================

    def resolve_co_credit_artists(self, config: CoCreditConfig) -> CoCreditConfig:
        """Fill in missing MBIDs through MusicBrainz artist search"""
        return CoCreditConfig(
            artist_a=self.resolve_artist(config.artist_a),
            artist_b=self.resolve_artist(config.artist_b),
            match_mode=config.match_mode,
        )

    def resolve_artist(self, artist: CoCreditArtist) -> CoCreditArtist:
        """The artist with its MBID, looked up by name (best search score) when missing"""
        if artist.mbid:
            return artist
        if self.mb_client is None or not artist.name.strip():
            raise ArtistResolutionFailedError(artist.name)

        try:
            results = self.mb_client.search_artists(artist.name)
        except NotFoundError:
            results = []
        if not results:
            raise ArtistResolutionFailedError(artist.name)

        best = max(results, key=lambda r: r.score)
        logger.info(f"Resolved artist '{artist.name}' -> {best.name} ({best.id}, score {best.score})")
        return CoCreditArtist(name=artist.name, mbid=best.id)

    @staticmethod
    def _fallback_artist_queries(request: PlaylistBuildRequest) -> Tuple[str, ...]:
        if request.co_credit is not None:
            return (request.co_credit.artist_a.name, request.co_credit.artist_b.name)
        return (request.artist_name,) if request.artist_name else ()

    # ========================================================================
    # RANKING
    # ========================================================================

    def rank_by_popularity(self, recordings: List[ArtistRecordingRel], artist_mbids: List[str],
                           cancel_token=None) -> List[ArtistRecordingRel]:
        """
        Order recordings by listen count, most listened first

        Falls back to the artists' top recordings when the batch lookup
        yields nothing, and to alphabetical order when that is empty too.
        """
        popularity = self._batch_popularity(recordings, cancel_token)

        if not popularity:
            for artist_mbid in artist_mbids:
                check_cancelled(cancel_token)
                try:
                    top = self.listenbrainz.top_recordings_for_artist(artist_mbid)
                except ProviderError as e:
                    logger.warning(f"ListenBrainz top recordings failed: {e.describe()}")
                    continue
                for item in top:
                    if item.listen_count is not None:
                        popularity.setdefault(item.recording_mbid, item.listen_count)

        if not popularity:
            logger.info("No popularity data, ranking alphabetically")
            return sorted(recordings, key=lambda r: r.recording_title.casefold())

        return sorted(recordings, key=lambda r: popularity.get(r.recording_mbid, 0), reverse=True)

    def _batch_popularity(self, recordings, cancel_token) -> Dict[str, int]:
        try:
            items = self.listenbrainz.recording_popularity(
                [r.recording_mbid for r in recordings], cancel_token=cancel_token)
        except ProviderError as e:
            logger.warning(f"ListenBrainz popularity batch failed: {e.describe()}")
            return {}
        return {item.recording_mbid: item.listen_count for item in items if item.listen_count is not None}

    @staticmethod
    def dedupe_by_uri(tracks: List[ResolvedTrack]) -> Tuple[List[ResolvedTrack], List[ResolvedTrack]]:
        """
        Returns:
            (first occurrence of each URI in input order, the later duplicates)
        """
        seen = set()
        unique, duplicates = [], []
        for track in tracks:
            if track.spotify_uri in seen:
                duplicates.append(track)
            else:
                seen.add(track.spotify_uri)
                unique.append(track)
        return unique, duplicates
