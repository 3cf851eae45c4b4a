"""
Sideman - Command Line Interface

Subcommands:
  credits   Look up the credits of one track
  playlist  Build a Spotify playlist from an artist's credits

Examples:
  sideman credits --title "Take Five" --artist "The Dave Brubeck Quartet" --album "Time Out"
  sideman credits --title "Brown Sugar" --artist "D'Angelo" --backend merged --debug
  sideman playlist --artist "Ron Carter" --role musicians --max-tracks 50
  sideman playlist --artist "Ron Carter" --with "Herbie Hancock" --dry-run
"""

import sys
import argparse
import logging
from typing import Optional

from sideman.cache_utils import CreditsCache, DiscographyCache
from sideman.cancellation import CancellationToken
from sideman.config import CreditsBackend, configure_logging, get_settings, load_environment
from sideman.credits_providers import make_credits_provider
from sideman.discogs_client import DiscogsClient
from sideman.discography import DiscographyService
from sideman.errors import OperationCancelled, PlaylistBuildError, ProviderError
from sideman.listenbrainz_client import ListenBrainzClient
from sideman.mb_client import MusicBrainzClient
from sideman.models import (
    CoCreditArtist, CoCreditConfig, CoCreditMatchMode, CreditRoleGroup, NowPlayingTrack,
    PlaylistBuildRequest, StageKind,
)
from sideman.playlist_builder import PlaylistBuilder
from sideman.spotify_client import SpotifyClient
from sideman.track_matching import TrackMatcher

logger = logging.getLogger('sideman')

EPILOG = """
Environment:
  SPOTIFY_ACCESS_TOKEN        Spotify user token (playlist command)
  DISCOGS_TOKEN               Discogs token; enables artist hints when matching (optional)
  SIDEMAN_CREDITS_BACKEND     wikipedia | musicbrainz | wikipedia_then_musicbrainz | merged
  SIDEMAN_CACHE_DIR           Cache directory (default: <project>/cache)
  SIDEMAN_USER_AGENT          User-Agent sent to MusicBrainz/Wikipedia/ListenBrainz
  SIDEMAN_MATCH_CONCURRENCY   Concurrent Spotify lookups (default: 4)

Examples:
  sideman credits --title "Take Five" --artist "The Dave Brubeck Quartet" --album "Time Out"
  sideman playlist --artist "Ron Carter" --role musicians --max-tracks 50
  sideman playlist --artist "Ron Carter" --with "Herbie Hancock" --dry-run
"""


# ============================================================================
# OUTPUT FORMATTING
# ============================================================================

def print_header(title: str, modes: dict = None):
    logger.info("=" * 80)
    logger.info(title)
    logger.info("=" * 80)

    if modes:
        for mode_name, is_active in modes.items():
            if is_active:
                logger.info(f"*** {mode_name} MODE ***")

    logger.info("")


def print_summary(stats: dict, title: str = "SUMMARY"):
    """
    Print a formatted summary of operation statistics.

    Args:
        stats: Dict of stat_name -> value
        title: Summary section title
    """
    logger.info("")
    logger.info("=" * 80)
    logger.info(title)
    logger.info("=" * 80)

    if stats:
        max_key_len = max(len(str(k)) for k in stats.keys())
        for key, value in stats.items():
            display_key = key.replace('_', ' ').title()
            logger.info(f"{display_key:<{max_key_len + 5}} {value}")

    logger.info("=" * 80)


# ============================================================================
# ARGUMENTS
# ============================================================================

def _role_group(value: str) -> CreditRoleGroup:
    try:
        return CreditRoleGroup.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def create_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--debug', action='store_true', help='Enable debug logging')
    common.add_argument('--env-file', help='Load environment variables from this file')

    parser = argparse.ArgumentParser(
        prog='sideman',
        description='Track credits and credit-based playlists from MusicBrainz and Wikipedia',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    credits = subparsers.add_parser('credits', parents=[common], help='Look up the credits of one track')
    credits.add_argument('--title', required=True, help='Track title')
    credits.add_argument('--artist', required=True, help='Track artist')
    credits.add_argument('--album', default='', help='Album title (improves matching)')
    credits.add_argument('--track-number', type=int, help='Track number on the album')
    credits.add_argument('--spotify-id', default='', help='Spotify track id (cache key)')
    credits.add_argument('--backend', choices=[b.value for b in CreditsBackend] + ['hybrid'],
                         help='Credits source (default: SIDEMAN_CREDITS_BACKEND or wikipedia)')
    credits.add_argument('--force-refresh', action='store_true',
                         help='Bypass cache and fetch fresh data from APIs')

    playlist = subparsers.add_parser('playlist', parents=[common],
                                     help='Build a playlist from an artist\'s credits')
    playlist.add_argument('--artist', required=True, help='Artist name')
    playlist.add_argument('--mbid', help='Artist MusicBrainz id (looked up by name when omitted)')
    playlist.add_argument('--with', dest='with_artist', help='Second artist for a co-credit playlist')
    playlist.add_argument('--with-mbid', help='MusicBrainz id of the second artist')
    playlist.add_argument('--performer-only', action='store_true',
                          help='Co-credit: only count recordings both artists performed on')
    playlist.add_argument('--role', type=_role_group,
                          help='Only credits in this role group (musicians, production, writing, '
                               'engineering, misc)')
    playlist.add_argument('--max-tracks', type=int, default=100, help='Playlist size (default: 100)')
    playlist.add_argument('--public', action='store_true', help='Create a public playlist')
    playlist.add_argument('--dry-run', action='store_true',
                          help='Resolve tracks without creating the playlist')
    return parser


# ============================================================================
# COMMANDS
# ============================================================================

def run_credits(args, settings) -> bool:
    backend = CreditsBackend.from_env_value(args.backend) if args.backend else settings.credits_backend

    print_header(f"Credits: {args.title} - {args.artist}", {
        "FORCE REFRESH": args.force_refresh,
    })
    logger.info(f"Backend: {backend.value}")

    provider = make_credits_provider(backend, cache=CreditsCache.persistent(),
                                     user_agent=settings.user_agent, force_refresh=args.force_refresh)
    track = NowPlayingTrack(
        id=args.spotify_id or f"{args.artist}|{args.title}".lower(),
        title=args.title,
        artist=args.artist,
        album=args.album,
        track_number=args.track_number,
    )
    if args.force_refresh:
        provider.invalidate(track)

    result = provider.lookup(track)
    if not result.is_loaded:
        if result.message:
            logger.error(f"Lookup {result.state.value}: {result.message}")
        else:
            logger.warning(f"Lookup {result.state.value}")
        return False

    bundle = result.bundle
    logger.info(f"Source: {bundle.source_name or 'unknown'}")
    if bundle.source_page_url:
        logger.info(f"Page: {bundle.source_page_url}")
    if bundle.matched_track_number is not None:
        logger.info(f"Matched track: {bundle.matched_track_number}")
    logger.info("")

    for group in CreditRoleGroup.display_order():
        entries = bundle.entries(group)
        if not entries:
            continue
        logger.info(f"{group.title}:")
        for entry in entries:
            line = f"  {entry.person_name} - {entry.role_raw}"
            if not entry.scope.is_album_wide:
                line += f" [{entry.scope.label}]"
            logger.info(f"{line} ({entry.source_level.badge})")
        logger.info("")

    if bundle.source_attribution:
        logger.info(f"Credits: {bundle.source_attribution}")

    print_summary({
        'credits': len(bundle.all_entries()),
        'provenance': ', '.join(level.value for level in bundle.provenance) or '-',
    })
    return True


def run_playlist(args, settings, cancel_token: CancellationToken) -> bool:
    if not settings.spotify_access_token:
        logger.error("SPOTIFY_ACCESS_TOKEN is not set")
        return False

    print_header(f"Playlist: {args.artist}" + (f" × {args.with_artist}" if args.with_artist else ""), {
        "DRY RUN": args.dry_run,
    })

    mb_client = MusicBrainzClient(user_agent=settings.user_agent)
    spotify = SpotifyClient(access_token=settings.spotify_access_token, user_agent=settings.user_agent)
    discogs = None
    if settings.discogs_token:
        discogs = DiscogsClient(token=settings.discogs_token, user_agent=settings.user_agent)
    matcher = TrackMatcher(mb_client, spotify, max_concurrency=settings.match_concurrency,
                           discogs_client=discogs)
    builder = PlaylistBuilder(
        discography=DiscographyService(mb_client, DiscographyCache.persistent()),
        listenbrainz=ListenBrainzClient(user_agent=settings.user_agent),
        matcher=matcher,
        spotify=spotify,
        mb_client=mb_client,
    )

    if args.with_artist:
        mode = CoCreditMatchMode.PERFORMER_ONLY if args.performer_only else CoCreditMatchMode.ANY_INVOLVEMENT
        request = PlaylistBuildRequest.for_co_credit(
            CoCreditConfig(
                artist_a=CoCreditArtist(args.artist, args.mbid),
                artist_b=CoCreditArtist(args.with_artist, args.with_mbid),
                match_mode=mode,
            ),
            is_public=args.public,
            max_tracks=args.max_tracks,
        )
    else:
        request = PlaylistBuildRequest(
            artist_mbid=args.mbid or '',
            artist_name=args.artist,
            role_filter=args.role,
            is_public=args.public,
            max_tracks=args.max_tracks,
        )

    def on_stage(stage):
        if stage.kind is StageKind.RESOLVING:
            logger.debug(f"Resolving {stage.resolved}/{stage.total}")
        elif stage.kind is StageKind.RANKING:
            logger.info(f"Ranking {stage.total} recordings")
        elif stage.kind is StageKind.CREATING:
            logger.info(f"Creating playlist with {stage.track_count} tracks")
        elif stage.kind is StageKind.FETCHING_DISCOGRAPHY:
            logger.info("Fetching discography")

    result = builder.build(request, on_stage=on_stage, cancel_token=cancel_token, dry_run=args.dry_run)

    logger.info(f"Playlist: {result.playlist_name}")
    if result.playlist_uri:
        logger.info(f"URI: {result.playlist_uri}")

    stats = {
        'tracks': result.track_count,
        'skipped': result.skipped_count,
    }
    stats.update(result.drop_counts())
    stats.update(matcher.stats)
    print_summary(stats)
    return True


def main(argv: Optional[list] = None) -> int:
    """
    Console entry point

    Returns:
        Exit code: 0 on success, 1 on failure or cancellation
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    load_environment(args.env_file)
    configure_logging(logging.DEBUG if args.debug else logging.INFO)
    if args.debug:
        logger.debug("Debug logging enabled")
    settings = get_settings()

    cancel_token = CancellationToken()
    try:
        if args.command == 'credits':
            success = run_credits(args, settings)
        else:
            success = run_playlist(args, settings, cancel_token)
        return 0 if success else 1
    except KeyboardInterrupt:
        cancel_token.cancel()
        print("\nCancelled by user")
        return 1
    except OperationCancelled:
        logger.warning("Cancelled")
        return 1
    except PlaylistBuildError as e:
        logger.error(f"{e.user_message} ({e})")
        return 1
    except ProviderError as e:
        logger.error(f"Provider error: {e.describe()}")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
