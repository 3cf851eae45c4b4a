"""
Credits Providers

Look up the credits of a now-playing track. Each provider exposes the same
three calls:

    lookup(track) -> CreditsLookupResult
    cache_lookup_key(track) -> str
    invalidate(track) -> None

MusicBrainzCreditsProvider and WikipediaCreditsProvider query one source
each; MergedCreditsProvider and FallbackCreditsProvider combine them.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sideman.cache_utils import CreditsCache
from sideman.config import DEFAULT_USER_AGENT, CreditsBackend
from sideman.credits_mapper import (
    extract_work_ids, group_entries, map_relations, merge_cross_source, merge_with_precedence,
    provenance_for,
)
from sideman.errors import NotFoundError, ProviderError, RateLimitedError
from sideman.mb_client import MusicBrainzClient
from sideman.models import (
    CreditEntry, CreditRoleGroup, CreditSourceLevel, CreditsBundle, CreditsLookupResult,
    LookupState, MBRecordingDetail, NowPlayingTrack, ResolutionResult, ResolutionStatus,
)
from sideman.text_matching import normalize
from sideman.track_resolver import TrackResolver
from sideman.wiki_page_resolver import WikipediaPageResolver
from sideman.wikipedia_client import WikipediaClient
from sideman.wikitext_parser import WIKIPEDIA_ATTRIBUTION, WikitextParser

logger = logging.getLogger(__name__)

MUSICBRAINZ_SUCCESS_TTL = timedelta(days=30)
MUSICBRAINZ_NEGATIVE_TTL = timedelta(hours=24)
WIKIPEDIA_SUCCESS_TTL = timedelta(days=7)
WIKIPEDIA_NEGATIVE_TTL = timedelta(hours=6)

MERGED_SOURCE_NAME = 'Wikipedia + MusicBrainz'


def cache_key_for_track(track: NowPlayingTrack) -> str:
    """
    Cache key for a track: the player's track id when it has one, otherwise
    the normalized title, artist and album.

    Examples:
        id "4uLU6hMCjMI75M1A2tKUQC" -> "spotify:4ulu6hmcjmi75m1a2tkuqc"
        no id, "Take Five" / "Dave Brubeck" / "Time Out" -> "meta:take five|dave brubeck|time out"
    """
    if track.id and track.id.strip():
        return f"spotify:{track.id.lower()}"
    components = '|'.join(normalize(value) for value in (track.title, track.artist, track.album))
    return f"meta:{components}"


def _log_group_counts(key: str, bundle: CreditsBundle):
    summary = ', '.join(f"{group.value}={len(bundle.entries(group))}"
                        for group in CreditRoleGroup.display_order())
    logger.debug(f"bundle loaded key={key} {summary}")


class _CachingProvider:
    """Shared cache plumbing; subclasses set the TTLs and the key prefix"""

    key_prefix = ''
    success_ttl = MUSICBRAINZ_SUCCESS_TTL
    negative_ttl = MUSICBRAINZ_NEGATIVE_TTL

    def __init__(self, cache: Optional[CreditsCache] = None):
        self.cache = cache if cache is not None else CreditsCache()
        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'loaded': 0,
            'negative': 0,
            'errors': 0,
        }

    def cache_lookup_key(self, track: NowPlayingTrack) -> str:
        return self.key_prefix + cache_key_for_track(track)

    def invalidate(self, track: NowPlayingTrack) -> None:
        self.cache.remove(self.cache_lookup_key(track))

    def _cached(self, key: str) -> Optional[CreditsLookupResult]:
        cached = self.cache.get(key)
        if cached is None:
            self.stats['cache_misses'] += 1
            logger.debug(f"cache miss key={key}")
            return None
        self.stats['cache_hits'] += 1
        logger.debug(f"cache hit key={key} state={cached.result.state.value}")
        return cached.result

    def _cache_success(self, key: str, bundle: CreditsBundle) -> CreditsLookupResult:
        result = CreditsLookupResult.loaded(bundle)
        self.stats['loaded'] += 1
        logger.debug(f"cache write success key={key} ttl={self.success_ttl}")
        self.cache.set(key, result, self.success_ttl)
        return result

    def _cache_negative(self, key: str, result: CreditsLookupResult) -> CreditsLookupResult:
        self.stats['negative'] += 1
        logger.debug(f"cache write negative key={key} state={result.state.value} ttl={self.negative_ttl}")
        self.cache.set(key, result, self.negative_ttl)
        return result

    def _from_provider_error(self, key: str, error: ProviderError) -> CreditsLookupResult:
        """not-found is cached, rate-limited is returned as-is, everything else becomes an error"""
        if isinstance(error, NotFoundError):
            return self._cache_negative(key, CreditsLookupResult.not_found())
        if isinstance(error, RateLimitedError):
            return CreditsLookupResult.rate_limited()
        self.stats['errors'] += 1
        logger.warning(f"Credits lookup failed: {error.describe()}")
        return CreditsLookupResult.error(str(error))

    def _from_resolution_failure(self, key: str, outcome) -> CreditsLookupResult:
        if outcome.status is ResolutionStatus.NOT_FOUND:
            return self._cache_negative(key, CreditsLookupResult.not_found())
        if outcome.status is ResolutionStatus.AMBIGUOUS:
            return self._cache_negative(key, CreditsLookupResult.ambiguous())
        if outcome.status is ResolutionStatus.RATE_LIMITED:
            return CreditsLookupResult.rate_limited()
        self.stats['errors'] += 1
        return CreditsLookupResult.error(outcome.message or 'Network error')


# ============================================================================
# MUSICBRAINZ
# ============================================================================

class MusicBrainzCreditsProvider(_CachingProvider):
    """
    Credits from MusicBrainz relationships.

    Recording relationships are the most specific; relationships of the
    recording's works fill in writers, and the release is consulted only when
    production or engineering credits are still missing.
    """

    def __init__(self, resolver: TrackResolver, mb_client, cache: Optional[CreditsCache] = None):
        super().__init__(cache)
        self.resolver = resolver
        self.mb_client = mb_client

    def lookup(self, track: NowPlayingTrack) -> CreditsLookupResult:
        key = self.cache_lookup_key(track)
        logger.debug(f"lookup start key={key}")

        cached = self._cached(key)
        if cached is not None:
            return cached

        outcome = self.resolver.resolve(track)
        if not outcome.is_resolved:
            logger.debug(f"resolver result={outcome.status.value} key={key}")
            return self._from_resolution_failure(key, outcome)

        resolution = outcome.result
        logger.debug(f"resolver result=success recording={resolution.recording_mbid} "
                     f"release={resolution.release_mbid}")

        try:
            bundle = self.load_bundle(resolution)
        except ProviderError as e:
            return self._from_provider_error(key, e)

        if bundle.is_empty:
            logger.debug(f"bundle empty key={key}")
            return self._cache_negative(key, CreditsLookupResult.not_found())

        _log_group_counts(key, bundle)
        return self._cache_success(key, bundle)

    def load_bundle(self, resolution: ResolutionResult) -> CreditsBundle:
        """
        Collect recording, work and (when needed) release credits

        Raises:
            ProviderError: If the recording itself cannot be fetched. Work and
                           release lookups that fail are skipped.
        """
        recording = self.mb_client.get_recording(resolution.recording_mbid)
        entries = map_relations(recording.relations, CreditSourceLevel.RECORDING)

        fetched_work_ids = set()
        for relation in recording.relations:
            if relation.work is None or relation.work.relations is None:
                continue
            entries.extend(map_relations(relation.work.relations, CreditSourceLevel.WORK))
            fetched_work_ids.add(relation.work.id)

        remaining_work_ids = []
        for work_id in extract_work_ids(recording) + list(resolution.work_mbids):
            if work_id not in fetched_work_ids and work_id not in remaining_work_ids:
                remaining_work_ids.append(work_id)

        for work_id in remaining_work_ids:
            try:
                work = self.mb_client.get_work(work_id)
            except ProviderError as e:
                logger.warning(f"Skipping work {work_id}: {e.describe()}")
                continue
            entries.extend(map_relations(work.relations, CreditSourceLevel.WORK))

        release_id = self._fallback_release_id(resolution, recording)
        if release_id and self._needs_release_fallback(entries):
            try:
                release = self.mb_client.get_release(release_id)
                entries.extend(map_relations(release.relations, CreditSourceLevel.RELEASE))
            except ProviderError as e:
                logger.warning(f"Skipping release {release_id}: {e.describe()}")

        merged = merge_with_precedence(entries)
        return CreditsBundle(
            entries_by_group=group_entries(merged),
            provenance=provenance_for(merged),
            resolved_recording_mbid=resolution.recording_mbid,
            source_id=resolution.recording_mbid,
            source_name='MusicBrainz',
        )

    @staticmethod
    def _needs_release_fallback(entries: List[CreditEntry]) -> bool:
        groups = {entry.role_group for entry in entries}
        return CreditRoleGroup.PRODUCTION not in groups or CreditRoleGroup.ENGINEERING not in groups

    @staticmethod
    def _fallback_release_id(resolution: ResolutionResult, recording: MBRecordingDetail) -> Optional[str]:
        if resolution.release_mbid:
            return resolution.release_mbid
        if recording.releases:
            return recording.releases[0].id
        return None


# ============================================================================
# WIKIPEDIA
# ============================================================================

class WikipediaCreditsProvider(_CachingProvider):
    """Credits parsed from the personnel section of the album's Wikipedia article"""

    key_prefix = 'wikipedia:'
    success_ttl = WIKIPEDIA_SUCCESS_TTL
    negative_ttl = WIKIPEDIA_NEGATIVE_TTL

    def __init__(self, page_resolver: WikipediaPageResolver, wikipedia_client,
                 parser: Optional[WikitextParser] = None, cache: Optional[CreditsCache] = None):
        super().__init__(cache)
        self.page_resolver = page_resolver
        self.wikipedia_client = wikipedia_client
        self.parser = parser or WikitextParser()

    def lookup(self, track: NowPlayingTrack) -> CreditsLookupResult:
        key = self.cache_lookup_key(track)
        logger.debug(f"wikipedia lookup start key={key}")

        cached = self._cached(key)
        if cached is not None:
            return cached

        outcome = self.page_resolver.resolve(track)
        if not outcome.is_resolved:
            return self._from_resolution_failure(key, outcome)

        resolution = outcome.result
        logger.debug(f"wikipedia resolution pageID={resolution.page_id} title='{resolution.title}'")

        try:
            page = self.wikipedia_client.fetch_page(resolution.page_id)
        except ProviderError as e:
            return self._from_provider_error(key, e)

        parsed = self.parser.parse(page, track)
        if not parsed.entries:
            return self._cache_negative(key, CreditsLookupResult.not_found())

        source_id = f"wikipedia:{page.page_id}"
        bundle = CreditsBundle(
            entries_by_group=group_entries(parsed.entries),
            provenance=provenance_for(parsed.entries) or [CreditSourceLevel.RELEASE],
            resolved_recording_mbid=source_id,
            source_id=source_id,
            source_name='Wikipedia',
            source_page_title=page.title,
            source_page_url=page.full_url,
            source_attribution=WIKIPEDIA_ATTRIBUTION,
            matched_track_number=parsed.matched_track_number,
        )
        _log_group_counts(key, bundle)
        return self._cache_success(key, bundle)


# ============================================================================
# COMBINATIONS
# ============================================================================

class MergedCreditsProvider:
    """
    Queries Wikipedia and MusicBrainz and merges what both found.

    Entries describing the same person and role are collapsed; the one with
    a MusicBrainz artist id wins. The merged bundle keeps Wikipedia's page
    details and MusicBrainz's recording id.
    """

    def __init__(self, wikipedia, musicbrainz):
        self.wikipedia = wikipedia
        self.musicbrainz = musicbrainz

    def lookup(self, track: NowPlayingTrack) -> CreditsLookupResult:
        wiki_result = self.wikipedia.lookup(track)
        mb_result = self.musicbrainz.lookup(track)
        logger.debug(f"merged lookup wikipedia={wiki_result.state.value} "
                     f"musicbrainz={mb_result.state.value}")

        if wiki_result.is_loaded and mb_result.is_loaded:
            return CreditsLookupResult.loaded(self.merge_bundles(wiki_result.bundle, mb_result.bundle))
        if wiki_result.is_loaded:
            return wiki_result
        if mb_result.is_loaded:
            return mb_result
        if LookupState.RATE_LIMITED in (wiki_result.state, mb_result.state):
            return CreditsLookupResult.rate_limited()
        for result in (wiki_result, mb_result):
            if result.state is LookupState.ERROR:
                return result
        return CreditsLookupResult.not_found()

    @staticmethod
    def merge_bundles(wikipedia_bundle: CreditsBundle, musicbrainz_bundle: CreditsBundle) -> CreditsBundle:
        merged = merge_cross_source(wikipedia_bundle.all_entries(), musicbrainz_bundle.all_entries())
        provenance = sorted(set(wikipedia_bundle.provenance) | set(musicbrainz_bundle.provenance),
                            key=lambda level: level.rank)
        return CreditsBundle(
            entries_by_group=group_entries(merged),
            provenance=provenance,
            resolved_recording_mbid=musicbrainz_bundle.resolved_recording_mbid,
            source_id=musicbrainz_bundle.source_id or musicbrainz_bundle.resolved_recording_mbid,
            source_name=MERGED_SOURCE_NAME,
            source_page_title=wikipedia_bundle.source_page_title,
            source_page_url=wikipedia_bundle.source_page_url,
            source_attribution=MERGED_SOURCE_NAME,
            matched_track_number=wikipedia_bundle.matched_track_number,
        )

    def cache_lookup_key(self, track: NowPlayingTrack) -> str:
        return self.wikipedia.cache_lookup_key(track)

    def invalidate(self, track: NowPlayingTrack) -> None:
        self.wikipedia.invalidate(track)
        self.musicbrainz.invalidate(track)


class FallbackCreditsProvider:
    """Uses the primary provider, and the fallback only when the primary loads nothing"""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback

    def lookup(self, track: NowPlayingTrack) -> CreditsLookupResult:
        primary_result = self.primary.lookup(track)
        if primary_result.is_loaded:
            return primary_result

        logger.debug(f"primary provider returned {primary_result.state.value}, trying fallback")
        fallback_result = self.fallback.lookup(track)
        if fallback_result.is_loaded:
            return fallback_result
        return primary_result

    def cache_lookup_key(self, track: NowPlayingTrack) -> str:
        return self.primary.cache_lookup_key(track)

    def invalidate(self, track: NowPlayingTrack) -> None:
        self.primary.invalidate(track)
        self.fallback.invalidate(track)


def make_credits_provider(backend: CreditsBackend, cache: Optional[CreditsCache] = None,
                          mb_client=None, wikipedia_client=None,
                          user_agent: str = DEFAULT_USER_AGENT, force_refresh: bool = False):
    """
    Build the provider for a backend

    Args:
        backend: Which source(s) to use
        cache: Credits cache shared by every provider (in-memory when omitted)
        mb_client: MusicBrainz client (created when omitted)
        wikipedia_client: Wikipedia client (created when omitted)
        force_refresh: Passed to newly created clients to bypass their response caches

    Returns:
        An object with lookup / cache_lookup_key / invalidate
    """
    cache = cache if cache is not None else CreditsCache()

    def wikipedia_provider():
        client = wikipedia_client or WikipediaClient(user_agent=user_agent, force_refresh=force_refresh)
        return WikipediaCreditsProvider(WikipediaPageResolver(client), client, WikitextParser(), cache)

    def musicbrainz_provider():
        client = mb_client or MusicBrainzClient(user_agent=user_agent, force_refresh=force_refresh)
        return MusicBrainzCreditsProvider(TrackResolver(client), client, cache)

    if backend is CreditsBackend.MUSICBRAINZ:
        return musicbrainz_provider()
    if backend is CreditsBackend.WIKIPEDIA_THEN_MUSICBRAINZ:
        return FallbackCreditsProvider(wikipedia_provider(), musicbrainz_provider())
    if backend is CreditsBackend.MERGED:
        return MergedCreditsProvider(wikipedia_provider(), musicbrainz_provider())
    return wikipedia_provider()
