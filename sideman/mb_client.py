"""
MusicBrainz Client

Typed access to the MusicBrainz web service (ws/2) for recording search,
relationship lookups, artist browsing and artist search. JSON payloads are
converted into the domain models in models.py.
"""

import logging
from typing import List

from sideman.api_client import ApiClient
from sideman.config import DEFAULT_USER_AGENT
from sideman.models import (
    ArtistRecordingRel, ArtistWorkRel, MBArtist, MBArtistSearchResult,
    MBBrowseRecordingsPage, MBRecordingDetail, MBRelationship, MBReleaseDetail,
    MBReleaseSummary, MBWorkDetail, MBWorkReference, RecordingCandidate,
    RecordingQuery,
)

logger = logging.getLogger(__name__)

MUSICBRAINZ_BASE_URL = 'https://musicbrainz.org/ws/2'


def escape_query_value(value: str) -> str:
    """Escape a value placed inside a quoted Lucene phrase"""
    return (value or '').replace('\\', '\\\\').replace('"', '\\"').strip()


def build_recording_query(title: str, artist: str, album: str = '') -> str:
    """
    Lucene query for a recording search

    Examples:
        ("Take Five", "Dave Brubeck", "") -> 'recording:"Take Five" AND artist:"Dave Brubeck"'
    """
    escaped_title = escape_query_value(title)
    escaped_artist = escape_query_value(artist)
    escaped_album = escape_query_value(album)

    query = f'recording:"{escaped_title}" AND artist:"{escaped_artist}"'
    if escaped_album:
        query += f' AND release:"{escaped_album}"'
    return query


def _artist_credit_names(payload: dict) -> tuple:
    names = []
    for credit in payload.get('artist-credit') or []:
        if not isinstance(credit, dict):
            continue
        name = credit.get('name') or (credit.get('artist') or {}).get('name')
        if name:
            names.append(name)
    return tuple(names)


def parse_relationship(payload: dict) -> MBRelationship:
    artist = payload.get('artist')
    work = payload.get('work')
    work_ref = None
    if work and work.get('id'):
        embedded = work.get('relations')
        work_ref = MBWorkReference(
            id=work['id'],
            title=work.get('title', ''),
            relations=tuple(parse_relationship(r) for r in embedded) if embedded is not None else None,
        )
    return MBRelationship(
        type=payload.get('type') or 'unknown',
        target_type=payload.get('target-type'),
        attributes=tuple(payload.get('attributes') or ()),
        artist=MBArtist(id=artist.get('id'), name=artist.get('name', '')) if artist else None,
        work=work_ref,
    )


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class MusicBrainzClient(ApiClient):
    """MusicBrainz API client (1 request per second, as the service requires)"""

    service_name = 'musicbrainz'

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, min_interval: float = 1.0,
                 timeout: float = 10, max_retries: int = 3, cache_days: int = 0,
                 force_refresh: bool = False, base_url: str = MUSICBRAINZ_BASE_URL, **kwargs):
        super().__init__(user_agent=user_agent, min_interval=min_interval, timeout=timeout,
                         max_retries=max_retries, base_delay=0.5, cache_days=cache_days,
                         force_refresh=force_refresh, **kwargs)
        self.base_url = base_url.rstrip('/')

    def _get(self, path: str, params: dict, context: str, cache_key: str = None):
        params = dict(params)
        params['fmt'] = 'json'
        data = self._get_json(f"{self.base_url}/{path}", params=params,
                              context=context, cache_key=cache_key)
        return data or {}

    # ========================================================================
    # SEARCH
    # ========================================================================

    def search_recordings(self, query: RecordingQuery) -> List[RecordingCandidate]:
        """
        Search recordings by title, artist and (optionally) album

        Args:
            query: RecordingQuery

        Returns:
            Up to 10 RecordingCandidate objects, in provider order
        """
        query_string = build_recording_query(query.title, query.artist, query.album)
        self.logger.debug(f"searchRecordings: {query_string}")

        data = self._get('recording', {'query': query_string, 'limit': 10},
                         context='search_recordings', cache_key=f"search:{query_string}")

        candidates = []
        for rec in data.get('recordings') or []:
            releases = rec.get('releases') or []
            candidates.append(RecordingCandidate(
                recording_mbid=rec['id'],
                title=rec.get('title', ''),
                artist_names=_artist_credit_names(rec),
                release_titles=tuple(r.get('title', '') for r in releases),
                release_ids=tuple(r.get('id', '') for r in releases),
                score=_as_int(rec.get('score')),
            ))
        self.logger.debug(f"searchRecordings returned {len(candidates)} candidates")
        return candidates

    def search_artists(self, name: str) -> List[MBArtistSearchResult]:
        """Search artists by name (top 3)"""
        data = self._get('artist', {'query': f'artist:"{escape_query_value(name)}"', 'limit': 3},
                         context='search_artists', cache_key=f"artist-search:{name.lower()}")
        return [
            MBArtistSearchResult(id=a['id'], name=a.get('name', ''), score=_as_int(a.get('score')))
            for a in data.get('artists') or []
            if a.get('id')
        ]

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def get_recording(self, recording_id: str) -> MBRecordingDetail:
        data = self._get(f"recording/{recording_id}",
                         {'inc': 'artist-rels+work-rels+work-level-rels+releases'},
                         context=f"get_recording {recording_id}",
                         cache_key=f"recording:{recording_id}")
        return MBRecordingDetail(
            id=data.get('id', recording_id),
            title=data.get('title', ''),
            relations=tuple(parse_relationship(r) for r in data.get('relations') or []),
            releases=tuple(
                MBReleaseSummary(id=r['id'], title=r.get('title', ''))
                for r in data.get('releases') or [] if r.get('id')
            ),
        )

    def get_work(self, work_id: str) -> MBWorkDetail:
        data = self._get(f"work/{work_id}", {'inc': 'artist-rels'},
                         context=f"get_work {work_id}", cache_key=f"work:{work_id}")
        return MBWorkDetail(
            id=data.get('id', work_id),
            title=data.get('title', ''),
            relations=tuple(parse_relationship(r) for r in data.get('relations') or []),
        )

    def get_release(self, release_id: str) -> MBReleaseDetail:
        data = self._get(f"release/{release_id}", {'inc': 'artist-rels'},
                         context=f"get_release {release_id}", cache_key=f"release:{release_id}")
        return MBReleaseDetail(
            id=data.get('id', release_id),
            title=data.get('title', ''),
            relations=tuple(parse_relationship(r) for r in data.get('relations') or []),
        )

    def get_recording_isrcs(self, recording_id: str) -> List[str]:
        data = self._get(f"recording/{recording_id}", {'inc': 'isrcs'},
                         context=f"get_recording_isrcs {recording_id}",
                         cache_key=f"isrcs:{recording_id}")
        return list(data.get('isrcs') or [])

    # ========================================================================
    # DISCOGRAPHY QUERIES
    # ========================================================================

    def get_artist_recording_rels(self, artist_id: str) -> List[ArtistRecordingRel]:
        """
        Recordings linked directly to the artist (session work, production, ...)

        Returns:
            One ArtistRecordingRel per recording relationship
        """
        data = self._get(f"artist/{artist_id}", {'inc': 'recording-rels'},
                         context=f"get_artist_recording_rels {artist_id}",
                         cache_key=f"artist-recording-rels:{artist_id}")
        rels = []
        for rel in data.get('relations') or []:
            recording = rel.get('recording')
            if not recording or not recording.get('id'):
                continue
            rels.append(ArtistRecordingRel(
                recording_mbid=recording['id'],
                recording_title=recording.get('title', ''),
                relationship_type=rel.get('type') or 'unknown',
                attributes=tuple(rel.get('attributes') or ()),
                artist_credits=_artist_credit_names(recording),
                isrcs=tuple(recording.get('isrcs') or ()),
            ))
        self.logger.debug(f"getArtistRecordingRels returned {len(rels)} relations")
        return rels

    def get_artist_work_rels(self, artist_id: str) -> List[ArtistWorkRel]:
        """Works the artist wrote, composed, arranged, ..."""
        data = self._get(f"artist/{artist_id}", {'inc': 'work-rels'},
                         context=f"get_artist_work_rels {artist_id}",
                         cache_key=f"artist-work-rels:{artist_id}")
        rels = []
        for rel in data.get('relations') or []:
            work = rel.get('work')
            if not work or not work.get('id'):
                continue
            rels.append(ArtistWorkRel(
                work_mbid=work['id'],
                work_title=work.get('title', ''),
                relationship_type=rel.get('type') or 'unknown',
                attributes=tuple(rel.get('attributes') or ()),
            ))
        return rels

    def get_work_recordings(self, work_id: str) -> List[ArtistRecordingRel]:
        """Recordings of a work, with their artist credits"""
        data = self._get(f"work/{work_id}", {'inc': 'recording-rels+artist-credits'},
                         context=f"get_work_recordings {work_id}",
                         cache_key=f"work-recordings:{work_id}")
        recordings = []
        for rel in data.get('relations') or []:
            recording = rel.get('recording')
            if not recording or not recording.get('id'):
                continue
            recordings.append(ArtistRecordingRel(
                recording_mbid=recording['id'],
                recording_title=recording.get('title', ''),
                relationship_type=rel.get('type') or 'performance',
                attributes=tuple(rel.get('attributes') or ()),
                artist_credits=_artist_credit_names(recording),
                isrcs=tuple(recording.get('isrcs') or ()),
            ))
        return recordings

    def browse_recordings(self, artist_id: str, offset: int = 0, limit: int = 100,
                          include_isrcs: bool = True) -> MBBrowseRecordingsPage:
        """
        One page of recordings credited to the artist

        Args:
            artist_id: Artist MBID
            offset: Page offset
            limit: Page size (MusicBrainz caps this at 100)
            include_isrcs: Also request ISRCs

        Returns:
            MBBrowseRecordingsPage with the provider's total count
        """
        inc = 'artist-credits+isrcs' if include_isrcs else 'artist-credits'
        data = self._get('recording', {'artist': artist_id, 'limit': limit, 'offset': offset, 'inc': inc},
                         context=f"browse_recordings {artist_id} offset={offset}",
                         cache_key=f"browse:{artist_id}-{offset}-{limit}-{inc}")

        recordings = tuple(
            ArtistRecordingRel(
                recording_mbid=rec['id'],
                recording_title=rec.get('title', ''),
                relationship_type='main',
                artist_credits=_artist_credit_names(rec),
                isrcs=tuple(rec.get('isrcs') or ()),
            )
            for rec in data.get('recordings') or [] if rec.get('id')
        )
        total = _as_int(data.get('recording-count'))
        page_offset = _as_int(data.get('recording-offset', offset))
        self.logger.debug(f"browseRecordings returned {len(recordings)}/{total} recordings")
        return MBBrowseRecordingsPage(recordings=recordings, total_count=total, offset=page_offset)
