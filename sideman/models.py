"""
Domain Models

Value types shared by the resolvers, credits providers, discography engine,
track matcher and playlist builder.

Most types are frozen dataclasses. The ones that are persisted in the JSON
caches (credits bundles, discographies) carry to_dict()/from_dict() helpers.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ============================================================================
# NOW PLAYING / RESOLUTION
# ============================================================================

@dataclass(frozen=True)
class NowPlayingTrack:
    id: str
    title: str
    artist: str
    album: str = ''
    track_number: Optional[int] = None


@dataclass(frozen=True)
class RecordingQuery:
    title: str
    artist: str
    album: str = ''


@dataclass(frozen=True)
class RecordingCandidate:
    """
    A MusicBrainz recording search hit.

    release_titles and release_ids are parallel: index i of one describes the
    same release as index i of the other.
    """
    recording_mbid: str
    title: str
    artist_names: Tuple[str, ...] = ()
    release_titles: Tuple[str, ...] = ()
    release_ids: Tuple[str, ...] = ()
    score: int = 0


@dataclass(frozen=True)
class ResolutionResult:
    recording_mbid: str
    release_mbid: Optional[str] = None
    work_mbids: Tuple[str, ...] = ()
    confidence: float = 0.0


class ResolutionStatus(Enum):
    RESOLVED = 'resolved'
    NOT_FOUND = 'not_found'
    AMBIGUOUS = 'ambiguous'
    RATE_LIMITED = 'rate_limited'
    NETWORK_ERROR = 'network_error'


@dataclass(frozen=True)
class ResolutionOutcome:
    """Result of a resolver call. `result` is only set when status is RESOLVED."""
    status: ResolutionStatus
    result: Any = None
    message: Optional[str] = None

    @classmethod
    def resolved(cls, result):
        return cls(ResolutionStatus.RESOLVED, result=result)

    @classmethod
    def not_found(cls):
        return cls(ResolutionStatus.NOT_FOUND)

    @classmethod
    def ambiguous(cls):
        return cls(ResolutionStatus.AMBIGUOUS)

    @classmethod
    def rate_limited(cls):
        return cls(ResolutionStatus.RATE_LIMITED)

    @classmethod
    def network_error(cls, message: str):
        return cls(ResolutionStatus.NETWORK_ERROR, message=message)

    @property
    def is_resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED


# ============================================================================
# CREDITS
# ============================================================================

class CreditRoleGroup(Enum):
    """Role groups, declared in display order"""
    MUSICIANS = 'musicians'
    PRODUCTION = 'production'
    WRITING = 'writing'
    ENGINEERING = 'engineering'
    MISC = 'misc'

    @property
    def title(self) -> str:
        return self.value.title()

    @classmethod
    def display_order(cls) -> List['CreditRoleGroup']:
        return list(cls)

    @classmethod
    def parse(cls, text: str) -> 'CreditRoleGroup':
        """Parse a group name as typed on the command line ('musicians', 'Production')"""
        lowered = (text or '').strip().lower()
        for group in cls:
            if group.value == lowered:
                return group
        raise ValueError(f"Unknown role group: {text}")


class CreditSourceLevel(Enum):
    RECORDING = 'recording'
    WORK = 'work'
    RELEASE = 'release'

    @property
    def rank(self) -> int:
        return _SOURCE_LEVEL_RANKS[self]

    @property
    def badge(self) -> str:
        return {'recording': 'Track', 'work': 'Work', 'release': 'Release'}[self.value]


_SOURCE_LEVEL_RANKS = {
    CreditSourceLevel.RECORDING: 0,
    CreditSourceLevel.WORK: 1,
    CreditSourceLevel.RELEASE: 2,
}


class CreditSource(Enum):
    WIKIPEDIA = 'wikipedia'
    MUSICBRAINZ = 'musicbrainz'

    @property
    def title(self) -> str:
        return 'Wikipedia' if self is CreditSource.WIKIPEDIA else 'MusicBrainz'


class ScopeKind(Enum):
    ALBUM_WIDE = 'album_wide'
    TRACK_SPECIFIC = 'track_specific'
    TRACK_RANGE = 'track_range'
    TRACK_UNKNOWN = 'track_unknown'


@dataclass(frozen=True)
class CreditScope:
    """
    Which tracks of a release a credit applies to.

    TRACK_UNKNOWN means "known to be track specific, but the tracks could not
    be parsed". It applies to every track so such credits never vanish.
    """
    kind: ScopeKind = ScopeKind.ALBUM_WIDE
    tracks: Tuple[int, ...] = ()
    start: Optional[int] = None
    end: Optional[int] = None

    @classmethod
    def album_wide(cls) -> 'CreditScope':
        return cls(ScopeKind.ALBUM_WIDE)

    @classmethod
    def track_specific(cls, tracks) -> 'CreditScope':
        return cls(ScopeKind.TRACK_SPECIFIC, tracks=tuple(sorted(set(tracks))))

    @classmethod
    def track_range(cls, start: int, end: int) -> 'CreditScope':
        return cls(ScopeKind.TRACK_RANGE, start=min(start, end), end=max(start, end))

    @classmethod
    def track_unknown(cls) -> 'CreditScope':
        return cls(ScopeKind.TRACK_UNKNOWN)

    @property
    def is_album_wide(self) -> bool:
        return self.kind is ScopeKind.ALBUM_WIDE

    def applies(self, track_number: Optional[int] = None) -> bool:
        if track_number is None:
            return True
        if self.kind is ScopeKind.TRACK_SPECIFIC:
            return track_number in self.tracks
        if self.kind is ScopeKind.TRACK_RANGE:
            return self.start <= track_number <= self.end
        return True

    @property
    def label(self) -> str:
        if self.kind is ScopeKind.ALBUM_WIDE:
            return 'Album-wide'
        if self.kind is ScopeKind.TRACK_SPECIFIC:
            if len(self.tracks) == 1:
                return f"Track {self.tracks[0]}"
            return f"Tracks {compact_track_list(self.tracks)}"
        if self.kind is ScopeKind.TRACK_RANGE:
            return f"Tracks {self.start}–{self.end}"
        return 'Track-specific'

    def cache_token(self) -> str:
        """Stable string form used in dedupe keys"""
        if self.kind is ScopeKind.TRACK_SPECIFIC:
            return 'tracks:' + ','.join(str(t) for t in self.tracks)
        if self.kind is ScopeKind.TRACK_RANGE:
            return f"range:{self.start}-{self.end}"
        return self.kind.value

    def to_dict(self) -> dict:
        return {'kind': self.kind.value, 'tracks': list(self.tracks),
                'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, data: dict) -> 'CreditScope':
        return cls(
            kind=ScopeKind(data.get('kind', ScopeKind.ALBUM_WIDE.value)),
            tracks=tuple(data.get('tracks') or ()),
            start=data.get('start'),
            end=data.get('end'),
        )


def compact_track_list(tracks) -> str:
    """Render [1, 3, 4, 5, 7] as '1, 3–5, 7'"""
    ordered = sorted(set(tracks))
    parts = []
    i = 0
    while i < len(ordered):
        j = i
        while j + 1 < len(ordered) and ordered[j + 1] == ordered[j] + 1:
            j += 1
        if j - i >= 2:
            parts.append(f"{ordered[i]}–{ordered[j]}")
        else:
            parts.extend(str(n) for n in ordered[i:j + 1])
        i = j + 1
    return ', '.join(parts)


@dataclass(frozen=True)
class CreditEntry:
    person_name: str
    role_raw: str
    role_group: CreditRoleGroup
    source_level: CreditSourceLevel = CreditSourceLevel.RECORDING
    person_mbid: Optional[str] = None
    instrument: Optional[str] = None
    source: CreditSource = CreditSource.MUSICBRAINZ
    scope: CreditScope = field(default_factory=CreditScope.album_wide)
    source_url: Optional[str] = None
    source_attribution: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'person_name': self.person_name,
            'role_raw': self.role_raw,
            'role_group': self.role_group.value,
            'source_level': self.source_level.value,
            'person_mbid': self.person_mbid,
            'instrument': self.instrument,
            'source': self.source.value,
            'scope': self.scope.to_dict(),
            'source_url': self.source_url,
            'source_attribution': self.source_attribution,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CreditEntry':
        return cls(
            person_name=data['person_name'],
            role_raw=data['role_raw'],
            role_group=CreditRoleGroup(data['role_group']),
            source_level=CreditSourceLevel(data.get('source_level', 'recording')),
            person_mbid=data.get('person_mbid'),
            instrument=data.get('instrument'),
            source=CreditSource(data.get('source', 'musicbrainz')),
            scope=CreditScope.from_dict(data.get('scope') or {}),
            source_url=data.get('source_url'),
            source_attribution=data.get('source_attribution'),
        )


@dataclass
class CreditsBundle:
    entries_by_group: Dict[CreditRoleGroup, List[CreditEntry]]
    provenance: List[CreditSourceLevel]
    resolved_recording_mbid: str
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    source_page_title: Optional[str] = None
    source_page_url: Optional[str] = None
    source_attribution: Optional[str] = None
    matched_track_number: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return all(not entries for entries in self.entries_by_group.values())

    def entries(self, group: CreditRoleGroup) -> List[CreditEntry]:
        return self.entries_by_group.get(group, [])

    def all_entries(self) -> List[CreditEntry]:
        result = []
        for group in CreditRoleGroup.display_order():
            result.extend(self.entries(group))
        return result

    def to_dict(self) -> dict:
        return {
            'entries_by_group': {
                group.value: [entry.to_dict() for entry in entries]
                for group, entries in self.entries_by_group.items()
            },
            'provenance': [level.value for level in self.provenance],
            'resolved_recording_mbid': self.resolved_recording_mbid,
            'source_id': self.source_id,
            'source_name': self.source_name,
            'source_page_title': self.source_page_title,
            'source_page_url': self.source_page_url,
            'source_attribution': self.source_attribution,
            'matched_track_number': self.matched_track_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CreditsBundle':
        return cls(
            entries_by_group={
                CreditRoleGroup(group): [CreditEntry.from_dict(e) for e in entries]
                for group, entries in (data.get('entries_by_group') or {}).items()
            },
            provenance=[CreditSourceLevel(v) for v in data.get('provenance') or []],
            resolved_recording_mbid=data.get('resolved_recording_mbid', ''),
            source_id=data.get('source_id'),
            source_name=data.get('source_name'),
            source_page_title=data.get('source_page_title'),
            source_page_url=data.get('source_page_url'),
            source_attribution=data.get('source_attribution'),
            matched_track_number=data.get('matched_track_number'),
        )


class LookupState(Enum):
    IDLE = 'idle'
    RESOLVING = 'resolving'
    LOADING_CREDITS = 'loading_credits'
    LOADED = 'loaded'
    NOT_FOUND = 'not_found'
    AMBIGUOUS = 'ambiguous'
    RATE_LIMITED = 'rate_limited'
    ERROR = 'error'


@dataclass
class CreditsLookupResult:
    state: LookupState
    bundle: Optional[CreditsBundle] = None
    message: Optional[str] = None

    @classmethod
    def loaded(cls, bundle: CreditsBundle):
        return cls(LookupState.LOADED, bundle=bundle)

    @classmethod
    def not_found(cls):
        return cls(LookupState.NOT_FOUND)

    @classmethod
    def ambiguous(cls):
        return cls(LookupState.AMBIGUOUS)

    @classmethod
    def rate_limited(cls):
        return cls(LookupState.RATE_LIMITED)

    @classmethod
    def error(cls, message: str):
        return cls(LookupState.ERROR, message=message)

    @property
    def is_loaded(self) -> bool:
        return self.state is LookupState.LOADED and self.bundle is not None

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'bundle': self.bundle.to_dict() if self.bundle else None,
            'message': self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CreditsLookupResult':
        bundle = data.get('bundle')
        return cls(
            state=LookupState(data['state']),
            bundle=CreditsBundle.from_dict(bundle) if bundle else None,
            message=data.get('message'),
        )


@dataclass
class CachedCredits:
    key: str
    result: CreditsLookupResult
    expires_at: datetime


# ============================================================================
# WIKIPEDIA
# ============================================================================

@dataclass(frozen=True)
class WikipediaSearchResult:
    page_id: int
    title: str
    snippet: str = ''


@dataclass(frozen=True)
class WikipediaPageResolution:
    page_id: int
    title: str
    confidence: float


@dataclass(frozen=True)
class WikipediaPageContent:
    page_id: int
    title: str
    full_url: str
    wikitext: str


@dataclass
class WikipediaParsedCredits:
    entries: List[CreditEntry]
    matched_track_number: Optional[int] = None


# ============================================================================
# MUSICBRAINZ
# ============================================================================

@dataclass(frozen=True)
class MBArtist:
    id: Optional[str]
    name: str


@dataclass(frozen=True)
class MBWorkReference:
    """A work embedded in a recording relationship. relations is None when not embedded."""
    id: str
    title: str
    relations: Optional[Tuple["MBRelationship", ...]] = None


@dataclass(frozen=True)
class MBRelationship:
    type: str
    target_type: Optional[str] = None
    attributes: Tuple[str, ...] = ()
    artist: Optional[MBArtist] = None
    work: Optional[MBWorkReference] = None


@dataclass(frozen=True)
class MBReleaseSummary:
    id: str
    title: str


@dataclass(frozen=True)
class MBRecordingDetail:
    id: str
    title: str
    relations: Tuple[MBRelationship, ...] = ()
    releases: Tuple[MBReleaseSummary, ...] = ()


@dataclass(frozen=True)
class MBWorkDetail:
    id: str
    title: str
    relations: Tuple[MBRelationship, ...] = ()


@dataclass(frozen=True)
class MBReleaseDetail:
    id: str
    title: str
    relations: Tuple[MBRelationship, ...] = ()


@dataclass(frozen=True)
class MBArtistSearchResult:
    id: str
    name: str
    score: int = 0


@dataclass(frozen=True)
class ArtistWorkRel:
    work_mbid: str
    work_title: str
    relationship_type: str
    attributes: Tuple[str, ...] = ()


# ============================================================================
# DISCOGRAPHY
# ============================================================================

class EvidenceSource(Enum):
    DIRECT_RELATIONSHIP = 'direct-relationship'
    PAGINATED_BROWSE = 'paginated-browse'
    WORK_DERIVED = 'work-derived'

    @property
    def confidence(self) -> float:
        return EVIDENCE_WEIGHTS[self]


EVIDENCE_WEIGHTS = {
    EvidenceSource.DIRECT_RELATIONSHIP: 1.0,
    EvidenceSource.PAGINATED_BROWSE: 0.90,
    EvidenceSource.WORK_DERIVED: 0.74,
}


@dataclass(frozen=True)
class RecordingInvolvementEvidence:
    artist_mbid: str
    source: EvidenceSource
    relationship_type: str
    attributes: Tuple[str, ...] = ()
    confidence: float = 1.0

    @property
    def key(self) -> tuple:
        return (
            self.artist_mbid,
            self.source.value,
            self.relationship_type.lower(),
            tuple(sorted(a.lower() for a in self.attributes)),
        )

    def to_dict(self) -> dict:
        return {
            'artist_mbid': self.artist_mbid,
            'source': self.source.value,
            'relationship_type': self.relationship_type,
            'attributes': list(self.attributes),
            'confidence': self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RecordingInvolvementEvidence':
        return cls(
            artist_mbid=data['artist_mbid'],
            source=EvidenceSource(data['source']),
            relationship_type=data.get('relationship_type', ''),
            attributes=tuple(data.get('attributes') or ()),
            confidence=float(data.get('confidence', 1.0)),
        )


@dataclass(frozen=True)
class ArtistRecordingRel:
    """
    One recording an artist is involved in.

    Instances are never mutated; discography.merge_recording_rels() returns a
    new value whenever two reports about the same recording are combined.
    """
    recording_mbid: str
    recording_title: str
    relationship_type: str
    attributes: Tuple[str, ...] = ()
    artist_credits: Tuple[str, ...] = ()
    isrcs: Tuple[str, ...] = ()
    evidence: Tuple[RecordingInvolvementEvidence, ...] = ()
    canonical_key: Optional[str] = None

    def __post_init__(self):
        # Accept lists from callers; store tuples so values stay hashable
        for name in ('attributes', 'artist_credits', 'isrcs', 'evidence'):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value or ()))

    def with_changes(self, **changes) -> 'ArtistRecordingRel':
        return replace(self, **changes)

    @property
    def max_confidence(self) -> float:
        return max((e.confidence for e in self.evidence), default=0.0)

    def to_dict(self) -> dict:
        return {
            'recording_mbid': self.recording_mbid,
            'recording_title': self.recording_title,
            'relationship_type': self.relationship_type,
            'attributes': list(self.attributes),
            'artist_credits': list(self.artist_credits),
            'isrcs': list(self.isrcs),
            'evidence': [e.to_dict() for e in self.evidence],
            'canonical_key': self.canonical_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ArtistRecordingRel':
        return cls(
            recording_mbid=data['recording_mbid'],
            recording_title=data.get('recording_title', ''),
            relationship_type=data.get('relationship_type', ''),
            attributes=tuple(data.get('attributes') or ()),
            artist_credits=tuple(data.get('artist_credits') or ()),
            isrcs=tuple(data.get('isrcs') or ()),
            evidence=tuple(RecordingInvolvementEvidence.from_dict(e)
                           for e in data.get('evidence') or ()),
            canonical_key=data.get('canonical_key'),
        )


@dataclass(frozen=True)
class MBBrowseRecordingsPage:
    recordings: Tuple[ArtistRecordingRel, ...]
    total_count: int
    offset: int


@dataclass
class CoCreditTelemetry:
    """Diagnostics for one co-credit intersection"""
    left_input_count: int = 0
    right_input_count: int = 0
    left_variants_dropped: int = 0
    right_variants_dropped: int = 0
    exact_id_matches: int = 0
    isrc_matches: int = 0
    canonical_key_matches: int = 0
    unmatched_left_samples: List[str] = field(default_factory=list)
    unmatched_right_samples: List[str] = field(default_factory=list)

    @property
    def total_matches(self) -> int:
        return self.exact_id_matches + self.isrc_matches + self.canonical_key_matches

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'CoCreditTelemetry':
        return cls(**data)


@dataclass
class DiscographyResult:
    artist_mbid: str
    artist_name: str
    recordings: List[ArtistRecordingRel]
    fetched_at: datetime
    telemetry: Optional[CoCreditTelemetry] = None

    def to_dict(self) -> dict:
        return {
            'artist_mbid': self.artist_mbid,
            'artist_name': self.artist_name,
            'recordings': [r.to_dict() for r in self.recordings],
            'fetched_at': self.fetched_at.isoformat(),
            'telemetry': self.telemetry.to_dict() if self.telemetry else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DiscographyResult':
        telemetry = data.get('telemetry')
        return cls(
            artist_mbid=data['artist_mbid'],
            artist_name=data.get('artist_name', ''),
            recordings=[ArtistRecordingRel.from_dict(r) for r in data.get('recordings') or []],
            fetched_at=datetime.fromisoformat(data['fetched_at']),
            telemetry=CoCreditTelemetry.from_dict(telemetry) if telemetry else None,
        )


@dataclass(frozen=True)
class CoCreditArtist:
    name: str
    mbid: Optional[str] = None


class CoCreditMatchMode(Enum):
    ANY_INVOLVEMENT = 'any_involvement'
    PERFORMER_ONLY = 'performer_only'


@dataclass(frozen=True)
class CoCreditConfig:
    artist_a: CoCreditArtist
    artist_b: CoCreditArtist
    match_mode: CoCreditMatchMode = CoCreditMatchMode.ANY_INVOLVEMENT


# ============================================================================
# CATALOGUE (SPOTIFY / LISTENBRAINZ)
# ============================================================================

@dataclass(frozen=True)
class SpotifyTrack:
    id: str
    name: str
    uri: str
    artist_names: Tuple[str, ...] = ()
    album_name: str = ''
    isrc: Optional[str] = None
    popularity: Optional[int] = None


@dataclass(frozen=True)
class SpotifyPlaylist:
    id: str
    name: str
    url: Optional[str] = None


@dataclass(frozen=True)
class RecordingPopularity:
    recording_mbid: str
    listen_count: Optional[int] = None


class TrackMatchStrategy(Enum):
    ISRC = 'isrc'
    TEXT_SEARCH = 'textSearch'


@dataclass(frozen=True)
class ResolvedTrack:
    recording_mbid: str
    recording_title: str
    spotify_uri: str
    spotify_popularity: Optional[int] = None
    match_strategy: TrackMatchStrategy = TrackMatchStrategy.ISRC


class UnresolvedReason(Enum):
    MISSING_ARTIST_CREDITS = 'missing-artist-credits'
    NO_CATALOGUE_MATCH = 'no-catalogue-match'


@dataclass(frozen=True)
class UnresolvedRecording:
    recording: ArtistRecordingRel
    reason: UnresolvedReason


@dataclass
class TrackMatchSummary:
    resolved: List[ResolvedTrack] = field(default_factory=list)
    unresolved: List[UnresolvedRecording] = field(default_factory=list)


# ============================================================================
# PLAYLIST BUILD
# ============================================================================

class PlaylistBuildMode(Enum):
    SINGLE_ARTIST = 'single_artist'
    CO_CREDIT = 'co_credit'


@dataclass(frozen=True)
class PlaylistBuildRequest:
    artist_mbid: str = ''
    artist_name: str = ''
    role_filter: Optional[CreditRoleGroup] = None
    is_public: bool = False
    max_tracks: int = 100
    co_credit: Optional[CoCreditConfig] = None

    @classmethod
    def for_co_credit(cls, co_credit: CoCreditConfig, is_public: bool = False,
                      max_tracks: int = 100) -> 'PlaylistBuildRequest':
        return cls(
            artist_mbid=co_credit.artist_a.mbid or '',
            artist_name=co_credit.artist_a.name,
            is_public=is_public,
            max_tracks=max_tracks,
            co_credit=co_credit,
        )

    @property
    def mode(self) -> PlaylistBuildMode:
        if self.co_credit is not None:
            return PlaylistBuildMode.CO_CREDIT
        return PlaylistBuildMode.SINGLE_ARTIST


class StageKind(Enum):
    FETCHING_DISCOGRAPHY = 'fetching-discography'
    RANKING = 'ranking'
    RESOLVING = 'resolving'
    CREATING = 'creating'
    COMPLETE = 'complete'


@dataclass(frozen=True)
class PlaylistBuildStage:
    kind: StageKind
    total: Optional[int] = None
    resolved: Optional[int] = None
    track_count: Optional[int] = None
    playlist_name: Optional[str] = None

    @classmethod
    def fetching_discography(cls):
        return cls(StageKind.FETCHING_DISCOGRAPHY)

    @classmethod
    def ranking(cls, total: int):
        return cls(StageKind.RANKING, total=total)

    @classmethod
    def resolving(cls, resolved: int, total: int):
        return cls(StageKind.RESOLVING, total=total, resolved=resolved)

    @classmethod
    def creating(cls, track_count: int):
        return cls(StageKind.CREATING, track_count=track_count)

    @classmethod
    def complete(cls, playlist_name: str, track_count: int):
        return cls(StageKind.COMPLETE, track_count=track_count, playlist_name=playlist_name)


class DropReason(Enum):
    RANKED_OUT = 'ranked-out'
    MISSING_ARTIST_CREDITS = 'missing-artist-credits'
    NO_CATALOGUE_MATCH = 'no-catalogue-match'
    DUPLICATE_URI = 'duplicate-uri'
    TRUNCATED = 'truncated'


@dataclass(frozen=True)
class DroppedRecording:
    recording_mbid: str
    recording_title: str
    reason: DropReason


@dataclass
class PlaylistBuildResult:
    playlist_name: str
    playlist_uri: Optional[str]
    track_count: int
    skipped_count: int
    dropped: List[DroppedRecording] = field(default_factory=list, compare=False)
    track_uris: List[str] = field(default_factory=list, compare=False)

    def drop_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.dropped:
            counts[item.reason.value] = counts.get(item.reason.value, 0) + 1
        return counts
