"""
Discography Reconciliation

Builds the set of recordings an artist is involved in from three
MusicBrainz sources, and intersects two artists' discographies for
co-credit playlists.

Single artist, three passes run in this order:
1. Direct artist-recording relationships (confidence 1.0)
2. Paginated browse of recordings credited to the artist (0.90)
3. Recordings of works the artist wrote or arranged (0.74)

Each pass stops once MAX_RECORDINGS unique recordings have been collected,
and a failing pass is logged and skipped. A recording reported by several
passes is merged into one value that carries every piece of evidence.

Co-credit: both discographies are canonicalized (near-duplicate recordings
within one artist collapsed), then joined by recording id, by shared ISRC
and finally by canonical key with title/artist scoring. Each join stage is a
pure function over the recordings the previous stage left unmatched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from sideman.cache_utils import DiscographyCache
from sideman.cancellation import check_cancelled
from sideman.credits_mapper import role_group_for
from sideman.errors import (
    ArtistResolutionFailedError, NoIntersectionFoundError, NoRecordingsFoundError, ProviderError,
)
from sideman.models import (
    ArtistRecordingRel, CoCreditConfig, CoCreditMatchMode, CoCreditTelemetry, CreditRoleGroup,
    DiscographyResult, EvidenceSource, RecordingInvolvementEvidence,
)
from sideman.text_matching import (
    CANONICAL_TITLE_OPTIONS, artist_overlap, normalize, normalize_isrc, similarity,
)

logger = logging.getLogger(__name__)

MAX_RECORDINGS = 650
MAX_HYDRATED_WORKS = 120
BROWSE_PAGE_SIZE = 100

# ISRC join: shared ISRC count dominates, title similarity breaks ties
ISRC_TITLE_TIEBREAK_WEIGHT = 0.05

# Canonical-key join
CANONICAL_MIN_TITLE_SIMILARITY = 0.82
CANONICAL_TITLE_WEIGHT = 0.72
CANONICAL_ARTIST_WEIGHT = 0.28
CANONICAL_ISRC_BONUS = 0.10
CANONICAL_ACCEPT_SCORE = 0.74
# Without any artist overlap the title has to carry the match on its own
TITLE_ONLY_WEIGHT = 0.90
TITLE_ONLY_ACCEPT_SCORE = 0.88

UNMATCHED_SAMPLE_SIZE = 5

# Browse results carry no relationship; being the credited artist means performing
MAIN_ARTIST_RELATIONSHIP = 'main'


# ============================================================================
# MERGING AND CANONICAL KEYS
# ============================================================================

def _union(first, second, key=lambda value: value.lower()) -> Tuple[str, ...]:
    """Order-preserving union, deduplicated case-insensitively"""
    seen = set()
    result = []
    for value in list(first) + list(second):
        marker = key(value)
        if not marker or marker in seen:
            continue
        seen.add(marker)
        result.append(value)
    return tuple(result)


def _merge_evidence(first, second) -> Tuple[RecordingInvolvementEvidence, ...]:
    """Evidence union by structural key; a duplicate keeps the higher confidence"""
    merged: Dict[tuple, RecordingInvolvementEvidence] = {}
    for evidence in list(first) + list(second):
        existing = merged.get(evidence.key)
        if existing is None or evidence.confidence > existing.confidence:
            merged[evidence.key] = evidence
    return tuple(merged.values())


def _preference(rel: ArtistRecordingRel) -> tuple:
    return (
        rel.max_confidence,
        1 if rel.recording_title.strip() else 0,
        0 if rel.relationship_type in ('', 'unknown') else 1,
    )


def merge_recording_rels(a: ArtistRecordingRel, b: ArtistRecordingRel) -> ArtistRecordingRel:
    """
    Combine two reports about the same recording.

    Lists are unioned (case-insensitive, ISRCs compared normalized) and
    evidence accumulates. Title and relationship type come from whichever
    side has the stronger evidence; on a tie, `a` wins. The recording id is
    always `a`'s.

    Returns:
        A new ArtistRecordingRel; neither input is modified
    """
    preferred = a if _preference(a) >= _preference(b) else b
    return ArtistRecordingRel(
        recording_mbid=a.recording_mbid,
        recording_title=preferred.recording_title or a.recording_title or b.recording_title,
        relationship_type=preferred.relationship_type,
        attributes=_union(a.attributes, b.attributes),
        artist_credits=_union(a.artist_credits, b.artist_credits),
        isrcs=_union(a.isrcs, b.isrcs, key=normalize_isrc),
        evidence=_merge_evidence(a.evidence, b.evidence),
        canonical_key=a.canonical_key or b.canonical_key,
    )


def canonical_key(rel: ArtistRecordingRel) -> str:
    """
    Join key used to collapse near-duplicates and to match across artists

    Examples:
        ISRC "usrc1-7600-123" -> "isrc:USRC17600123"
        "Take Five (Live) feat. X" -> "title:take five"
        "(Untitled)" by ["B", "A"] -> "title-artists:(untitled)|a,b"
        nothing usable -> "id:<recording mbid>"
    """
    for isrc in rel.isrcs:
        normalized = normalize_isrc(isrc)
        if normalized:
            return f"isrc:{normalized}"

    title = normalize(rel.recording_title, CANONICAL_TITLE_OPTIONS)
    if title:
        return f"title:{title}"

    raw_title = rel.recording_title.strip().lower()
    if raw_title:
        artists = sorted(a for a in (normalize(name) for name in rel.artist_credits) if a)[:3]
        return f"title-artists:{raw_title}|{','.join(artists)}"

    return f"id:{rel.recording_mbid}"


def canonicalize(recordings: List[ArtistRecordingRel]) -> Tuple[List[ArtistRecordingRel], int]:
    """
    Collapse recordings sharing a canonical key

    Returns:
        (canonical recordings in first-seen order, number of variants dropped)
    """
    by_key: Dict[str, ArtistRecordingRel] = {}
    for rel in recordings:
        key = canonical_key(rel)
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = rel.with_changes(canonical_key=key)
        else:
            by_key[key] = merge_recording_rels(existing, rel)
    return list(by_key.values()), len(recordings) - len(by_key)


def involvement_groups(rel: ArtistRecordingRel) -> Set[CreditRoleGroup]:
    """Role groups of every way the artist is involved in the recording"""
    involvements = [(rel.relationship_type, rel.attributes)]
    involvements.extend((e.relationship_type, e.attributes) for e in rel.evidence)

    groups = set()
    for relationship_type, attributes in involvements:
        if relationship_type == MAIN_ARTIST_RELATIONSHIP:
            groups.add(CreditRoleGroup.MUSICIANS)
        else:
            groups.add(role_group_for(relationship_type, attributes))
    return groups


def apply_role_filter(recordings: List[ArtistRecordingRel],
                      role_filter: Optional[CreditRoleGroup]) -> List[ArtistRecordingRel]:
    if role_filter is None:
        return list(recordings)
    return [rel for rel in recordings if role_filter in involvement_groups(rel)]


# ============================================================================
# CO-CREDIT JOIN STAGES
# ============================================================================

@dataclass
class StageResult:
    matches: List[ArtistRecordingRel] = field(default_factory=list)
    left: List[ArtistRecordingRel] = field(default_factory=list)
    right: List[ArtistRecordingRel] = field(default_factory=list)


def _shared_isrcs(a: ArtistRecordingRel, b: ArtistRecordingRel) -> Set[str]:
    left = {normalize_isrc(i) for i in a.isrcs} - {''}
    right = {normalize_isrc(i) for i in b.isrcs} - {''}
    return left & right


def _title_similarity(a: ArtistRecordingRel, b: ArtistRecordingRel) -> float:
    return similarity(normalize(a.recording_title, CANONICAL_TITLE_OPTIONS),
                      normalize(b.recording_title, CANONICAL_TITLE_OPTIONS))


def _split_matches(left: List[ArtistRecordingRel], right: List[ArtistRecordingRel],
                   pairs: List[Tuple[int, int]]) -> StageResult:
    used_left = {i for i, _ in pairs}
    used_right = {j for _, j in pairs}
    return StageResult(
        matches=[merge_recording_rels(left[i], right[j]) for i, j in pairs],
        left=[rel for i, rel in enumerate(left) if i not in used_left],
        right=[rel for j, rel in enumerate(right) if j not in used_right],
    )


def match_by_recording_id(left: List[ArtistRecordingRel], right: List[ArtistRecordingRel]) -> StageResult:
    right_index = {}
    for j, rel in enumerate(right):
        right_index.setdefault(rel.recording_mbid, j)

    pairs = []
    used = set()
    for i, rel in enumerate(left):
        j = right_index.get(rel.recording_mbid)
        if j is not None and j not in used:
            used.add(j)
            pairs.append((i, j))
    return _split_matches(left, right, pairs)


def match_by_isrc(left: List[ArtistRecordingRel], right: List[ArtistRecordingRel]) -> StageResult:
    """
    Pair recordings sharing ISRCs. Each candidate scores the number of shared
    ISRCs plus a small title-similarity term; the best unused candidate wins.
    """
    pairs = []
    used = set()
    for i, rel in enumerate(left):
        if not rel.isrcs:
            continue
        best_j, best_score = None, 0.0
        for j, candidate in enumerate(right):
            if j in used:
                continue
            shared = _shared_isrcs(rel, candidate)
            if not shared:
                continue
            score = len(shared) + ISRC_TITLE_TIEBREAK_WEIGHT * _title_similarity(rel, candidate)
            if score > best_score:
                best_j, best_score = j, score
        if best_j is not None:
            used.add(best_j)
            pairs.append((i, best_j))
    return _split_matches(left, right, pairs)


def score_canonical_candidate(left: ArtistRecordingRel, right: ArtistRecordingRel) -> Optional[float]:
    """
    Score of a canonical-key candidate, or None when it is not acceptable
    """
    title_score = _title_similarity(left, right)
    if title_score < CANONICAL_MIN_TITLE_SIMILARITY:
        return None

    isrc_bonus = CANONICAL_ISRC_BONUS if _shared_isrcs(left, right) else 0.0
    overlap = artist_overlap(left.artist_credits, right.artist_credits)

    if overlap > 0:
        score = CANONICAL_TITLE_WEIGHT * title_score + CANONICAL_ARTIST_WEIGHT * overlap + isrc_bonus
        return score if score >= CANONICAL_ACCEPT_SCORE else None

    score = TITLE_ONLY_WEIGHT * title_score + isrc_bonus
    return score if score >= TITLE_ONLY_ACCEPT_SCORE else None


def match_by_canonical_key(left: List[ArtistRecordingRel], right: List[ArtistRecordingRel]) -> StageResult:
    by_key: Dict[str, List[int]] = {}
    for j, rel in enumerate(right):
        by_key.setdefault(rel.canonical_key or canonical_key(rel), []).append(j)

    pairs = []
    used = set()
    for i, rel in enumerate(left):
        best_j, best_score = None, None
        for j in by_key.get(rel.canonical_key or canonical_key(rel), []):
            if j in used:
                continue
            score = score_canonical_candidate(rel, right[j])
            if score is not None and (best_score is None or score > best_score):
                best_j, best_score = j, score
        if best_j is not None:
            used.add(best_j)
            pairs.append((i, best_j))
    return _split_matches(left, right, pairs)


def intersect_discographies(left: List[ArtistRecordingRel],
                            right: List[ArtistRecordingRel]) -> Tuple[List[ArtistRecordingRel], CoCreditTelemetry]:
    """
    Recordings present in both discographies

    Returns:
        (matched recordings, telemetry)
    """
    telemetry = CoCreditTelemetry(left_input_count=len(left), right_input_count=len(right))

    left, telemetry.left_variants_dropped = canonicalize(left)
    right, telemetry.right_variants_dropped = canonicalize(right)

    by_id = match_by_recording_id(left, right)
    by_isrc = match_by_isrc(by_id.left, by_id.right)
    by_key = match_by_canonical_key(by_isrc.left, by_isrc.right)

    telemetry.exact_id_matches = len(by_id.matches)
    telemetry.isrc_matches = len(by_isrc.matches)
    telemetry.canonical_key_matches = len(by_key.matches)
    telemetry.unmatched_left_samples = [r.recording_title for r in by_key.left[:UNMATCHED_SAMPLE_SIZE]]
    telemetry.unmatched_right_samples = [r.recording_title for r in by_key.right[:UNMATCHED_SAMPLE_SIZE]]

    return by_id.matches + by_isrc.matches + by_key.matches, telemetry


def co_credit_cache_key(mbid_a: str, mbid_b: str, mode: CoCreditMatchMode) -> str:
    first, second = sorted([mbid_a, mbid_b])
    return f"cocredit:{first}|{second}|{mode.value}"


# ============================================================================
# SERVICE
# ============================================================================

class DiscographyService:
    """Fetches, merges and caches artist discographies"""

    def __init__(self, mb_client, cache: Optional[DiscographyCache] = None,
                 max_recordings: int = MAX_RECORDINGS, max_hydrated_works: int = MAX_HYDRATED_WORKS,
                 page_size: int = BROWSE_PAGE_SIZE):
        self.mb_client = mb_client
        self.cache = cache if cache is not None else DiscographyCache()
        self.max_recordings = max_recordings
        self.max_hydrated_works = max_hydrated_works
        self.page_size = page_size

    def fetch_all_discography(self, artist_mbid: str, artist_name: str,
                              role_filter: Optional[CreditRoleGroup] = None,
                              cancel_token=None) -> DiscographyResult:
        """
        Every recording the artist is involved in

        Args:
            artist_mbid: Artist MBID
            artist_name: Display name
            role_filter: Keep only recordings where the artist's involvement
                         falls in this role group (applied after caching)
            cancel_token: Optional CancellationToken

        Returns:
            DiscographyResult

        Raises:
            NoRecordingsFoundError: If no pass produced a recording, or the
                                    role filter removed all of them
            OperationCancelled: If cancelled; nothing is cached
        """
        check_cancelled(cancel_token)

        result = self.cache.get(artist_mbid)
        if result is not None:
            logger.debug(f"discography cache hit {artist_mbid} recordings={len(result.recordings)}")
        else:
            result = self._collect(artist_mbid, artist_name, cancel_token)
            self.cache.set(artist_mbid, result)

        if role_filter is None:
            return result

        filtered = apply_role_filter(result.recordings, role_filter)
        logger.info(f"Role filter {role_filter.value}: {len(filtered)}/{len(result.recordings)} recordings")
        if not filtered:
            raise NoRecordingsFoundError(f"No {role_filter.title.lower()} credits found for {artist_name}")
        return DiscographyResult(
            artist_mbid=result.artist_mbid,
            artist_name=result.artist_name,
            recordings=filtered,
            fetched_at=result.fetched_at,
        )

    def _collect(self, artist_mbid: str, artist_name: str, cancel_token) -> DiscographyResult:
        logger.info(f"Fetching discography for {artist_name} ({artist_mbid})")
        collected: Dict[str, ArtistRecordingRel] = {}

        self._collect_direct_relationships(artist_mbid, collected, cancel_token)
        self._collect_browse_pages(artist_mbid, collected, cancel_token)
        self._collect_work_recordings(artist_mbid, collected, cancel_token)

        if not collected:
            raise NoRecordingsFoundError(f"No recordings found for {artist_name}")

        logger.info(f"Discography for {artist_name}: {len(collected)} recordings")
        return DiscographyResult(
            artist_mbid=artist_mbid,
            artist_name=artist_name,
            recordings=list(collected.values()),
            fetched_at=datetime.now(),
        )

    def _add(self, collected: Dict[str, ArtistRecordingRel], rel: ArtistRecordingRel,
             artist_mbid: str, source: EvidenceSource) -> bool:
        """
        Add one reported recording

        Returns:
            False once the recording cap is reached (the recording was not added)
        """
        evidence = RecordingInvolvementEvidence(
            artist_mbid=artist_mbid,
            source=source,
            relationship_type=rel.relationship_type,
            attributes=rel.attributes,
            confidence=source.confidence,
        )
        rel = rel.with_changes(evidence=rel.evidence + (evidence,))

        existing = collected.get(rel.recording_mbid)
        if existing is not None:
            collected[rel.recording_mbid] = merge_recording_rels(existing, rel)
            return True
        if len(collected) >= self.max_recordings:
            return False
        collected[rel.recording_mbid] = rel
        return True

    def _at_cap(self, collected) -> bool:
        return len(collected) >= self.max_recordings

    def _collect_direct_relationships(self, artist_mbid, collected, cancel_token):
        check_cancelled(cancel_token)
        try:
            rels = self.mb_client.get_artist_recording_rels(artist_mbid)
        except ProviderError as e:
            logger.warning(f"recording-rels failed: {e.describe()}")
            return

        for rel in rels:
            check_cancelled(cancel_token)
            if not self._add(collected, rel, artist_mbid, EvidenceSource.DIRECT_RELATIONSHIP):
                break
        logger.debug(f"recording-rels: {len(rels)} unique={len(collected)}")

    def _collect_browse_pages(self, artist_mbid, collected, cancel_token):
        offset = 0
        try:
            while not self._at_cap(collected):
                check_cancelled(cancel_token)
                page = self.mb_client.browse_recordings(artist_mbid, offset=offset, limit=self.page_size,
                                                        include_isrcs=True)
                for rel in page.recordings:
                    if not self._add(collected, rel, artist_mbid, EvidenceSource.PAGINATED_BROWSE):
                        break
                offset += len(page.recordings)
                if not page.recordings or offset >= page.total_count:
                    break
        except ProviderError as e:
            logger.warning(f"browse recordings failed at offset {offset}: {e.describe()}")
        logger.debug(f"browse recordings complete total={len(collected)}")

    def _collect_work_recordings(self, artist_mbid, collected, cancel_token):
        if self._at_cap(collected):
            return

        check_cancelled(cancel_token)
        try:
            work_rels = self.mb_client.get_artist_work_rels(artist_mbid)
        except ProviderError as e:
            logger.warning(f"work-rels failed: {e.describe()}")
            return

        works = []
        seen = set()
        for work_rel in work_rels:
            if work_rel.work_mbid not in seen:
                seen.add(work_rel.work_mbid)
                works.append(work_rel)
        if len(works) > self.max_hydrated_works:
            logger.info(f"Hydrating {self.max_hydrated_works} of {len(works)} works")
            works = works[:self.max_hydrated_works]

        for work_rel in works:
            if self._at_cap(collected):
                break
            check_cancelled(cancel_token)
            try:
                recordings = self.mb_client.get_work_recordings(work_rel.work_mbid)
            except ProviderError as e:
                logger.warning(f"Skipping work {work_rel.work_mbid}: {e.describe()}")
                continue

            for rel in recordings:
                # The artist's involvement is their relationship to the work
                rel = rel.with_changes(relationship_type=work_rel.relationship_type,
                                       attributes=work_rel.attributes)
                if not self._add(collected, rel, artist_mbid, EvidenceSource.WORK_DERIVED):
                    break
        logger.debug(f"work hydration complete works={len(works)} total={len(collected)}")

    # ========================================================================
    # CO-CREDIT
    # ========================================================================

    def fetch_co_credit_discography(self, config: CoCreditConfig, cancel_token=None) -> DiscographyResult:
        """
        Recordings both artists are involved in

        Args:
            config: The two artists (both with MBIDs) and the match mode
            cancel_token: Optional CancellationToken

        Returns:
            DiscographyResult keyed by the pair key, with telemetry

        Raises:
            ArtistResolutionFailedError: If either artist has no MBID
            NoRecordingsFoundError: If either artist has no recordings
            NoIntersectionFoundError: If no recording matched
        """
        for artist in (config.artist_a, config.artist_b):
            if not artist.mbid:
                raise ArtistResolutionFailedError(artist.name)

        check_cancelled(cancel_token)
        pair_key = co_credit_cache_key(config.artist_a.mbid, config.artist_b.mbid, config.match_mode)
        pair_name = f"{config.artist_a.name} × {config.artist_b.name}"

        cached = self.cache.get(pair_key)
        if cached is not None:
            logger.debug(f"co-credit cache hit {pair_key}")
            return cached

        left = self.fetch_all_discography(config.artist_a.mbid, config.artist_a.name,
                                          cancel_token=cancel_token).recordings
        right = self.fetch_all_discography(config.artist_b.mbid, config.artist_b.name,
                                           cancel_token=cancel_token).recordings

        if config.match_mode is CoCreditMatchMode.PERFORMER_ONLY:
            left = apply_role_filter(left, CreditRoleGroup.MUSICIANS)
            right = apply_role_filter(right, CreditRoleGroup.MUSICIANS)

        check_cancelled(cancel_token)
        matches, telemetry = intersect_discographies(left, right)

        logger.info(f"Co-credit {pair_name}: exact={telemetry.exact_id_matches} "
                    f"isrc={telemetry.isrc_matches} canonical={telemetry.canonical_key_matches} "
                    f"(left={telemetry.left_input_count}, right={telemetry.right_input_count})")

        if not matches:
            logger.info(f"Unmatched samples left={telemetry.unmatched_left_samples} "
                        f"right={telemetry.unmatched_right_samples}")
            raise NoIntersectionFoundError(
                f"No shared recordings found for {config.artist_a.name} and {config.artist_b.name}")

        result = DiscographyResult(
            artist_mbid=pair_key,
            artist_name=pair_name,
            recordings=matches,
            fetched_at=datetime.now(),
            telemetry=telemetry,
        )
        self.cache.set(pair_key, result)
        return result
