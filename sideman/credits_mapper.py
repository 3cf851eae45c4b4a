"""
Credits Mapper

Maps MusicBrainz relationships into CreditEntry values, classifies roles
into groups, and merges entries coming from different lookup levels
(recording, work, release) or different sources (Wikipedia, MusicBrainz).
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sideman.models import (
    CreditEntry, CreditRoleGroup, CreditSource, CreditSourceLevel, MBRecordingDetail,
    MBRelationship,
)

logger = logging.getLogger(__name__)


# Keyword sets checked in this order; first match wins. Musicians come after
# engineering so "recording engineer" is never mistaken for a performer.
ROLE_GROUP_KEYWORDS = [
    (CreditRoleGroup.WRITING, [
        'composer', 'lyricist', 'writer', 'songwriter', 'librettist', 'author',
        'arranger', 'orchestrator',
        # liner-note phrasing ("Written by", "Vocal arrangements by")
        'written', 'arrangement',
    ]),
    (CreditRoleGroup.PRODUCTION, [
        'producer', 'co-producer', 'executive producer', 'production', 'programming',
        'programmer', 'beatmaker', 'produced',
    ]),
    (CreditRoleGroup.ENGINEERING, [
        'engineer', 'mix', 'mastering', 'recording', 'assistant engineer',
        'audio editing', 'editing', 'mastered', 'recorded',
    ]),
    (CreditRoleGroup.MUSICIANS, [
        'perform', 'instrument', 'vocal', 'guitar', 'drum', 'drums', 'bass', 'piano',
        'sax', 'violin', 'synth', 'keyboard', 'keyboards', 'percussion', 'flute', 'cello',
        'mandolin', 'banjo', 'marimba', 'glockenspiel', 'trumpet', 'trombone', 'clarinet',
        'conductor',
    ]),
]


def role_group_for(role_type: str, attributes: Sequence[str] = ()) -> CreditRoleGroup:
    """
    Classify a role by keyword containment

    Examples:
        ("instrument", ["guitar"]) -> MUSICIANS
        ("mix", []) -> ENGINEERING
        ("liner notes", []) -> MISC
    """
    full = ' '.join([role_type or ''] + list(attributes)).lower()
    for group, keywords in ROLE_GROUP_KEYWORDS:
        if any(keyword in full for keyword in keywords):
            return group
    return CreditRoleGroup.MISC


def raw_role(role_type: str, attributes: Sequence[str] = ()) -> str:
    if not attributes:
        return role_type
    return f"{role_type} ({', '.join(attributes)})"


def instrument_for(relation: MBRelationship, group: CreditRoleGroup) -> Optional[str]:
    if group is not CreditRoleGroup.MUSICIANS:
        return None
    role_type = relation.type.lower()
    if 'instrument' in role_type or 'perform' in role_type:
        return relation.attributes[0] if relation.attributes else None
    if 'vocal' in role_type:
        return 'vocals'
    return None


def map_relations(relations: Iterable[MBRelationship], source_level: CreditSourceLevel) -> List[CreditEntry]:
    """
    Convert artist relationships into credit entries

    Args:
        relations: Relationships from a recording, work or release lookup
        source_level: Level the relationships were found at

    Returns:
        One CreditEntry per artist relationship
    """
    entries = []
    for relation in relations:
        if relation.artist is None:
            continue
        if relation.target_type not in (None, 'artist'):
            continue
        group = role_group_for(relation.type, relation.attributes)
        entries.append(CreditEntry(
            person_name=relation.artist.name,
            person_mbid=relation.artist.id,
            role_raw=raw_role(relation.type, relation.attributes),
            role_group=group,
            source_level=source_level,
            instrument=instrument_for(relation, group),
            source=CreditSource.MUSICBRAINZ,
        ))
    return entries


def extract_work_ids(recording: MBRecordingDetail) -> List[str]:
    """Distinct work ids referenced by a recording's relationships, in order of appearance"""
    seen = []
    for relation in recording.relations:
        if relation.work is not None and relation.work.id not in seen:
            seen.append(relation.work.id)
    return seen


# ============================================================================
# DEDUPLICATION AND MERGE
# ============================================================================

def dedupe_key(entry: CreditEntry) -> str:
    person = (entry.person_mbid or entry.person_name).lower()
    return '|'.join([
        person,
        entry.role_group.value,
        entry.role_raw.strip().lower(),
        (entry.instrument or '').strip().lower(),
        entry.scope.cache_token(),
    ])


def cross_source_key(entry: CreditEntry) -> str:
    """
    Like dedupe_key() but keyed on the person's name, since identifiers only
    exist on the MusicBrainz side.
    """
    return '|'.join([
        ' '.join(entry.person_name.lower().split()),
        entry.role_group.value,
        entry.role_raw.strip().lower(),
        (entry.instrument or '').strip().lower(),
        entry.scope.cache_token(),
    ])


def sort_entries(entries: Iterable[CreditEntry]) -> List[CreditEntry]:
    """Order by role-group title, then person name, then role (case-insensitive)"""
    return sorted(entries, key=lambda e: (e.role_group.title, e.person_name.lower(), e.role_raw.lower()))


def merge_with_precedence(entries: Iterable[CreditEntry]) -> List[CreditEntry]:
    """
    Collapse duplicates, keeping the entry from the most specific level
    (recording beats work beats release).
    """
    winners: Dict[str, CreditEntry] = {}
    for entry in entries:
        key = dedupe_key(entry)
        existing = winners.get(key)
        if existing is None or entry.source_level.rank < existing.source_level.rank:
            winners[key] = entry
    return sort_entries(winners.values())


def merge_deduplicating(entries: Iterable[CreditEntry]) -> List[CreditEntry]:
    """Collapse duplicates, keeping the first one seen"""
    seen = set()
    deduped = []
    for entry in entries:
        key = dedupe_key(entry)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(entry)
    return sort_entries(deduped)


def merge_cross_source(wikipedia_entries: Iterable[CreditEntry],
                       musicbrainz_entries: Iterable[CreditEntry]) -> List[CreditEntry]:
    """
    Combine Wikipedia and MusicBrainz entries. On a collision the entry with
    a MusicBrainz identifier wins; otherwise the first one seen is kept.
    """
    winners: Dict[str, CreditEntry] = {}
    for entry in list(wikipedia_entries) + list(musicbrainz_entries):
        key = cross_source_key(entry)
        existing = winners.get(key)
        if existing is None:
            winners[key] = entry
        elif entry.person_mbid and not existing.person_mbid:
            winners[key] = entry
    return sort_entries(winners.values())


def group_entries(entries: Iterable[CreditEntry]) -> Dict[CreditRoleGroup, List[CreditEntry]]:
    """Group entries by role group; every group is present, each sorted by name then role"""
    grouped = {group: [] for group in CreditRoleGroup.display_order()}
    for entry in entries:
        grouped[entry.role_group].append(entry)
    for group in grouped:
        grouped[group].sort(key=lambda e: (e.person_name.lower(), e.role_raw.lower()))
    return grouped


def provenance_for(entries: Iterable[CreditEntry]) -> List[CreditSourceLevel]:
    """Distinct source levels, most specific first"""
    return sorted({e.source_level for e in entries}, key=lambda level: level.rank)
