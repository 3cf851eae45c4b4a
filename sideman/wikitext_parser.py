"""
Wikitext Personnel Parser

Extracts credits from the raw wikitext of an album article.

Album pages are user-authored and come in two common shapes:

- bullet lists under a "Personnel" heading
  ("* Name – bass (tracks 1, 3); production")
- wikitables with one row per track, where the last cell holds liner-note
  style lines ("Guitar by Bob Power<br />Drums by Questlove")

The track listing section is parsed as well so the now-playing track can be
mapped to a track number, which is then used to drop credits scoped to other
tracks.
"""

import logging
import re
import string
from typing import Dict, List, Optional, Tuple

from sideman.credits_mapper import merge_deduplicating, role_group_for
from sideman.models import (
    CreditEntry, CreditRoleGroup, CreditScope, CreditSource, CreditSourceLevel,
    NowPlayingTrack, WikipediaPageContent, WikipediaParsedCredits,
)
from sideman.text_matching import TITLE_OPTIONS, normalize, similarity

logger = logging.getLogger(__name__)

WIKIPEDIA_ATTRIBUTION = 'Wikipedia contributors (CC BY-SA)'

TRACK_LISTING_HEADINGS = ['track listing', 'tracklist', 'track list']
PERSONNEL_HEADINGS = ['personnel', 'personnel and credits', 'credits']

# Title matching stays a little stricter than elsewhere; track rows are noisy
TRACK_TITLE_CONTAINS_SCORE = 0.86
TRACK_TITLE_MINIMUM_SCORE = 0.40

PERSONNEL_DELIMITERS = [' – ', ' — ', ' - ', ' : ', ': ']

# Liner-note credits that are not about making the music
NON_MUSICAL_ROLE_PREFIXES = [
    'a&r', 'management', 'business management', 'legal representation',
    'art direction', 'art director', 'design', 'designer', 'photography',
]

# Sanitizing
COMMENT_PATTERN = re.compile(r'<!--.*?-->', re.DOTALL)
SELF_CLOSING_REF_PATTERN = re.compile(r'<ref\b[^>]*/>')
PAIRED_REF_PATTERN = re.compile(r'<ref\b[^>]*>.*?</ref>', re.DOTALL)

# Sections
HEADING_PATTERN = re.compile(r'^(=+)\s*([^=\n]+?)\s*\1\s*$', re.MULTILINE)
WIKITABLE_OPEN_PATTERN = re.compile(r'^\{\|', re.MULTILINE)
WIKITABLE_CLOSE_LINE_PATTERN = re.compile(r'^\|\}\s*$', re.MULTILINE)

# Track listing rows
NUMBERED_TRACK_PATTERNS = [
    re.compile(r'\|\s*(\d+)\.?\s*\|?\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r"\|\s*(\d+)\.?\s*\|?\s*''\[\[[^\]|]+\|([^\]]+)\]\]''", re.IGNORECASE),
    re.compile(r'\|\s*(\d+)\.\s*([^|]+)$', re.IGNORECASE),
]
TEMPLATE_TRACK_TITLE_PATTERN = re.compile(r'^\|\s*title\s*(\d+)\s*=\s*(.+)$', re.IGNORECASE)
QUOTED_TITLE_PATTERN = re.compile(r'"([^"]+)"')
LIST_INDEX_PREFIX_PATTERN = re.compile(r'^#+\s*')

# Personnel lines and scopes
LINE_ITEM_PREFIX_PATTERN = re.compile(r'^[*#;:]+\s*')
TRACK_SCOPE_PATTERN = re.compile(r'\(([^)]*track[^)]*)\)', re.IGNORECASE)
TRAILING_PARENTHETICAL_PATTERN = re.compile(r'\(([^)]+)\)\s*$')
INLINE_TRACK_SCOPE_PATTERN = re.compile(r'\s+on\s+((?:all\s+)?tracks?\b.*)$', re.IGNORECASE)
TRACK_RANGE_PATTERN = re.compile(r'(\d+)\s*[-–]\s*(\d+)')
TRACK_NUMBER_PATTERN = re.compile(r'\b(\d+)\b')
NUMERIC_TRACK_LIST_PATTERN = re.compile(r'^[\d\s,\-–]+$')

# Wikitables
SMALL_TAG_PATTERN = re.compile(r'</?small>')
LINE_BREAK_TAG_PATTERN = re.compile(r'<br\s*/?>', re.IGNORECASE)
ROLE_BY_NAMES_PATTERN = re.compile(r'^([A-Za-z][A-Za-z\s]{0,40}?)\s+by\s+', re.IGNORECASE)
LOCATION_SUFFIX_PATTERN = re.compile(r'\s+at\s+', re.IGNORECASE)

# Markup cleanup
PIPED_LINK_PATTERN = re.compile(r'\[\[([^\]|]+)\|([^\]]+)\]\]')
LINK_PATTERN = re.compile(r'\[\[([^\]]+)\]\]')
TEMPLATE_PATTERN = re.compile(r'\{\{[^}]*\}\}')
FOOTNOTE_PATTERN = re.compile(r'\[[0-9]+\]')
WHITESPACE_PATTERN = re.compile(r'\s+')


# ============================================================================
# MARKUP HELPERS
# ============================================================================

def sanitize_wikitext(text: str) -> str:
    """
    Remove comments and reference tags.

    Self-closing refs go before paired refs, otherwise `<ref name="x"/>` is
    read as an opening tag and everything up to the next `</ref>` is lost.
    """
    text = COMMENT_PATTERN.sub(' ', text)
    text = SELF_CLOSING_REF_PATTERN.sub(' ', text)
    return PAIRED_REF_PATTERN.sub(' ', text)


def cleanup_markup(value: str) -> str:
    """Reduce a fragment of wikitext to plain text ([[a|b]] -> b, templates and footnotes dropped)"""
    output = PIPED_LINK_PATTERN.sub(r'\2', value)
    output = LINK_PATTERN.sub(r'\1', output)
    output = TEMPLATE_PATTERN.sub(' ', output)
    output = FOOTNOTE_PATTERN.sub(' ', output)
    output = output.replace("''", '')
    output = WHITESPACE_PATTERN.sub(' ', output)
    return output.strip()


def extract_section(text: str, candidates: List[str]) -> Optional[str]:
    """
    Body of the first heading whose title contains one of the candidates.

    Candidates are tried in order, so an exact "Personnel" heading is found
    even when a "Sample credits" heading comes earlier in the page. Deeper
    headings (=== Additional personnel ===) stay inside the section; the
    section ends at the next heading of the same or a shallower level.
    """
    headings = list(HEADING_PATTERN.finditer(text))
    if not headings:
        return None

    for candidate in candidates:
        for index, heading in enumerate(headings):
            title = heading.group(2).strip().lower()
            if candidate not in title:
                continue

            level = len(heading.group(1))
            end = len(text)
            for following in headings[index + 1:]:
                if len(following.group(1)) <= level:
                    end = following.start()
                    break
            return text[heading.end():end]

    return None


# ============================================================================
# TRACK LISTING
# ============================================================================

def _parse_numbered_track_line(line: str) -> Optional[Tuple[int, str]]:
    for pattern in NUMBERED_TRACK_PATTERNS:
        match = pattern.search(line)
        if not match:
            continue
        title = cleanup_markup(match.group(2))
        if title:
            return int(match.group(1)), title
    return None


def _parse_template_track_line(line: str) -> Optional[Tuple[int, str]]:
    match = TEMPLATE_TRACK_TITLE_PATTERN.search(line)
    if not match:
        return None
    title = cleanup_markup(match.group(2))
    if not title:
        return None
    return int(match.group(1)), title


def _extract_list_track_title(line: str) -> Optional[str]:
    quoted = QUOTED_TITLE_PATTERN.search(line)
    if quoted:
        return cleanup_markup(quoted.group(1)) or None

    candidate = LIST_INDEX_PREFIX_PATTERN.sub('', line).strip()
    for separator in (' – ', ' - '):
        if separator in candidate:
            candidate = candidate.split(separator, 1)[0]
            break
    return cleanup_markup(candidate) or None


def parse_track_listing(section: str) -> Dict[int, str]:
    """
    Map track numbers to titles.

    Handles numbered table rows, {{Track listing}} template rows
    (| title3 = ...) and '#' numbered lists, where the position in the list
    is the track number.
    """
    tracks: Dict[int, str] = {}
    list_index = 1

    for raw_line in (section or '').splitlines():
        line = raw_line.strip()
        if not line:
            continue

        parsed = _parse_numbered_track_line(line) or _parse_template_track_line(line)
        if parsed:
            number, title = parsed
            tracks[number] = title
            continue

        if line.startswith('#'):
            title = _extract_list_track_title(line)
            if title:
                tracks.setdefault(list_index, title)
                list_index += 1

    return tracks


def infer_track_number(title: str, tracks: Dict[int, str]) -> Optional[int]:
    """Track number whose title best matches `title`, or None below the minimum score"""
    if not tracks:
        return None

    normalized_title = normalize(title, TITLE_OPTIONS)
    if not normalized_title:
        return None

    best_number, best_score = None, -1.0
    for number, track_title in sorted(tracks.items()):
        score = similarity(normalized_title, normalize(track_title, TITLE_OPTIONS),
                           TRACK_TITLE_CONTAINS_SCORE)
        if score > best_score:
            best_number, best_score = number, score

    if best_score < TRACK_TITLE_MINIMUM_SCORE:
        return None
    return best_number


# ============================================================================
# SCOPES
# ============================================================================

def parse_scope_text(scope_text: str) -> CreditScope:
    """
    Interpret the inside of a scope parenthetical.

    "all tracks except N" is deliberately not subtracted; it becomes an
    unknown scope, which applies to every track.

    Examples:
        "all tracks"       -> album-wide
        "tracks 3–7"       -> range 3..7
        "tracks 1, 3–5"    -> specific {1, 3, 4, 5}
        "bonus track"      -> unknown
    """
    lowered = scope_text.lower()
    if 'all tracks except' in lowered:
        return CreditScope.track_unknown()
    if 'all tracks' in lowered:
        return CreditScope.album_wide()

    ranges = []
    for match in TRACK_RANGE_PATTERN.finditer(lowered):
        left, right = int(match.group(1)), int(match.group(2))
        ranges.append((min(left, right), max(left, right)))
    singles = [int(n) for n in TRACK_NUMBER_PATTERN.findall(TRACK_RANGE_PATTERN.sub(' ', lowered))]

    if len(ranges) == 1 and not singles:
        return CreditScope.track_range(*ranges[0])

    tracks = set(singles)
    for start, end in ranges:
        tracks.update(range(start, end + 1))
    if tracks:
        return CreditScope.track_specific(tracks)

    return CreditScope.track_unknown()


def is_numeric_track_list(text: str) -> bool:
    """True for "1, 3, 7", "1–4, 6–10" or "4, and 8"; false for "Live" or "uncredited\""""
    stripped = re.sub('and', '', text, flags=re.IGNORECASE).strip()
    return bool(stripped) and bool(NUMERIC_TRACK_LIST_PATTERN.match(stripped))


def extract_scope(text: str) -> Tuple[CreditScope, str]:
    """
    Pull a scope parenthetical out of a role (or name) fragment

    Returns:
        (scope, remaining text). The text is unchanged when no scope was found.
    """
    match = TRACK_SCOPE_PATTERN.search(text)
    if match:
        remaining = (text[:match.start()] + text[match.end():]).strip()
        return parse_scope_text(match.group(1)), remaining

    match = TRAILING_PARENTHETICAL_PATTERN.search(text)
    if match and is_numeric_track_list(match.group(1)):
        remaining = text[:match.start()].strip()
        return parse_scope_text(match.group(1)), remaining

    return CreditScope.album_wide(), text


def parenthesize_inline_scope(text: str) -> str:
    """'guitar on tracks 7 and 11' -> 'guitar (tracks 7 and 11)'"""
    match = INLINE_TRACK_SCOPE_PATTERN.search(text)
    if not match:
        return text
    return f"{text[:match.start()]} ({match.group(1)})"


def split_paren_aware(text: str, delimiter: str) -> List[str]:
    """
    Split on `delimiter` outside parentheses. When splitting on commas,
    " and " outside parentheses is a delimiter as well.
    """
    parts = []
    current = []
    depth = 0
    index = 0

    def flush():
        piece = ''.join(current).strip()
        if piece:
            parts.append(piece)
        current.clear()

    while index < len(text):
        char = text[index]
        if char == '(':
            depth += 1
        elif char == ')':
            depth = max(0, depth - 1)
        elif depth == 0 and char == delimiter:
            flush()
            index += 1
            continue
        elif depth == 0 and delimiter == ',' and text.startswith(' and ', index):
            flush()
            index += len(' and ')
            continue
        current.append(char)
        index += 1

    flush()
    return parts


def split_role_segments(role_text: str) -> List[Tuple[str, Optional[CreditScope]]]:
    """
    Split role text into (item, group scope) pairs.

    Semicolons separate groups, commas and "and" separate items. The group
    scope is the scope of the last item in the group, when it has one, and is
    inherited by items that carry no scope of their own.
    """
    segments = []
    for group in split_paren_aware(role_text, ';'):
        items = split_paren_aware(parenthesize_inline_scope(group), ',')
        if not items:
            continue
        trailing_scope, _ = extract_scope(items[-1])
        group_scope = None if trailing_scope.is_album_wide else trailing_scope
        segments.extend((item, group_scope) for item in items)

    if not segments:
        return [(role_text.strip(), None)]
    return segments


def split_personnel_item(line: str) -> Optional[Tuple[str, str]]:
    for delimiter in PERSONNEL_DELIMITERS:
        if delimiter in line:
            name, role = line.split(delimiter, 1)
            name, role = name.strip(), role.strip()
            if name and role:
                return name, role
    return None


def _source_level_for(scope: CreditScope) -> CreditSourceLevel:
    return CreditSourceLevel.RELEASE if scope.is_album_wide else CreditSourceLevel.RECORDING


def _instrument_for(role: str, role_group: CreditRoleGroup) -> Optional[str]:
    if role_group is not CreditRoleGroup.MUSICIANS:
        return None
    return role.strip() or None


# ============================================================================
# WIKITABLES
# ============================================================================

def extract_wikitable_cells(row: str) -> List[str]:
    """
    Cells of one wikitable row, for both `| a || b || c` rows and rows with
    one `|`-prefixed line per cell (unprefixed lines continue the cell above).
    """
    inline_cells = row.split('||')
    if len(inline_cells) > 1:
        cells = []
        for cell in inline_cells:
            cell = cell.strip()
            if cell.startswith('|'):
                cell = cell[1:].strip()
            if cell:
                cells.append(cell)
        return cells

    cells = []
    current = None
    for raw_line in row.splitlines():
        line = raw_line.strip()
        if line.startswith('|'):
            if current is not None:
                cells.append(current)
            current = line[1:].strip()
        elif line and current is not None:
            current += '\n' + line
    if current is not None:
        cells.append(current)

    return [cell for cell in cells if cell]


def strip_location_suffix(text: str) -> str:
    """'Bob Power at Battery Studios, NYC' -> 'Bob Power'"""
    return LOCATION_SUFFIX_PATTERN.split(text, 1)[0].strip()


def split_names(text: str) -> List[str]:
    """'Alice, Bob, and Charlie' -> ['Alice', 'Bob', 'Charlie']"""
    names = []
    for part in text.split(', '):
        for name in part.split(' and '):
            name = name.strip()
            if name.startswith('and '):
                name = name[4:].strip()
            if name:
                names.append(name)
    return names


def parse_inverted_credit_line(line: str) -> List[Tuple[str, str]]:
    """
    Parse a liner-note line where the role comes first

    Examples:
        "Keyboards by Charlie Hunter and D'Angelo" -> [("Charlie Hunter", "Keyboards"), ("D'Angelo", "Keyboards")]
        "Bass: Pino Palladino" -> [("Pino Palladino", "Bass")]
        "Recorded at Battery Studios, NYC" -> []

    Returns:
        (name, role) pairs
    """
    match = ROLE_BY_NAMES_PATTERN.match(line)
    if match:
        role = match.group(1).strip()
        names = split_names(strip_location_suffix(line[match.end():]))
        if role and names:
            return [(name, role) for name in names]

    if ': ' in line:
        role, rest = line.split(': ', 1)
        role = role.strip()
        names = split_names(strip_location_suffix(rest))
        if role and names:
            return [(name, role) for name in names]

    return []


def is_non_musical_role(role: str) -> bool:
    lowered = role.lower()
    return any(lowered.startswith(prefix) for prefix in NON_MUSICAL_ROLE_PREFIXES)


# ============================================================================
# PARSER
# ============================================================================

class WikitextParser:
    """Turns an album article into credit entries for one track"""

    def __init__(self, attribution: str = WIKIPEDIA_ATTRIBUTION):
        self.attribution = attribution

    def parse(self, page: WikipediaPageContent, track: NowPlayingTrack) -> WikipediaParsedCredits:
        """
        Parse the personnel of an album article

        Args:
            page: Article content
            track: Now-playing track; its track number (when known) wins over
                   the number inferred from the track listing

        Returns:
            WikipediaParsedCredits with entries applying to the matched track
            (all entries when no track could be matched)
        """
        text = sanitize_wikitext(page.wikitext)

        track_map = parse_track_listing(extract_section(text, TRACK_LISTING_HEADINGS) or '')
        inferred = infer_track_number(track.title, track_map)
        matched_track = track.track_number if track.track_number is not None else inferred

        logger.debug(f"wikipedia parse page='{page.title}' trackMatch={matched_track} "
                     f"inferredTrack={inferred} parsedTrackRows={len(track_map)}")

        personnel = extract_section(text, PERSONNEL_HEADINGS)
        if personnel is None:
            logger.debug("wikipedia parse no personnel section found")
            return WikipediaParsedCredits(entries=[], matched_track_number=matched_track)

        if WIKITABLE_OPEN_PATTERN.search(personnel):
            raw_entries = self._parse_wikitable(personnel, page)
        else:
            raw_entries = self._parse_bullets(personnel, page)

        deduped = merge_deduplicating(raw_entries)
        if matched_track is not None:
            filtered = [e for e in deduped if e.scope.applies(matched_track)]
        else:
            filtered = deduped

        logger.debug(f"wikipedia parse entries raw={len(raw_entries)} deduped={len(deduped)} "
                     f"filtered={len(filtered)}")
        return WikipediaParsedCredits(entries=filtered, matched_track_number=matched_track)

    def _entry(self, name: str, role: str, role_group: CreditRoleGroup, scope: CreditScope,
               page: WikipediaPageContent, instrument: Optional[str]) -> CreditEntry:
        return CreditEntry(
            person_name=name,
            role_raw=role,
            role_group=role_group,
            source_level=_source_level_for(scope),
            instrument=instrument,
            source=CreditSource.WIKIPEDIA,
            scope=scope,
            source_url=page.full_url,
            source_attribution=self.attribution,
        )

    def _parse_bullets(self, section: str, page: WikipediaPageContent) -> List[CreditEntry]:
        entries = []

        for raw_line in section.splitlines():
            line = raw_line.strip()
            if not line or line[0] not in '*#:;':
                continue

            item = LINE_ITEM_PREFIX_PATTERN.sub('', line)
            split = split_personnel_item(item)

            if split is None:
                # Name-only line, e.g. "Full Name (1, 3, 7)"
                scope, name_text = extract_scope(item)
                name = cleanup_markup(name_text)
                if name:
                    entries.append(self._entry(name, 'performer', CreditRoleGroup.MUSICIANS,
                                               scope, page, None))
                continue

            name = cleanup_markup(split[0])
            if not name:
                continue

            for segment, group_scope in split_role_segments(cleanup_markup(split[1])):
                scope, role = extract_scope(segment)
                if scope.is_album_wide and role == segment and group_scope is not None:
                    scope = group_scope
                role = role.strip()
                if not role:
                    continue
                role_group = role_group_for(role)
                entries.append(self._entry(name, role, role_group, scope, page,
                                           _instrument_for(role, role_group)))

        return entries

    def _parse_wikitable(self, section: str, page: WikipediaPageContent) -> List[CreditEntry]:
        entries = []
        body = WIKITABLE_CLOSE_LINE_PATTERN.sub('', section)

        for raw_row in body.split('|-'):
            row = raw_row.strip()
            if not row or row.startswith('{|') or row.startswith('!'):
                continue

            cells = extract_wikitable_cells(row)
            if not cells:
                continue

            first_cell = cells[0].strip(string.punctuation + string.whitespace)
            if first_cell.isdigit():
                scope = CreditScope.track_specific([int(first_cell)])
            else:
                scope = CreditScope.album_wide()

            notes = SMALL_TAG_PATTERN.sub('', cells[-1])
            notes = LINE_BREAK_TAG_PATTERN.sub('\n', notes)

            for note_line in notes.splitlines():
                credit_line = cleanup_markup(note_line)
                if not credit_line:
                    continue
                for name, role in parse_inverted_credit_line(credit_line):
                    if is_non_musical_role(role):
                        continue
                    role_group = role_group_for(role)
                    entries.append(self._entry(name, role, role_group, scope, page,
                                               _instrument_for(role, role_group)))

        return entries
