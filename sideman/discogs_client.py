"""
Discogs Client
Artist hints for the catalogue matcher, taken from Discogs release tracklists

Used when a recording has no artist credit to search Spotify with, or when
every credited artist failed to find it.
"""

import re
import logging
from typing import Dict, Iterable, List, Optional

from sideman.api_client import ApiClient
from sideman.config import DEFAULT_USER_AGENT
from sideman.errors import NotAuthenticatedError, ProviderError, RateLimitedError
from sideman.text_matching import CANONICAL_TITLE_OPTIONS, normalize, similarity

logger = logging.getLogger(__name__)

DISCOGS_BASE_URL = 'https://api.discogs.com'

RELEASES_TO_INSPECT = 3
TRACK_CONTAINS_SCORE = 0.96
MIN_TRACK_SIMILARITY = 0.84

# Discogs disambiguates homonyms as "Name (2)"
NAME_SUFFIX_PATTERN = re.compile(r' \(\d+\)$')


def clean_artist_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    cleaned = NAME_SUFFIX_PATTERN.sub('', name).strip()
    return cleaned or None


def _unique_names(names: Iterable[Optional[str]]) -> List[str]:
    ordered, seen = [], set()
    for name in names:
        cleaned = clean_artist_name(name)
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            ordered.append(cleaned)
    return ordered


class DiscogsClient(ApiClient):
    """Discogs database API client (personal access token)"""

    service_name = 'discogs'

    def __init__(self, token: Optional[str] = None, user_agent: str = DEFAULT_USER_AGENT,
                 min_interval: float = 0.5, timeout: float = 10, max_retries: int = 2,
                 base_url: str = DISCOGS_BASE_URL, **kwargs):
        super().__init__(user_agent=user_agent, min_interval=min_interval, timeout=timeout,
                         max_retries=max_retries, base_delay=0.5, **kwargs)
        self.token = token
        self.base_url = base_url.rstrip('/')

    def _auth_headers(self, context: str) -> dict:
        if not self.token:
            raise NotAuthenticatedError("No Discogs token configured",
                                        service=self.service_name, context=context)
        return {'Authorization': f'Discogs token={self.token}'}

    def _check_status(self, response, context: str = None):
        if response.status_code in (401, 403):
            raise NotAuthenticatedError("Discogs rejected the token",
                                        service=self.service_name, context=context)
        super()._check_status(response, context)

    def search_release_ids(self, title: str, artist_hint: Optional[str] = None, limit: int = 6) -> List[int]:
        """Release ids whose tracklist matches `title`, in Discogs' order"""
        context = f"search_release_ids {title}"
        params = {'type': 'release', 'track': title, 'per_page': limit, 'page': 1}
        if artist_hint:
            params['artist'] = artist_hint

        data = self._get_json(f"{self.base_url}/database/search", params=params, context=context,
                              headers=self._auth_headers(context)) or {}

        ids = []
        for result in data.get('results') or []:
            release_id = result.get('id')
            if release_id is not None and release_id not in ids:
                ids.append(release_id)
        self.logger.debug(f"discogs search title='{title}' artist='{artist_hint or ''}' releases={len(ids)}")
        return ids

    def get_release(self, release_id: int) -> dict:
        context = f"get_release {release_id}"
        return self._get_json(f"{self.base_url}/releases/{release_id}", context=context,
                              headers=self._auth_headers(context)) or {}

    def artist_hints_for_track(self, title: str, artist_hints: Iterable[str] = (), limit: int = 3) -> List[str]:
        """
        Artists Discogs credits on releases carrying this track

        Args:
            title: Recording title
            artist_hints: Known artist names; the first narrows the release search
            limit: Maximum number of names returned

        Returns:
            Artist names, most frequently credited first (ties in first-seen order)

        Raises:
            RateLimitedError: If Discogs keeps answering 429
            ProviderError: If the release search fails
        """
        title = (title or '').strip()
        target = normalize(title, CANONICAL_TITLE_OPTIONS)
        if not target:
            return []

        hints = _unique_names(artist_hints)
        release_ids = self.search_release_ids(title, hints[0] if hints else None,
                                              limit=max(6, min(limit * 3, 12)))

        counts: Dict[str, int] = {}
        first_seen: Dict[str, str] = {}
        for release_id in release_ids[:RELEASES_TO_INSPECT]:
            try:
                release = self.get_release(release_id)
            except RateLimitedError:
                raise
            except ProviderError as e:
                logger.debug(f"discogs release lookup failed id={release_id}: {e.describe()}")
                continue

            matched = [
                track for track in release.get('tracklist') or []
                if similarity(target, normalize(track.get('title'), CANONICAL_TITLE_OPTIONS),
                              contains_score=TRACK_CONTAINS_SCORE) >= MIN_TRACK_SIMILARITY
            ]
            if not matched:
                continue

            names = _unique_names(artist.get('name') for track in matched for artist in track.get('artists') or [])
            if not names:
                names = _unique_names(artist.get('name') for artist in release.get('artists') or [])

            for name in names:
                key = name.lower()
                first_seen.setdefault(key, name)
                counts[key] = counts.get(key, 0) + 1

        order = list(first_seen)
        ranked = sorted(order, key=lambda key: (-counts[key], order.index(key)))
        return [first_seen[key] for key in ranked[:max(1, limit)]]
