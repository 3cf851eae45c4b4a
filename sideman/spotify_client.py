"""
Spotify API Client

Catalogue search (by ISRC and by title/artist) and playlist creation for the
playlist builder. Authenticates with an already-issued user access token
(SPOTIFY_ACCESS_TOKEN); token acquisition is handled outside this package.
"""

import logging
from typing import List, Optional

import requests

from sideman.api_client import ApiClient
from sideman.config import DEFAULT_USER_AGENT
from sideman.errors import NotAuthenticatedError
from sideman.models import SpotifyPlaylist, SpotifyTrack

logger = logging.getLogger(__name__)

SPOTIFY_API_BASE_URL = 'https://api.spotify.com/v1'
PLAYLIST_CHUNK_SIZE = 100


def parse_track(item: dict) -> SpotifyTrack:
    return SpotifyTrack(
        id=item.get('id', ''),
        name=item.get('name', ''),
        uri=item.get('uri', ''),
        artist_names=tuple(a.get('name', '') for a in item.get('artists') or []),
        album_name=(item.get('album') or {}).get('name', ''),
        isrc=(item.get('external_ids') or {}).get('isrc'),
        popularity=item.get('popularity'),
    )


class SpotifyClient(ApiClient):
    """
    Spotify Web API client with bounded 429 retries.
    """

    service_name = 'spotify'

    def __init__(self, access_token: Optional[str] = None, user_agent: str = DEFAULT_USER_AGENT,
                 min_interval: float = 0.1, timeout: float = 15, max_retries: int = 3,
                 base_url: str = SPOTIFY_API_BASE_URL, **kwargs):
        """
        Args:
            access_token: User access token with playlist-modify scopes
            min_interval: Minimum seconds between requests
            timeout: Per-request timeout in seconds
            max_retries: Maximum number of retries for rate-limited requests
        """
        super().__init__(user_agent=user_agent, min_interval=min_interval, timeout=timeout,
                         max_retries=max_retries, base_delay=1.0, **kwargs)
        self.access_token = access_token
        self.base_url = base_url.rstrip('/')
        self._user_id = None

    # ========================================================================
    # AUTHENTICATION
    # ========================================================================

    def _auth_headers(self, context: str) -> dict:
        if not self.access_token:
            raise NotAuthenticatedError("No Spotify access token configured",
                                        service=self.service_name, context=context)
        return {'Authorization': f'Bearer {self.access_token}'}

    def _check_status(self, response: requests.Response, context: str = None):
        if response.status_code == 401:
            raise NotAuthenticatedError("Spotify rejected the access token",
                                        service=self.service_name, context=context)
        super()._check_status(response, context)

    def get_current_user_id(self) -> str:
        if self._user_id is None:
            context = 'get_current_user_id'
            data = self._get_json(f"{self.base_url}/me", context=context,
                                  headers=self._auth_headers(context)) or {}
            self._user_id = data['id']
        return self._user_id

    # ========================================================================
    # SEARCH
    # ========================================================================

    def _search(self, query: str, limit: int, context: str) -> List[SpotifyTrack]:
        data = self._get_json(f"{self.base_url}/search",
                              params={'q': query, 'type': 'track', 'limit': limit},
                              context=context, headers=self._auth_headers(context)) or {}
        items = (data.get('tracks') or {}).get('items') or []
        return [parse_track(item) for item in items if item]

    def search_track_by_isrc(self, isrc: str) -> List[SpotifyTrack]:
        """Tracks carrying this ISRC (at most one)"""
        return self._search(f"isrc:{isrc}", 1, f"search_track_by_isrc {isrc}")

    def search_tracks(self, title: str, artist: str) -> List[SpotifyTrack]:
        """
        Field-filtered text search

        Returns:
            Up to 3 SpotifyTrack results
        """
        escaped_title = (title or '').replace('"', '')
        escaped_artist = (artist or '').replace('"', '')
        query = f'track:"{escaped_title}" artist:"{escaped_artist}"'
        return self._search(query, 3, f"search_tracks '{title}' / '{artist}'")

    # ========================================================================
    # PLAYLISTS
    # ========================================================================

    def create_playlist(self, name: str, description: str, is_public: bool) -> SpotifyPlaylist:
        user_id = self.get_current_user_id()
        context = f"create_playlist '{name}'"
        data = self._post_json(f"{self.base_url}/users/{user_id}/playlists",
                               {'name': name, 'description': description, 'public': is_public},
                               context=context, headers=self._auth_headers(context)) or {}
        return SpotifyPlaylist(
            id=data['id'],
            name=data.get('name', name),
            url=(data.get('external_urls') or {}).get('spotify'),
        )

    def add_tracks_to_playlist(self, playlist_id: str, uris: List[str]) -> None:
        """Add tracks in chunks of 100 (the API's per-request maximum)"""
        for start in range(0, len(uris), PLAYLIST_CHUNK_SIZE):
            chunk = uris[start:start + PLAYLIST_CHUNK_SIZE]
            context = f"add_tracks_to_playlist {playlist_id} chunk={start}"
            self._post_json(f"{self.base_url}/playlists/{playlist_id}/tracks", {'uris': chunk},
                            context=context, headers=self._auth_headers(context))
        self.logger.info(f"Added {len(uris)} tracks to playlist {playlist_id}")
