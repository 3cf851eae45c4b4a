"""
ListenBrainz Client
Recording popularity (total listen counts) used to rank a discography
"""

import logging
from typing import Iterable, List

from sideman.api_client import ApiClient
from sideman.cancellation import check_cancelled
from sideman.config import DEFAULT_USER_AGENT
from sideman.models import RecordingPopularity

logger = logging.getLogger(__name__)

LISTENBRAINZ_BASE_URL = 'https://api.listenbrainz.org/1'
POPULARITY_BATCH_SIZE = 1000


def _parse_popularity(items) -> List[RecordingPopularity]:
    results = []
    for item in items or []:
        mbid = item.get('recording_mbid')
        if not mbid:
            continue
        count = item.get('total_listen_count')
        results.append(RecordingPopularity(
            recording_mbid=mbid,
            listen_count=int(count) if count is not None else None,
        ))
    return results


class ListenBrainzClient(ApiClient):
    """ListenBrainz popularity API client"""

    service_name = 'listenbrainz'

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, min_interval: float = 1.0,
                 max_retries: int = 2, base_url: str = LISTENBRAINZ_BASE_URL, **kwargs):
        super().__init__(user_agent=user_agent, min_interval=min_interval, timeout=30,
                         max_retries=max_retries, base_delay=0.5, **kwargs)
        self.base_url = base_url.rstrip('/')

    def recording_popularity(self, mbids: Iterable[str], cancel_token=None) -> List[RecordingPopularity]:
        """
        Listen counts for a list of recordings, in batches of 1000

        Args:
            mbids: Recording MBIDs
            cancel_token: Optional CancellationToken checked between batches

        Returns:
            RecordingPopularity for every recording ListenBrainz knows
        """
        mbids = list(mbids)
        self.logger.debug(f"ListenBrainz recordingPopularity count={len(mbids)}")

        results = []
        for batch_start in range(0, len(mbids), POPULARITY_BATCH_SIZE):
            check_cancelled(cancel_token)
            batch = mbids[batch_start:batch_start + POPULARITY_BATCH_SIZE]
            data = self._post_json(f"{self.base_url}/popularity/recording",
                                   {'recording_mbids': batch},
                                   context=f"recording_popularity batch={batch_start}",
                                   timeout=30)
            results.extend(_parse_popularity(data))

        self.logger.debug(f"ListenBrainz recordingPopularity returned {len(results)} results")
        return results

    def top_recordings_for_artist(self, artist_mbid: str) -> List[RecordingPopularity]:
        """Most listened recordings for an artist"""
        data = self._get_json(f"{self.base_url}/popularity/top-recordings-for-artist/{artist_mbid}",
                              context=f"top_recordings_for_artist {artist_mbid}", timeout=15)
        results = _parse_popularity(data)
        self.logger.debug(f"ListenBrainz topRecordings returned {len(results)} results")
        return results
