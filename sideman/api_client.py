"""
HTTP Client Infrastructure

Shared low-level concerns for the MusicBrainz, Wikipedia, ListenBrainz and
Spotify clients:
- Minimum interval pacing between requests
- Retry of 429/503 with Retry-After or exponential backoff
- Mapping of HTTP failures onto the provider error taxonomy
- Optional per-request JSON response cache on disk
"""

import re
import time
import threading
import json
import hashlib
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import requests

from sideman.cache_utils import get_cache_dir
from sideman.config import DEFAULT_USER_AGENT
from sideman.errors import (
    DecodingError, HTTPStatusError, NetworkError, NotFoundError, RateLimitedError,
)

logger = logging.getLogger(__name__)

# Sentinel value to distinguish "no cache exists" from "cached None"
_CACHE_MISS = object()

RETRYABLE_STATUS_CODES = (429, 503)


class ApiClient:
    """
    Base class for the remote service clients.

    Subclasses set `service_name` and call _get_json()/_post_json(). A
    cache_days of 0 disables the response cache entirely.
    """

    service_name = 'api'

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, min_interval: float = 0.0,
                 timeout: float = 10, max_retries: int = 3, base_delay: float = 0.5,
                 cache_days: int = 0, force_refresh: bool = False,
                 session: Optional[requests.Session] = None, sleep=time.sleep, logger=None):
        """
        Args:
            user_agent: User-Agent header sent with every request
            min_interval: Minimum seconds between two requests
            timeout: Per-request timeout in seconds
            max_retries: Maximum number of retries for 429/503 responses
            base_delay: Base delay for exponential backoff (seconds)
            cache_days: Number of days before cached responses are stale (0 = no cache)
            force_refresh: If True, always fetch fresh data ignoring cache
            session: Optional requests.Session (tests pass a mock)
            sleep: Sleep function (tests pass a no-op)
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'application/json',
        })

        self.min_interval = min_interval
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        self.last_request_time = 0
        # Clients are shared by the matcher's worker threads
        self._rate_limit_lock = threading.Lock()
        self._stats_lock = threading.Lock()

        self.cache_days = cache_days
        self.force_refresh = force_refresh
        self.cache_dir = get_cache_dir(self.service_name) if cache_days > 0 else None

        self.stats = {
            'cache_hits': 0,
            'api_calls': 0,
            'rate_limit_hits': 0,
            'rate_limit_waits': 0,
        }

    # ========================================================================
    # RATE LIMITING METHODS
    # ========================================================================

    def _wait_for_rate_limit(self):
        """Enforce minimum delay between requests, across threads"""
        with self._rate_limit_lock:
            if self.min_interval > 0:
                elapsed = time.time() - self.last_request_time
                if elapsed < self.min_interval:
                    self.sleep(self.min_interval - elapsed)
            self.last_request_time = time.time()

    def _count(self, stat: str):
        with self._stats_lock:
            self.stats[stat] += 1

    def _retry_after(self, response: requests.Response) -> Optional[float]:
        """
        Seconds to wait according to the Retry-After header

        Returns:
            Seconds to wait, or None when the header is missing or invalid
        """
        retry_after = response.headers.get('Retry-After')
        if not retry_after:
            return None
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            self.logger.warning(f"Invalid Retry-After header: {retry_after}")
            return None

    def _make_api_request(self, method: str, url: str, context: str = None,
                          **kwargs) -> requests.Response:
        """
        Make an API request with rate limit handling and retries

        Args:
            method: HTTP method ('GET', 'POST', ...)
            url: URL to request
            context: Short description of the call, attached to raised errors
            **kwargs: Additional arguments to pass to requests

        Returns:
            Response object (status not yet checked)

        Raises:
            RateLimitedError: If still rate limited after all retries
            HTTPStatusError: If still unavailable (503) after all retries
            NetworkError: For transport failures
        """
        retry_count = 0
        kwargs.setdefault('timeout', self.timeout)

        while True:
            self._wait_for_rate_limit()

            try:
                response = self.session.request(method, url, **kwargs)
            except requests.exceptions.RequestException as e:
                raise NetworkError(str(e), service=self.service_name, context=context) from e

            self._count('api_calls')

            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response

            self._count('rate_limit_hits')
            retry_after = self._retry_after(response)

            if retry_count >= self.max_retries:
                if response.status_code == 429:
                    raise RateLimitedError(retry_after, service=self.service_name, context=context)
                raise HTTPStatusError(response.status_code, service=self.service_name, context=context)

            if retry_after is not None:
                wait_time = retry_after
                self.logger.warning(f"{self.service_name}: rate limited (attempt {retry_count + 1}/"
                                    f"{self.max_retries + 1}). Waiting {wait_time}s as requested.")
            else:
                wait_time = self.base_delay * (2 ** retry_count)
                self.logger.warning(f"{self.service_name}: rate limited (attempt {retry_count + 1}/"
                                    f"{self.max_retries + 1}). Using exponential backoff: {wait_time}s")

            self._count('rate_limit_waits')
            self.sleep(wait_time)
            retry_count += 1

    def _check_status(self, response: requests.Response, context: str = None):
        if response.status_code == 404:
            raise NotFoundError(f"Not found: {context or response.url}",
                                service=self.service_name, context=context)
        if not 200 <= response.status_code < 300:
            raise HTTPStatusError(response.status_code, service=self.service_name, context=context)

    def _decode(self, response: requests.Response, context: str = None) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DecodingError(f"Invalid JSON: {e}", service=self.service_name, context=context) from e

    def _get_json(self, url: str, params: dict = None, context: str = None,
                  cache_key: str = None, **kwargs) -> Any:
        """
        GET a JSON document, using the response cache when `cache_key` is given

        Raises:
            ProviderError subclasses (see errors.py)
        """
        cache_path = self._get_cache_path(cache_key) if cache_key else None
        if cache_path is not None:
            cached = self._load_from_cache(cache_path)
            if cached is not _CACHE_MISS:
                return cached

        response = self._make_api_request('GET', url, context=context, params=params, **kwargs)
        self._check_status(response, context)
        data = self._decode(response, context)

        if cache_path is not None:
            self._save_to_cache(cache_path, data)
        return data

    def _post_json(self, url: str, payload: Any, context: str = None, **kwargs) -> Any:
        """POST a JSON body and decode the JSON response (never cached)"""
        response = self._make_api_request('POST', url, context=context, json=payload, **kwargs)
        self._check_status(response, context)
        return self._decode(response, context)

    # ========================================================================
    # CACHE METHODS
    # ========================================================================

    def _get_cache_path(self, cache_key: str) -> Optional[Path]:
        """
        Cache file path for a request, or None if caching is disabled

        Args:
            cache_key: Something like "recording:<mbid>" or "search:<query>"
        """
        if self.cache_dir is None:
            return None
        kind, _, rest = cache_key.partition(':')
        key_hash = hashlib.md5(cache_key.encode()).hexdigest()
        safe_rest = re.sub(r'[^a-zA-Z0-9_-]', '_', rest.lower())[:50]
        return self.cache_dir / kind / f"{safe_rest}_{key_hash}.json"

    def _is_cache_valid(self, cache_path: Path) -> bool:
        if self.force_refresh:
            return False
        if not cache_path.exists():
            return False

        file_mtime = datetime.fromtimestamp(cache_path.stat().st_mtime)
        age_days = (datetime.now() - file_mtime).days
        return age_days < self.cache_days

    def _load_from_cache(self, cache_path: Path) -> Any:
        """
        Returns:
            Cached data if valid, _CACHE_MISS sentinel otherwise
        """
        if not self._is_cache_valid(cache_path):
            return _CACHE_MISS

        try:
            with open(cache_path, 'r', encoding='utf-8') as f:
                cache_data = json.load(f)
            self._count('cache_hits')
            self.logger.debug(f"Cache hit: {cache_path.name} (cached: {cache_data['cached_at'][:10]})")
            return cache_data['data']
        except (json.JSONDecodeError, IOError, KeyError, TypeError) as e:
            self.logger.warning(f"Failed to load cache file {cache_path}: {e}")
            try:
                cache_path.unlink()
            except OSError:
                pass
            return _CACHE_MISS

    def _save_to_cache(self, cache_path: Path, data: Any) -> None:
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            cache_data = {
                'data': data,
                'cached_at': datetime.now().isoformat(),
            }
            with open(cache_path, 'w', encoding='utf-8') as f:
                json.dump(cache_data, f, ensure_ascii=False, indent=2)
            self.logger.debug(f"Cached: {cache_path.name}")
        except (IOError, TypeError) as e:
            self.logger.warning(f"Failed to save cache file {cache_path}: {e}")
