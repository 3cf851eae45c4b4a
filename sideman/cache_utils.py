"""
Cache Utilities
Locates the persistent cache directory and provides the TTL caches used by
the credits lookup and the discography engine.
"""

import os
import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from sideman.models import CachedCredits, CreditsLookupResult, DiscographyResult

logger = logging.getLogger(__name__)

CREDITS_CACHE_FILE = 'credits-cache.json'
DISCOGRAPHY_CACHE_FILE = 'discography-cache.json'

DISCOGRAPHY_TTL = timedelta(days=7)


def get_cache_root():
    """
    Get the absolute path to the cache root directory.

    SIDEMAN_CACHE_DIR wins when set; otherwise the cache lives next to the
    package at <project_root>/cache/.

    Returns:
        Path: Absolute path to cache root directory
    """
    override = os.environ.get('SIDEMAN_CACHE_DIR')
    if override:
        cache_root = Path(override).expanduser()
    else:
        cache_root = Path(__file__).resolve().parent.parent / 'cache'

    cache_root.mkdir(parents=True, exist_ok=True)
    return cache_root


def get_cache_dir(service_name):
    """
    Get the cache directory for a specific service (e.g., 'musicbrainz', 'wikipedia').

    Args:
        service_name: Name of the service

    Returns:
        Path: Absolute path to the service's cache directory
    """
    cache_dir = get_cache_root() / service_name
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


# ============================================================================
# KEY / VALUE STORE WITH EXPIRY
# ============================================================================

class JsonFileCache:
    """
    Key -> (value, expires_at) map persisted as a single JSON document.

    Every read-modify-write runs under one lock, and the file is replaced
    atomically, so readers see a whole entry or none. With path=None the
    cache lives in memory only.
    """

    def __init__(self, path: Optional[Path] = None,
                 clock: Callable[[], datetime] = datetime.now, logger=None):
        self.path = Path(path) if path else None
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries = {}
        self._loaded = False

    def get(self, key: str) -> Optional[Tuple[Any, datetime]]:
        """
        Args:
            key: Cache key

        Returns:
            (value, expires_at), or None when absent or expired
        """
        with self._lock:
            self._ensure_loaded()
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at = datetime.fromisoformat(entry['expires_at'])
            if expires_at <= self.clock():
                del self._entries[key]
                self._persist()
                return None
            return entry['value'], expires_at

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        with self._lock:
            self._ensure_loaded()
            self._entries[key] = {
                'value': value,
                'expires_at': (self.clock() + ttl).isoformat(),
            }
            self._persist()

    def remove(self, key: str) -> None:
        with self._lock:
            self._ensure_loaded()
            if self._entries.pop(key, None) is not None:
                self._persist()

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._loaded = True
            self._persist()

    def __len__(self):
        with self._lock:
            self._ensure_loaded()
            return len(self._entries)

    def _ensure_loaded(self):
        if self._loaded:
            return
        self._loaded = True
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                document = json.load(f)
            self._entries = dict(document.get('entries') or {})
            self.logger.debug(f"Loaded {len(self._entries)} cache entries from {self.path.name}")
        except (json.JSONDecodeError, IOError, AttributeError) as e:
            self.logger.warning(f"Failed to load cache file {self.path}: {e}")
            self._entries = {}

    def _persist(self):
        if self.path is None:
            return
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump({'entries': self._entries}, f)
            os.replace(tmp_path, self.path)
        except (IOError, OSError, TypeError) as e:
            self.logger.warning(f"Failed to save cache file {self.path}: {e}")


# ============================================================================
# TYPED WRAPPERS
# ============================================================================

class CreditsCache:
    """Credits lookup results keyed by track (see credits_providers.cache_key_for_track)"""

    def __init__(self, store: Optional[JsonFileCache] = None):
        self.store = store if store is not None else JsonFileCache()

    @classmethod
    def persistent(cls) -> 'CreditsCache':
        return cls(JsonFileCache(get_cache_root() / CREDITS_CACHE_FILE))

    def get(self, key: str) -> Optional[CachedCredits]:
        hit = self.store.get(key)
        if hit is None:
            return None
        value, expires_at = hit
        try:
            result = CreditsLookupResult.from_dict(value)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Dropping unreadable credits cache entry {key}: {e}")
            self.store.remove(key)
            return None
        return CachedCredits(key=key, result=result, expires_at=expires_at)

    def set(self, key: str, result: CreditsLookupResult, ttl: timedelta) -> None:
        self.store.set(key, result.to_dict(), ttl)

    def remove(self, key: str) -> None:
        self.store.remove(key)


class DiscographyCache:
    """Discography results keyed by artist MBID or co-credit pair key"""

    def __init__(self, store: Optional[JsonFileCache] = None, ttl: timedelta = DISCOGRAPHY_TTL):
        self.store = store if store is not None else JsonFileCache()
        self.ttl = ttl

    @classmethod
    def persistent(cls) -> 'DiscographyCache':
        return cls(JsonFileCache(get_cache_root() / DISCOGRAPHY_CACHE_FILE))

    def get(self, key: str) -> Optional[DiscographyResult]:
        hit = self.store.get(key)
        if hit is None:
            return None
        value, _ = hit
        try:
            return DiscographyResult.from_dict(value)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Dropping unreadable discography cache entry {key}: {e}")
            self.store.remove(key)
            return None

    def set(self, key: str, result: DiscographyResult, ttl: Optional[timedelta] = None) -> None:
        self.store.set(key, result.to_dict(), ttl or self.ttl)

    def remove(self, key: str) -> None:
        self.store.remove(key)
