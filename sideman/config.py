"""
Configuration Module for Sideman
Handles logging setup, .env loading and environment-driven settings
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

DEFAULT_USER_AGENT = 'Sideman/0.1 (https://github.com/sideman)'
DEFAULT_MATCH_CONCURRENCY = 4


def configure_logging(level=logging.INFO):
    """
    Configure application logging with standard format

    Args:
        level: Root log level (logging.DEBUG when --debug is passed)

    Returns:
        Logger instance for the config module
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


def load_environment(env_file: Optional[str] = None) -> bool:
    """
    Load variables from a .env file into the process environment.
    Existing environment variables are never overridden.

    Returns:
        True if a .env file was found and loaded
    """
    if env_file:
        return load_dotenv(env_file)
    return load_dotenv()


class CreditsBackend(Enum):
    WIKIPEDIA = 'wikipedia'
    MUSICBRAINZ = 'musicbrainz'
    WIKIPEDIA_THEN_MUSICBRAINZ = 'wikipedia_then_musicbrainz'
    MERGED = 'merged'

    @classmethod
    def from_env_value(cls, value: Optional[str]) -> 'CreditsBackend':
        """Parse SIDEMAN_CREDITS_BACKEND; unknown or empty values mean wikipedia"""
        normalized = (value or '').strip().lower()
        if normalized == 'hybrid':
            return cls.WIKIPEDIA_THEN_MUSICBRAINZ
        for backend in cls:
            if backend.value == normalized:
                return backend
        if normalized:
            logging.getLogger(__name__).warning(
                f"Unknown credits backend '{value}', using wikipedia")
        return cls.WIKIPEDIA


@dataclass(frozen=True)
class Settings:
    credits_backend: CreditsBackend = CreditsBackend.WIKIPEDIA
    cache_dir: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    spotify_access_token: Optional[str] = None
    discogs_token: Optional[str] = None
    match_concurrency: int = DEFAULT_MATCH_CONCURRENCY


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Invalid {name}={raw!r}, using {default}")
        return default
    return max(1, value)


def get_settings() -> Settings:
    """
    Build Settings from the current environment

    Returns:
        Settings instance
    """
    return Settings(
        credits_backend=CreditsBackend.from_env_value(os.environ.get('SIDEMAN_CREDITS_BACKEND')),
        cache_dir=os.environ.get('SIDEMAN_CACHE_DIR') or None,
        user_agent=os.environ.get('SIDEMAN_USER_AGENT') or DEFAULT_USER_AGENT,
        spotify_access_token=os.environ.get('SPOTIFY_ACCESS_TOKEN') or None,
        discogs_token=os.environ.get('DISCOGS_TOKEN') or None,
        match_concurrency=_int_from_env('SIDEMAN_MATCH_CONCURRENCY', DEFAULT_MATCH_CONCURRENCY),
    )
