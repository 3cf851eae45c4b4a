import pytest

from sideman.cache_utils import CreditsCache, DiscographyCache
from stubs import StubListenBrainzClient, StubMusicBrainzClient, StubSpotifyClient, StubWikipediaClient


@pytest.fixture(autouse=True)
def isolated_cache_dir(tmp_path, monkeypatch):
    """Keep every test away from the real cache directory and environment"""
    monkeypatch.setenv('SIDEMAN_CACHE_DIR', str(tmp_path / 'cache'))
    for name in ('SIDEMAN_CREDITS_BACKEND', 'SIDEMAN_USER_AGENT', 'SPOTIFY_ACCESS_TOKEN', 'DISCOGS_TOKEN',
                 'SIDEMAN_MATCH_CONCURRENCY'):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / 'cache'


@pytest.fixture
def mb():
    return StubMusicBrainzClient()


@pytest.fixture
def wiki():
    return StubWikipediaClient()


@pytest.fixture
def listenbrainz():
    return StubListenBrainzClient()


@pytest.fixture
def spotify():
    return StubSpotifyClient()


@pytest.fixture
def credits_cache():
    return CreditsCache()


@pytest.fixture
def discography_cache():
    return DiscographyCache()
