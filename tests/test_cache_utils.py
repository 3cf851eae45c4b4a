from datetime import datetime, timedelta

from sideman.cache_utils import (
    CreditsCache, DiscographyCache, JsonFileCache, get_cache_dir, get_cache_root,
)
from sideman.models import (
    ArtistRecordingRel, CreditsLookupResult, DiscographyResult, LookupState,
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def test_cache_root_honours_environment(tmp_path):
    # conftest points SIDEMAN_CACHE_DIR at tmp_path/'cache'
    assert get_cache_root() == tmp_path / 'cache'
    assert get_cache_dir('musicbrainz').is_dir()


class TestJsonFileCache:
    def test_entry_expires(self):
        clock = FakeClock()
        cache = JsonFileCache(clock=clock)
        cache.set('k', {'a': 1}, timedelta(hours=1))

        value, expires_at = cache.get('k')
        assert value == {'a': 1}
        assert expires_at == datetime(2024, 1, 1, 13, 0)

        clock.advance(hours=1)
        assert cache.get('k') is None
        assert len(cache) == 0

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / 'store.json'
        JsonFileCache(path).set('k', [1, 2], timedelta(days=1))

        reopened = JsonFileCache(path)
        value, _ = reopened.get('k')
        assert value == [1, 2]

    def test_remove_and_clear(self, tmp_path):
        cache = JsonFileCache(tmp_path / 'store.json')
        cache.set('a', 1, timedelta(days=1))
        cache.set('b', 2, timedelta(days=1))

        cache.remove('a')
        assert cache.get('a') is None
        assert len(cache) == 1

        cache.clear()
        assert len(JsonFileCache(tmp_path / 'store.json')) == 0

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / 'store.json'
        path.write_text('{not json')
        cache = JsonFileCache(path)
        assert cache.get('anything') is None

        cache.set('k', 'v', timedelta(days=1))
        assert JsonFileCache(path).get('k')[0] == 'v'


class TestTypedCaches:
    def test_credits_cache_round_trip(self):
        cache = CreditsCache()
        cache.set('spotify:abc', CreditsLookupResult.not_found(), timedelta(hours=24))

        cached = cache.get('spotify:abc')
        assert cached.key == 'spotify:abc'
        assert cached.result.state is LookupState.NOT_FOUND

        cache.remove('spotify:abc')
        assert cache.get('spotify:abc') is None

    def test_unreadable_credits_entry_is_dropped(self):
        store = JsonFileCache()
        store.set('k', {'state': 'bogus'}, timedelta(days=1))
        cache = CreditsCache(store)

        assert cache.get('k') is None
        assert len(store) == 0

    def test_discography_cache_uses_default_ttl(self):
        clock = FakeClock()
        cache = DiscographyCache(JsonFileCache(clock=clock), ttl=timedelta(days=7))
        result = DiscographyResult('artist', 'Ron Carter',
                                   [ArtistRecordingRel('rec-1', 'Footprints', 'instrument')],
                                   fetched_at=clock())
        cache.set('artist', result)

        clock.advance(days=6)
        assert cache.get('artist').recordings[0].recording_mbid == 'rec-1'
        clock.advance(days=1)
        assert cache.get('artist') is None
