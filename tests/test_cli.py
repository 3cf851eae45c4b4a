import pytest

from sideman import cli
from sideman.config import CreditsBackend
from sideman.errors import NoRecordingsFoundError, RateLimitedError
from sideman.models import (
    CoCreditMatchMode, CreditEntry, CreditRoleGroup, CreditsBundle, CreditScope, CreditSourceLevel,
    CreditsLookupResult, PlaylistBuildResult,
)
from sideman.playlist_builder import PlaylistBuilder


class FakeProvider:
    def __init__(self, result):
        self.result = result
        self.looked_up = []
        self.invalidated = []

    def lookup(self, track):
        self.looked_up.append(track)
        return self.result

    def invalidate(self, track):
        self.invalidated.append(track)


@pytest.fixture
def provider_factory(monkeypatch):
    created = {}

    def install(result):
        provider = FakeProvider(result)

        def factory(backend, **kwargs):
            created['backend'] = backend
            created.update(kwargs)
            return provider
        monkeypatch.setattr(cli, 'make_credits_provider', factory)
        created['provider'] = provider
        return created
    return install


class TestParser:
    def test_credits_arguments(self):
        args = cli.create_parser().parse_args(
            ['credits', '--title', 'Take Five', '--artist', 'Dave Brubeck', '--track-number', '3'])
        assert args.command == 'credits'
        assert args.album == ''
        assert args.track_number == 3
        assert args.backend is None
        assert not args.debug

    def test_debug_after_subcommand(self):
        args = cli.create_parser().parse_args(
            ['playlist', '--artist', 'Ron Carter', '--debug', '--env-file', 'local.env'])
        assert args.debug
        assert args.env_file == 'local.env'

    def test_playlist_arguments(self):
        args = cli.create_parser().parse_args(
            ['playlist', '--artist', 'Ron Carter', '--role', 'Musicians', '--with', 'Herbie Hancock',
             '--dry-run'])
        assert args.role is CreditRoleGroup.MUSICIANS
        assert args.with_artist == 'Herbie Hancock'
        assert args.max_tracks == 100
        assert args.dry_run and not args.public

    def test_unknown_role_is_rejected(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(['playlist', '--artist', 'Ron Carter', '--role', 'catering'])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args([])


class TestCreditsCommand:
    def test_loaded(self, provider_factory):
        bass = CreditEntry('Ron Carter', 'double bass', CreditRoleGroup.MUSICIANS,
                           scope=CreditScope.track_specific([2]))
        bundle = CreditsBundle({CreditRoleGroup.MUSICIANS: [bass]}, [CreditSourceLevel.RECORDING], 'rec-1',
                               source_name='MusicBrainz')
        created = provider_factory(CreditsLookupResult.loaded(bundle))

        code = cli.main(['credits', '--title', 'Footprints', '--artist', 'Miles Davis',
                         '--backend', 'hybrid', '--track-number', '2'])

        assert code == 0
        assert created['backend'] is CreditsBackend.WIKIPEDIA_THEN_MUSICBRAINZ
        track = created['provider'].looked_up[0]
        assert (track.id, track.title, track.track_number) == ('miles davis|footprints', 'Footprints', 2)
        assert created['provider'].invalidated == []

    def test_not_found_exits_nonzero(self, provider_factory, monkeypatch):
        monkeypatch.setenv('SIDEMAN_CREDITS_BACKEND', 'musicbrainz')
        created = provider_factory(CreditsLookupResult.not_found())

        code = cli.main(['credits', '--title', 'Nothing', '--artist', 'Nobody', '--force-refresh'])

        assert code == 1
        assert created['backend'] is CreditsBackend.MUSICBRAINZ
        assert created['force_refresh'] is True
        assert len(created['provider'].invalidated) == 1

    def test_provider_error_exits_nonzero(self, monkeypatch):
        def failing_factory(backend, **kwargs):
            raise RateLimitedError(5, service='musicbrainz')
        monkeypatch.setattr(cli, 'make_credits_provider', failing_factory)

        assert cli.main(['credits', '--title', 'A', '--artist', 'B']) == 1


class TestPlaylistCommand:
    def test_requires_spotify_token(self):
        assert cli.main(['playlist', '--artist', 'Ron Carter', '--mbid', 'ron']) == 1

    def test_builds_single_artist_request(self, monkeypatch):
        monkeypatch.setenv('SPOTIFY_ACCESS_TOKEN', 'token')
        requests = []

        def build(self, request, on_stage=None, cancel_token=None, dry_run=False):
            requests.append((request, dry_run))
            return PlaylistBuildResult('Ron Carter — Musicians Credits', None, 3, 1)
        monkeypatch.setattr(PlaylistBuilder, 'build', build)

        code = cli.main(['playlist', '--artist', 'Ron Carter', '--mbid', 'ron', '--role', 'musicians',
                         '--max-tracks', '3', '--dry-run'])

        assert code == 0
        request, dry_run = requests[0]
        assert (request.artist_mbid, request.role_filter, request.max_tracks) == \
            ('ron', CreditRoleGroup.MUSICIANS, 3)
        assert dry_run

    def test_builds_co_credit_request(self, monkeypatch):
        monkeypatch.setenv('SPOTIFY_ACCESS_TOKEN', 'token')
        requests = []

        def build(self, request, on_stage=None, cancel_token=None, dry_run=False):
            requests.append(request)
            return PlaylistBuildResult('Ron Carter × Herbie Hancock — Co-Credits', 'spotify:playlist:x', 1, 0)
        monkeypatch.setattr(PlaylistBuilder, 'build', build)

        code = cli.main(['playlist', '--artist', 'Ron Carter', '--mbid', 'ron', '--with', 'Herbie Hancock',
                         '--performer-only', '--public'])

        assert code == 0
        co_credit = requests[0].co_credit
        assert (co_credit.artist_b.name, co_credit.artist_b.mbid) == ('Herbie Hancock', None)
        assert co_credit.match_mode is CoCreditMatchMode.PERFORMER_ONLY
        assert requests[0].is_public

    def test_build_error_exits_nonzero(self, monkeypatch):
        monkeypatch.setenv('SPOTIFY_ACCESS_TOKEN', 'token')

        def build(self, request, on_stage=None, cancel_token=None, dry_run=False):
            raise NoRecordingsFoundError()
        monkeypatch.setattr(PlaylistBuilder, 'build', build)

        assert cli.main(['playlist', '--artist', 'Ron Carter', '--mbid', 'ron']) == 1
