import json
from unittest.mock import MagicMock, Mock

import pytest
import requests

from sideman.discogs_client import DiscogsClient, clean_artist_name
from sideman.errors import (
    DecodingError, HTTPStatusError, NetworkError, NotAuthenticatedError, NotFoundError,
    RateLimitedError,
)
from sideman.listenbrainz_client import ListenBrainzClient
from sideman.mb_client import MusicBrainzClient, build_recording_query
from sideman.models import RecordingQuery
from sideman.spotify_client import SpotifyClient
from sideman.wikipedia_client import WikipediaClient, strip_snippet_html


def make_response(status=200, payload=None, headers=None):
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.content = json.dumps(payload).encode() if payload is not None else b''
    response.json.return_value = payload
    response.url = 'https://example.test/'
    return response


def make_session(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return session


def sent_kwargs(session, index=-1):
    return session.request.call_args_list[index].kwargs


# ============================================================================
# SHARED HTTP BEHAVIOUR
# ============================================================================

class TestApiClientRetries:
    def test_retries_after_rate_limit(self):
        session = make_session(
            make_response(429, headers={'Retry-After': '2'}),
            make_response(200, {'id': 'rec-1', 'title': 'Take Five'}),
        )
        sleep = Mock()
        client = MusicBrainzClient(min_interval=0, session=session, sleep=sleep)

        detail = client.get_recording('rec-1')

        assert detail.title == 'Take Five'
        sleep.assert_called_once_with(2.0)
        assert client.stats['rate_limit_hits'] == 1
        assert client.stats['api_calls'] == 2

    def test_exponential_backoff_without_header(self):
        session = make_session(make_response(503), make_response(503), make_response(200, {}))
        sleep = Mock()
        client = MusicBrainzClient(min_interval=0, session=session, sleep=sleep)

        client.get_work('w1')

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_rate_limited_after_retries(self):
        session = make_session(*[make_response(429, headers={'Retry-After': '1'}) for _ in range(3)])
        client = MusicBrainzClient(min_interval=0, max_retries=2, session=session, sleep=Mock())

        with pytest.raises(RateLimitedError) as exc_info:
            client.get_recording('rec-1')

        assert exc_info.value.retry_after == 1.0
        assert exc_info.value.service == 'musicbrainz'
        assert session.request.call_count == 3

    def test_unavailable_after_retries(self):
        session = make_session(*[make_response(503) for _ in range(2)])
        client = MusicBrainzClient(min_interval=0, max_retries=1, session=session, sleep=Mock())

        with pytest.raises(HTTPStatusError) as exc_info:
            client.get_recording('rec-1')
        assert exc_info.value.status_code == 503

    def test_not_found(self):
        client = MusicBrainzClient(min_interval=0, session=make_session(make_response(404)))
        with pytest.raises(NotFoundError):
            client.get_recording('missing')

    def test_transport_failure(self):
        session = MagicMock()
        session.request.side_effect = requests.exceptions.ConnectionError('reset')
        client = MusicBrainzClient(min_interval=0, session=session)

        with pytest.raises(NetworkError) as exc_info:
            client.get_release('rel-1')
        assert 'get_release rel-1' in exc_info.value.describe()

    def test_invalid_json(self):
        response = make_response(200)
        response.content = b'<html>'
        response.json.side_effect = ValueError('Expecting value')
        client = MusicBrainzClient(min_interval=0, session=make_session(response))

        with pytest.raises(DecodingError):
            client.get_recording('rec-1')


# ============================================================================
# MUSICBRAINZ
# ============================================================================

class TestMusicBrainzClient:
    def test_recording_query(self):
        assert build_recording_query('Take Five', 'Dave Brubeck') == \
            'recording:"Take Five" AND artist:"Dave Brubeck"'
        assert build_recording_query('Say "Hi"', 'X', 'Time Out') == \
            'recording:"Say \\"Hi\\"" AND artist:"X" AND release:"Time Out"'

    def test_search_recordings(self):
        session = make_session(make_response(200, {'recordings': [{
            'id': 'rec-1',
            'title': 'Take Five',
            'score': '100',
            'artist-credit': [{'name': 'The Dave Brubeck Quartet'}],
            'releases': [{'id': 'rel-1', 'title': 'Time Out'}, {'id': 'rel-2', 'title': 'Jazz Hits'}],
        }]}))
        client = MusicBrainzClient(min_interval=0, session=session)

        candidates = client.search_recordings(RecordingQuery('Take Five', 'Dave Brubeck', 'Time Out'))

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.score == 100
        assert candidate.artist_names == ('The Dave Brubeck Quartet',)
        assert candidate.release_titles == ('Time Out', 'Jazz Hits')
        assert candidate.release_ids == ('rel-1', 'rel-2')
        params = sent_kwargs(session)['params']
        assert params['fmt'] == 'json'
        assert params['limit'] == 10

    def test_recording_with_embedded_work_relations(self):
        session = make_session(make_response(200, {
            'id': 'rec-1',
            'title': 'Take Five',
            'relations': [
                {'type': 'instrument', 'target-type': 'artist', 'attributes': ['piano'],
                 'artist': {'id': 'a1', 'name': 'Dave Brubeck'}},
                {'type': 'performance', 'target-type': 'work',
                 'work': {'id': 'w1', 'title': 'Take Five', 'relations': [
                     {'type': 'composer', 'artist': {'id': 'a2', 'name': 'Paul Desmond'}}]}},
            ],
            'releases': [{'id': 'rel-1', 'title': 'Time Out'}],
        }))
        client = MusicBrainzClient(min_interval=0, session=session)

        detail = client.get_recording('rec-1')

        piano, performance = detail.relations
        assert piano.artist.name == 'Dave Brubeck'
        assert piano.attributes == ('piano',)
        assert performance.work.id == 'w1'
        assert performance.work.relations[0].type == 'composer'
        assert detail.releases[0].id == 'rel-1'

    def test_browse_recordings(self):
        session = make_session(make_response(200, {
            'recording-count': 250,
            'recording-offset': 100,
            'recordings': [{'id': 'r1', 'title': 'So What', 'isrcs': ['USSM15900113'],
                            'artist-credit': [{'name': 'Miles Davis'}]},
                           {'title': 'no id'}],
        }))
        client = MusicBrainzClient(min_interval=0, session=session)

        page = client.browse_recordings('miles', offset=100)

        assert page.total_count == 250
        assert page.offset == 100
        assert len(page.recordings) == 1
        rel = page.recordings[0]
        assert rel.relationship_type == 'main'
        assert rel.isrcs == ('USSM15900113',)
        assert rel.artist_credits == ('Miles Davis',)
        assert sent_kwargs(session)['params']['inc'] == 'artist-credits+isrcs'

    def test_artist_recording_rels(self):
        session = make_session(make_response(200, {'relations': [
            {'type': 'instrument', 'attributes': ['double bass'],
             'recording': {'id': 'r1', 'title': 'Footprints'}},
            {'type': 'member of band', 'artist': {'id': 'band'}},
        ]}))
        client = MusicBrainzClient(min_interval=0, session=session)

        rels = client.get_artist_recording_rels('ron')

        assert [(r.recording_mbid, r.relationship_type, r.attributes) for r in rels] == [
            ('r1', 'instrument', ('double bass',))]


# ============================================================================
# WIKIPEDIA
# ============================================================================

class TestWikipediaClient:
    def test_strip_snippet_html(self):
        snippet = 'The <span class="searchmatch">Time</span> Out &amp; more'
        assert strip_snippet_html(snippet) == 'The Time Out & more'
        assert strip_snippet_html('') == ''

    def test_search_pages(self):
        session = make_session(make_response(200, {'query': {'search': [
            {'pageid': 123, 'title': 'Time Out (album)',
             'snippet': 'studio album by <span class="searchmatch">Dave Brubeck</span>'},
        ]}}))
        client = WikipediaClient(min_interval=0, session=session)

        results = client.search_pages('Time Out Dave Brubeck album')

        assert results[0].page_id == 123
        assert results[0].snippet == 'studio album by Dave Brubeck'
        assert sent_kwargs(session)['params']['srsearch'] == 'Time Out Dave Brubeck album'

    def test_fetch_page(self):
        session = make_session(make_response(200, {'query': {'pages': [{
            'pageid': 123,
            'title': 'Time Out (album)',
            'fullurl': 'https://en.wikipedia.org/wiki/Time_Out_(album)',
            'revisions': [{'slots': {'main': {'content': '== Personnel ==\n* Dave Brubeck – piano'}}}],
        }]}}))
        client = WikipediaClient(min_interval=0, session=session)

        page = client.fetch_page(123)

        assert page.title == 'Time Out (album)'
        assert page.full_url.endswith('Time_Out_(album)')
        assert page.wikitext.startswith('== Personnel ==')

    @pytest.mark.parametrize('payload', [
        {'query': {'pages': [{'pageid': 5, 'missing': True}]}},
        {'query': {'pages': [{'pageid': 5, 'title': 'Empty', 'revisions': []}]}},
        {},
    ])
    def test_missing_or_empty_page(self, payload):
        client = WikipediaClient(min_interval=0, session=make_session(make_response(200, payload)))
        with pytest.raises(NotFoundError):
            client.fetch_page(5)


# ============================================================================
# LISTENBRAINZ
# ============================================================================

class TestListenBrainzClient:
    def test_popularity_is_batched(self):
        session = make_session(
            make_response(200, [{'recording_mbid': 'm0', 'total_listen_count': 42}]),
            make_response(200, [{'recording_mbid': 'm1000', 'total_listen_count': None},
                                {'total_listen_count': 5}]),
        )
        client = ListenBrainzClient(min_interval=0, session=session)

        results = client.recording_popularity([f"m{i}" for i in range(1500)])

        assert session.request.call_count == 2
        assert len(sent_kwargs(session, 0)['json']['recording_mbids']) == 1000
        assert len(sent_kwargs(session, 1)['json']['recording_mbids']) == 500
        assert [(r.recording_mbid, r.listen_count) for r in results] == [('m0', 42), ('m1000', None)]


# ============================================================================
# SPOTIFY
# ============================================================================

class TestSpotifyClient:
    def test_requires_access_token(self):
        session = make_session()
        client = SpotifyClient(min_interval=0, session=session)

        with pytest.raises(NotAuthenticatedError):
            client.search_track_by_isrc('USSM15900113')
        session.request.assert_not_called()

    def test_rejected_token(self):
        client = SpotifyClient('expired', min_interval=0, session=make_session(make_response(401)))
        with pytest.raises(NotAuthenticatedError):
            client.search_tracks('So What', 'Miles Davis')

    def test_isrc_search(self):
        session = make_session(make_response(200, {'tracks': {'items': [{
            'id': 't1', 'name': 'So What', 'uri': 'spotify:track:t1', 'popularity': 70,
            'artists': [{'name': 'Miles Davis'}], 'album': {'name': 'Kind of Blue'},
            'external_ids': {'isrc': 'USSM15900113'},
        }]}}))
        client = SpotifyClient('token', min_interval=0, session=session)

        tracks = client.search_track_by_isrc('USSM15900113')

        assert tracks[0].uri == 'spotify:track:t1'
        assert tracks[0].album_name == 'Kind of Blue'
        kwargs = sent_kwargs(session)
        assert kwargs['params'] == {'q': 'isrc:USSM15900113', 'type': 'track', 'limit': 1}
        assert kwargs['headers'] == {'Authorization': 'Bearer token'}

    def test_playlist_creation_in_chunks(self):
        responses = [
            make_response(200, {'id': 'user-1'}),
            make_response(201, {'id': 'pl1', 'name': 'Ron Carter — All Credits',
                                'external_urls': {'spotify': 'https://open.spotify.com/playlist/pl1'}}),
        ] + [make_response(201, {'snapshot_id': 's'}) for _ in range(3)]
        session = make_session(*responses)
        client = SpotifyClient('token', min_interval=0, session=session)

        playlist = client.create_playlist('Ron Carter — All Credits', 'desc', False)
        client.add_tracks_to_playlist(playlist.id, [f"spotify:track:{i}" for i in range(250)])

        assert playlist.url == 'https://open.spotify.com/playlist/pl1'
        assert sent_kwargs(session, 1)['json'] == {
            'name': 'Ron Carter — All Credits', 'description': 'desc', 'public': False}
        chunk_sizes = [len(sent_kwargs(session, i)['json']['uris']) for i in range(2, 5)]
        assert chunk_sizes == [100, 100, 50]


# ============================================================================
# DISCOGS
# ============================================================================

class TestDiscogsClient:
    def test_clean_artist_name(self):
        assert clean_artist_name('Snoop Dogg (2)') == 'Snoop Dogg'
        assert clean_artist_name('Earth, Wind & Fire') == 'Earth, Wind & Fire'
        assert clean_artist_name('') is None

    def test_requires_token(self):
        session = make_session()
        client = DiscogsClient(min_interval=0, session=session)

        with pytest.raises(NotAuthenticatedError):
            client.artist_hints_for_track('Beautiful')
        session.request.assert_not_called()

    def test_artist_hints_ranked_by_release_count(self):
        session = make_session(
            make_response(200, {'results': [{'id': 1}, {'id': 2}, {'id': 3}, {'id': 1}]}),
            make_response(200, {'tracklist': [
                {'title': 'Beautiful', 'artists': [{'name': 'Pharrell Williams'}]},
                {'title': 'Drop It Like It\'s Hot', 'artists': [{'name': 'Snoop Dogg'}]},
            ]}),
            make_response(200, {'artists': [{'name': 'Snoop Dogg (2)'}],
                                'tracklist': [{'title': 'Beautiful (Remix)'}]}),
            make_response(200, {'tracklist': [{'title': 'Beautiful', 'artists': [{'name': 'Snoop Dogg'}]}]}),
        )
        client = DiscogsClient('dg-token', min_interval=0, session=session)

        hints = client.artist_hints_for_track('Beautiful', artist_hints=['Pharrell Williams'])

        assert hints == ['Snoop Dogg', 'Pharrell Williams']
        search = sent_kwargs(session, 0)
        assert search['params'] == {'type': 'release', 'track': 'Beautiful', 'per_page': 9, 'page': 1,
                                    'artist': 'Pharrell Williams'}
        assert search['headers'] == {'Authorization': 'Discogs token=dg-token'}
        assert session.request.call_count == 4

    def test_failed_release_is_skipped(self):
        session = make_session(
            make_response(200, {'results': [{'id': 1}, {'id': 2}]}),
            make_response(404),
            make_response(200, {'tracklist': [{'title': 'Beautiful', 'artists': [{'name': 'Snoop Dogg'}]}]}),
        )
        client = DiscogsClient('dg-token', min_interval=0, session=session)

        assert client.artist_hints_for_track('Beautiful') == ['Snoop Dogg']
