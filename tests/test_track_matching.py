import threading
import time
from unittest.mock import MagicMock, Mock

import pytest

from sideman.cancellation import CancellationToken
from sideman.errors import NetworkError, NotAuthenticatedError, OperationCancelled, RateLimitedError
from sideman.mb_client import MusicBrainzClient
from sideman.models import TrackMatchStrategy, UnresolvedReason
from sideman.track_matching import MAX_REQUEUES, TrackMatcher, best_candidate, score_candidate
from stubs import StubDiscogsClient, make_rel, make_track


class Sleeper:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def matcher(mb, spotify, sleeper):
    return TrackMatcher(mb, spotify, max_concurrency=4, rate_limit_pause=0.5, sleep=sleeper)


def test_score_candidate():
    exact = make_track('t1', 'So What', ['Miles Davis'])
    other_artist = make_track('t2', 'So What', ['Somebody Else'])
    other_title = make_track('t3', 'Freddie Freeloader', ['Miles Davis'])

    assert score_candidate('So What', 'Miles Davis', exact) == pytest.approx(1.0)
    assert score_candidate('So What', 'Miles Davis', other_artist) == pytest.approx(0.75)
    assert score_candidate('So What', 'Miles Davis', other_title) == 0.0


def test_best_candidate_is_highest_score_not_first():
    tracks = [make_track('x', 'So What', ['Somebody Else']), make_track('y', 'So What', ['Miles Davis'])]
    assert best_candidate('So What', 'Miles Davis', tracks).id == 'y'
    assert best_candidate('So What', 'Miles Davis', [make_track('z', 'Blue in Green')]) is None


class TestIsrcMatching:
    def test_embedded_isrc(self, matcher, spotify):
        spotify.isrc_results['USSM15900113'] = [make_track('t1', 'So What', popularity=80)]
        recording = make_rel('r1', 'So What', isrcs=['ussm1-59-00113'])

        resolved = matcher.resolve([recording])

        assert len(resolved) == 1
        assert resolved[0].spotify_uri == 'spotify:track:t1'
        assert resolved[0].spotify_popularity == 80
        assert resolved[0].match_strategy is TrackMatchStrategy.ISRC
        assert matcher.stats['isrc_matches'] == 1

    def test_fetches_at_most_three_isrcs(self, matcher, mb, spotify):
        mb.isrcs['r1'] = ['a1', 'b2', 'c3', 'd4']

        summary = matcher.resolve_detailed([make_rel('r1', 'So What')])

        assert spotify.calls['search_track_by_isrc'] == ['A1', 'B2', 'C3']
        assert summary.unresolved[0].reason is UnresolvedReason.MISSING_ARTIST_CREDITS


class TestTextMatching:
    def test_tries_each_artist_in_turn(self, matcher, spotify):
        spotify.text_results[('So What', 'John Coltrane')] = [make_track('t2', 'So What', ['John Coltrane'])]
        recording = make_rel('r1', 'So What', artists=['Miles Davis', 'John Coltrane'])

        resolved = matcher.resolve([recording])

        assert resolved[0].match_strategy is TrackMatchStrategy.TEXT_SEARCH
        assert spotify.calls['search_tracks'] == [('So What', 'Miles Davis'), ('So What', 'John Coltrane')]
        assert matcher.stats['text_matches'] == 1

    def test_relaxed_title(self, matcher, spotify):
        spotify.text_results[('So What', 'Miles Davis')] = [make_track('t3', 'So What', ['Miles Davis'])]
        recording = make_rel('r1', 'So What (Remastered 2009)', artists=['Miles Davis'])

        resolved = matcher.resolve([recording])

        assert resolved[0].spotify_uri == 'spotify:track:t3'
        assert spotify.calls['search_tracks'] == [('So What (Remastered 2009)', 'Miles Davis'),
                                                  ('So What', 'Miles Davis')]

    def test_fallback_artist_queries(self, matcher, spotify):
        spotify.text_results[('Milestones', 'Paul Chambers')] = [make_track('t4', 'Milestones', ['Paul Chambers'])]
        recordings = [make_rel('r1', 'Milestones', artists=['Miles Davis'])]

        resolved = matcher.resolve(recordings, fallback_artist_queries=['miles davis', 'Paul Chambers'])

        assert resolved[0].spotify_uri == 'spotify:track:t4'
        assert spotify.calls['search_tracks'] == [('Milestones', 'Miles Davis'), ('Milestones', 'Paul Chambers')]

    def test_unresolved_keep_input_order(self, matcher, spotify):
        spotify.text_results[('B', 'X')] = [make_track('tb', 'B', ['X'])]
        recordings = [make_rel('r1', 'A', artists=['X']), make_rel('r2', 'B', artists=['X']),
                      make_rel('r3', 'C')]

        summary = matcher.resolve_detailed(recordings)

        assert [t.recording_mbid for t in summary.resolved] == ['r2']
        assert [(u.recording.recording_mbid, u.reason) for u in summary.unresolved] == [
            ('r1', UnresolvedReason.NO_CATALOGUE_MATCH), ('r3', UnresolvedReason.MISSING_ARTIST_CREDITS)]
        assert matcher.stats['unresolved'] == 2


class TestDiscogsHints:
    def _matcher(self, mb, spotify, sleeper, hints_by_title):
        discogs = StubDiscogsClient(hints_by_title)
        return TrackMatcher(mb, spotify, max_concurrency=1, sleep=sleeper, discogs_client=discogs), discogs

    def test_used_when_recording_has_no_artists(self, mb, spotify, sleeper):
        matcher, discogs = self._matcher(mb, spotify, sleeper, {'Beautiful': ['Snoop Dogg']})
        spotify.text_results[('Beautiful', 'Snoop Dogg')] = [make_track('t1', 'Beautiful', ['Snoop Dogg'])]

        resolved = matcher.resolve([make_rel('r1', 'Beautiful')])

        assert [t.spotify_uri for t in resolved] == ['spotify:track:t1']
        assert resolved[0].match_strategy is TrackMatchStrategy.TEXT_SEARCH
        assert [title for title, _ in discogs.calls] == ['Beautiful']

    def test_used_after_credited_artists_fail(self, mb, spotify, sleeper):
        matcher, discogs = self._matcher(mb, spotify, sleeper, {'Beautiful': ['Pharrell Williams']})
        spotify.text_results[('Beautiful', 'Pharrell Williams')] = [
            make_track('t2', 'Beautiful', ['Snoop Dogg', 'Pharrell Williams'])]

        resolved = matcher.resolve([make_rel('r1', 'Beautiful', artists=['Wrong Alias'])])

        assert [t.spotify_uri for t in resolved] == ['spotify:track:t2']
        assert spotify.calls['search_tracks'] == [('Beautiful', 'Wrong Alias'), ('Beautiful', 'Pharrell Williams')]
        assert discogs.calls == [('Beautiful', ('Wrong Alias',))]

    def test_hints_already_queried_are_skipped(self, mb, spotify, sleeper):
        matcher, _ = self._matcher(mb, spotify, sleeper, {'Beautiful': ['pharrell williams', 'Snoop Dogg']})

        summary = matcher.resolve_detailed([make_rel('r1', 'Beautiful', artists=['Pharrell Williams'])])

        assert spotify.calls['search_tracks'] == [('Beautiful', 'Pharrell Williams'), ('Beautiful', 'Snoop Dogg')]
        assert summary.unresolved[0].reason is UnresolvedReason.NO_CATALOGUE_MATCH

    def test_not_consulted_when_credited_artist_matches(self, mb, spotify, sleeper):
        matcher, discogs = self._matcher(mb, spotify, sleeper, {'So What': ['Somebody Else']})
        spotify.text_results[('So What', 'Miles Davis')] = [make_track('t3', 'So What', ['Miles Davis'])]

        matcher.resolve([make_rel('r1', 'So What', artists=['Miles Davis'])])

        assert discogs.calls == []

    def test_discogs_failure_leaves_recording_unresolved(self, mb, spotify, sleeper):
        matcher, _ = self._matcher(mb, spotify, sleeper, {'Beautiful': NetworkError('down')})

        summary = matcher.resolve_detailed([make_rel('r1', 'Beautiful')])

        assert summary.resolved == []
        assert summary.unresolved[0].reason is UnresolvedReason.MISSING_ARTIST_CREDITS


class TestConcurrency:
    def _flaky_search(self, failing_title, failures):
        """Search answering 429 for `failing_title` the first `failures` times"""
        lock = threading.Lock()
        attempts = {'count': 0}

        def search(title, artist):
            if title == failing_title:
                with lock:
                    attempts['count'] += 1
                    if attempts['count'] <= failures:
                        return RateLimitedError(1)
            return [make_track(f"t-{title}", title, [artist])]
        return search

    def test_rate_limited_recordings_are_requeued(self, matcher, spotify, sleeper):
        spotify.text_results = self._flaky_search('B', failures=1)
        recordings = [make_rel(f"r{t}", t, artists=['X']) for t in 'ABCD']

        resolved = matcher.resolve(recordings)

        assert [t.recording_title for t in resolved] == ['A', 'B', 'C', 'D']
        assert sleeper.calls == [0.5]
        assert matcher.stats['rate_limited_batches'] == 1
        assert matcher.concurrency == 3

    def test_gives_up_after_repeated_rate_limits(self, matcher, spotify, sleeper):
        spotify.text_results = self._flaky_search('B', failures=100)
        recordings = [make_rel('rA', 'A', artists=['X']), make_rel('rB', 'B', artists=['X'])]

        summary = matcher.resolve_detailed(recordings)

        assert [t.recording_title for t in summary.resolved] == ['A']
        assert summary.unresolved[0].reason is UnresolvedReason.NO_CATALOGUE_MATCH
        assert len(sleeper.calls) == MAX_REQUEUES
        assert matcher.stats['rate_limited_batches'] == MAX_REQUEUES

    def test_progress_reports(self, matcher, spotify):
        spotify.text_results = lambda title, artist: [make_track(title, title, [artist])]
        progress = []

        matcher.resolve([make_rel(f"r{i}", f"Song {i}", artists=['X']) for i in range(6)],
                        on_progress=lambda done, total: progress.append((done, total)))

        assert progress[0] == (0, 6)
        assert progress[-1] == (6, 6)
        assert [done for done, _ in progress] == sorted(done for done, _ in progress)

    def test_authentication_failure_propagates(self, matcher, spotify):
        spotify.isrc_results['USX1'] = NotAuthenticatedError('expired')

        with pytest.raises(NotAuthenticatedError):
            matcher.resolve([make_rel('r1', 'So What', isrcs=['USX1'])])

    def test_cancellation(self, matcher):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            matcher.resolve([make_rel('r1', 'So What', artists=['Miles Davis'])], cancel_token=token)


class TestSharedClientPacing:
    def test_worker_threads_respect_musicbrainz_interval(self, spotify):
        request_times = []
        times_lock = threading.Lock()

        def respond(method, url, **kwargs):
            with times_lock:
                request_times.append(time.time())
            response = Mock()
            response.status_code = 200
            response.headers = {}
            response.content = b'{"isrcs": []}'
            response.json.return_value = {'isrcs': []}
            return response

        session = MagicMock()
        session.request.side_effect = respond
        mb_client = MusicBrainzClient(min_interval=0.2, session=session)
        matcher = TrackMatcher(mb_client, spotify, max_concurrency=4, sleep=lambda seconds: None)

        matcher.resolve([make_rel(f"r{i}", f"Song {i}", artists=['X']) for i in range(4)])

        request_times.sort()
        gaps = [later - earlier for earlier, later in zip(request_times, request_times[1:])]
        assert len(request_times) == 4
        assert all(gap >= 0.15 for gap in gaps)
        assert mb_client.stats['api_calls'] == 4
