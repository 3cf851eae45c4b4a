import pytest

from sideman.text_matching import (
    CANONICAL_TITLE_OPTIONS, NormalizeOptions, TITLE_OPTIONS, artist_matches, artist_overlap,
    fuzzy_title_score, normalize, normalize_isrc, relaxed_title, similarity, token_set,
)


ALL_OPTION_SETS = [NormalizeOptions(value) for value in range(16)]

AWKWARD_TEXTS = [
    'Take Five (Live (Remastered 2009))',
    'Song feat.Someone',
    'Song_feat_Other',
    'a_feat',
    'Beyoncé — Déjà Vu ft. Jay-Z',
    '  (Interlude)  ',
    'A (b',
    'MÖTLEY CRÜE',
    'İstanbul',
    'Defeat Featuring',
]


class TestNormalize:
    def test_default_options(self):
        assert normalize('  Take   Five! ') == 'take five'

    def test_canonical_title(self):
        assert normalize('Take Five (Remastered) feat. Someone', CANONICAL_TITLE_OPTIONS) == 'take five'

    def test_title_keeps_parentheticals(self):
        assert normalize('Take Five (Live)', TITLE_OPTIONS) == 'take five live'

    def test_none_option_only_lowercases_and_trims(self):
        assert normalize(' So What? ', NormalizeOptions.NONE) == 'so what?'

    @pytest.mark.parametrize('value', [None, ''])
    def test_empty(self, value):
        assert normalize(value) == ''

    def test_token_set(self):
        assert token_set('Blue in Green') == {'blue', 'in', 'green'}

    @pytest.mark.parametrize('options', ALL_OPTION_SETS, ids=str)
    @pytest.mark.parametrize('text', AWKWARD_TEXTS)
    def test_idempotent(self, text, options):
        once = normalize(text, options)
        assert normalize(once, options) == once

    def test_featuring_after_underscore(self):
        assert normalize('Song_feat_Other', TITLE_OPTIONS) == 'song'
        assert normalize('a_feat', TITLE_OPTIONS) == 'a'
        assert normalize('Defeat Featuring X', TITLE_OPTIONS) == 'defeat'


class TestSimilarity:
    def test_identical_after_normalization(self):
        assert similarity('Take Five', 'take five!') == 1.0

    def test_substring(self):
        assert similarity('Take Five', 'Take Five Live') == 0.87
        assert similarity('Take Five', 'Take Five Live', contains_score=0.9) == 0.9

    def test_jaccard(self):
        assert similarity('blue in green', 'blue in red') == pytest.approx(0.5)

    def test_empty_sides_score_zero(self):
        assert similarity('', '') == 0.0
        assert similarity('Take Five', None) == 0.0

    @pytest.mark.parametrize('a,b', [
        ('Take Five', 'Take Five Live'),
        ('blue in green', 'blue in red'),
        ('MÖTLEY CRÜE', 'Mötley Crüe'),
        ('So What', ''),
        ('Song_feat_Other', 'Song feat. Other'),
    ])
    def test_symmetric(self, a, b):
        assert similarity(a, b) == similarity(b, a)
        assert artist_overlap([a], [b]) == artist_overlap([b], [a])


class TestArtists:
    def test_overlap_uses_smaller_set(self):
        assert artist_overlap(['Miles Davis', 'John Coltrane'], ['john coltrane']) == 1.0
        assert artist_overlap(['A', 'B'], ['B', 'C', 'D']) == 0.5

    def test_overlap_without_names(self):
        assert artist_overlap([], ['Miles Davis']) == 0.0

    def test_artist_matches(self):
        assert artist_matches('Miles Davis', ['Miles Davis Quintet'])
        assert not artist_matches('Miles Davis', ['John Coltrane'])
        assert not artist_matches('', ['Miles Davis'])


class TestCatalogueHelpers:
    def test_normalize_isrc(self):
        assert normalize_isrc('us-rc1-76-07839') == 'USRC17607839'
        assert normalize_isrc(None) == ''

    def test_relaxed_title(self):
        assert relaxed_title('So What (Remastered 2009)') == 'So What'
        assert relaxed_title('Song [Live] feat. X') == 'Song'
        assert relaxed_title('') == ''

    def test_fuzzy_title_parenthetical_fallback(self):
        assert fuzzy_title_score('Who Cares?', 'Who Cares (As Long As You Care For Me)') == 1.0

    def test_fuzzy_title_unrelated(self):
        assert fuzzy_title_score('Take Five', 'Giant Steps') < 0.7
