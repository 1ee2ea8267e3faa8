"""Tests for the primary/fallback body resolution chain."""

import body_resolver
from body_resolver import (
    SKIPPED_TEXT_NOTE,
    UNAVAILABLE_NOTE,
    ResolutionState,
    resolve_body,
)
from conftest import HTML_PART, PLAIN_PART
from imap_ingest import SearchResultItem
from part_fetch import FetchError, Success, Timeout
from part_tree import ContainerPart, LeafPart
from relay_errors import PartFetchError

ITEM = SearchResultItem(uid=21)


class TestResolveBody:
    def test_skipped_never_fetches(self, make_session, alternative):
        session = make_session(parts={'2': HTML_PART})
        result = resolve_body(session, ITEM, alternative, fetch_bodies=False)
        assert result.state is ResolutionState.SKIPPED
        assert result.content is None
        assert result.note == SKIPPED_TEXT_NOTE
        assert session.calls == []

    def test_structure_html_part(self, make_session, alternative):
        session = make_session(parts={'1': PLAIN_PART, '2': HTML_PART})
        result = resolve_body(session, ITEM, alternative, True)
        assert result.state is ResolutionState.STRUCTURE
        assert result.content == HTML_PART
        assert session.calls == [(21, '2')]

    def test_no_structure_goes_straight_to_fallback(self, make_session):
        session = make_session(parts={'1': PLAIN_PART})
        result = resolve_body(session, ITEM, None, True)
        assert result.state is ResolutionState.FALLBACK
        assert result.content == PLAIN_PART
        assert session.calls == [(21, '1')]

    def test_no_text_parts_goes_to_fallback(self, make_session):
        structure = LeafPart(part_id='1', type='image', subtype='png')
        session = make_session(parts={'1': PLAIN_PART})
        result = resolve_body(session, ITEM, structure, True)
        assert result.state is ResolutionState.FALLBACK
        assert session.calls == [(21, '1')]

    def test_selected_part_without_id_goes_to_fallback(self, make_session):
        structure = ContainerPart(part_id=None, subtype='alternative',
                                  children=[LeafPart(part_id=None, type='text', subtype='html')])
        session = make_session(parts={'1': PLAIN_PART})
        result = resolve_body(session, ITEM, structure, True)
        assert result.state is ResolutionState.FALLBACK
        assert session.calls == [(21, '1')]

    def test_primary_error_then_fallback(self, make_session, alternative):
        session = make_session(parts={'1': PLAIN_PART}, errors={'2': PartFetchError('BAD section')})
        result = resolve_body(session, ITEM, alternative, True)
        assert result.state is ResolutionState.FALLBACK
        assert result.content == PLAIN_PART
        assert session.calls == [(21, '2'), (21, '1')]

    def test_primary_empty_then_fallback(self, make_session, alternative):
        session = make_session(parts={'1': PLAIN_PART, '2': b''})
        result = resolve_body(session, ITEM, alternative, True)
        assert result.state is ResolutionState.FALLBACK
        assert session.calls == [(21, '2'), (21, '1')]

    def test_primary_timeout_then_fallback_once(self, monkeypatch, alternative):
        outcomes = [Timeout(), Success(PLAIN_PART)]
        attempts = []

        def fake_fetch(session, item, part, timeout_ms):
            attempts.append((part.part_id, timeout_ms))
            return outcomes.pop(0)

        monkeypatch.setattr(body_resolver, 'fetch_part', fake_fetch)
        result = resolve_body(None, ITEM, alternative, True, timeout_ms=5000)
        assert attempts == [('2', 5000), ('1', 5000)]
        assert result.state is ResolutionState.FALLBACK
        assert result.content == PLAIN_PART

    def test_primary_timeout_against_slow_session(self, make_session, alternative):
        session = make_session(parts={'1': PLAIN_PART, '2': HTML_PART}, delays={'2': 1.5})
        result = resolve_body(session, ITEM, alternative, True, timeout_ms=1000)
        assert result.state is ResolutionState.FALLBACK
        assert result.content == PLAIN_PART
        assert session.calls == [(21, '2'), (21, '1')]

    def test_everything_fails(self, make_session, alternative, caplog):
        session = make_session(errors={'2': PartFetchError('nope'), '1': PartFetchError('still nope')})
        result = resolve_body(session, ITEM, alternative, True)
        assert result.state is ResolutionState.UNRESOLVED
        assert result.content is None
        assert result.note == UNAVAILABLE_NOTE
        assert session.calls == [(21, '2'), (21, '1')]
        assert 'UID 21' in caplog.text

    def test_fallback_attempted_once_on_repeated_failure(self, monkeypatch):
        attempts = []

        def fake_fetch(session, item, part, timeout_ms):
            attempts.append(part.part_id)
            return FetchError('connection reset')

        monkeypatch.setattr(body_resolver, 'fetch_part', fake_fetch)
        result = resolve_body(None, ITEM, None, True)
        assert attempts == ['1']
        assert result.state is ResolutionState.UNRESOLVED

    def test_configurable_fallback_part(self, make_session):
        session = make_session(parts={'TEXT': PLAIN_PART})
        result = resolve_body(session, ITEM, None, True, fallback_part_id='TEXT')
        assert result.state is ResolutionState.FALLBACK
        assert session.calls == [(21, 'TEXT')]
