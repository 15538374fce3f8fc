"""
Tests for HarMock Responder

Tests replay of recorded entries (status, header filtering, CORS
backstop, JSON/text/binary bodies), the default success envelope and
the 404 diagnostic payload.
"""

import json
from datetime import datetime, timezone

import pytest

from harmock.mock.events import EventRecorder
from harmock.mock.index import ArchiveEntry, SignatureIndex
from harmock.mock.matcher import Matched, PathKnownNoVariant, PathUnknown
from harmock.mock.responder import ReplayResponse, Responder, check_header

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_entry(body=None, status=200, headers=(('Content-Type', 'application/json'),), **kwargs):
    return ArchiveEntry(
        index=kwargs.pop('index', 0),
        method=kwargs.pop('method', 'GET'),
        path=kwargs.pop('path', '/users'),
        status=status,
        response_headers=tuple(headers),
        response_body=body,
        **kwargs
    )


@pytest.fixture
def responder():
    """Responder with a fixed clock."""
    return Responder(clock=lambda: FIXED_NOW)


class TestReplayStatus:
    """Test replayed status codes."""

    def test_recorded_status(self, responder):
        """Test the recorded status is used."""
        assert responder.replay(make_entry(status=201)).status == 201
        assert responder.replay(make_entry(status=500)).status == 500

    def test_missing_status_defaults_to_200(self, responder):
        """Test absent (or zero) status becomes 200."""
        assert responder.replay(make_entry(status=None)).status == 200
        assert responder.replay(make_entry(status=0)).status == 200


class TestReplayHeaders:
    """Test header filtering and the CORS backstop."""

    def test_denylisted_headers_dropped(self, responder):
        """Test transport and hop-by-hop headers are not replayed."""
        headers = [
            ('Content-Type', 'application/json'),
            ('Content-Length', '17'),
            ('Content-Encoding', 'gzip'),
            ('Transfer-Encoding', 'chunked'),
            ('connection', 'keep-alive'),
            ('Upgrade', 'h2c'),
            ('Host', 'api.example.com'),
            ('Origin', 'https://app.example.com'),
            ('Referer', 'https://app.example.com/'),
            ('X-Request-Id', 'abc'),
        ]

        response = responder.replay(make_entry(body='{}', headers=headers))

        names = [name.lower() for name, _ in response.headers]
        assert names == ['content-type', 'x-request-id', 'access-control-allow-origin']

    def test_duplicate_headers_kept_in_order(self, responder):
        """Test repeated headers survive in recorded order."""
        headers = [('Set-Cookie', 'a=1'), ('Set-Cookie', 'b=2')]

        response = responder.replay(make_entry(headers=headers))

        assert [value for name, value in response.headers if name == 'Set-Cookie'] == ['a=1', 'b=2']

    def test_cors_backstop_added(self, responder):
        """Test a wildcard origin is added when none was recorded."""
        response = responder.replay(make_entry())

        assert response.header('Access-Control-Allow-Origin') == '*'

    def test_recorded_cors_origin_wins(self, responder):
        """Test a recorded origin header is kept and not duplicated."""
        headers = [('access-control-allow-origin', 'https://app.example.com')]

        response = responder.replay(make_entry(headers=headers))

        origins = [v for n, v in response.headers if n.lower() == 'access-control-allow-origin']
        assert origins == ['https://app.example.com']

    def test_bad_header_skipped_and_reported(self):
        """Test headers the transport cannot carry are skipped individually."""
        recorder = EventRecorder()
        responder = Responder(on_event=recorder)
        headers = [
            (':status', '200'),
            ('X-Unicode', '日本'),
            ('X-Split', 'a\r\nInjected: yes'),
            ('X-Good', 'ok'),
        ]

        response = responder.replay(make_entry(index=7, headers=headers))

        assert response.header('X-Good') == 'ok'
        assert response.header('X-Unicode') is None
        skipped = recorder.named('header_skip_error')
        assert [event['header'] for event in skipped] == [':status', 'X-Unicode', 'X-Split']
        assert all(event['index'] == 7 for event in skipped)


class TestReplayBody:
    """Test replayed bodies."""

    def test_json_body_parsed(self, responder):
        """Test JSON content is emitted as structured JSON."""
        response = responder.replay(make_entry(body='{ "name": "Alice" }'))

        assert response.is_json is True
        assert response.body == {'name': 'Alice'}
        assert response.body_bytes() == b'{"name":"Alice"}'

    def test_json_content_type_with_charset(self, responder):
        """Test the content-type check is a substring match."""
        headers = [('Content-Type', 'application/json; charset=utf-8')]

        response = responder.replay(make_entry(body='[1, 2]', headers=headers))

        assert response.is_json is True
        assert response.body == [1, 2]

    def test_invalid_json_served_as_text(self, responder):
        """Test invalid JSON falls back to the raw text."""
        response = responder.replay(make_entry(body='{"broken": '))

        assert response.is_json is False
        assert response.body_bytes() == b'{"broken": '

    def test_text_body(self, responder):
        """Test non-JSON content is served as recorded."""
        headers = [('Content-Type', 'text/html')]

        response = responder.replay(make_entry(body='<p>hi</p>', headers=headers))

        assert response.is_json is False
        assert response.body == '<p>hi</p>'

    def test_text_body_without_content_type(self, responder):
        """Test a text body without recorded content type gets text/plain."""
        response = responder.replay(make_entry(body='plain', headers=()))

        assert response.header('Content-Type') == 'text/plain; charset=utf-8'

    def test_empty_body(self, responder):
        """Test a missing body produces an empty response."""
        response = responder.replay(make_entry(body=None))

        assert response.body is None
        assert response.body_bytes() == b''

    def test_base64_body(self, responder):
        """Test base64 content is decoded to bytes."""
        headers = [('Content-Type', 'image/png')]
        entry = make_entry(body='aGVsbG8=', headers=headers, response_encoding='base64')

        response = responder.replay(entry)

        assert response.body_bytes() == b'hello'

    def test_base64_json_body(self, responder):
        """Test base64-encoded JSON is decoded and parsed."""
        entry = make_entry(body='eyJhIjogMX0=', response_encoding='base64')

        response = responder.replay(entry)

        assert response.is_json is True
        assert response.body == {'a': 1}


class TestDefaultAndNotFound:
    """Test replay_default() and replay_not_found()."""

    def test_default_envelope(self, responder):
        """Test the generic success envelope."""
        response = responder.replay_default()

        assert response.status == 200
        assert response.is_json is True
        assert response.body == {
            'code': 200,
            'msg': 'success',
            'timestamp': '2024-01-02T03:04:05.000Z',
            'data': []
        }
        assert response.header('Access-Control-Allow-Origin') == '*'

    def test_not_found_payload(self):
        """Test the 404 payload lists at most ten endpoints."""
        index = SignatureIndex()
        for i in range(12):
            index.register(ArchiveEntry(index=i, method='GET', path=f'/items/{i}'))
        responder = Responder(index, clock=lambda: FIXED_NOW)

        response = responder.replay_not_found('get', '/orders', 'a=1')

        assert response.status == 404
        body = json.loads(response.body_bytes())
        assert body['requested'] == {
            'method': 'GET',
            'path': '/orders',
            'query': 'a=1',
            'timestamp': '2024-01-02T03:04:05.000Z'
        }
        assert len(body['available_endpoints']) == 10
        assert body['available_endpoints'][0] == {'method': 'GET', 'path': '/items/0', 'signature': 'GET:/items/0'}
        assert 'error' in body

    def test_not_found_empty_query_is_null(self, responder):
        """Test an empty query is reported as null."""
        response = responder.replay_not_found('GET', '/orders')

        assert response.body['requested']['query'] is None
        assert response.body['available_endpoints'] == []


class TestRespond:
    """Test respond() dispatch."""

    def test_dispatch(self, responder):
        """Test each outcome maps to its response kind."""
        entry = make_entry(body='{"name": "Alice"}')

        assert responder.respond(Matched(entry=entry, strategy='query', signature='GET:/users')).body == {'name': 'Alice'}
        assert responder.respond(PathKnownNoVariant('GET', '/users', 'id=2')).body['msg'] == 'success'
        assert responder.respond(PathUnknown('GET', '/orders')).status == 404

    def test_unknown_outcome(self, responder):
        """Test anything else is rejected."""
        with pytest.raises(TypeError):
            responder.respond(None)


class TestHelpers:
    """Test ReplayResponse and check_header()."""

    def test_header_lookup_case_insensitive(self):
        """Test header() ignores case."""
        response = ReplayResponse(status=200, headers=[('X-Token', 'abc')])

        assert response.header('x-token') == 'abc'
        assert response.header('x-missing') is None

    def test_body_bytes_text(self):
        """Test text bodies are UTF-8 encoded."""
        assert ReplayResponse(status=200, body='café').body_bytes() == 'café'.encode('utf-8')

    def test_check_header(self):
        """Test valid headers pass and invalid ones raise."""
        check_header('X-Ok', 'café')

        with pytest.raises(ValueError):
            check_header('Bad Name', 'x')
        with pytest.raises(ValueError):
            check_header('X-Bad', 'line\nbreak')
