"""
HarMock Responder

Turns match outcomes into responses.

- Matched entries are replayed: recorded status, filtered headers, body
- Known endpoints with unrecorded parameters get a generic success envelope
- Unknown endpoints get a 404 with a short list of recorded endpoints

Responses are returned as ReplayResponse values; writing them to the wire
is the transport's job.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .events import EventSink, resolve_sink
from .index import ArchiveEntry, SignatureIndex
from .matcher import Matched, MatchOutcome, PathKnownNoVariant, PathUnknown

# Hop-by-hop and transport headers that would corrupt the live connection
SKIP_HEADERS = frozenset({
    'content-encoding',
    'content-length',
    'transfer-encoding',
    'connection',
    'upgrade',
    'host',
    'origin',
    'referer',
})

CORS_ORIGIN_HEADER = 'Access-Control-Allow-Origin'

NOT_FOUND_ENDPOINT_LIMIT = 10

_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def check_header(name: str, value: str):
    """
    Verify a header can be written to an HTTP/1.1 response.

    Raises:
        ValueError: If the name is not a token, the value contains CR/LF,
            or the value cannot be encoded as Latin-1
    """
    if not _TOKEN_RE.match(name):
        raise ValueError(f"Invalid header name {name!r}")
    if '\r' in value or '\n' in value:
        raise ValueError(f"Header {name} contains a line break")
    try:
        value.encode('latin-1')
    except UnicodeEncodeError as e:
        raise ValueError(f"Header {name} is not Latin-1 encodable: {e}") from e


def utc_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    return moment.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass
class ReplayResponse:
    """Status, headers and body to send back to the client."""

    status: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: Any = None
    is_json: bool = False

    def header(self, name: str) -> Optional[str]:
        """Return the first value of a header (case-insensitive)."""
        wanted = name.lower()
        for header_name, value in self.headers:
            if header_name.lower() == wanted:
                return value
        return None

    def body_bytes(self) -> bytes:
        """Render the body for the wire."""
        if self.is_json:
            return json.dumps(self.body, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
        if self.body is None:
            return b''
        if isinstance(self.body, bytes):
            return self.body
        return str(self.body).encode('utf-8')


class Responder:
    """
    Builds replay, default and not-found responses.

    Example:
        responder = Responder(index)
        response = responder.respond(matcher.match('GET', '/users', 'id=1'))
        print(response.status, response.body)
    """

    def __init__(
        self,
        index: Optional[SignatureIndex] = None,
        on_event: Optional[EventSink] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize responder.

        Args:
            index: Index used to list known endpoints in 404 payloads
            on_event: Optional event sink for header_skip_error events
            clock: Returns the current time (defaults to UTC now)
        """
        self.index = index
        self._on_event = resolve_sink(on_event)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def respond(self, outcome: MatchOutcome) -> ReplayResponse:
        """Build the response for a match outcome."""
        if isinstance(outcome, Matched):
            return self.replay(outcome.entry)
        if isinstance(outcome, PathKnownNoVariant):
            return self.replay_default()
        if isinstance(outcome, PathUnknown):
            return self.replay_not_found(outcome.method, outcome.path, outcome.query)
        raise TypeError(f"Unknown match outcome: {outcome!r}")

    def replay(self, entry: ArchiveEntry) -> ReplayResponse:
        """
        Replay a recorded entry.

        Args:
            entry: Matched archive entry

        Returns:
            ReplayResponse with recorded status, filtered headers and body
        """
        headers = self._replay_headers(entry)

        if not any(name.lower() == CORS_ORIGIN_HEADER.lower() for name, _ in headers):
            headers.append((CORS_ORIGIN_HEADER, '*'))

        body = entry.decoded_response_body()
        if body is None:
            return ReplayResponse(status=entry.status or 200, headers=headers)

        content_type = entry.content_type
        if content_type is None:
            default_type = 'application/octet-stream' if isinstance(body, bytes) else 'text/plain; charset=utf-8'
            headers.append(('Content-Type', default_type))
        elif 'application/json' in content_type.lower():
            try:
                text = body.decode('utf-8') if isinstance(body, bytes) else body
                parsed = json.loads(text)
            except (UnicodeDecodeError, json.JSONDecodeError, ValueError):
                # Invalid JSON is served as recorded
                pass
            else:
                return ReplayResponse(status=entry.status or 200, headers=headers, body=parsed, is_json=True)

        return ReplayResponse(status=entry.status or 200, headers=headers, body=body)

    def _replay_headers(self, entry: ArchiveEntry) -> List[Tuple[str, str]]:
        headers = []
        for name, value in entry.response_headers:
            if name.lower() in SKIP_HEADERS:
                continue
            try:
                check_header(name, value)
            except ValueError as e:
                self._on_event('header_skip_error', {
                    'index': entry.index,
                    'header': name,
                    'error': str(e),
                })
                continue
            headers.append((name, value))
        return headers

    def replay_default(self) -> ReplayResponse:
        """Generic success envelope for a known endpoint with unrecorded parameters."""
        return ReplayResponse(
            status=200,
            headers=[('Content-Type', 'application/json'), (CORS_ORIGIN_HEADER, '*')],
            body={
                'code': 200,
                'msg': 'success',
                'timestamp': utc_timestamp(self._clock()),
                'data': [],
            },
            is_json=True,
        )

    def replay_not_found(self, method: str, path: str, query: Optional[str] = '') -> ReplayResponse:
        """
        404 payload for an endpoint that was never recorded.

        Args:
            method: Requested HTTP method
            path: Requested path
            query: Requested query string

        Returns:
            ReplayResponse with error details and up to 10 known endpoints
        """
        endpoints: List[Dict[str, str]] = []
        if self.index is not None:
            endpoints = self.index.endpoints(limit=NOT_FOUND_ENDPOINT_LIMIT)

        return ReplayResponse(
            status=404,
            headers=[('Content-Type', 'application/json'), (CORS_ORIGIN_HEADER, '*')],
            body={
                'error': 'No matching request found in HAR file',
                'requested': {
                    'method': method.upper(),
                    'path': path,
                    'query': query or None,
                    'timestamp': utc_timestamp(self._clock()),
                },
                'available_endpoints': endpoints,
            },
            is_json=True,
        )
