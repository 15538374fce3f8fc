"""
HarMock Request Matcher

Resolves a live request to a recorded archive entry.

Strategies, in order (first hit wins):
- body: normalized query + normalized body (only when a body is present)
- query: normalized query, body ignored

When neither signature is recorded, the outcome says whether the
METHOD:PATH endpoint exists with other parameters (PathKnownNoVariant) or
was never recorded (PathUnknown). No fuzzy, pattern or case-insensitive
path matching is attempted: serving the recording for a different
resource ID is worse than serving a neutral stub.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .events import EventSink, resolve_sink
from .index import ArchiveEntry, SignatureIndex
from .normalizer import build_signature, normalize_query


@dataclass(frozen=True)
class Matched:
    """A recorded entry answers this request."""

    entry: ArchiveEntry
    strategy: str
    signature: str

    kind = 'matched'


@dataclass(frozen=True)
class PathKnownNoVariant:
    """The endpoint was recorded, but not with these parameters."""

    method: str
    path: str
    query: str = ''

    kind = 'path_known'


@dataclass(frozen=True)
class PathUnknown:
    """Nothing was recorded for this method and path."""

    method: str
    path: str
    query: str = ''

    kind = 'path_unknown'


MatchOutcome = Union[Matched, PathKnownNoVariant, PathUnknown]


class RequestMatcher:
    """
    Exact-signature matcher over a SignatureIndex.

    Example:
        matcher = RequestMatcher(index)
        outcome = matcher.match('GET', '/users', 'id=1')

        if isinstance(outcome, Matched):
            print(f"Entry #{outcome.entry.index} via {outcome.strategy}")
    """

    def __init__(self, index: SignatureIndex, on_event: Optional[EventSink] = None):
        """
        Initialize request matcher.

        Args:
            index: Populated (normally frozen) signature index
            on_event: Optional event sink for match_outcome events
        """
        self.index = index
        self._on_event = resolve_sink(on_event)

    def match(
        self,
        method: str,
        path: str,
        raw_query: Optional[str] = '',
        body_text: Optional[str] = None
    ) -> MatchOutcome:
        """
        Find the recorded entry for a live request.

        Args:
            method: HTTP method
            path: URL path without query string
            raw_query: Query string as received (without '?')
            body_text: Request body as text, or None

        Returns:
            Matched, PathKnownNoVariant or PathUnknown
        """
        method = method.upper()
        raw_query = raw_query or ''
        normalized_query = normalize_query(raw_query)

        outcome = self._match_signature(method, path, normalized_query, body_text)

        if outcome is None:
            if self.index.has_path(method, path):
                outcome = PathKnownNoVariant(method=method, path=path, query=raw_query)
            else:
                outcome = PathUnknown(method=method, path=path, query=raw_query)

        self._on_event('match_outcome', {
            'method': method,
            'path': path,
            'query': raw_query,
            'outcome': outcome.kind,
            'strategy': outcome.strategy if isinstance(outcome, Matched) else None,
            'entry': outcome.entry.index if isinstance(outcome, Matched) else None,
        })
        return outcome

    def _match_signature(
        self,
        method: str,
        path: str,
        normalized_query: str,
        body_text: Optional[str]
    ) -> Optional[Matched]:
        """Try the body-aware signature, then the query-only one."""
        if body_text is not None and body_text.strip():
            signature = build_signature(method, path, normalized_query, body_text)
            entry = self.index.lookup(signature)
            if entry is not None:
                return Matched(entry=entry, strategy='body', signature=signature)

        signature = build_signature(method, path, normalized_query)
        entry = self.index.lookup(signature)
        if entry is not None:
            return Matched(entry=entry, strategy='query', signature=signature)

        return None
