"""
HarMock Signature Index

Lookup structure built once from a HAR archive.

Every recorded entry is stored under its normalized signature, and also
grouped by METHOD:PATH so the matcher can tell "this endpoint was recorded
with other parameters" apart from "this endpoint was never recorded".
The index is populated at startup and then frozen; after that it is only
read.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, urlsplit

from ..common import RawEntry, iter_headers
from .events import EventSink, resolve_sink
from .normalizer import build_signature, normalize_query

# Recorded paths are percent-encoded like a live request line; existing escapes are kept.
RECORDED_PATH_SAFE_CHARS = "/%:@!$&'()*+,;=~-._"


@dataclass(frozen=True)
class ArchiveEntry:
    """One recorded interaction, ready for matching and replay."""

    index: int
    method: str
    path: str
    raw_query: str = ''
    normalized_query: str = ''
    request_body: Optional[str] = None
    request_mime_type: Optional[str] = None
    url: str = ''
    status: Optional[int] = None
    response_headers: Tuple[Tuple[str, str], ...] = ()
    response_body: Optional[str] = None
    response_encoding: Optional[str] = None

    @property
    def group_key(self) -> str:
        return f"{self.method}:{self.path}"

    @property
    def signature(self) -> str:
        return build_signature(self.method, self.path, self.normalized_query, self.request_body)

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type of the recorded response (first header wins)."""
        for name, value in self.response_headers:
            if name.lower() == 'content-type':
                return value
        return None

    def decoded_response_body(self) -> Any:
        """
        Return the recorded response body as str or bytes.

        Base64-encoded HAR content is decoded to bytes. If it is not valid
        base64 the recorded text is returned unchanged.
        """
        if self.response_body is None:
            return None
        if (self.response_encoding or '').lower() == 'base64':
            try:
                return base64.b64decode(self.response_body, validate=True)
            except (binascii.Error, ValueError):
                return self.response_body
        return self.response_body

    @classmethod
    def from_har(cls, index: int, request: Any, response: Any) -> ArchiveEntry:
        """
        Create an entry from HAR request/response objects.

        Args:
            index: Position of the entry in the archive
            request: HAR request object (method, url, postData)
            response: HAR response object (status, headers, content)

        Returns:
            ArchiveEntry

        Raises:
            ValueError: If the request is malformed or its URL cannot be parsed
        """
        if not isinstance(request, dict):
            raise ValueError("Entry has no request object")

        url = request.get('url')
        if not isinstance(url, str) or not url:
            raise ValueError("Request has no URL")

        parsed = urlsplit(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Not an absolute URL: {url}")
        parsed.port  # raises ValueError for a malformed port

        post_data = request.get('postData')
        request_body = None
        request_mime_type = None
        if isinstance(post_data, dict):
            text = post_data.get('text')
            request_body = text if isinstance(text, str) else None
            request_mime_type = post_data.get('mimeType')

        if not isinstance(response, dict):
            response = {}

        content = response.get('content')
        if not isinstance(content, dict):
            content = {}
        body = content.get('text')

        status = response.get('status')
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            status = None

        method = str(request.get('method') or 'GET').upper()
        raw_query = parsed.query

        return cls(
            index=index,
            method=method,
            path=quote(parsed.path, safe=RECORDED_PATH_SAFE_CHARS) or '/',
            raw_query=raw_query,
            normalized_query=normalize_query(raw_query),
            request_body=request_body,
            request_mime_type=request_mime_type,
            url=url,
            status=status,
            response_headers=tuple(iter_headers(response.get('headers'))),
            response_body=body if isinstance(body, str) else None,
            response_encoding=content.get('encoding'),
        )


@dataclass
class Group:
    """All recorded variants of one METHOD:PATH endpoint."""

    method: str
    path: str
    variants: List[ArchiveEntry] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.method}:{self.path}"


class SignatureIndex:
    """
    Signature -> entry map plus METHOD:PATH grouping.

    Duplicate signatures are resolved last-write-wins and reported through
    the ``signature_collision`` event; the replaced entry stays in its group.

    Example:
        index = SignatureIndex()
        for entry in entries:
            index.register(entry)
        index.freeze()

        entry = index.lookup('GET:/users?id=1')
    """

    def __init__(self, on_event: Optional[EventSink] = None):
        self._on_event = resolve_sink(on_event)
        self._by_signature: Dict[str, ArchiveEntry] = {}
        self._groups: Dict[str, Group] = {}
        self._entries: List[ArchiveEntry] = []
        self._frozen = False

    def register(self, entry: ArchiveEntry) -> str:
        """
        Add an entry to the index.

        Args:
            entry: Entry to register

        Returns:
            The entry's signature

        Raises:
            RuntimeError: If the index has been frozen
        """
        if self._frozen:
            raise RuntimeError("SignatureIndex is frozen; entries can only be registered during load")

        signature = entry.signature

        previous = self._by_signature.get(signature)
        if previous is not None:
            self._on_event('signature_collision', {
                'signature': signature,
                'previous_index': previous.index,
                'index': entry.index,
            })
        self._by_signature[signature] = entry

        group = self._groups.get(entry.group_key)
        if group is None:
            group = Group(method=entry.method, path=entry.path)
            self._groups[entry.group_key] = group
        group.variants.append(entry)

        self._entries.append(entry)
        self._on_event('entry_registered', {
            'index': entry.index,
            'signature': signature,
        })
        return signature

    def freeze(self):
        """Stop accepting registrations."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, signature: str) -> Optional[ArchiveEntry]:
        return self._by_signature.get(signature)

    def has_path(self, method: str, path: str) -> bool:
        """Check whether any variant was recorded for this method and path."""
        return f"{method.upper()}:{path}" in self._groups

    def group(self, method: str, path: str) -> Optional[Group]:
        return self._groups.get(f"{method.upper()}:{path}")

    def groups(self) -> List[Group]:
        """Groups in the order their first variant was registered."""
        return list(self._groups.values())

    def entries(self) -> List[ArchiveEntry]:
        """Every registered entry, including ones shadowed by a later duplicate."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._by_signature)

    def __contains__(self, signature: str) -> bool:
        return signature in self._by_signature

    def endpoints(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """
        List known endpoints for diagnostics.

        Args:
            limit: Maximum number of endpoints to return (None = all)

        Returns:
            List of {'method', 'path', 'signature'} dicts
        """
        items = list(self._by_signature.items())
        if limit is not None:
            items = items[:limit]
        return [
            {'method': entry.method, 'path': entry.path, 'signature': signature}
            for signature, entry in items
        ]

    def summary(self) -> Dict[str, Any]:
        """
        Summarize the index for browsing tools.

        Returns:
            Dict with 'stats' (api_count, variant_count, endpoint_count) and
            'apis' (groups sorted by path, each with its variants)
        """
        apis = []
        for group in sorted(self._groups.values(), key=lambda g: (g.path, g.method)):
            variants = []
            for entry in group.variants:
                test_url = entry.path + (f"?{entry.raw_query}" if entry.raw_query else '')
                variants.append({
                    'index': entry.index,
                    'query': entry.raw_query,
                    'body': entry.request_body,
                    'mime_type': entry.request_mime_type,
                    'url': entry.url,
                    'status': entry.status,
                    'signature': entry.signature,
                    'test_url': test_url,
                })
            apis.append({
                'method': group.method,
                'path': group.path,
                'variants': variants,
            })

        return {
            'stats': {
                'api_count': len(self._groups),
                'variant_count': len(self._entries),
                'endpoint_count': len(self._by_signature),
            },
            'apis': apis,
        }


def build_index(
    raw_entries: Iterable[RawEntry],
    on_event: Optional[EventSink] = None
) -> SignatureIndex:
    """
    Build a frozen SignatureIndex from loaded archive entries.

    Entries that cannot be converted (no request, relative or invalid URL)
    are skipped and reported with an ``entry_skipped`` event.

    Args:
        raw_entries: Output of ArchiveLoader.load() / parse_archive()
        on_event: Optional event sink

    Returns:
        Frozen SignatureIndex
    """
    emit = resolve_sink(on_event)
    index = SignatureIndex(on_event=on_event)
    skipped = 0

    for raw in raw_entries:
        try:
            entry = ArchiveEntry.from_har(raw.index, raw.request, raw.response)
        except ValueError as e:
            skipped += 1
            url = raw.request.get('url') if isinstance(raw.request, dict) else None
            emit('entry_skipped', {'index': raw.index, 'url': url, 'error': str(e)})
            continue
        index.register(entry)

    index.freeze()
    emit('archive_loaded', {
        'entries': len(index.entries()),
        'skipped': skipped,
        'signatures': len(index),
        'groups': len(index.groups()),
    })
    return index
