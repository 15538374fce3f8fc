"""
HarMock Key Normalizer

Canonicalizes the parts of a request that identify a recorded variant.

Two requests that differ only in query parameter order, repeated-value
order, or JSON object key order produce the same signature. Every function
here is pure and idempotent; the same functions run when the archive is
indexed and when a live request arrives.
"""

import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

# Characters left unescaped when a query name/value is written back out.
# '%', '&', '=', '#' and whitespace are always escaped so output re-parses identically.
QUERY_SAFE_CHARS = "/:@!$'()*+,;?[]"

_WHITESPACE_RE = re.compile(r'\s+')


def _parse_query(decoded: str) -> Dict[str, List[str]]:
    """
    Parse a decoded query string into a multi-valued mapping.

    Raises:
        ValueError: If a fragment has no parameter name (e.g. "=value")
    """
    params: Dict[str, List[str]] = {}
    for fragment in decoded.split('&'):
        if not fragment.strip():
            continue
        name, _, value = fragment.partition('=')
        if not name:
            raise ValueError(f"Query fragment without a name: {fragment!r}")
        params.setdefault(name, []).append(value)
    return params


def _fallback_query(raw: str) -> str:
    fragments = [fragment.strip() for fragment in raw.split('&')]
    return '&'.join(sorted(fragment for fragment in fragments if fragment))


def normalize_query(raw: Optional[str]) -> str:
    """
    Normalize a query string into an order-independent form.

    The string is percent-decoded first (raw text is used if it is not
    valid UTF-8 once decoded), parsed into name -> values, and written back
    with names sorted and each name's values sorted. Missing values become
    ``name=``.

    Args:
        raw: Query string without the leading '?'

    Returns:
        Normalized query string ('' when there are no parameters)

    Example:
        normalize_query("b=2&a=1&a=0")  # "a=0&a=1&b=2"
    """
    if not raw:
        return ''

    try:
        decoded = unquote(raw, errors='strict')
    except UnicodeDecodeError:
        decoded = raw

    try:
        params = _parse_query(decoded)
    except ValueError:
        return _fallback_query(raw)

    pairs = []
    for name in sorted(params):
        encoded_name = quote(name, safe=QUERY_SAFE_CHARS)
        for value in sorted(params[name]):
            pairs.append(f"{encoded_name}={quote(value, safe=QUERY_SAFE_CHARS)}")
    return '&'.join(pairs)


def sort_json_keys(value: Any) -> Any:
    """
    Recursively sort object keys.

    Arrays keep their element order; each element is normalized in turn.
    Scalars (including None) are returned unchanged.
    """
    if isinstance(value, dict):
        return {key: sort_json_keys(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [sort_json_keys(item) for item in value]
    return value


def normalize_body(raw: Optional[str]) -> str:
    """
    Normalize a request body.

    JSON bodies are re-serialized compactly with object keys sorted at
    every depth. Anything else, including JSON nested too deeply for the
    parser, has whitespace runs collapsed to a single space and is trimmed.

    Args:
        raw: Body text

    Returns:
        Normalized body text
    """
    if raw is None:
        return ''

    try:
        parsed = json.loads(raw)
        return json.dumps(sort_json_keys(parsed), separators=(',', ':'), ensure_ascii=False)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return _WHITESPACE_RE.sub(' ', raw).strip()


def build_signature(
    method: str,
    path: str,
    normalized_query: str = '',
    body_text: Optional[str] = None
) -> str:
    """
    Assemble the lookup signature for a request.

    Format: ``METHOD:PATH[?normalized_query][:body:normalized_body]``

    Args:
        method: HTTP method (any case)
        path: URL path without query string
        normalized_query: Output of normalize_query()
        body_text: Raw body text; ignored when None or blank

    Returns:
        Signature string
    """
    signature = f"{method.upper()}:{path}"

    if normalized_query:
        signature += f"?{normalized_query}"

    if body_text is not None and body_text.strip():
        signature += f":body:{normalize_body(body_text)}"

    return signature
