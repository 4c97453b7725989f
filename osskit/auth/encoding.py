"""
Object key and query string encoding.

Keys travel through two layers: the URL (percent-encoded once) and the
string to sign (decoded exactly once). Keeping both directions here makes
the round trip auditable:

    key "a%2Fb c"  --escape_key-->  "a%252Fb%20c"  (wire)
    wire "a%252Fb%20c"  --decode_key-->  "a%2Fb c"  (signed resource)
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple
from urllib.parse import quote, unquote

# encodeURIComponent's unreserved set plus "/" as the path separator.
_KEY_SAFE = "/!*'()"


def normalize_key(key: str) -> str:
    """Strip leading slashes; object keys never start with '/'."""
    return key.lstrip("/")


def escape_key(key: str) -> str:
    """
    Percent-encode an object key for use in a URL path.

    A literal '%' becomes '%25', so an already-encoded looking segment such
    as "a%2Fb" is transmitted as "a%252Fb" and survives server-side decoding
    unchanged.
    """
    return quote(normalize_key(key), safe=_KEY_SAFE)


def decode_key(encoded_key: str) -> str:
    """Decode a wire-form key exactly once ('+' is a literal plus)."""
    return unquote(encoded_key)


def escape_query_value(value: str) -> str:
    """Encode a query component; nothing is left unescaped but unreserved characters."""
    return quote(value, safe="")


def encode_query(params: Iterable[Tuple[str, Optional[str]]]) -> str:
    """
    Build a query string sorted lexicographically by parameter name.

    Parameters whose value is None are emitted bare ("uploads", "append").
    """
    parts = []
    for name, value in sorted(params, key=lambda item: item[0]):
        if value is None:
            parts.append(escape_query_value(name))
        else:
            parts.append(f"{escape_query_value(name)}={escape_query_value(value)}")
    return "&".join(parts)


def parse_query(query: str) -> dict[str, Optional[str]]:
    """Inverse of encode_query; bare names map to None."""
    params: dict[str, Optional[str]] = {}
    if not query:
        return params
    for item in query.split("&"):
        if not item:
            continue
        if "=" in item:
            name, value = item.split("=", 1)
            params[unquote(name)] = unquote(value)
        else:
            params[unquote(item)] = None
    return params
