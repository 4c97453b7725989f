"""
Request Canonicalization
========================

Builds the exact string the service recomputes to verify a signature.

String to sign:
---------------
    VERB                 \\n
    Content-MD5          \\n
    Content-Type         \\n
    Date | Expires       \\n
    x-oss-a:value        \\n   (lower-cased, trimmed, sorted)
    ...
    /bucket/key?sub1=v1&sub2    (key decoded once, sorted subresources)

Invariants:
-----------
1. Order independence: permuting header or subresource mappings never
   changes the output (lexicographic total order on names).
2. The object key is percent-decoded exactly once, so "%2F" on the wire and
   "/" canonicalize identically while "%252F" stays "%2F".
3. Canonicalization never fails. Malformed values pass through verbatim and
   are rejected by the server as a signature mismatch.

Thread Safety:
--------------
Canonicalizer holds only immutable configuration and is safe to share.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Mapping, Optional

from osskit.auth.encoding import decode_key, escape_key
from osskit.core import constants as C


# =============================================================================
# SIGNED SUBRESOURCES
# =============================================================================

# Query parameters that identify or reshape the resource and therefore
# participate in signing. Any "response-*" override is signed as well.
SIGNED_SUBRESOURCES: FrozenSet[str] = frozenset({
    "acl",
    "append",
    "bucketInfo",
    "callback",
    "callback-var",
    "cname",
    "comp",
    "cors",
    "delete",
    "encryption",
    "endTime",
    "img",
    "lifecycle",
    "live",
    "location",
    "logging",
    "objectMeta",
    "partNumber",
    "policy",
    "position",
    "qos",
    "referer",
    "replication",
    "restore",
    "security-token",
    "startTime",
    "status",
    "style",
    "styleName",
    "symlink",
    "tagging",
    "uploadId",
    "uploads",
    "versionId",
    "versioning",
    "versions",
    "website",
    "x-oss-process",
})


# =============================================================================
# CANONICAL REQUEST
# =============================================================================

@dataclass(frozen=True)
class CanonicalRequest:
    """
    The signable fields of one request.

    Attributes:
        verb: HTTP method, upper-case.
        bucket: Bucket name, or None for service-level requests.
        encoded_key: Object key in wire (percent-encoded) form; "" for
            bucket-level requests.
        headers: Request headers; names are matched case-insensitively.
        subresources: Query parameters; only signed ones reach the
            canonical resource, the rest are carried for URL building.
    """

    verb: str
    bucket: Optional[str]
    encoded_key: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    subresources: Mapping[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def for_object(
        cls,
        verb: str,
        bucket: Optional[str],
        key: str,
        headers: Optional[Mapping[str, str]] = None,
        subresources: Optional[Mapping[str, Optional[str]]] = None,
    ) -> CanonicalRequest:
        """Build from a plain (unencoded) object key."""
        return cls(
            verb=verb.upper(),
            bucket=bucket,
            encoded_key=escape_key(key),
            headers=dict(headers or {}),
            subresources=dict(subresources or {}),
        )

    @property
    def key(self) -> str:
        """Object key decoded exactly once."""
        return decode_key(self.encoded_key)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup (first match in sorted name order)."""
        wanted = name.lower()
        for candidate in sorted(self.headers):
            if candidate.lower() == wanted:
                return self.headers[candidate]
        return None

    def with_headers(self, extra: Mapping[str, str]) -> CanonicalRequest:
        """Copy with extra headers merged in (extra wins)."""
        merged = dict(self.headers)
        lowered = {name.lower() for name in extra}
        for name in list(merged):
            if name.lower() in lowered:
                del merged[name]
        merged.update(extra)
        return replace(self, headers=merged)

    def with_subresources(self, extra: Mapping[str, Optional[str]]) -> CanonicalRequest:
        """Copy with extra query parameters merged in (extra wins)."""
        merged = dict(self.subresources)
        merged.update(extra)
        return replace(self, subresources=merged)


# =============================================================================
# CANONICALIZER
# =============================================================================

class Canonicalizer:
    """
    Deterministic string-to-sign builder.

    Example:
        >>> request = CanonicalRequest.for_object("GET", "bucket", "a b.txt")
        >>> Canonicalizer().string_to_sign(request, "Thu, 01 Jan 2026 00:00:00 GMT")
        'GET\\n\\n\\nThu, 01 Jan 2026 00:00:00 GMT\\n/bucket/a b.txt'
    """

    __slots__ = ("_vendor_prefix", "_subresources")

    def __init__(
        self,
        vendor_prefix: str = C.VENDOR_HEADER_PREFIX,
        subresources: FrozenSet[str] = SIGNED_SUBRESOURCES,
    ) -> None:
        self._vendor_prefix = vendor_prefix.lower()
        self._subresources = subresources

    def is_signed_subresource(self, name: str) -> bool:
        """Whether a query parameter participates in the signature."""
        return name in self._subresources or name.startswith("response-")

    @staticmethod
    def _fold(headers: Mapping[str, str]) -> Dict[str, List[str]]:
        """Lower-case names and collect trimmed values per name."""
        folded: Dict[str, List[str]] = {}
        for name, value in headers.items():
            folded.setdefault(name.strip().lower(), []).append(str(value).strip())
        return folded

    @staticmethod
    def _join(values: Optional[List[str]]) -> str:
        # Sorted so case-variant duplicates cannot depend on mapping order.
        if not values:
            return ""
        return ",".join(sorted(values))

    def canonical_headers(self, headers: Mapping[str, str]) -> str:
        """Vendor-prefixed headers as sorted "name:value\\n" lines."""
        folded = self._fold(headers)
        lines = [
            f"{name}:{self._join(values)}\n"
            for name, values in sorted(folded.items())
            if name.startswith(self._vendor_prefix)
        ]
        return "".join(lines)

    def canonical_resource(self, request: CanonicalRequest) -> str:
        """
        Resource path plus signed subresources.

        "/" for service requests, "/bucket/" for bucket requests and
        "/bucket/key" for object requests.
        """
        if request.bucket:
            resource = f"/{request.bucket}/{request.key}"
        else:
            resource = "/"

        signed = sorted(
            (name, value)
            for name, value in request.subresources.items()
            if self.is_signed_subresource(name)
        )
        if not signed:
            return resource

        params = []
        for name, value in signed:
            if value is None or value == "":
                params.append(name)
            else:
                params.append(f"{name}={value}")
        return f"{resource}?{'&'.join(params)}"

    def string_to_sign(self, request: CanonicalRequest, date: Optional[str] = None) -> str:
        """
        Assemble the full string to sign.

        Args:
            request: Request to canonicalize.
            date: Value for the date slot: the Date header in header mode or
                the expiry epoch in presigned-URL mode. Falls back to the
                request's own Date header.
        """
        folded = self._fold(request.headers)
        if date is None:
            date = self._join(folded.get("date"))
        return "\n".join([
            request.verb.upper(),
            self._join(folded.get("content-md5")),
            self._join(folded.get("content-type")),
            date,
            self.canonical_headers(request.headers) + self.canonical_resource(request),
        ])

    def canonicalize(self, request: CanonicalRequest, date: Optional[str] = None) -> bytes:
        """UTF-8 bytes of the string to sign."""
        return self.string_to_sign(request, date).encode("utf-8")
