"""
Structured Request Options
==========================

Caller-facing options are a fixed set of typed fields plus one explicit
escape hatch (``headers``) for pass-through headers. Computed headers
(Date, Authorization, framing) are never taken from the escape hatch, so
caller input cannot desynchronize what is signed from what is sent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Union

from osskit.auth.signer import CallbackDescriptor
from osskit.core import constants as C
from osskit.core.types import format_http_date

# Headers the transport computes itself.
RESERVED_HEADERS = frozenset({
    "authorization",
    "date",
    "host",
    "content-length",
    "transfer-encoding",
    C.SECURITY_TOKEN_HEADER,
})


@dataclass(frozen=True)
class RequestOptions:
    """
    Recognized upload/request options.

    Attributes:
        content_type: Explicit Content-Type (wins over extension lookup).
        content_md5: Base64 Content-MD5 of the payload.
        content_disposition: Content-Disposition.
        cache_control: Cache-Control.
        content_encoding: Content-Encoding.
        expires: Expires header (datetime or preformatted string).
        meta: User metadata, sent as ``x-oss-meta-<name>``.
        headers: Pass-through headers for anything else (e.g.
            ``x-oss-storage-class``); reserved names are dropped.
    """

    content_type: Optional[str] = None
    content_md5: Optional[str] = None
    content_disposition: Optional[str] = None
    cache_control: Optional[str] = None
    content_encoding: Optional[str] = None
    expires: Optional[Union[datetime, str]] = None
    meta: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    def to_headers(self) -> Dict[str, str]:
        """
        Render to request headers (Content-Type excluded; it is resolved
        separately so uploads of every kind agree on it).
        """
        headers: Dict[str, str] = {}
        for name, value in self.headers.items():
            if name.lower() not in RESERVED_HEADERS:
                headers[name] = str(value)

        if self.content_md5:
            headers["Content-MD5"] = self.content_md5
        if self.content_disposition:
            headers["Content-Disposition"] = self.content_disposition
        if self.cache_control:
            headers["Cache-Control"] = self.cache_control
        if self.content_encoding:
            headers["Content-Encoding"] = self.content_encoding
        if self.expires is not None:
            headers["Expires"] = (
                format_http_date(self.expires) if isinstance(self.expires, datetime) else self.expires
            )
        for name, value in self.meta.items():
            headers[f"{C.META_HEADER_PREFIX}{name.lower()}"] = str(value)
        return headers


@dataclass(frozen=True)
class UrlOptions:
    """
    Options for presigned URLs.

    Attributes:
        expires: Lifetime in seconds from the client's clock.
        content_type: Content-Type the URL user must send (PUT URLs).
        content_md5: Content-MD5 the URL user must send (PUT URLs).
        response: Response header overrides, e.g. ``{"content-type": "xml"}``
            becomes ``response-content-type=xml``.
        process: Image-processing directive, signed as ``x-oss-process``.
        callback: Upload callback, signed as ``callback``/``callback-var``.
        headers: ``x-oss-*`` headers the URL user must send; they are signed.
        subresources: Extra query parameters; signed when recognized.
    """

    expires: int = C.DEFAULT_SIGN_URL_EXPIRES_S
    content_type: Optional[str] = None
    content_md5: Optional[str] = None
    response: Mapping[str, str] = field(default_factory=dict)
    process: Optional[str] = None
    callback: Optional[CallbackDescriptor] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    subresources: Mapping[str, Optional[str]] = field(default_factory=dict)

    def to_headers(self) -> Dict[str, str]:
        headers = {
            name: str(value) for name, value in self.headers.items()
            if name.lower() not in RESERVED_HEADERS
        }
        if self.content_type:
            headers["Content-Type"] = self.content_type
        if self.content_md5:
            headers["Content-MD5"] = self.content_md5
        return headers

    def to_query(self) -> Dict[str, Optional[str]]:
        query: Dict[str, Optional[str]] = dict(self.subresources)
        for name, value in self.response.items():
            query[f"response-{name.lower()}"] = value
        if self.process:
            query["x-oss-process"] = self.process
        if self.callback is not None:
            query.update(self.callback.to_query())
        return query
