"""
Request Signer
==============

Turns a canonical request plus credentials into an authentication token.

Modes:
------
1. Header auth: ``Authorization: OSS <AccessKeyId>:<Signature>`` where the
   signature covers the RFC 1123 Date supplied by the caller.
2. Presigned URL: the same HMAC with the date slot replaced by an absolute
   expiry epoch; ``OSSAccessKeyId``, ``Expires`` and ``Signature`` are
   embedded in a sorted query string together with any signed overrides
   (``response-*``, ``x-oss-process``, ``callback``, ``callback-var``).

Signature = base64(HMAC-SHA1(secret, string_to_sign))

Purity:
-------
The signer never reads the system clock; timestamps and expiries are
supplied by the caller, so identical inputs always produce identical tokens.
It holds no mutable state and is safe for unsynchronized concurrent use.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Union

from osskit.auth.canonical import CanonicalRequest, Canonicalizer
from osskit.auth.encoding import encode_query
from osskit.core import constants as C
from osskit.core.types import Credentials, format_http_date


@dataclass(frozen=True, slots=True)
class SignedAuthorization:
    """
    Outcome of header signing.

    Attributes:
        token: Value of the Authorization header.
        signature: Bare base64 signature.
        date: Date header value the signature covers.
        headers: Complete header set to send, Authorization included.
    """

    token: str
    signature: str
    date: str
    headers: Dict[str, str]


@dataclass(frozen=True)
class CallbackDescriptor:
    """
    Upload callback the service invokes after a successful PUT.

    Encoded as base64 JSON into the ``callback`` (and, with custom values,
    ``callback-var``) query parameters, both of which are signed.
    """

    url: str
    body: str
    host: Optional[str] = None
    body_type: Optional[str] = None
    custom_values: Mapping[str, str] = field(default_factory=dict)

    def to_query(self) -> Dict[str, str]:
        """Query parameters carrying the encoded callback."""
        document: Dict[str, str] = {"callbackUrl": self.url, "callbackBody": self.body}
        if self.host:
            document["callbackHost"] = self.host
        if self.body_type:
            document["callbackBodyType"] = self.body_type

        query = {"callback": _b64_json(document)}
        if self.custom_values:
            variables = {f"x:{name}": str(value) for name, value in self.custom_values.items()}
            query["callback-var"] = _b64_json(variables)
        return query


def _b64_json(document: Mapping[str, str]) -> str:
    raw = json.dumps(dict(document), separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


class Signer:
    """
    Stateless HMAC signer for header auth and presigned URLs.

    Example:
        >>> signer = Signer()
        >>> request = CanonicalRequest.for_object("GET", "bucket", "photo.png")
        >>> auth = signer.sign_header(request, credentials, timestamp=1767225600)
        >>> auth.token
        'OSS <AccessKeyId>:<base64 signature>'
    """

    __slots__ = ("_canonicalizer",)

    def __init__(self, canonicalizer: Optional[Canonicalizer] = None) -> None:
        self._canonicalizer = canonicalizer or Canonicalizer()

    @property
    def canonicalizer(self) -> Canonicalizer:
        return self._canonicalizer

    @staticmethod
    def compute_signature(secret: str, string_to_sign: bytes) -> str:
        """base64(HMAC-SHA1(secret, string_to_sign))."""
        digest = hmac.new(secret.encode("utf-8"), string_to_sign, hashlib.sha1).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign_header(
        self,
        request: CanonicalRequest,
        credentials: Credentials,
        timestamp: Union[datetime, float, int],
    ) -> SignedAuthorization:
        """
        Sign a request for the Authorization header.

        The Date header is set from ``timestamp``; a session token, when
        present, is added as a signed vendor header.

        Args:
            request: Canonical request to sign.
            credentials: Access key pair (and optional session token).
            timestamp: Request time as an aware datetime or epoch seconds.

        Returns:
            SignedAuthorization with the full header set to send.
        """
        date = format_http_date(timestamp)
        extra = {"Date": date}
        if credentials.security_token:
            extra[C.SECURITY_TOKEN_HEADER] = credentials.security_token
        signed_request = request.with_headers(extra)

        signature = self.compute_signature(
            credentials.access_key_secret,
            self._canonicalizer.canonicalize(signed_request, date),
        )
        token = f"{C.AUTH_SCHEME} {credentials.access_key_id}:{signature}"

        headers = dict(signed_request.headers)
        headers["Authorization"] = token
        return SignedAuthorization(token=token, signature=signature, date=date, headers=headers)

    def sign_url(
        self,
        request: CanonicalRequest,
        credentials: Credentials,
        expires: int,
        base_url: str,
        extra_query: Optional[Mapping[str, Optional[str]]] = None,
    ) -> str:
        """
        Produce a presigned URL.

        Args:
            request: Canonical request; its headers (Content-Type,
                Content-MD5, x-oss-*) must be sent unchanged by the user of
                the URL.
            credentials: Access key pair (and optional session token).
            expires: Absolute expiry as epoch seconds.
            base_url: Bucket URL ending in "/" (see ClientConfig.bucket_url).
            extra_query: Additional query parameters. Signed subresources
                among them (response-*, x-oss-process, callback, ...) are
                covered by the signature; others are only appended.

        Returns:
            ``<base_url><escaped key>?<sorted query>``
        """
        query: Dict[str, Optional[str]] = dict(request.subresources)
        if extra_query:
            query.update(extra_query)
        if credentials.security_token:
            query["security-token"] = credentials.security_token

        expires_str = str(int(expires))
        signing_request = CanonicalRequest(
            verb=request.verb,
            bucket=request.bucket,
            encoded_key=request.encoded_key,
            headers=request.headers,
            subresources=query,
        )
        signature = self.compute_signature(
            credentials.access_key_secret,
            self._canonicalizer.canonicalize(signing_request, expires_str),
        )

        query[C.ACCESS_KEY_QUERY_PARAM] = credentials.access_key_id
        query["Expires"] = expires_str
        query["Signature"] = signature
        return f"{base_url}{request.encoded_key}?{encode_query(query.items())}"
