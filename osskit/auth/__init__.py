"""
Auth module: canonicalization, key encoding and request signing.
"""

from osskit.auth.canonical import SIGNED_SUBRESOURCES, CanonicalRequest, Canonicalizer
from osskit.auth.encoding import decode_key, encode_query, escape_key, normalize_key, parse_query
from osskit.auth.signer import CallbackDescriptor, SignedAuthorization, Signer

__all__ = [
    "SIGNED_SUBRESOURCES",
    "CanonicalRequest",
    "Canonicalizer",
    "decode_key",
    "encode_query",
    "escape_key",
    "normalize_key",
    "parse_query",
    "CallbackDescriptor",
    "SignedAuthorization",
    "Signer",
]
