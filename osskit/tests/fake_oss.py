"""
In-Memory Object Storage Service

An HttpExecutor that answers requests the way the real service does, so
the client can be exercised end to end without a network:

- verifies every Authorization header by re-canonicalizing the request
- objects, appendable objects, multipart uploads, copy, restore and
  multi-object delete
- streamed GET bodies in fixed-size chunks, with an optional mid-body drop
- If-* / x-oss-copy-source-if-* preconditions
- fault injection (service statuses or transport failures) and per-part
  delays, with a high-water mark of concurrent part uploads
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from osskit.auth.canonical import Canonicalizer, CanonicalRequest
from osskit.auth.encoding import decode_key, parse_query
from osskit.auth.signer import Signer
from osskit.core.errors import TransportError
from osskit.core.types import Credentials, Err, Ok, Result, TargetObjectState, format_http_date
from osskit.transfer.conditions import ConditionContext, ConditionalEvaluator, ConditionOutcome, ObjectPrecondition
from osskit.transport.executor import HttpResponse, StreamedResponse

FIXED_NOW = 1767225600  # 2026-01-01T00:00:00Z
PART = 1024
BUCKET = "media"


def payload(size: int, seed: int = 0) -> bytes:
    """Deterministic test bytes; neighbouring parts differ."""
    return bytes((seed + i * 7 + i // PART) % 251 for i in range(size))


# =============================================================================
# STATE
# =============================================================================

@dataclass
class StoredObject:
    data: bytes
    etag: str
    last_modified: int
    content_type: str = "application/octet-stream"
    meta: Dict[str, str] = field(default_factory=dict)
    appendable: bool = False
    storage_class: str = "Standard"


@dataclass
class StoredUpload:
    bucket: str
    key: str
    content_type: str
    parts: Dict[int, Tuple[str, bytes]] = field(default_factory=dict)


@dataclass
class RecordedRequest:
    method: str
    bucket: str
    key: str
    query: Dict[str, Optional[str]]
    headers: Dict[str, str]
    body: bytes


@dataclass
class Fault:
    """One injected failure, matched by method and optional subresource/part."""

    method: str
    times: int = 1
    status: int = 503
    code: str = "ServiceUnavailable"
    subresource: Optional[str] = None
    part_number: Optional[int] = None
    transport: bool = False
    headers: Dict[str, str] = field(default_factory=dict)

    def matches(self, method: str, query: Mapping[str, Optional[str]]) -> bool:
        if self.times <= 0 or method != self.method:
            return False
        if self.subresource is not None and self.subresource not in query:
            return False
        if self.part_number is not None and query.get("partNumber") != str(self.part_number):
            return False
        return True


def _etag(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest().upper()}"'


def _iso(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _xml(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _document(tag: str, **children: Any) -> bytes:
    root = ET.Element(tag)
    for name, value in children.items():
        ET.SubElement(root, name).text = str(value)
    return _xml(root)


# =============================================================================
# SERVICE
# =============================================================================

class FakeOssService:
    """
    Example:
        >>> service = FakeOssService(credentials)
        >>> client = ObjectClient(config, executor=service, clock=lambda: FIXED_NOW)
        >>> service.fail(Fault("PUT", part_number=2, times=2))
    """

    def __init__(self, credentials: Credentials, now: int = FIXED_NOW) -> None:
        self.credentials = credentials
        self.now = now
        self.objects: Dict[Tuple[str, str], StoredObject] = {}
        self.uploads: Dict[str, StoredUpload] = {}
        self.requests: List[RecordedRequest] = []
        self.faults: List[Fault] = []
        self.part_delay = 0.0
        self.part_delays: Dict[int, float] = {}
        self.list_page_size = 1000
        self.in_flight_parts = 0
        self.max_in_flight_parts = 0
        self.restoring: set = set()
        self.stream_chunk_size = 256
        self.drop_stream_after: Optional[int] = None
        self.streams_closed = 0
        self.closed = False
        self._canonicalizer = Canonicalizer()
        self._evaluator = ConditionalEvaluator()
        self._next_id = 0

    # -------------------------------------------------------------------------
    # TEST HELPERS
    # -------------------------------------------------------------------------

    def fail(self, fault: Fault) -> None:
        self.faults.append(fault)

    def put_object(self, bucket: str, key: str, data: bytes, **kwargs: Any) -> StoredObject:
        stored = StoredObject(data=data, etag=_etag(data), last_modified=self.now, **kwargs)
        self.objects[(bucket, key)] = stored
        return stored

    def get_object(self, bucket: str, key: str) -> Optional[StoredObject]:
        return self.objects.get((bucket, key))

    def requests_for(self, method: str, subresource: Optional[str] = None) -> List[RecordedRequest]:
        return [
            r for r in self.requests
            if r.method == method and (subresource is None or subresource in r.query)
        ]

    def verify_presigned(self, method: str, url: str, headers: Optional[Mapping[str, str]] = None) -> bool:
        """Check a presigned URL the way the service would on use."""
        parts = urlsplit(url)
        query = parse_query(parts.query)
        expires = query.pop("Expires", None)
        signature = query.pop("Signature", None)
        access_key = query.pop("OSSAccessKeyId", None)
        if access_key != self.credentials.access_key_id or expires is None:
            return False
        if int(expires) < self.now:
            return False
        request = CanonicalRequest(
            verb=method,
            bucket=parts.netloc.split(".", 1)[0],
            encoded_key=parts.path[1:],
            headers=dict(headers or {}),
            subresources=query,
        )
        expected = Signer.compute_signature(
            self.credentials.access_key_secret,
            self._canonicalizer.canonicalize(request, expires),
        )
        return expected == signature

    # -------------------------------------------------------------------------
    # EXECUTOR CONTRACT
    # -------------------------------------------------------------------------

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Any = None,
    ) -> Result[HttpResponse, TransportError]:
        parts = urlsplit(url)
        bucket = parts.netloc.split(".", 1)[0]
        encoded_key = parts.path[1:]
        query = parse_query(parts.query)
        payload = await self._collect(body)
        lowered = {name.lower(): str(value) for name, value in headers.items()}
        self.requests.append(RecordedRequest(method, bucket, decode_key(encoded_key), query, lowered, payload))

        for fault in self.faults:
            if fault.matches(method, query):
                fault.times -= 1
                if fault.transport:
                    return Err(TransportError.connection_failed(url, cause=ConnectionResetError("injected")))
                return Ok(self._error(fault.status, fault.code, headers=fault.headers))

        if not self._authorized(method, bucket, encoded_key, headers, query):
            return Ok(self._error(403, "SignatureDoesNotMatch"))

        return Ok(await self._dispatch(method, bucket, decode_key(encoded_key), query, lowered, payload))

    async def open_stream(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
    ) -> Result[StreamedResponse, TransportError]:
        sent = await self.send(method, url, headers)
        if sent.is_err():
            return Err(sent.error)
        response = sent.value
        size = self.stream_chunk_size
        drop_after = self.drop_stream_after

        async def chunks() -> AsyncIterator[bytes]:
            for start in range(0, len(response.body), size):
                if drop_after is not None and start >= drop_after:
                    raise TransportError.connection_failed(url, cause=ConnectionResetError("injected"))
                yield response.body[start:start + size]

        async def close() -> None:
            self.streams_closed += 1

        return Ok(StreamedResponse(
            status=response.status,
            headers=response.headers,
            chunks=chunks(),
            close=close,
        ))

    async def close(self) -> None:
        self.closed = True

    # -------------------------------------------------------------------------
    # PLUMBING
    # -------------------------------------------------------------------------

    @staticmethod
    async def _collect(body: Any) -> bytes:
        if body is None:
            return b""
        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        chunks = []
        async for chunk in body:
            chunks.append(chunk)
        return b"".join(chunks)

    def _authorized(
        self,
        method: str,
        bucket: str,
        encoded_key: str,
        headers: Mapping[str, str],
        query: Mapping[str, Optional[str]],
    ) -> bool:
        token = next((v for k, v in headers.items() if k.lower() == "authorization"), "")
        request = CanonicalRequest(
            verb=method,
            bucket=bucket,
            encoded_key=encoded_key,
            headers={k: v for k, v in headers.items() if k.lower() != "authorization"},
            subresources=dict(query),
        )
        signature = Signer.compute_signature(
            self.credentials.access_key_secret, self._canonicalizer.canonicalize(request)
        )
        return token == f"OSS {self.credentials.access_key_id}:{signature}"

    def _request_id(self) -> str:
        self._next_id += 1
        return f"REQ{self._next_id:06d}"

    def _response(self, status: int, headers: Optional[Dict[str, str]] = None, body: bytes = b"") -> HttpResponse:
        merged = {"x-oss-request-id": self._request_id()}
        merged.update({k.lower(): v for k, v in (headers or {}).items()})
        return HttpResponse(status=status, headers=merged, body=body)

    def _error(self, status: int, code: str, headers: Optional[Dict[str, str]] = None, with_body: bool = True) -> HttpResponse:
        response = self._response(status, headers)
        if not with_body:
            return response
        body = _document(
            "Error",
            Code=code,
            Message=f"{code} (fake)",
            RequestId=response.request_id,
            HostId="fake.oss.test",
        )
        return HttpResponse(status=status, headers=response.headers, body=body)

    def _object_headers(self, obj: StoredObject) -> Dict[str, str]:
        headers = {
            "etag": obj.etag,
            "last-modified": format_http_date(obj.last_modified),
            "content-type": obj.content_type,
            "content-length": str(len(obj.data)),
            "x-oss-storage-class": obj.storage_class,
        }
        for name, value in obj.meta.items():
            headers[f"x-oss-meta-{name}"] = value
        if obj.appendable:
            headers["x-oss-object-type"] = "Appendable"
            headers["x-oss-next-append-position"] = str(len(obj.data))
        return headers

    @staticmethod
    def _state(obj: Optional[StoredObject]) -> Optional[TargetObjectState]:
        if obj is None:
            return None
        return TargetObjectState(
            etag=obj.etag,
            last_modified=datetime.fromtimestamp(obj.last_modified, tz=timezone.utc),
        )

    @staticmethod
    def _meta_from(headers: Mapping[str, str]) -> Dict[str, str]:
        return {
            name[len("x-oss-meta-"):]: value
            for name, value in headers.items()
            if name.startswith("x-oss-meta-")
        }

    # -------------------------------------------------------------------------
    # DISPATCH
    # -------------------------------------------------------------------------

    async def _dispatch(
        self,
        method: str,
        bucket: str,
        key: str,
        query: Dict[str, Optional[str]],
        headers: Dict[str, str],
        body: bytes,
    ) -> HttpResponse:
        if method == "PUT" and "partNumber" in query:
            return await self._upload_part(query, body)
        if method == "PUT" and "x-oss-copy-source" in headers:
            return self._copy(bucket, key, headers)
        if method == "PUT":
            return self._put(bucket, key, headers, body)
        if method == "POST" and "delete" in query:
            return self._delete_multiple(bucket, headers, body)
        if method == "POST" and "uploads" in query:
            return self._initiate(bucket, key, headers)
        if method == "POST" and "uploadId" in query:
            return self._complete(bucket, key, query, body)
        if method == "POST" and "append" in query:
            return self._append(bucket, key, query, headers, body)
        if method == "POST" and "restore" in query:
            return self._restore(bucket, key)
        if method == "GET" and "uploadId" in query:
            return self._list_parts(query)
        if method in ("GET", "HEAD"):
            return self._read(method, bucket, key, headers)
        if method == "DELETE" and "uploadId" in query:
            return self._abort(query)
        if method == "DELETE":
            self.objects.pop((bucket, key), None)
            return self._response(204)
        return self._error(405, "MethodNotAllowed")

    def _put(self, bucket: str, key: str, headers: Dict[str, str], body: bytes) -> HttpResponse:
        digest = headers.get("content-md5")
        if digest is not None:
            if base64.b64encode(hashlib.md5(body).digest()).decode("ascii") != digest:
                return self._error(400, "InvalidDigest")
        stored = self.put_object(
            bucket, key, body,
            content_type=headers.get("content-type", "application/octet-stream"),
            meta=self._meta_from(headers),
        )
        return self._response(200, {"etag": stored.etag, "last-modified": format_http_date(stored.last_modified)})

    def _read(self, method: str, bucket: str, key: str, headers: Dict[str, str]) -> HttpResponse:
        obj = self.objects.get((bucket, key))
        if obj is None:
            return self._error(404, "NoSuchKey", with_body=method == "GET")

        outcome = self._evaluator.evaluate(
            ObjectPrecondition.from_headers(headers), self._state(obj), ConditionContext.READ
        )
        if outcome is ConditionOutcome.NOT_MODIFIED:
            return self._response(304, {"etag": obj.etag})
        if outcome is ConditionOutcome.PRECONDITION_FAILED:
            return self._error(412, "PreconditionFailed", with_body=method == "GET")

        response_headers = self._object_headers(obj)
        data = obj.data
        status = 200
        if "range" in headers:
            start, end = headers["range"][len("bytes="):].split("-")
            first, last = int(start), min(int(end), len(data) - 1)
            data = data[first:last + 1]
            status = 206
            response_headers["content-range"] = f"bytes {first}-{last}/{len(obj.data)}"
            response_headers["content-length"] = str(len(data))
        return self._response(status, response_headers, data if method == "GET" else b"")

    def _copy(self, bucket: str, key: str, headers: Dict[str, str]) -> HttpResponse:
        _, source_bucket, source_key = headers["x-oss-copy-source"].split("/", 2)
        source = self.objects.get((source_bucket, decode_key(source_key)))
        if source is None:
            return self._error(404, "NoSuchKey")

        outcome = self._evaluator.evaluate(
            ObjectPrecondition.from_headers(headers, prefix="x-oss-copy-source-"),
            self._state(source),
            ConditionContext.COPY_SOURCE,
        )
        if outcome is ConditionOutcome.NOT_MODIFIED:
            return self._response(304)
        if outcome is ConditionOutcome.PRECONDITION_FAILED:
            return self._error(412, "PreconditionFailed")

        replace = headers.get("x-oss-metadata-directive") == "REPLACE"
        copied = self.put_object(
            bucket, key, source.data,
            content_type=headers.get("content-type", source.content_type) if replace else source.content_type,
            meta=self._meta_from(headers) if replace else dict(source.meta),
        )
        body = _document("CopyObjectResult", ETag=copied.etag, LastModified=_iso(copied.last_modified))
        return self._response(200, {"content-type": "application/xml"}, body)

    def _append(
        self,
        bucket: str,
        key: str,
        query: Dict[str, Optional[str]],
        headers: Dict[str, str],
        body: bytes,
    ) -> HttpResponse:
        position = int(query.get("position") or "0")
        obj = self.objects.get((bucket, key))
        if obj is not None and not obj.appendable:
            return self._error(409, "ObjectNotAppendable")
        current = len(obj.data) if obj is not None else 0
        if position != current:
            return self._error(409, "PositionNotEqualToLength", headers={"x-oss-next-append-position": str(current)})

        if obj is None:
            obj = self.put_object(
                bucket, key, b"",
                content_type=headers.get("content-type", "application/octet-stream"),
                meta=self._meta_from(headers),
                appendable=True,
            )
        obj.data += body
        obj.etag = _etag(obj.data)
        obj.last_modified = self.now
        return self._response(200, {
            "etag": obj.etag,
            "x-oss-next-append-position": str(len(obj.data)),
            "x-oss-hash-crc64ecma": "0",
        })

    def _delete_multiple(self, bucket: str, headers: Dict[str, str], body: bytes) -> HttpResponse:
        if headers.get("content-md5") != base64.b64encode(hashlib.md5(body).digest()).decode("ascii"):
            return self._error(400, "InvalidDigest")
        request = ET.fromstring(body)
        quiet = (request.findtext("Quiet") or "").strip() == "true"

        root = ET.Element("DeleteResult")
        for element in request.findall("Object"):
            key = element.findtext("Key") or ""
            self.objects.pop((bucket, key), None)
            if not quiet:
                deleted = ET.SubElement(root, "Deleted")
                ET.SubElement(deleted, "Key").text = key
        return self._response(200, {"content-type": "application/xml"}, _xml(root))

    def _restore(self, bucket: str, key: str) -> HttpResponse:
        obj = self.objects.get((bucket, key))
        if obj is None:
            return self._error(404, "NoSuchKey")
        if obj.storage_class != "Archive":
            return self._error(400, "OperationNotSupported")
        if (bucket, key) in self.restoring:
            return self._error(409, "RestoreAlreadyInProgress")
        self.restoring.add((bucket, key))
        return self._response(202)

    # -------------------------------------------------------------------------
    # MULTIPART
    # -------------------------------------------------------------------------

    def _initiate(self, bucket: str, key: str, headers: Dict[str, str]) -> HttpResponse:
        upload_id = f"UPLOAD{len(self.uploads) + len(self.requests):08d}"
        self.uploads[upload_id] = StoredUpload(
            bucket=bucket, key=key, content_type=headers.get("content-type", "application/octet-stream")
        )
        body = _document("InitiateMultipartUploadResult", Bucket=bucket, Key=key, UploadId=upload_id)
        return self._response(200, {"content-type": "application/xml"}, body)

    async def _upload_part(self, query: Dict[str, Optional[str]], body: bytes) -> HttpResponse:
        upload = self.uploads.get(query.get("uploadId") or "")
        if upload is None:
            return self._error(404, "NoSuchUpload")
        part_number = int(query["partNumber"] or "0")

        self.in_flight_parts += 1
        self.max_in_flight_parts = max(self.max_in_flight_parts, self.in_flight_parts)
        try:
            await asyncio.sleep(self.part_delays.get(part_number, self.part_delay))
        finally:
            self.in_flight_parts -= 1

        etag = _etag(body)
        upload.parts[part_number] = (etag, body)
        return self._response(200, {"etag": etag})

    def _list_parts(self, query: Dict[str, Optional[str]]) -> HttpResponse:
        upload = self.uploads.get(query.get("uploadId") or "")
        if upload is None:
            return self._error(404, "NoSuchUpload")
        page_size = min(int(query.get("max-parts") or "1000"), self.list_page_size)
        marker = int(query.get("part-number-marker") or "0")

        numbers = sorted(n for n in upload.parts if n > marker)
        page, rest = numbers[:page_size], numbers[page_size:]
        root = ET.Element("ListPartsResult")
        ET.SubElement(root, "UploadId").text = query["uploadId"]
        ET.SubElement(root, "IsTruncated").text = "true" if rest else "false"
        if page:
            ET.SubElement(root, "NextPartNumberMarker").text = str(page[-1])
        for number in page:
            etag, data = upload.parts[number]
            part = ET.SubElement(root, "Part")
            ET.SubElement(part, "PartNumber").text = str(number)
            ET.SubElement(part, "ETag").text = etag
            ET.SubElement(part, "Size").text = str(len(data))
        return self._response(200, {"content-type": "application/xml"}, _xml(root))

    def _complete(self, bucket: str, key: str, query: Dict[str, Optional[str]], body: bytes) -> HttpResponse:
        upload_id = query.get("uploadId") or ""
        upload = self.uploads.get(upload_id)
        if upload is None:
            return self._error(404, "NoSuchUpload")

        listed = [
            (int(part.findtext("PartNumber") or "0"), part.findtext("ETag") or "")
            for part in ET.fromstring(body).findall("Part")
        ]
        numbers = [number for number, _ in listed]
        if numbers != sorted(set(numbers)):
            return self._error(400, "InvalidPartOrder")
        for number, etag in listed:
            stored = upload.parts.get(number)
            if stored is None or stored[0] != etag:
                return self._error(400, "InvalidPart")

        data = b"".join(upload.parts[number][1] for number in numbers)
        digests = b"".join(bytes.fromhex(upload.parts[number][0].strip('"')) for number in numbers)
        etag = f'"{hashlib.md5(digests).hexdigest().upper()}-{len(numbers)}"'
        self.objects[(bucket, key)] = StoredObject(
            data=data, etag=etag, last_modified=self.now, content_type=upload.content_type
        )
        del self.uploads[upload_id]
        document = _document("CompleteMultipartUploadResult", Bucket=bucket, Key=key, ETag=etag)
        return self._response(200, {"content-type": "application/xml"}, document)

    def _abort(self, query: Dict[str, Optional[str]]) -> HttpResponse:
        if self.uploads.pop(query.get("uploadId") or "", None) is None:
            return self._error(404, "NoSuchUpload")
        return self._response(204)
