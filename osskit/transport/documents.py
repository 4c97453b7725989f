"""
XML response and request documents.

Responses are parsed namespace-agnostically: services that echo the S3
namespace and those that do not are read the same way.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterable, Iterator, Optional, Tuple


def _strip_namespaces(root: ET.Element) -> ET.Element:
    for element in root.iter():
        if isinstance(element.tag, str) and element.tag.startswith("{"):
            element.tag = element.tag.split("}", 1)[1]
    return root


def parse_document(body: bytes) -> Optional[ET.Element]:
    """Root element of an XML body, or None when empty or malformed."""
    if not body:
        return None
    try:
        return _strip_namespaces(ET.fromstring(body))
    except ET.ParseError:
        return None


def child_text(element: ET.Element, name: str) -> Optional[str]:
    text = element.findtext(name)
    return text.strip() if text is not None else None


def iter_children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    return iter(element.findall(name))


def complete_multipart_body(parts: Iterable[Tuple[int, str]]) -> bytes:
    """CompleteMultipartUpload document for (part_number, etag) pairs in order."""
    root = ET.Element("CompleteMultipartUpload")
    for part_number, etag in parts:
        part = ET.SubElement(root, "Part")
        ET.SubElement(part, "PartNumber").text = str(part_number)
        ET.SubElement(part, "ETag").text = etag
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def delete_multiple_body(keys: Iterable[str], quiet: bool) -> bytes:
    """Delete document for a multi-object delete; quiet mode lists only failures."""
    root = ET.Element("Delete")
    ET.SubElement(root, "Quiet").text = "true" if quiet else "false"
    for key in keys:
        entry = ET.SubElement(root, "Object")
        ET.SubElement(entry, "Key").text = key
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
