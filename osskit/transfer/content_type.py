"""Content-Type selection shared by single-shot and multipart uploads."""

from __future__ import annotations

import mimetypes
import os
from typing import Optional

from osskit.core import constants as C


def _guess(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    guessed, _ = mimetypes.guess_type(os.path.basename(name), strict=False)
    return guessed


def resolve_content_type(
    explicit: Optional[str] = None,
    file_path: Optional[str] = None,
    key: Optional[str] = None,
) -> str:
    """
    Pick the Content-Type once, before anything is sent.

    Priority: explicit value, local file extension, object key suffix,
    then ``application/octet-stream``.
    """
    if explicit:
        return explicit
    return _guess(file_path) or _guess(key) or C.DEFAULT_CONTENT_TYPE
