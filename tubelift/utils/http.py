from __future__ import annotations
"""
Header helpers for the resumable upload protocol.
"""

import json
import re
import uuid
from typing import Optional, Tuple
from urllib.parse import urlparse, urlencode, parse_qsl, urlunparse

_RANGE_RE = re.compile(r"^bytes=(\d+)-(\d+)$")


def with_query(url: str, **params) -> str:
    """Return url with params merged into its query string (params win)"""
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunparse(parts._replace(query=urlencode(query, safe=",")))


def content_range(offset: int, length: int, total_size: Optional[int]) -> str:
    """
    Build a Content-Range value for a chunk.

    Zero-length chunks carry no span ("bytes */total"), an unknown total
    is written as "*".
    """
    total = "*" if total_size is None else str(total_size)
    if length == 0:
        return f"bytes */{total}"
    return f"bytes {offset}-{offset + length - 1}/{total}"


def status_query_range(total_size: Optional[int]) -> str:
    """Content-Range value for an empty status query"""
    total = "*" if total_size is None else str(total_size)
    return f"bytes */{total}"


def parse_received_bytes(range_header: Optional[str]) -> int:
    """
    Number of bytes the server holds, from a 308 response's Range header.
    A missing header means nothing has been persisted yet.
    """
    if not range_header:
        return 0
    match = _RANGE_RE.match(range_header.strip())
    if not match:
        raise ValueError(f"Unparseable Range header: {range_header!r}")
    start, end = int(match.group(1)), int(match.group(2))
    if start != 0:
        raise ValueError(f"Range does not start at 0: {range_header!r}")
    return end + 1


def multipart_related(metadata: dict, data: bytes, content_type: str) -> Tuple[bytes, str]:
    """
    Body and Content-Type for a single-request upload carrying JSON
    metadata plus media (uploadType=multipart).
    """
    boundary = f"===============tubelift{uuid.uuid4().hex}=="
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {content_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + data + tail, f'multipart/related; boundary="{boundary}"'
