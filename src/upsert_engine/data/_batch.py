# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
OData ``$batch`` multipart encoding and decoding.

Only independent operations are supported (no change sets): every operation is
its own ``application/http`` part, and the service answers with one part per
operation it processed, in order.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_CRLF = "\r\n"
_BOUNDARY_RE = re.compile(r'boundary="?([^";]+)"?', re.IGNORECASE)
_STATUS_RE = re.compile(r"^HTTP/\d\.\d\s+(\d{3})(?:\s+(.*))?$")


@dataclass
class _BatchOperation:
    method: str
    url: str
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class _BatchPartResponse:
    status_code: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lname:
                return v
        return None

    def json(self) -> Any:
        return json.loads(self.body) if self.body.strip() else None


def _new_boundary() -> str:
    return f"batch_{uuid.uuid4()}"


def _encode_batch(operations: List[_BatchOperation], boundary: str) -> str:
    """Serialize operations into a ``multipart/mixed`` body delimited by ``boundary``."""
    lines: List[str] = []
    for content_id, op in enumerate(operations, start=1):
        lines.append(f"--{boundary}")
        lines.append("Content-Type: application/http")
        lines.append("Content-Transfer-Encoding: binary")
        lines.append(f"Content-ID: {content_id}")
        lines.append("")
        lines.append(f"{op.method.upper()} {op.url} HTTP/1.1")
        headers = dict(op.headers)
        if op.body is not None:
            headers.setdefault("Content-Type", "application/json; type=entry")
        for name, value in headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")
        lines.append(json.dumps(op.body) if op.body is not None else "")
    lines.append(f"--{boundary}--")
    lines.append("")
    return _CRLF.join(lines)


def _boundary_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = _BOUNDARY_RE.search(content_type)
    return m.group(1).strip() if m else None


def _split_head(block: str) -> tuple[List[str], str]:
    """Split ``block`` into header lines and the remainder after the first blank line."""
    normalized = block.replace(_CRLF, "\n")
    head, sep, rest = normalized.partition("\n\n")
    if not sep:
        return [line for line in head.split("\n") if line], ""
    return [line for line in head.split("\n") if line], rest


def _parse_headers(lines: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip()] = value.strip()
    return headers


def _decode_batch(body: str, content_type: Optional[str]) -> List[_BatchPartResponse]:
    """
    Parse a ``multipart/mixed`` batch response into per-operation responses.

    :raises ValueError: If the boundary is missing or a part has no HTTP status line.
    """
    boundary = _boundary_from_content_type(content_type)
    if not boundary:
        raise ValueError(f"Batch response has no multipart boundary (Content-Type: {content_type!r})")
    responses: List[_BatchPartResponse] = []
    delimiter = f"--{boundary}"
    for chunk in body.split(delimiter)[1:]:
        if chunk.startswith("--"):
            break
        _, inner = _split_head(chunk.lstrip("\r\n"))
        status_and_headers, payload = _split_head(inner.lstrip("\n"))
        if not status_and_headers:
            raise ValueError("Batch response part is missing its HTTP status line")
        m = _STATUS_RE.match(status_and_headers[0].strip())
        if not m:
            raise ValueError(f"Malformed batch status line: {status_and_headers[0]!r}")
        responses.append(
            _BatchPartResponse(
                status_code=int(m.group(1)),
                reason=(m.group(2) or "").strip(),
                headers=_parse_headers(status_and_headers[1:]),
                body=payload.strip(),
            )
        )
    return responses
