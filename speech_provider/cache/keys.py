"""Cache key construction for HTTP requests."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Mapping


def build_key(
    url: str,
    method: str | None = "GET",
    headers: Mapping[str, str] | None = None,
    body: bytes | str | None = None,
    *,
    hashed: bool = False,
) -> str:
    """Return a deterministic cache key for a request.

    The key is a canonical JSON encoding of ``(url, method, headers, body)``.
    Header names are case-folded and sorted, so requests that differ only in
    header order or name casing share a key.  With ``hashed=True`` the SHA-256
    hex digest of that encoding is returned instead, bounding the key length.
    """
    canonical = json.dumps(
        {
            "url": url,
            "method": (method or "GET").upper(),
            "headers": _canonical_headers(headers),
            "body": _canonical_body(body),
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    if hashed:
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return canonical


def _canonical_headers(headers: Mapping[str, str] | None) -> list[list[str]]:
    if not headers:
        return []
    return sorted([str(k).lower(), str(v)] for k, v in headers.items())


def _canonical_body(body: bytes | str | None) -> dict | None:
    if body is None:
        return None
    if isinstance(body, str):
        return {"text": body}
    try:
        return {"text": body.decode("utf-8")}
    except UnicodeDecodeError:
        return {"base64": base64.b64encode(body).decode("ascii")}
