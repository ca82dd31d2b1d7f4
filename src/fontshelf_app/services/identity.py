from __future__ import annotations

import hashlib
import re
from typing import Optional

URL_KEY_HASH_CHARS = 12

_UNSAFE = re.compile(r"[^A-Za-z0-9.-]")


def identify(data: bytes) -> tuple[str, int]:
    """Content fingerprint of a file's bytes: (sha1 hex, size in bytes)."""
    return hashlib.sha1(data).hexdigest(), len(data)


def sanitize_filename(filename: str) -> str:
    """
    Map a filename onto [A-Za-z0-9.-]. When anything had to be replaced,
    a short digest of the original name is added before the extension so
    "a b.ttf" and "a_b.ttf" do not end up with the same key.
    """
    safe = _UNSAFE.sub("_", filename) or "font"
    if safe == filename:
        return safe
    digest = hashlib.sha1(filename.encode("utf-8")).hexdigest()[:6]
    stem, dot, ext = safe.rpartition(".")
    if not dot or not stem:
        return f"{safe}-{digest}"
    return f"{stem}-{digest}.{ext}"


def url_key_for(
    content_hash: str, filename: str, discriminator: Optional[str] = None
) -> str:
    """
    Public key used to serve a file: hash prefix + sanitized filename.

    The discriminator (the file's full path) is only given when the plain
    key is already taken by an identical file stored elsewhere.
    """
    prefix = content_hash[:URL_KEY_HASH_CHARS]
    if discriminator:
        scope = hashlib.sha1(discriminator.encode("utf-8")).hexdigest()[:8]
        prefix = f"{prefix}-{scope}"
    return f"{prefix}-{sanitize_filename(filename)}"
