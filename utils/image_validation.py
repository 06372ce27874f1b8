"""Validation helpers for submitted image references."""

import base64
import binascii
import re
from urllib.parse import urlparse

from services.diagnosis.errors import ImageReferenceError

MAX_IMAGE_REF_LENGTH = 15 * 1024 * 1024

_DATA_URL_RE = re.compile(r"^data:image/[a-z0-9.+-]+;base64,(?P<payload>.+)$", re.IGNORECASE | re.DOTALL)


def validate_image_ref(image_ref) -> str:
    """Return the trimmed image reference or raise ImageReferenceError.

    Accepted references are `http(s)` URLs with a host and base64
    `data:image/...` URLs. Browser `blob:` URLs only exist on the client
    and are rejected with a hint to upload the image first.
    """
    if not isinstance(image_ref, str) or not image_ref.strip():
        raise ImageReferenceError("imageUrl is required")

    ref = image_ref.strip()
    if len(ref) > MAX_IMAGE_REF_LENGTH:
        raise ImageReferenceError("imageUrl is too large")

    if ref.startswith("blob:"):
        raise ImageReferenceError("Blob URLs cannot be processed server-side. Please upload the image first.")

    if ref.lower().startswith("data:"):
        match = _DATA_URL_RE.match(ref)
        if match is None:
            raise ImageReferenceError("Data URL must be a base64-encoded image")
        try:
            base64.b64decode(match.group("payload"), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageReferenceError("Data URL payload is not valid base64") from exc
        return ref

    parsed = urlparse(ref)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ImageReferenceError("imageUrl must be an http(s) URL or a data:image URL")
    return ref
