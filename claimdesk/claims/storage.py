"""Local-disk receipt storage.

Claims keep only the returned reference (``/uploads/receipts/<name>``);
file bytes never pass through the claim service.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Optional

from claimdesk.common.constants import RECEIPT_CONTENT_TYPES
from claimdesk.common.exceptions import ValidationException
from claimdesk.config import settings

logger = logging.getLogger(__name__)

RECEIPT_URL_PREFIX = "/uploads/receipts/"


def receipts_dir() -> str:
    return os.path.join(settings.UPLOAD_DIR, "receipts")


def save_receipt(contents: bytes, filename: Optional[str], content_type: Optional[str]) -> str:
    """Validate and write a receipt file, returning its storage reference."""
    if content_type not in RECEIPT_CONTENT_TYPES:
        raise ValidationException(
            {"receipt": [f"File type '{content_type}' not allowed. Accepted: images or PDF."]}
        )
    max_size = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(contents) > max_size:
        raise ValidationException(
            {"receipt": [f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE_MB} MB."]}
        )

    upload_dir = receipts_dir()
    os.makedirs(upload_dir, exist_ok=True)

    # UUID-only filename (no original filename) to prevent path traversal
    ext = os.path.splitext(filename or "")[1] if filename else ""
    safe_name = f"{uuid.uuid4().hex}{ext}"
    with open(os.path.join(upload_dir, safe_name), "wb") as f:
        f.write(contents)

    return f"{RECEIPT_URL_PREFIX}{safe_name}"


def delete_receipt(reference: Optional[str]) -> bool:
    """Best-effort removal of a stored receipt. Returns True if a file was removed."""
    if not reference or not reference.startswith(RECEIPT_URL_PREFIX):
        return False
    name = os.path.basename(reference[len(RECEIPT_URL_PREFIX):])
    path = os.path.join(receipts_dir(), name)
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("could not remove receipt %s: %s", path, exc)
        return False
    return True
