"""
Object storage for evidence documents.

Backed by Django's default storage. Keys are namespaced by organization and
submission and carry a random component, so a key cannot be guessed from
another tenant's identifiers. Downloads go through signed, time-limited tokens
rather than public URLs.
"""
from __future__ import annotations

import logging
import posixpath
import uuid

from django.conf import settings
from django.core import signing
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.urls import reverse

from .exceptions import DependencyFailure, NotFound
from .file_types import safe_filename

logger = logging.getLogger(__name__)

SIGNING_SALT = "core.storage.download"


def build_object_key(organization_id, submission_id, filename: str) -> str:
    prefix = getattr(settings, "OBJECT_STORAGE_PREFIX", "organizations")
    unique = uuid.uuid4().hex
    return posixpath.join(
        prefix,
        str(organization_id),
        "submissions",
        str(submission_id),
        f"{unique}_{safe_filename(filename)}",
    )


def put_object(key: str, data: bytes, content_type: str | None = None) -> str:
    try:
        saved = default_storage.save(key, ContentFile(data))
    except Exception as exc:
        logger.exception("[storage] write failed for %s", key)
        raise DependencyFailure() from exc
    if saved != key:
        # The storage renamed the key on collision; keep the actual name.
        logger.info("[storage] key %s stored as %s", key, saved)
    return saved


def get_object(key: str) -> bytes:
    try:
        with default_storage.open(key, "rb") as fh:
            return fh.read()
    except FileNotFoundError as exc:
        raise NotFound("Stored object not found") from exc
    except Exception as exc:
        logger.warning("[storage] read failed for %s: %s", key, exc)
        raise DependencyFailure() from exc


def delete_object(key: str) -> None:
    try:
        default_storage.delete(key)
    except Exception as exc:
        logger.warning("[storage] delete failed for %s: %s", key, exc)
        raise DependencyFailure() from exc


def _max_age() -> int:
    return getattr(settings, "SIGNED_URL_MAX_AGE_SECONDS", 24 * 60 * 60)


def sign_object_key(key: str, filename: str = "") -> str:
    return signing.dumps({"k": key, "n": filename}, salt=SIGNING_SALT, compress=True)


def unsign_object_key(token: str) -> tuple[str, str]:
    """Return (key, filename) from a download token or raise NotFound."""
    try:
        payload = signing.loads(token, salt=SIGNING_SALT, max_age=_max_age())
    except signing.SignatureExpired as exc:
        raise NotFound("Download link expired") from exc
    except signing.BadSignature as exc:
        raise NotFound("Invalid download link") from exc
    return payload["k"], payload.get("n") or ""


def signed_url(key: str, filename: str = "", request=None) -> dict:
    path = reverse("core:file_download", kwargs={"token": sign_object_key(key, filename)})
    url = request.build_absolute_uri(path) if request is not None else path
    return {"url": url, "expires_in": _max_age()}
