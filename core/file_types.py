import os
import re

from django.conf import settings

from .exceptions import ValidationError
from .models import EvidenceFile

# Extension → MIME type. The MIME type of an upload is always derived from this
# table, never from the client's Content-Type header.
ALLOWED_EXTENSIONS = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain",
    "csv": "text/csv",
}

TEXT_MIME_TYPES = {"text/plain", "text/csv"}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def max_upload_bytes() -> int:
    return getattr(settings, "MAX_UPLOAD_BYTES", 10 * 1024 * 1024)  # 10 MB per file


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower().lstrip(".")


def resolve_mime_type(filename: str) -> str | None:
    return ALLOWED_EXTENSIONS.get(file_extension(filename))


def is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def infer_kind(mime_type: str) -> str:
    Kind = EvidenceFile.Kind
    if is_image(mime_type):
        return Kind.OTHER
    if mime_type == "application/pdf":
        return Kind.INVOICE
    if "spreadsheet" in mime_type or "excel" in mime_type:
        return Kind.CONTRACT
    if "word" in mime_type or "document" in mime_type:
        return Kind.CONTRACT
    return Kind.OTHER


def resolve_kind(declared, mime_type: str) -> str:
    if declared in (None, ""):
        return infer_kind(mime_type)
    value = str(declared).strip().upper()
    if value not in EvidenceFile.Kind.values:
        raise ValidationError(f"Unknown document kind: {declared}")
    return value


def safe_filename(filename: str) -> str:
    name = os.path.basename(filename or "").strip() or "file"
    return _UNSAFE_CHARS.sub("_", name)[:200]


def validate_upload(filename: str, size: int) -> str:
    """Check size and type of an upload; return the resolved MIME type."""
    if not filename:
        raise ValidationError("No file provided")
    if size is None or size <= 0:
        raise ValidationError("File is empty")
    limit = max_upload_bytes()
    if size > limit:
        raise ValidationError(f"File too large: {filename} (max {limit // (1024 * 1024)} MB)")
    mime_type = resolve_mime_type(filename)
    if mime_type is None:
        raise ValidationError(f"Unsupported file type: {filename}")
    return mime_type
