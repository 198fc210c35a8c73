"""
Upload validation.

Everything here is pure: bytes and declared metadata in, a ``ValidatedUpload``
or an ``AppError(UPLOAD_INVALID)`` out.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from io import BytesIO

from pypdf import PdfReader

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode

PDF_MIME = "application/pdf"
JPEG_MIME = "image/jpeg"
PNG_MIME = "image/png"

ALLOWED_MIME_TYPES: tuple[str, ...] = (PDF_MIME, JPEG_MIME, PNG_MIME)

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_DATA_URL_RE = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_SCRIPT_MARKERS = ("/javascript", "/js")


@dataclass(frozen=True)
class ValidatedUpload:
    mime: str
    body: bytes
    size_bytes: int
    page_count: int | None = None

    @property
    def base64(self) -> str:
        return base64.b64encode(self.body).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime};base64,{self.base64}"


@dataclass(frozen=True)
class DataUrl:
    mime: str
    body: bytes


def sanitize_file_name(file_name: str) -> str:
    base_name = re.split(r"[\\/]", file_name or "")[-1] or "document"
    sanitized = _UNSAFE_NAME_CHARS.sub("_", base_name)[:128]
    return sanitized or "document"


def parse_data_url(data_url: str) -> DataUrl:
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Invalid file data.")
    try:
        body = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Invalid file data.") from e
    return DataUrl(mime=match.group(1).strip().lower(), body=body)


def detect_mime(body: bytes) -> str | None:
    if len(body) < 4:
        return None
    if body.startswith(b"%PDF"):
        return PDF_MIME
    if body.startswith(b"\xff\xd8\xff"):
        return JPEG_MIME
    if body.startswith(_PNG_SIGNATURE):
        return PNG_MIME
    return None


def has_pdf_scripts(body: bytes) -> bool:
    lower = body.decode("latin-1").lower()
    return any(marker in lower for marker in _SCRIPT_MARKERS)


def count_pdf_pages(body: bytes) -> int:
    try:
        reader = PdfReader(BytesIO(body))
        return len(reader.pages)
    except Exception as e:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Unable to read PDF.") from e


def _check_allowed(mime: str) -> None:
    if mime not in ALLOWED_MIME_TYPES:
        raise AppError(
            ErrorCode.UPLOAD_INVALID,
            "Unsupported file type.",
            details={"allowed": list(ALLOWED_MIME_TYPES)},
        )


def _check_size(size_bytes: int, max_bytes: int) -> None:
    if size_bytes > max_bytes:
        raise AppError(
            ErrorCode.UPLOAD_INVALID,
            "File exceeds size limit.",
            413,
            {"maxBytes": max_bytes},
        )


def validate_upload_metadata(
    *, file_type: str, file_size: int, max_bytes: int | None = None
) -> None:
    """Cheap pre-check run when a session is created, before any bytes exist."""
    _check_allowed(file_type)
    _check_size(file_size, max_bytes or settings.max_file_size_bytes)


def validate_upload(
    body: bytes,
    *,
    declared_mime: str,
    received_mime: str | None = None,
    declared_size: int | None = None,
    max_bytes: int | None = None,
    max_pdf_pages: int | None = None,
) -> ValidatedUpload:
    max_bytes = max_bytes or settings.max_file_size_bytes
    max_pdf_pages = max_pdf_pages or settings.max_pdf_pages

    _check_allowed(declared_mime)
    if received_mime is not None and received_mime != declared_mime:
        raise AppError(
            ErrorCode.UPLOAD_INVALID,
            "File type mismatch.",
            details={"expected": declared_mime, "received": received_mime},
        )

    # The declared size is what the client promised; the bytes are what arrived.
    size_bytes = max(len(body), declared_size or 0)
    if not body:
        raise AppError(ErrorCode.UPLOAD_INVALID, "Empty file data.")
    _check_size(size_bytes, max_bytes)

    detected = detect_mime(body)
    if detected != declared_mime:
        raise AppError(
            ErrorCode.UPLOAD_INVALID,
            "File type mismatch.",
            details={"expected": declared_mime, "detected": detected},
        )

    page_count = None
    if declared_mime == PDF_MIME:
        page_count = count_pdf_pages(body)
        if page_count > max_pdf_pages:
            raise AppError(
                ErrorCode.UPLOAD_INVALID,
                "PDF has too many pages.",
                details={"maxPages": max_pdf_pages, "pages": page_count},
            )
        if has_pdf_scripts(body):
            raise AppError(ErrorCode.UPLOAD_INVALID, "PDF contains active scripts.")

    return ValidatedUpload(
        mime=declared_mime, body=body, size_bytes=len(body), page_count=page_count
    )
