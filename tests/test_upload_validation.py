from __future__ import annotations

import base64

import pytest


def test_valid_pdf_reports_page_count(make_pdf):
    from invoice_intake.modules.uploads.validation import validate_upload

    body = make_pdf(5)
    upload = validate_upload(body, declared_mime="application/pdf")
    assert upload.page_count == 5
    assert upload.size_bytes == len(body)
    assert upload.data_url.startswith("data:application/pdf;base64,")


def test_pdf_over_page_limit_is_rejected(make_pdf):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(make_pdf(21), declared_mime="application/pdf")
    assert exc.value.code.value == "UPLOAD_INVALID"
    assert exc.value.message == "PDF has too many pages."
    assert exc.value.details == {"maxPages": 20, "pages": 21}


def test_declared_pdf_with_png_bytes_is_a_mismatch(png_bytes):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(png_bytes, declared_mime="application/pdf")
    assert exc.value.message == "File type mismatch."
    assert exc.value.details == {"expected": "application/pdf", "detected": "image/png"}


def test_unknown_magic_bytes_are_a_mismatch():
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(b"hello world", declared_mime="image/jpeg")
    assert exc.value.details == {"expected": "image/jpeg", "detected": None}


def test_received_type_must_match_declared(jpeg_bytes):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(jpeg_bytes, declared_mime="image/png", received_mime="image/jpeg")
    assert exc.value.details == {"expected": "image/png", "received": "image/jpeg"}


def test_unsupported_type_lists_allowed():
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import ALLOWED_MIME_TYPES, validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(b"GIF89a....", declared_mime="image/gif")
    assert exc.value.message == "Unsupported file type."
    assert exc.value.details == {"allowed": list(ALLOWED_MIME_TYPES)}


def test_empty_body_is_rejected():
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(b"", declared_mime="image/png")
    assert exc.value.message == "Empty file data."


def test_oversize_upload_is_413(png_bytes):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(png_bytes, declared_mime="image/png", max_bytes=16)
    assert exc.value.status_code == 413
    assert exc.value.details == {"maxBytes": 16}


def test_pdf_with_javascript_is_rejected(monkeypatch, make_pdf):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads import validation

    assert not validation.has_pdf_scripts(make_pdf(1))
    body = make_pdf(1) + b"\n<< /S /JavaScript /JS (app.alert(1)) >>\n"
    assert validation.has_pdf_scripts(body)

    monkeypatch.setattr(validation, "count_pdf_pages", lambda _body: 1)
    with pytest.raises(AppError) as exc:
        validation.validate_upload(body, declared_mime="application/pdf")
    assert exc.value.message == "PDF contains active scripts."


def test_unreadable_pdf_is_rejected():
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import validate_upload

    with pytest.raises(AppError) as exc:
        validate_upload(b"%PDF-1.4 not really a pdf", declared_mime="application/pdf")
    assert exc.value.message == "Unable to read PDF."


def test_parse_data_url(png_bytes):
    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.uploads.validation import parse_data_url

    encoded = base64.b64encode(png_bytes).decode()
    parsed = parse_data_url(f"data:image/png;base64,{encoded}")
    assert parsed.mime == "image/png"
    assert parsed.body == png_bytes

    with pytest.raises(AppError):
        parse_data_url("not a data url")
    with pytest.raises(AppError):
        parse_data_url("data:image/png;base64,@@@")


def test_sanitize_file_name():
    from invoice_intake.modules.uploads.validation import sanitize_file_name

    assert sanitize_file_name("../../etc/passwd") == "passwd"
    assert sanitize_file_name("C:\\docs\\my invoice.pdf") == "my_invoice.pdf"
    assert sanitize_file_name("") == "document"
