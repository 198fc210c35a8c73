from __future__ import annotations

import asyncio
import json

GOOD_OUTPUT = json.dumps(
    {
        "fields": [
            {"label": "Vendor", "value": "Acme Ltd", "confidence": 0.93},
            {"label": "Invoice Date", "value": "2026-01-15", "confidence": 0.9},
            {"label": "Total", "value": "120.00", "confidence": 0.91},
        ],
        "lineItems": [{"description": "Consulting", "amount": 120}],
    }
)


def _pdf_upload(make_pdf):
    from invoice_intake.modules.uploads.validation import validate_upload

    return validate_upload(make_pdf(1), declared_mime="application/pdf")


def test_structured_success_completes(make_pdf, fake_client, fast_policy):
    from invoice_intake.modules.extraction.service import COMPLETED, run_extraction

    client = fake_client(structured=[GOOD_OUTPUT])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == COMPLETED
    assert outcome.error is None
    assert [f.label for f in outcome.extracted_data.fields] == ["Vendor", "Invoice Date", "Total"]
    assert client.calls == ["structured"]
    assert client.opened == client.released == 1


def test_two_timeouts_then_success_completes(make_pdf, fake_client, fast_policy, hang):
    from invoice_intake.modules.extraction.service import COMPLETED, run_extraction

    client = fake_client(structured=[hang, hang, GOOD_OUTPUT])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == COMPLETED
    assert client.calls == ["structured", "structured", "structured"]
    assert client.opened == client.released == 1


def test_retry_budget_exhausted_falls_back_to_ocr(make_pdf, fake_client, fast_policy, hang):
    from invoice_intake.modules.extraction.service import NEEDS_REVIEW, run_extraction

    client = fake_client(structured=[hang, hang, hang], ocr=["ACME LTD\nTOTAL 120.00"])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == NEEDS_REVIEW
    assert outcome.error_code == "AI_TIMEOUT"
    assert outcome.ocr_text == "ACME LTD\nTOTAL 120.00"
    assert client.calls == ["structured"] * 3 + ["ocr"]
    # One handle for the structured attempt, one for OCR; both released.
    assert client.opened == client.released == 2


def test_empty_fields_is_parse_fail_without_retry(make_pdf, fake_client, fast_policy):
    from invoice_intake.modules.extraction.service import NEEDS_REVIEW, run_extraction

    client = fake_client(structured=[json.dumps({"fields": []})], ocr=["raw text"])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == NEEDS_REVIEW
    assert outcome.error_code == "PARSE_FAIL"
    assert outcome.ocr_text == "raw text"
    assert client.calls == ["structured", "ocr"]


def test_ocr_failure_is_terminal_ocr_fail(make_pdf, fake_client, fast_policy):
    from invoice_intake.modules.extraction.service import ERROR, run_extraction

    client = fake_client(structured=["not json"], ocr=["   "])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == ERROR
    assert outcome.error_code == "OCR_FAIL"
    assert outcome.error_message == "OCR returned no text."
    assert outcome.extracted_data is None
    assert client.opened == client.released == 2


def test_ocr_timeout_reports_ocr_fail_with_cause(make_pdf, fake_client, fast_policy, hang):
    from invoice_intake.modules.extraction.service import ERROR, run_extraction

    client = fake_client(structured=["{}"], ocr=[hang, hang, hang])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == ERROR
    assert outcome.error_code == "OCR_FAIL"
    assert outcome.error.details == {"cause": "AI_TIMEOUT"}
    assert outcome.error.status_code == 504


def test_upstream_unavailable_is_retried(make_pdf, fake_client, fast_policy):
    from invoice_intake.core.errors import UpstreamStatusError
    from invoice_intake.modules.extraction.service import COMPLETED, run_extraction

    client = fake_client(structured=[UpstreamStatusError(503, "overloaded"), GOOD_OUTPUT])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == COMPLETED
    assert client.calls == ["structured", "structured"]


def test_client_errors_are_not_retried(make_pdf, fake_client, fast_policy):
    from invoice_intake.core.errors import UpstreamStatusError
    from invoice_intake.modules.extraction.service import NEEDS_REVIEW, run_extraction

    client = fake_client(structured=[UpstreamStatusError(413, "too large")], ocr=["text"])
    outcome = asyncio.run(
        run_extraction(client, _pdf_upload(make_pdf), file_name="inv.pdf", policy=fast_policy)
    )
    assert outcome.status == NEEDS_REVIEW
    assert outcome.error_code == "UPLOAD_INVALID"
    assert client.calls == ["structured", "ocr"]


def test_with_timeout_raises_ai_timeout():
    import pytest

    from invoice_intake.core.errors import AppError
    from invoice_intake.modules.extraction.retry import with_timeout

    async def _slow():
        await asyncio.sleep(1)

    with pytest.raises(AppError) as exc:
        asyncio.run(with_timeout(_slow, 0.01))
    assert exc.value.code.value == "AI_TIMEOUT"
    assert exc.value.status_code == 504


def test_backoff_doubles_per_attempt():
    from invoice_intake.modules.extraction.retry import CallPolicy

    policy = CallPolicy(timeout_seconds=45, retries=2, base_delay_seconds=0.8)
    assert [policy.delay_for(a) for a in range(3)] == [0.8, 1.6, 3.2]
