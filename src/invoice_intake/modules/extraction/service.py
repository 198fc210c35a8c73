"""
Extraction orchestration.

One structured call (bounded, retried on transient failures), then the
confidence engine on success. When the structured call cannot succeed the
document is sent once more for plain OCR text so a person can finish it by
hand. The outcome is one of ``completed``, ``needs_review`` or ``error``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from invoice_intake.core.errors import AppError, ErrorCode, to_app_error
from invoice_intake.core.logging import get_logger, log_event, monotonic_ms
from invoice_intake.modules.extraction.ai import InferenceClient
from invoice_intake.modules.extraction.prompts import OCR_PROMPT, structured_prompt
from invoice_intake.modules.extraction.retry import CallPolicy
from invoice_intake.modules.extraction.schemas import ExtractedData, check_model_output
from invoice_intake.modules.extraction.validation import apply_validation_rules
from invoice_intake.modules.uploads.validation import ValidatedUpload

logger = get_logger(__name__)

COMPLETED = "completed"
NEEDS_REVIEW = "needs_review"
ERROR = "error"


@dataclass(frozen=True)
class ExtractionOutcome:
    status: str
    extracted_data: ExtractedData | None = None
    ocr_text: str | None = None
    error: AppError | None = None

    @property
    def error_code(self) -> str | None:
        return self.error.code.value if self.error else None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


async def extract_structured(
    client: InferenceClient,
    upload: ValidatedUpload,
    *,
    file_name: str,
    policy: CallPolicy,
) -> ExtractedData:
    prompt = structured_prompt(file_name=file_name, mime=upload.mime)
    async with client.document(file_name=file_name, upload=upload, policy=policy) as document:
        raw = await policy.run(
            lambda: client.respond(prompt=prompt, document=document, json_mode=True),
            operation="responses.structured",
        )

    check = check_model_output(raw)
    if not check.ok:
        # Same input reproduces the same malformed answer, so no retry here.
        raise AppError(
            ErrorCode.PARSE_FAIL,
            check.error or "Failed to parse AI response.",
            422,
            {"issues": check.issues} if check.issues else None,
        )
    return apply_validation_rules(check.data)


async def extract_ocr_text(
    client: InferenceClient,
    upload: ValidatedUpload,
    *,
    file_name: str,
    policy: CallPolicy,
) -> str:
    async with client.document(file_name=file_name, upload=upload, policy=policy) as document:
        raw = await policy.run(
            lambda: client.respond(prompt=OCR_PROMPT, document=document, json_mode=False),
            operation="responses.ocr",
        )
    text = (raw or "").strip()
    if not text:
        raise AppError(ErrorCode.OCR_FAIL, "OCR returned no text.", 422)
    return text


async def run_extraction(
    client: InferenceClient,
    upload: ValidatedUpload,
    *,
    file_name: str,
    policy: CallPolicy | None = None,
) -> ExtractionOutcome:
    policy = policy or CallPolicy.from_settings()
    start = time.monotonic()
    try:
        data = await extract_structured(client, upload, file_name=file_name, policy=policy)
    except Exception as e:
        ai_error = to_app_error(e, ErrorCode.PARSE_FAIL, 500)
        log_event(
            logger,
            "extraction.ai_failed",
            code=ai_error.code.value,
            error_type=type(e).__name__,
            duration_ms=monotonic_ms(start),
        )
    else:
        log_event(
            logger,
            "extraction.completed",
            fields=len(data.fields),
            line_items=len(data.line_items or []),
            duration_ms=monotonic_ms(start),
        )
        return ExtractionOutcome(status=COMPLETED, extracted_data=data)

    try:
        text = await extract_ocr_text(client, upload, file_name=file_name, policy=policy)
    except Exception as e:
        cause = to_app_error(e, ErrorCode.OCR_FAIL, 500)
        ocr_error = cause
        if cause.code != ErrorCode.OCR_FAIL:
            # The fallback is the last resort; whatever broke it, report OCR_FAIL.
            ocr_error = AppError(
                ErrorCode.OCR_FAIL, cause.message, cause.status_code, {"cause": cause.code.value}
            )
        log_event(
            logger,
            "extraction.ocr_failed",
            code=ocr_error.code.value,
            cause=cause.code.value,
            error_type=type(e).__name__,
            duration_ms=monotonic_ms(start),
        )
        return ExtractionOutcome(status=ERROR, error=ocr_error)

    log_event(
        logger,
        "extraction.needs_review",
        code=ai_error.code.value,
        ocr_chars=len(text),
        duration_ms=monotonic_ms(start),
    )
    return ExtractionOutcome(status=NEEDS_REVIEW, ocr_text=text, error=ai_error)
