from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import httpx

from invoice_intake.core.config import settings
from invoice_intake.core.errors import AppError, ErrorCode, UpstreamStatusError
from invoice_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms
from invoice_intake.modules.extraction.retry import CallPolicy
from invoice_intake.modules.uploads.validation import PDF_MIME, ValidatedUpload

logger = get_logger(__name__)

Document = list[dict[str, Any]]


class InferenceClient:
    """Hosted model that reads a document and answers with JSON or free text."""

    def document(
        self, *, file_name: str, upload: ValidatedUpload, policy: CallPolicy
    ) -> AbstractAsyncContextManager[Document]:  # pragma: no cover
        """Content parts referencing the document, released when the block exits."""
        raise NotImplementedError

    async def respond(self, *, prompt: str, document: Document, json_mode: bool) -> str:  # pragma: no cover
        raise NotImplementedError


class OpenAIInferenceClient(InferenceClient):
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_output_tokens: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._model = model or settings.openai_model
        self._max_output_tokens = max_output_tokens or settings.ai_max_output_tokens
        self._transport = transport

    def _require_key(self) -> str:
        if not self._api_key:
            raise AppError(ErrorCode.OCR_FAIL, "AI API key is missing.", 500)
        return self._api_key

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._require_key()}"},
            # Backstop only; the per-attempt bound is enforced by CallPolicy.
            timeout=float(settings.ai_timeout_seconds) + 5.0,
            transport=self._transport,
            follow_redirects=True,
        )

    @asynccontextmanager
    async def document(
        self, *, file_name: str, upload: ValidatedUpload, policy: CallPolicy
    ) -> AsyncIterator[Document]:
        self._require_key()
        if upload.mime != PDF_MIME:
            yield [{"type": "input_image", "image_url": upload.data_url, "detail": "high"}]
            return

        file_id = await policy.run(
            lambda: self._upload_file(file_name=file_name, upload=upload),
            operation="files.create",
        )
        try:
            yield [
                {
                    "type": "input_file",
                    "file_id": file_id,
                    "filename": file_name or "invoice.pdf",
                }
            ]
        finally:
            await self._delete_file(file_id)

    async def _upload_file(self, *, file_name: str, upload: ValidatedUpload) -> str:
        if not upload.body:
            raise AppError(ErrorCode.UPLOAD_INVALID, "Invalid PDF data.", 400)
        start = time.monotonic()
        async with self._http() as http:
            resp = await http.post(
                "/files",
                data={"purpose": "assistants"},
                files={"file": (file_name or "document.pdf", upload.body, upload.mime)},
            )
        _raise_for_status(resp)
        file_id = resp.json().get("id")
        if not isinstance(file_id, str) or not file_id:
            raise UpstreamStatusError(502, "File upload returned no id.")
        log_event(
            logger,
            "extraction.file.uploaded",
            file_id=file_id,
            byte_size=len(upload.body),
            duration_ms=monotonic_ms(start),
        )
        return file_id

    async def _delete_file(self, file_id: str) -> None:
        try:
            async with self._http() as http:
                resp = await http.delete(f"/files/{file_id}", timeout=10.0)
        except httpx.HTTPError:
            log_exception(logger, "extraction.file.delete_failed", file_id=file_id)
            return
        if resp.status_code >= 400 and resp.status_code != 404:
            log_event(
                logger,
                "extraction.file.delete_failed",
                file_id=file_id,
                status_code=resp.status_code,
            )
            return
        log_event(logger, "extraction.file.deleted", file_id=file_id)

    async def respond(self, *, prompt: str, document: Document, json_mode: bool) -> str:
        payload: dict[str, Any] = {
            "model": self._model,
            "input": [
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": prompt}, *document],
                }
            ],
            "max_output_tokens": self._max_output_tokens,
        }
        if json_mode:
            payload["text"] = {"format": {"type": "json_object"}}

        start = time.monotonic()
        async with self._http() as http:
            resp = await http.post("/responses", json=payload)
        _raise_for_status(resp)
        text = output_text(resp.json())
        log_event(
            logger,
            "extraction.ai.response",
            model=self._model,
            json_mode=json_mode,
            output_chars=len(text),
            duration_ms=monotonic_ms(start),
        )
        return text


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    message = resp.reason_phrase or "Upstream error"
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            message = err["message"]
    raise UpstreamStatusError(resp.status_code, message)


def output_text(payload: dict[str, Any]) -> str:
    """Concatenate the text parts of a Responses API answer."""
    direct = payload.get("output_text")
    if isinstance(direct, str):
        return direct
    parts: list[str] = []
    for item in payload.get("output") or []:
        if not isinstance(item, dict):
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                text = content.get("text")
                if isinstance(text, str):
                    parts.append(text)
    return "".join(parts)
