from __future__ import annotations

import asyncio
import io
import os
import shutil
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

# Set env before any invoice_intake imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.invoice_intake_test.db")
os.environ.setdefault("STATE_BACKEND", "sql")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("AI_RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("FREE_DAILY_LIMIT", "3")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import invoice_intake.models  # noqa: F401
    from invoice_intake.core.db import engine
    from invoice_intake.core.models import Base

    # Reset storage cache and directory
    import invoice_intake.core.storage as storage_mod

    storage_mod._storage = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


def _pdf(pages: int = 1) -> bytes:
    from pypdf import PdfWriter

    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


@pytest.fixture
def make_pdf():
    return _pdf


@pytest.fixture
def png_bytes() -> bytes:
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def jpeg_bytes() -> bytes:
    return b"\xff\xd8\xff\xe0" + b"\x00" * 64


HANG = object()


class FakeInferenceClient:
    """
    Scripted stand-in for the hosted model.

    ``structured`` and ``ocr`` are queues of answers for JSON-mode and plain
    calls. An answer is a string, an exception to raise, or ``HANG`` to
    sleep past any test timeout.
    """

    def __init__(self, *, structured=(), ocr=()) -> None:
        self.structured = list(structured)
        self.ocr = list(ocr)
        self.calls: list[str] = []
        self.opened = 0
        self.released = 0

    @asynccontextmanager
    async def document(self, *, file_name, upload, policy):
        self.opened += 1
        try:
            yield [{"type": "input_file", "file_id": f"file-{self.opened}", "filename": file_name}]
        finally:
            self.released += 1

    async def respond(self, *, prompt, document, json_mode):
        queue = self.structured if json_mode else self.ocr
        self.calls.append("structured" if json_mode else "ocr")
        step = queue.pop(0) if queue else ""
        if step is HANG:
            await asyncio.sleep(5)
            return ""
        if isinstance(step, BaseException):
            raise step
        return step


@pytest.fixture
def fake_client():
    from invoice_intake.modules.extraction.ai import InferenceClient

    class _Client(FakeInferenceClient, InferenceClient):
        pass

    return _Client


@pytest.fixture
def hang():
    return HANG


@pytest.fixture
def fast_policy():
    from invoice_intake.modules.extraction.retry import CallPolicy

    return CallPolicy(timeout_seconds=0.05, retries=2, base_delay_seconds=0)
