from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import invoice_intake.models  # noqa: F401
# isort: on

import asyncio
import time
from typing import TYPE_CHECKING

from invoice_intake.core.db import SessionLocal
from invoice_intake.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from invoice_intake.worker.celery_app import celery_app

if TYPE_CHECKING:
    from invoice_intake.state import Stores

logger = get_logger(__name__)


def run_sweep(stores: Stores | None = None) -> dict[str, int]:
    from invoice_intake.modules.sessions.service import sweep_expired_sessions
    from invoice_intake.modules.uploads.service import sweep_expired_uploads
    from invoice_intake.state import shared_stores

    stores = stores or shared_stores()
    with SessionLocal() as session:
        sessions_removed = sweep_expired_sessions(session, stores)
        uploads_removed = sweep_expired_uploads(session)
    return {"sessions": sessions_removed, "uploads": uploads_removed}


async def sweep_periodically(stores: Stores, *, interval_seconds: float) -> None:
    """
    In-process sweep loop for the memory backend.

    Memory stores live inside the web process, so a Celery worker cannot
    reach them. Runs until cancelled; a failed pass is logged and retried on
    the next tick.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            result = await asyncio.to_thread(run_sweep, stores)
            log_event(logger, "sweep.inprocess.finish", **result)
        except Exception:
            log_exception(logger, "sweep.inprocess.error")


@celery_app.task(name="sweep_expired_uploads", bind=True)
def sweep_expired_uploads_task(self) -> dict[str, int]:
    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="sweep_expired_uploads",
        celery_task_id=task_id,
    )
    try:
        result = run_sweep()
        log_event(
            logger,
            "celery.task.finish",
            task_name="sweep_expired_uploads",
            celery_task_id=task_id,
            duration_ms=monotonic_ms(start),
            **result,
        )
        return result
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="sweep_expired_uploads",
            celery_task_id=task_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)
