from __future__ import annotations

import invoice_intake.models  # noqa: F401
from invoice_intake.core.config import settings
from invoice_intake.core.db import engine
from invoice_intake.core.logging import get_logger, log_event
from invoice_intake.core.models import Base

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)
    log_event(
        logger,
        "app.bootstrap",
        environment=settings.environment,
        state_backend=settings.state_backend,
        storage_backend=settings.storage_backend,
    )
