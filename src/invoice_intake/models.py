"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from invoice_intake.modules.history.models import HistoryEntry  # noqa: F401
from invoice_intake.modules.sessions.models import ProcessingSession  # noqa: F401
from invoice_intake.modules.uploads.models import UploadRecord  # noqa: F401
from invoice_intake.modules.usage.models import Entitlement, UsageCounter  # noqa: F401
