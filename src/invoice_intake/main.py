from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from invoice_intake.api.router import router as api_router
from invoice_intake.bootstrap import bootstrap
from invoice_intake.core.config import settings
from invoice_intake.core.errors import register_error_handlers
from invoice_intake.core.logging import RequestContextMiddleware
from invoice_intake.modules.extraction.ai import OpenAIInferenceClient
from invoice_intake.state import shared_stores


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bootstrap()
        sweeper: asyncio.Task | None = None
        if settings.state_backend == "memory":
            from invoice_intake.worker.tasks import sweep_periodically

            sweeper = asyncio.create_task(
                sweep_periodically(
                    app.state.stores, interval_seconds=settings.sweep_interval_seconds
                )
            )
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(title="Invoice Intake", version="0.1.0", lifespan=lifespan)
    app.state.stores = shared_stores()
    app.state.inference = OpenAIInferenceClient()
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
