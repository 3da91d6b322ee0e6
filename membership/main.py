from __future__ import annotations

import asyncio
import contextlib
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .app.config import load_membership_config
from .app.context import build_context
from .app.routes.membership import router as membership_router

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("membership")

app = FastAPI(title="Membership API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("APP_BASE_URL", "http://localhost:5173").rstrip("/")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(membership_router)


@app.on_event("startup")
async def setup_membership() -> None:
    config = load_membership_config()
    for warning in config.validate():
        logger.warning("Configuration: %s", warning)

    context = build_context(config)
    app.state.membership = context
    app.state.membership_inbox_task = asyncio.create_task(context.inbox.run())
    app.state.membership_sweeper_task = asyncio.create_task(context.sweeper.run())


@app.on_event("shutdown")
async def teardown_membership() -> None:
    context = getattr(app.state, "membership", None)

    if context:
        context.inbox.close()

    for name in ("membership_sweeper_task", "membership_inbox_task"):
        task = getattr(app.state, name, None)
        if task:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if context:
        await context.inbox.drain()


@app.get("/health")
def health() -> dict:
    context = getattr(app.state, "membership", None)
    return {
        "ok": True,
        "providers": {
            "marketplace": context.marketplace.describe() if context else None,
            "processor": context.processor.describe() if context else None,
        },
    }


# run: uvicorn membership.main:app --host 127.0.0.1 --port 8000 --reload
