import asyncio
import logging
from contextlib import suppress

from fastapi import FastAPI

from rostersync.api.v1.api import api_router
from rostersync.core.config import settings
from rostersync.db.session import init_models
from rostersync.services.background_tasks import start_background_tasks
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.services.sync_runner import SyncRunner

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url=f"{settings.API_V1_STR}/docs",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.on_event("startup")
async def on_startup() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    await init_models()
    if not settings.SYNC_ENABLED:
        logger.info("Battle.net sync disabled")
        app.state.sync_tasks = []
        return
    client = BattleNetClient()
    app.state.battlenet_client = client
    app.state.sync_runner = SyncRunner(client)
    app.state.sync_tasks = start_background_tasks(app.state.sync_runner)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    tasks = getattr(app.state, "sync_tasks", [])
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task
    client = getattr(app.state, "battlenet_client", None)
    if client is not None:
        await client.aclose()
