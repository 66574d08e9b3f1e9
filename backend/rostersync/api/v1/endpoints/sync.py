"""Sync status and manual trigger."""

from fastapi import APIRouter

from rostersync.api.deps import OptionalSyncRunnerDep, SyncRunnerDep
from rostersync.schemas.sync import SyncRunRead, SyncStatusRead

router = APIRouter()


@router.get("/status", response_model=SyncStatusRead)
async def get_sync_status(runner: OptionalSyncRunnerDep) -> SyncStatusRead:
    if runner is None:
        return SyncStatusRead(enabled=False, running=False)
    last_run = SyncRunRead.model_validate(runner.last_summary) if runner.last_summary else None
    return SyncStatusRead(enabled=True, running=runner.is_running, last_run=last_run)


@router.post("/run", response_model=SyncRunRead)
async def trigger_sync(runner: SyncRunnerDep) -> SyncRunRead:
    """Run one sync cycle now. Returns ``skipped`` when a cycle is already in progress."""
    summary = await runner.run_sync()
    return SyncRunRead.model_validate(summary)
