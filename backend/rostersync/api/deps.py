from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from rostersync.services.sync_runner import SyncRunner


def get_optional_sync_runner(request: Request) -> Optional[SyncRunner]:
    return getattr(request.app.state, "sync_runner", None)


def get_sync_runner(
    runner: Annotated[Optional[SyncRunner], Depends(get_optional_sync_runner)],
) -> SyncRunner:
    if runner is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync is disabled")
    return runner


OptionalSyncRunnerDep = Annotated[Optional[SyncRunner], Depends(get_optional_sync_runner)]
SyncRunnerDep = Annotated[SyncRunner, Depends(get_sync_runner)]
