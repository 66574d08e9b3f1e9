"""Run one Battle.net sync cycle and exit.

Usage:
    python scripts/run_sync.py             # sync stale guilds and characters
    python scripts/run_sync.py --init-db   # create missing tables first
"""
import asyncio
import logging
import sys
from pathlib import Path

# Add backend to path so imports work
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rostersync.core.config import settings  # noqa: E402
from rostersync.db.session import init_models  # noqa: E402
from rostersync.services.battlenet_client import BattleNetClient  # noqa: E402
from rostersync.services.sync_runner import SyncRunner  # noqa: E402

logger = logging.getLogger("run_sync")


async def run(init_db: bool) -> int:
    if init_db:
        await init_models()
    async with BattleNetClient() as client:
        summary = await SyncRunner(client).run_sync()
    if summary.skipped:
        return 1
    return 0 if not (summary.guilds_failed or summary.characters_failed) else 2


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run("--init-db" in sys.argv)))


if __name__ == "__main__":
    main()
