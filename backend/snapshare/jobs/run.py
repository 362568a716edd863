import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from snapshare.infra import models  # noqa: F401
from snapshare.infra.db import dispose_engine, get_session_factory
from snapshare.infra.logging import clear_log_context, configure_logging
from snapshare.infra.metrics import configure_metrics
from snapshare.infra.storage import new_storage_backend
from snapshare.infra.storage.backends import StorageBackend
from snapshare.jobs import storage_janitor
from snapshare.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = ("storage-janitor",)


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, int]]],
) -> dict[str, int]:
    try:
        async with session_factory() as session:
            result = await runner(session)
        logger.info("job_complete", extra={"extra": {"job": name, **result}})
        return result
    finally:
        clear_log_context()


def _job_runner(name: str, storage: StorageBackend) -> Callable:
    if name == "storage-janitor":
        return lambda session: storage_janitor.run_storage_janitor(session, storage)
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run background jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.storage_janitor_interval_seconds,
        help="Seconds between loops when not using --once",
    )
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging()
    configure_metrics(settings.metrics_enabled)
    storage = new_storage_backend()
    session_factory = get_session_factory()
    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name, storage) for name in job_names]

    try:
        while True:
            for name, runner in zip(job_names, runners):
                try:
                    await _run_job(name, session_factory, runner)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
            if args.once:
                break
            await asyncio.sleep(max(args.interval, 1))
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
