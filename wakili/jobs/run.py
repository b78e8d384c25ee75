import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from wakili.domain.bookings import service as booking_service
from wakili.infra.db import get_session_factory
from wakili.infra.logging import configure_logging
from wakili.infra.metrics import configure_metrics
from wakili.infra.notifications import NotificationSink, resolve_notification_sink
from wakili.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = ["escrow-sweep", "booking-reminders"]

_SINK: NotificationSink | None = None


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, int]]],
) -> dict[str, int]:
    async with session_factory() as session:
        result = await runner(session)
    logger.info("job_complete", extra={"extra": {"job": name, **result}})
    return result


def _job_runner(name: str, hours_ahead: int = 24) -> Callable:
    if name == "escrow-sweep":
        return lambda session: booking_service.resolve_abandoned_holds(session, sink=_SINK)
    if name == "booking-reminders":
        return lambda session: booking_service.send_booking_reminders(
            session, hours_ahead=hours_ahead, sink=_SINK
        )
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument("--interval", type=int, default=300, help="Seconds between loops when not using --once")
    parser.add_argument("--hours-ahead", dest="hours_ahead", type=int, default=24, help="Reminder horizon in hours")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    global _SINK
    configure_logging()
    _SINK = resolve_notification_sink(settings)
    configure_metrics(settings.metrics_enabled)
    session_factory = get_session_factory()

    job_names = args.jobs or JOB_NAMES
    runners = [_job_runner(name, hours_ahead=args.hours_ahead) for name in job_names]

    while True:
        for name, runner in zip(job_names, runners):
            try:
                await _run_job(name, session_factory, runner)
            except Exception as exc:  # noqa: BLE001
                logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
        if args.once:
            break
        await asyncio.sleep(max(args.interval, 1))


if __name__ == "__main__":
    asyncio.run(main())
