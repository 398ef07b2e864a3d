"""
Scheduler Entry Point.

Usage:
    python -m settlerisk.scheduler_main

Starts the platform and the APScheduler loop that scans settlement
timelines for overdue milestones.

Run standalone, the platform starts empty: nothing feeds it instructions.
An embedding process builds its own SettlementRiskPlatform, wires its
intake to ``platform.on_instruction_captured`` and the milestone feed to
``platform.timelines.update_milestone_status``, then awaits
``run(platform, stop_event)`` and sets the event to shut down.
"""

import asyncio
import signal
from typing import Optional

import structlog

from settlerisk.config import settings
from settlerisk.observability import configure_logging
from settlerisk.platform import SettlementRiskPlatform
from settlerisk.timeline.scheduler import TimelineScanScheduler
from settlerisk.timeline.schemas import ScanReport

logger = structlog.get_logger(__name__)


async def run(
    platform: SettlementRiskPlatform,
    stop_event: Optional[asyncio.Event] = None,
    interval_seconds: Optional[int] = None,
) -> Optional[ScanReport]:
    """
    Scan the platform's timelines until ``stop_event`` is set.

    Without an event, SIGINT and SIGTERM stop the loop. Returns the last
    scan report.
    """
    await platform.start()

    scheduler = TimelineScanScheduler(platform.timelines, interval_seconds=interval_seconds)

    logger.info("running_initial_scan")
    await scheduler.run_scan()

    scheduler.start()

    if stop_event is None:
        stop_event = asyncio.Event()

        def _handle_signal(signum, frame):
            logger.info("shutdown_signal_received", signal=signum)
            stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await platform.stop()
    logger.info("scheduler_shutdown_complete")
    return scheduler.last_report


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version, environment=settings.environment)

    await run(SettlementRiskPlatform())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
