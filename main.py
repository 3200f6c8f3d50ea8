"""Service entry point: python main.py [--status] [--no-scheduler]"""

import argparse
import asyncio
import json
import logging
import signal

from src.logging_config import configure_logging
from src.notifications import build_notification_service
from src.settings import get_settings

logger = logging.getLogger("coach.main")


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    if args.no_scheduler:
        settings = settings.model_copy(update={"scheduler_enabled": False})

    service = build_notification_service(settings)
    await service.start()

    if args.status:
        print(json.dumps(service.get_status(), indent=2))
        await service.stop()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    logger.info("Notification service running, waiting for scheduled jobs")
    try:
        await stop_event.wait()
    finally:
        await service.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Coach notifications - push delivery and reminder scheduler"
    )
    parser.add_argument(
        "--status", action="store_true",
        help="Print service status (mode, scheduled jobs) and exit"
    )
    parser.add_argument(
        "--no-scheduler", action="store_true",
        help="Do not start the cron scheduler"
    )
    args = parser.parse_args()

    configure_logging()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
