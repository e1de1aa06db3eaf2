"""
CloudBite Link - Main Entry Point
"""

import asyncio
import signal
import sys
import logging
import os

from .services.link_server import LinkServer

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config/config.yaml'


async def main(config_path: str = None) -> int:
    """Run the link until SIGINT/SIGTERM; returns the process exit code"""
    config_path = config_path or os.environ.get('CONFIG_FILE', DEFAULT_CONFIG_FILE)

    try:
        link = LinkServer(config_path=config_path)
    except Exception as e:
        logger.error(f"Cannot load configuration {config_path}: {e}")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, link.request_stop)

    try:
        await link.start()
        return 0
    except Exception as e:
        logger.error(f"CloudBite link failed: {e}")
        return 1
    finally:
        await link.stop()


def run():
    """Console script entry"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
