"""
Run the proxy.

Usage:
    confproxy [--config config.cfg]
    python -m confproxy [--config config.cfg]
"""

import argparse
import asyncio
import copy
import logging
import logging.config
import sys

from uvicorn.config import LOGGING_CONFIG

from confproxy.config import load_config
from confproxy.errors import ProxyError
from confproxy.listeners import ListenerManager
from confproxy.server import configure_tracing
from confproxy.vars import LOG_LEVEL, PROXY_CONFIG_FILE

logger = logging.getLogger("uvicorn.error")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Configuration-driven reverse proxy")
    parser.add_argument(
        "-c",
        "--config",
        default=PROXY_CONFIG_FILE,
        help=f"Path to the JSON configuration file (default: {PROXY_CONFIG_FILE})",
    )
    return parser.parse_args(argv)


def setup_logging(level: str = LOG_LEVEL) -> None:
    log_config = copy.deepcopy(LOGGING_CONFIG)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        log_config["loggers"].setdefault(name, {})["level"] = level
    logging.config.dictConfig(log_config)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    configure_tracing()

    try:
        config = load_config(args.config)
        asyncio.run(ListenerManager(config).run())
    except ProxyError as e:
        logger.error(f"Fatal: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
