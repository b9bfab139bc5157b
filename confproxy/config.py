"""Load the proxy configuration file."""

import json
import logging
from typing import Tuple

from pydantic import ValidationError

from confproxy.errors import StartupConfigError
from confproxy.models import ProxyConfig

logger = logging.getLogger("uvicorn.error")


def load_config(path: str) -> ProxyConfig:
    """Read and validate the JSON configuration at *path*.

    Raises:
        StartupConfigError: the file is missing, unreadable or does not
            decode into a valid ProxyConfig.
    """
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except FileNotFoundError as exc:
        raise StartupConfigError(f"config file does not exist: {path}") from exc
    except OSError as exc:
        raise StartupConfigError(f"could not read config file {path}: {exc}") from exc

    try:
        config = ProxyConfig.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        raise StartupConfigError(f"could not decode config file {path}: {exc}") from exc

    logger.info(f"Loaded {len(config.routes)} route(s) from {path}")
    return config


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split a ``[host]:port`` listen address into ``(host, port)``.

    An empty host means every interface, as in ``":8080"``. A bare port
    such as ``"8080"`` is accepted too.
    """
    raw = address.strip()
    if ":" in raw:
        host, _, port_str = raw.rpartition(":")
    else:
        host, port_str = "", raw
    host = host.strip("[]") or "0.0.0.0"

    try:
        port = int(port_str)
    except ValueError as exc:
        raise StartupConfigError(f"invalid listen address: {address!r}") from exc
    if port < 0 or port > 65535:
        raise StartupConfigError(f"invalid listen address: {address!r}")
    return host, port
