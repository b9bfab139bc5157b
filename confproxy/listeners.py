"""Listener startup and supervision.

The mode is decided from the configuration alone:

* UNCONFIGURED: the plaintext port or the own address is missing. Nothing
  is started and startup fails.
* PLAINTEXT_ONLY: the routed app is served on the plaintext port. None of
  the TLS settings may be set; a partial TLS setup fails startup.
* DUAL_STACK: the routed app is served over TLS on the HTTPS port, and the
  plaintext port answers every request with a 301 to the HTTPS listener.

In dual-stack mode both listeners are supervised tasks. When one of them
stops for any reason the other is shut down too, and a failure is raised
as ListenerError.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import httpx
import uvicorn
from fastapi import FastAPI

from confproxy.config import parse_listen_address
from confproxy.errors import CredentialMissingError, ListenerError, StartupConfigError
from confproxy.models import ProxyConfig
from confproxy.server import create_app, create_redirect_app

logger = logging.getLogger("uvicorn.error")


class ListenerMode(Enum):
    UNCONFIGURED = "unconfigured"
    PLAINTEXT_ONLY = "plaintext_only"
    DUAL_STACK = "dual_stack"


def determine_mode(config: ProxyConfig) -> ListenerMode:
    """
    Raises:
        StartupConfigError: HTTPS is partly configured. Serving the routes
            over plaintext instead is not an option.
    """
    if not (config.http_port and config.own_address):
        return ListenerMode.UNCONFIGURED
    missing = config.missing_tls_fields
    if missing:
        raise StartupConfigError(
            f"HTTPS is partly configured, missing: {', '.join(missing)}"
        )
    if config.tls_configured:
        return ListenerMode.DUAL_STACK
    return ListenerMode.PLAINTEXT_ONLY


def check_credentials(config: ProxyConfig) -> None:
    """Both TLS files must exist before any listener starts."""
    for path, kind in ((config.cert_path, "certificate"), (config.key_path, "key")):
        if not os.path.exists(path):
            raise CredentialMissingError(path, kind)


@dataclass
class Listener:
    name: str
    host: str
    port: int
    server: uvicorn.Server


class ListenerManager:
    def __init__(
        self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.client = client
        self.mode = determine_mode(config)

    def prepare(self) -> List[Listener]:
        """
        Validate the configuration for the current mode and build the
        listeners without starting them.

        Raises:
            StartupConfigError: the configuration is incomplete or a listen
                address cannot be parsed.
            CredentialMissingError: dual-stack mode without cert or key file.
        """
        if self.mode is ListenerMode.UNCONFIGURED:
            logger.error("Config is empty")
            raise StartupConfigError(
                "Config is empty: the HTTP port and own address are required"
            )

        if self.mode is ListenerMode.DUAL_STACK:
            check_credentials(self.config)

        http_host, http_port = parse_listen_address(self.config.http_port)
        routed = create_app(self.config, self.client)

        if self.mode is ListenerMode.PLAINTEXT_ONLY:
            return [self._listener("http", routed, http_host, http_port)]

        https_host, https_port = parse_listen_address(self.config.https_port)
        return [
            self._listener(
                "https",
                routed,
                https_host,
                https_port,
                ssl_certfile=self.config.cert_path,
                ssl_keyfile=self.config.key_path,
            ),
            self._listener(
                "http-redirect", create_redirect_app(self.config), http_host, http_port
            ),
        ]

    def _listener(
        self, name: str, app: FastAPI, host: str, port: int, **ssl
    ) -> Listener:
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            server_header=False,
            date_header=False,
            **ssl,
        )
        return Listener(name=name, host=host, port=port, server=uvicorn.Server(config))

    async def run(self) -> None:
        listeners = self.prepare()
        logger.info(f"Starting in {self.mode.value} mode")

        tasks: Dict[asyncio.Task, Listener] = {
            asyncio.create_task(self._supervise(listener), name=listener.name): listener
            for listener in listeners
        }
        failures: List[str] = []
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                failure = task.result()
                if failure:
                    failures.append(failure)
            for task in pending:
                tasks[task].server.should_exit = True

        if failures:
            raise ListenerError("; ".join(failures))

    async def _supervise(self, listener: Listener) -> Optional[str]:
        """Run one listener; returns a failure description or None."""
        logger.info(f"[{listener.name}] listening on {listener.host}:{listener.port}")
        try:
            await listener.server.serve()
        # uvicorn exits through sys.exit(1) when it cannot bind
        except (Exception, SystemExit) as e:
            logger.error(f"[{listener.name}] listener failed: {e!r}")
            return f"{listener.name} listener failed: {e!r}"

        if not listener.server.started:
            logger.error(f"[{listener.name}] listener did not start")
            return f"{listener.name} listener did not start"

        logger.info(f"[{listener.name}] listener stopped")
        return None
