"""Dispatcher daemon: wires the store, channel, webhook server and loops."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import uvicorn

from trip_dispatcher.config import DispatcherConfig
from trip_dispatcher.connectors.base import ChatChannel
from trip_dispatcher.connectors.whatsapp import (
    HealthSource,
    WhatsAppGatewayChannel,
    build_webhook_app,
)
from trip_dispatcher.core.logging import configure_logging
from trip_dispatcher.core.metrics import DispatcherMetrics
from trip_dispatcher.core.telemetry import init_telemetry, shutdown_telemetry
from trip_dispatcher.db import Database
from trip_dispatcher.dispatcher import DispatchContext, Dispatcher
from trip_dispatcher.inbound import InboundQueue
from trip_dispatcher.storage import InMemoryTripStore, PostgresTripStore, TripStore

logger = logging.getLogger(__name__)


@dataclass
class Backends:
    store: TripStore
    channel: ChatChannel


@asynccontextmanager
async def open_backends(
    config: DispatcherConfig,
    *,
    store: TripStore | None = None,
    channel: ChatChannel | None = None,
) -> AsyncIterator[Backends]:
    """Open the configured store and channel, closing whatever was opened here.

    Explicit *store* / *channel* arguments are used as-is and left open.
    """
    async with AsyncExitStack() as stack:
        if store is None:
            if config.store.type == "memory":
                logger.warning("Using the in-memory trip store; nothing will be persisted")
                store = InMemoryTripStore()
            else:
                db = Database.from_env(config.store.db_name, schema=config.store.schema)
                await db.provision()
                await db.connect()
                stack.push_async_callback(db.close)
                postgres = PostgresTripStore(db, table=config.store.table)
                await postgres.ensure_schema()
                store = postgres
        if channel is None:
            gateway = WhatsAppGatewayChannel(config.channel)
            stack.push_async_callback(gateway.aclose)
            channel = gateway
        yield Backends(store=store, channel=channel)


class DispatcherDaemon:
    """Runs the sweep loop, the inbound workers and the webhook server.

    Startup order: logging and telemetry, backends, inbound workers, webhook
    server, sweep loop.  ``shutdown`` reverses it.
    """

    def __init__(
        self,
        config: DispatcherConfig,
        *,
        store: TripStore | None = None,
        channel: ChatChannel | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path
        self._store = store
        self._channel = channel
        self._stack: AsyncExitStack | None = None
        self.dispatcher: Dispatcher | None = None
        self.inbound: InboundQueue | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._sweep_stop = asyncio.Event()
        self._sweep_task: asyncio.Task | None = None

    async def start(self, *, serve_webhook: bool = True) -> None:
        config = self.config
        configure_logging(config.logging, dispatcher_name=config.name)
        tracer = init_telemetry(f"trip-dispatcher.{config.name}")
        logger.info("Starting dispatcher %s (config=%s)", config.name, self.config_path)

        self._stack = AsyncExitStack()
        backends = await self._stack.enter_async_context(
            open_backends(config, store=self._store, channel=self._channel)
        )

        metrics = DispatcherMetrics(config.name)
        self.dispatcher = Dispatcher(
            DispatchContext(store=backends.store, channel=backends.channel, tz=config.tz),
            name=config.name,
            max_inflight=config.max_inflight,
            metrics=metrics,
            tracer=tracer,
        )
        self.inbound = InboundQueue(
            self.dispatcher.handle_message,
            queue_capacity=config.inbound.queue_capacity,
            worker_count=config.inbound.worker_count,
            metrics=metrics,
        )
        await self.inbound.start()

        if serve_webhook:
            await self._start_webhook_server()

        self._sweep_task = asyncio.create_task(
            self.dispatcher.run_sweeps(config.sweep_cron, self._sweep_stop), name="sweep-loop"
        )
        logger.info("Dispatcher %s started", config.name)

    async def _start_webhook_server(self) -> None:
        dispatcher = self.dispatcher
        inbound = self.inbound
        health = HealthSource(
            last_sweep=lambda: (dispatcher.last_sweep_at, dispatcher.last_sweep_outcome),
            queue_depth=lambda: inbound.queue_depth,
        )
        app = build_webhook_app(
            inbound.enqueue, health, title=f"Trip Dispatcher ({self.config.name})"
        )
        server_config = uvicorn.Config(
            app,
            host=self.config.channel.webhook_host,
            port=self.config.channel.webhook_port,
            log_config=None,
            timeout_graceful_shutdown=0,
        )
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self._server.serve(), name="webhook-server")
        logger.info(
            "Webhook server listening on %s:%d",
            self.config.channel.webhook_host,
            self.config.channel.webhook_port,
        )

    async def shutdown(self) -> None:
        """Graceful shutdown.

        1. Stop the sweep loop
        2. Stop the webhook server so no new messages are accepted
        3. Drain the inbound queue up to ``shutdown_timeout_s``
        4. Close the channel and the database pool
        5. Flush exported spans
        """
        logger.info("Shutting down dispatcher: %s", self.config.name)

        self._sweep_stop.set()
        if self._sweep_task is not None:
            try:
                await self._sweep_task
            except Exception:
                logger.exception("Error while stopping sweep loop")
            self._sweep_task = None

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception:
                logger.exception("Error while stopping webhook server")
            self._server_task = None
            self._server = None

        if self.inbound is not None:
            await self.inbound.stop(drain_timeout_s=self.config.shutdown_timeout_s)

        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None

        shutdown_telemetry()
        logger.info("Dispatcher shutdown complete")
