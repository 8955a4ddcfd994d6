"""Top-level orchestration of sweep ticks and inbound messages.

Both units of work follow the same cycle for each trip they touch:

1. resolve what to do from a snapshot loaded without any lock;
2. take the trip's lock and reload the row;
3. mutate the fresh row and save it;
4. only after a successful save, send the resulting messages.

A failed save therefore never produces a message, and the next tick (or the
next message) re-evaluates the trip from what was actually persisted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from croniter import croniter
from opentelemetry import trace

from trip_dispatcher.connectors.base import ChatChannel, InboundMessage
from trip_dispatcher.core.logging import bind_trip
from trip_dispatcher.core.metrics import DispatcherMetrics
from trip_dispatcher.core.telemetry import get_tracer
from trip_dispatcher.errors import (
    InvalidTripRecord,
    MalformedSchedule,
    SendError,
    StoreUnavailable,
    StoreWriteError,
)
from trip_dispatcher.flows import FLOWS, FlowResult
from trip_dispatcher.identity import resolve
from trip_dispatcher.locks import TripLocks
from trip_dispatcher.models import Track, Trip
from trip_dispatcher.reminders import Outbound, apply_due, due_rules
from trip_dispatcher.storage.base import TripStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def next_sweep_at(cron: str, now: datetime) -> datetime:
    """Return the next instant matching *cron* strictly after *now*."""
    return croniter(cron, now).get_next(datetime)


@dataclass
class DispatchContext:
    """Collaborators handed to the dispatcher.

    ``tz`` is the zone in which stored schedule dates and times are read.
    """

    store: TripStore
    channel: ChatChannel
    tz: tzinfo
    clock: Clock = utcnow


@dataclass
class SweepReport:
    outcome: str = "ok"
    loaded: int = 0
    active: int = 0
    transitions: int = 0
    skipped: int = 0


@dataclass
class HandledMessage:
    """What happened to one resolved inbound message."""

    trip_id: str
    track: Track
    tier: str
    result: FlowResult


class Dispatcher:
    def __init__(
        self,
        context: DispatchContext,
        *,
        name: str = "trip-dispatcher",
        max_inflight: int = 8,
        metrics: DispatcherMetrics | None = None,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self._ctx = context
        self.name = name
        self._locks = TripLocks()
        self._max_inflight = max_inflight
        self.metrics = metrics or DispatcherMetrics(name)
        self._tracer = tracer or get_tracer()
        self.last_sweep_at: datetime | None = None
        self.last_sweep_outcome: str | None = None

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> SweepReport:
        """Run one sweep tick over every active trip."""
        started = time.perf_counter()
        report = SweepReport()
        with self._tracer.start_as_current_span("dispatcher.sweep") as span:
            now = self._ctx.clock()
            try:
                trips = await self._ctx.store.load_all()
            except StoreUnavailable as exc:
                logger.error("Sweep aborted, record store unavailable: %s", exc)
                self.metrics.record_store_error("load_all")
                report.outcome = "store_unavailable"
            else:
                active = [trip for trip in trips if trip.is_active]
                report.loaded = len(trips)
                report.active = len(active)
                semaphore = asyncio.Semaphore(self._max_inflight)
                await asyncio.gather(
                    *(self._sweep_trip(trip, now, report, semaphore) for trip in active)
                )
            span.set_attribute("trips.loaded", report.loaded)
            span.set_attribute("trips.active", report.active)
            span.set_attribute("transitions", report.transitions)
            span.set_attribute("outcome", report.outcome)

        self.last_sweep_at = now
        self.last_sweep_outcome = report.outcome
        self.metrics.record_sweep(report.outcome, time.perf_counter() - started)
        if report.transitions or report.skipped:
            logger.info(
                "Sweep finished: loaded=%d active=%d transitions=%d skipped=%d",
                report.loaded,
                report.active,
                report.transitions,
                report.skipped,
            )
        return report

    async def _sweep_trip(
        self,
        snapshot: Trip,
        now: datetime,
        report: SweepReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            with bind_trip(snapshot.id):
                try:
                    if not due_rules(snapshot, now, self._ctx.tz):
                        return
                    async with self._locks.hold(snapshot.id):
                        await self._apply_sweep(snapshot.id, now, report)
                except MalformedSchedule as exc:
                    logger.warning("Skipping trip %s this tick: %s", snapshot.id, exc)
                    report.skipped += 1
                except Exception:
                    logger.exception("Sweep failed for trip %s", snapshot.id)
                    report.skipped += 1

    async def _apply_sweep(self, trip_id: str, now: datetime, report: SweepReport) -> None:
        trip = await self._reload(trip_id)
        if trip is None or not trip.is_active:
            return

        transitions = apply_due(trip, now, self._ctx.tz)
        if not transitions:
            return

        try:
            await self._ctx.store.save(trip)
        except StoreWriteError as exc:
            logger.error("Failed to save trip %s; no messages sent this tick: %s", trip_id, exc)
            self.metrics.record_store_error("save")
            report.skipped += 1
            return

        for transition in transitions:
            logger.info("Trip %s: %s (%s track)", trip_id, transition.rule, transition.track)
            self.metrics.record_transition(transition.track, "sweep", transition.rule)
        report.transitions += len(transitions)
        await self._deliver(item for t in transitions for item in t.outbound)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def handle_message(self, message: InboundMessage) -> HandledMessage | None:
        """Resolve *message* to a trip and apply it to the resolved track.

        Returns ``None`` when the message was dropped.
        """
        with self._tracer.start_as_current_span("dispatcher.message") as span:
            logger.info("Message received from %s: %r", message.sender_id, message.text)
            try:
                trips = await self._ctx.store.load_all()
            except StoreUnavailable as exc:
                logger.error(
                    "Dropping message from %s, store unavailable: %s", message.sender_id, exc
                )
                self.metrics.record_store_error("load_all")
                return None

            resolution = resolve(message, trips)
            if resolution is None:
                logger.info("No active trip found for %s; ignoring", message.sender_id)
                self.metrics.record_inbound("dropped")
                span.set_attribute("tier", "dropped")
                return None

            self.metrics.record_inbound(resolution.tier)
            span.set_attribute("tier", resolution.tier)
            span.set_attribute("track", str(resolution.track))
            span.set_attribute("trip.id", resolution.trip.id)

            with bind_trip(resolution.trip.id, resolution.track):
                async with self._locks.hold(resolution.trip.id):
                    trip = await self._reload(resolution.trip.id)
                    if trip is None:
                        return None

                    if not resolution.apply_binding(trip, message.sender_id):
                        logger.info(
                            "Trip %s %s track is bound to another sender; %s not bound",
                            trip.id,
                            resolution.track,
                            message.sender_id,
                        )
                    flow = FLOWS[resolution.track]
                    result = flow.handle(trip, message, resolution.state)
                    trip.last_interaction_at = self._ctx.clock()

                    try:
                        await self._ctx.store.save(trip)
                    except StoreWriteError as exc:
                        logger.error(
                            "Failed to save trip %s after message from %s; no reply sent: %s",
                            trip.id,
                            message.sender_id,
                            exc,
                        )
                        self.metrics.record_store_error("save")
                        return None

                    if result.transitioned:
                        new_state = str(flow.state_of(trip))
                        logger.info(
                            "Trip %s: %s track → %s", trip.id, resolution.track, new_state
                        )
                        self.metrics.record_transition(resolution.track, "message", new_state)
                    await self._deliver(
                        Outbound(resolution.track, message.sender_id, reply)
                        for reply in result.replies
                    )

        return HandledMessage(trip.id, resolution.track, resolution.tier, result)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _reload(self, trip_id: str) -> Trip | None:
        try:
            trip = await self._ctx.store.get(trip_id)
        except StoreUnavailable as exc:
            logger.error("Could not reload trip %s: %s", trip_id, exc)
            self.metrics.record_store_error("get")
            return None
        except InvalidTripRecord as exc:
            logger.warning("Trip %s can no longer be decoded: %s", trip_id, exc)
            return None
        if trip is None:
            logger.warning("Trip %s disappeared from the record store", trip_id)
        return trip

    async def _deliver(self, outbound: Iterable[Outbound]) -> None:
        for item in outbound:
            if not item.recipient_id:
                logger.warning("No recipient for %s message; not sent", item.track)
                self.metrics.record_send(item.track, "skipped")
                continue
            try:
                await self._ctx.channel.send(item.recipient_id, item.text)
            except SendError as exc:
                logger.warning(
                    "Failed to send %s message to %s: %s", item.track, item.recipient_id, exc
                )
                self.metrics.record_send(item.track, "failed")
                continue
            logger.info(
                "Sent %s message to %s: %s",
                item.track,
                item.recipient_id,
                item.text.replace("\n", " | "),
            )
            self.metrics.record_send(item.track, "sent")

    # ------------------------------------------------------------------
    # Sweep loop
    # ------------------------------------------------------------------

    async def run_sweeps(self, cron: str, shutdown_event: asyncio.Event) -> None:
        """Run a sweep at every *cron* instant until *shutdown_event* is set."""
        logger.info("Sweep loop started (cron=%r)", cron)
        while not shutdown_event.is_set():
            now = utcnow()
            delay = (next_sweep_at(cron, now) - now).total_seconds()
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=max(delay, 0))
                break
            except TimeoutError:
                pass
            try:
                await self.sweep()
            except Exception:
                logger.exception("Sweep tick failed")
                self.metrics.record_sweep("error")
        logger.info("Sweep loop stopped")
