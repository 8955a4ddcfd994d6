"""Transition-table machinery shared by the passenger and driver flows.

A flow maps each state that expects a reply to a handler.  A handler receives
the freshly reloaded trip and the inbound message, mutates the trip in place
when the input is valid, and returns the replies to send back to the sender.
Invalid input leaves the state untouched and yields a re-prompt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from typing import Any

from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.models import Track, Trip

logger = logging.getLogger(__name__)


@dataclass
class FlowResult:
    """Outcome of one message-driven step.

    ``transitioned`` is ``True`` when the handler advanced the track state;
    re-prompts and stale messages leave it ``False``.
    """

    replies: list[str] = field(default_factory=list)
    transitioned: bool = False

    @classmethod
    def advance(cls, *replies: str) -> FlowResult:
        return cls(list(replies), transitioned=True)

    @classmethod
    def reprompt(cls, reply: str) -> FlowResult:
        return cls([reply])


Handler = Callable[[Trip, InboundMessage], FlowResult]


class TrackFlow:
    """State → handler table for one track."""

    def __init__(
        self,
        track: Track,
        state_attr: str,
        handlers: Mapping[Any, Handler],
    ) -> None:
        self.track = track
        self._state_attr = state_attr
        self._handlers = dict(handlers)

    @property
    def states(self) -> frozenset:
        return frozenset(self._handlers)

    def state_of(self, trip: Trip) -> Any:
        return getattr(trip, self._state_attr)

    def handle(
        self,
        trip: Trip,
        message: InboundMessage,
        resolved_state: Any = None,
    ) -> FlowResult:
        """Apply *message* to *trip*.

        ``resolved_state`` is the state the sender was answering when the
        message was resolved.  When the reloaded trip has moved on since,
        the message is handed to ``on_stale`` instead of the current state's
        handler.
        """
        current = self.state_of(trip)
        if resolved_state is not None and current != resolved_state:
            return self.on_stale(trip, message, resolved_state)

        handler = self._handlers.get(current)
        if handler is None:
            logger.info(
                "No %s handler for state %s on trip %s; ignoring message from %s",
                self.track,
                current,
                trip.id,
                message.sender_id,
            )
            return FlowResult()
        return handler(trip, message)

    def on_stale(self, trip: Trip, message: InboundMessage, resolved_state: Any) -> FlowResult:
        logger.info(
            "Trip %s %s track moved from %s to %s before message from %s was applied; dropping",
            trip.id,
            self.track,
            resolved_state,
            self.state_of(trip),
            message.sender_id,
        )
        return FlowResult()


def option_handler(
    options: Collection[str],
    apply: Callable[[Trip, str], FlowResult],
    invalid_reply: str,
) -> Handler:
    """Build a handler that accepts only the keys of *options*."""

    def handler(trip: Trip, message: InboundMessage) -> FlowResult:
        choice = message.text
        if choice not in options:
            return FlowResult.reprompt(invalid_reply)
        return apply(trip, choice)

    return handler
