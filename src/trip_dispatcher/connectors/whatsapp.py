"""WhatsApp HTTP gateway channel.

Outbound messages go through the gateway's REST API::

    POST {base_url}/api/sendText
    {"session": "...", "chatId": "5511999998888@c.us", "text": "..."}

Inbound messages arrive as webhook events on ``POST /webhook``::

    {"event": "message", "session": "default",
     "payload": {"from": "5511999998888@c.us", "fromMe": false, "body": "1234"}}

Sender ids of the form ``<digits>@c.us`` carry the sender's phone number.
``<id>@lid`` ids are opaque and can only be matched by confirmation code.
Group chats (``@g.us``), the account's own messages and non-text events are
ignored.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Literal

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from trip_dispatcher.config import ChannelConfig
from trip_dispatcher.connectors.base import InboundMessage
from trip_dispatcher.errors import SendError
from trip_dispatcher.phones import digits_only

logger = logging.getLogger(__name__)

USER_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"


def sender_phone(sender_id: str) -> str | None:
    """Return the phone digits carried by *sender_id*, or ``None`` if opaque."""
    local, _, domain = sender_id.partition("@")
    if f"@{domain}" != USER_SUFFIX:
        return None
    digits = digits_only(local)
    return digits or None


class WhatsAppGatewayChannel:
    """``ChatChannel`` backed by a WhatsApp HTTP gateway."""

    def __init__(self, config: ChannelConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        headers = {"X-Api-Key": config.api_key} if config.api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.send_timeout_s, headers=headers
        )

    def chat_id_for(self, recipient_id: str) -> str:
        """Address *recipient_id* as a gateway chat id.

        Ids that already carry a domain are used as-is.  Bare phone numbers
        are reduced to digits, and local 10/11-digit numbers get the default
        country code.
        """
        if "@" in recipient_id:
            return recipient_id
        digits = digits_only(recipient_id)
        if len(digits) in (10, 11):
            digits = f"{self._config.default_country_code}{digits}"
        return f"{digits}{USER_SUFFIX}"

    async def send(self, recipient_id: str, text: str) -> None:
        chat_id = self.chat_id_for(recipient_id)
        if chat_id == USER_SUFFIX:
            raise SendError(f"invalid recipient {recipient_id!r}", recipient_id=recipient_id)
        try:
            resp = await self._client.post(
                "/api/sendText",
                json={"session": self._config.session, "chatId": chat_id, "text": text},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SendError(
                f"gateway returned {exc.response.status_code} for {chat_id}",
                recipient_id=recipient_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise SendError(
                f"gateway request failed for {chat_id}: {exc}", recipient_id=recipient_id
            ) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class GatewayMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sender: str = Field(alias="from")
    from_me: bool = Field(default=False, alias="fromMe")
    body: str | None = None


class GatewayEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    session: str | None = None
    payload: GatewayMessage | None = None


def to_inbound(event: GatewayEvent) -> InboundMessage | None:
    """Convert a gateway event into an ``InboundMessage``, or ``None`` to ignore it."""
    if event.event != "message" or event.payload is None:
        return None
    payload = event.payload
    if payload.from_me or payload.sender.endswith(GROUP_SUFFIX):
        return None
    if not payload.body or not payload.body.strip():
        return None
    return InboundMessage(
        sender_id=payload.sender,
        body=payload.body,
        sender_phone=sender_phone(payload.sender),
    )


class HealthStatus(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "degraded"]
    uptime_seconds: float
    last_sweep_at: str | None
    last_sweep_outcome: str | None
    inbound_queue_depth: int
    timestamp: str


class HealthSource:
    """Collects the values reported by ``GET /health``."""

    def __init__(
        self,
        last_sweep: Callable[[], tuple[datetime | None, str | None]],
        queue_depth: Callable[[], int],
    ) -> None:
        self._start_time = time.time()
        self._last_sweep = last_sweep
        self._queue_depth = queue_depth

    def status(self) -> HealthStatus:
        last_sweep_at, outcome = self._last_sweep()
        return HealthStatus(
            status="healthy" if outcome in (None, "ok") else "degraded",
            uptime_seconds=time.time() - self._start_time,
            last_sweep_at=last_sweep_at.isoformat() if last_sweep_at else None,
            last_sweep_outcome=outcome,
            inbound_queue_depth=self._queue_depth(),
            timestamp=datetime.now(UTC).isoformat(),
        )


def build_webhook_app(
    enqueue: Callable[[InboundMessage], bool],
    health: HealthSource,
    *,
    title: str = "Trip Dispatcher",
) -> FastAPI:
    """Build the FastAPI app serving ``/webhook``, ``/health`` and ``/metrics``."""
    app = FastAPI(title=title)

    @app.post("/webhook")
    async def webhook(event: GatewayEvent) -> JSONResponse:
        message = to_inbound(event)
        if message is None:
            logger.debug("Ignoring gateway event %s", event.event)
            return JSONResponse({"status": "ignored"})
        if not enqueue(message):
            return JSONResponse({"status": "dropped"}, status_code=503)
        return JSONResponse({"status": "queued"}, status_code=202)

    @app.get("/health")
    async def health_check() -> HealthStatus:
        return health.status()

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app
