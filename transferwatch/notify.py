"""Notification rendering and dispatch.

Renders TransferRecords into short human messages and dispatches each one,
exactly once, to every configured sink. Dispatch is fire-and-forget: a sink
that fails is logged and dropped, and a slow sink never stalls a fetch cycle.
The cursor has already moved when rows reach the emitter; there is no
further deduplication.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import sys
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol, runtime_checkable

import httpx
from eth_utils import to_checksum_address

from transferwatch.config import TransferwatchConfig
from transferwatch.models import TransferRecord

logger = logging.getLogger(__name__)

WEBHOOK_SCHEMA_VERSION = "1"
ELLIPSIS = "⋯"


def format_amount(amount_raw: int, decimals: int) -> str:
    """Scale by 10**decimals and render with two decimals: 1234567 (4) -> "123.46"."""
    value = Decimal(amount_raw).scaleb(-decimals)
    return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,.2f}"


def format_address(address: str) -> str:
    """Checksummed, truncated address: first 6 chars, ellipsis, last 6 chars."""
    c = to_checksum_address(address)
    return c[:6] + ELLIPSIS + c[-6:]


def build_message(record: TransferRecord) -> str:
    amount = format_amount(record.amount_raw, record.decimals)
    whom = format_address(record.counterparty)
    if record.direction == "in":
        return f"Received {amount} {record.symbol} from {whom}"
    return f"Sent {amount} {record.symbol} to {whom}"


def navigation_context(record: TransferRecord) -> dict[str, Any]:
    """Enough identity for a consumer to open the affected asset view."""
    return {
        "wallet_id": record.wallet_id,
        "address_index": record.address_index,
        "symbol": record.symbol,
    }


@runtime_checkable
class NotificationSink(Protocol):
    async def dispatch(self, message: str, context: dict[str, Any]) -> None: ...


class StdoutSink:
    """Write one transfer_notification JSONL event per dispatch."""

    def __init__(self, stream: Any = None) -> None:
        self._stream = stream

    async def dispatch(self, message: str, context: dict[str, Any]) -> None:
        out = self._stream or sys.stdout
        out.write(json.dumps({
            "type": "transfer_notification",
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "message": message,
            **context,
        }) + "\n")
        out.flush()


class WebhookSink:
    """POST each notification as JSON, HMAC-signed when a secret is set."""

    def __init__(self, url: str, secret: str = "", timeout: float = 15.0) -> None:
        self.url = url
        self.secret = secret
        self.timeout = timeout

    async def dispatch(self, message: str, context: dict[str, Any]) -> None:
        payload = build_webhook_payload(message, context)
        body = json.dumps(payload).encode()

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.secret:
            sig = hmac.new(self.secret.encode(), body, hashlib.sha256).hexdigest()
            headers["X-Transferwatch-Signature"] = f"sha256={sig}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, content=body, headers=headers)
            resp.raise_for_status()


def build_webhook_payload(message: str, context: dict[str, Any]) -> dict[str, Any]:
    return {
        "schema_version": WEBHOOK_SCHEMA_VERSION,
        "event_type": "transfer_notification",
        "sent_at": datetime.now(tz=UTC).isoformat(),
        "message": message,
        "navigation": {
            "wallet_id": context.get("wallet_id"),
            "address_index": context.get("address_index"),
            "symbol": context.get("symbol"),
        },
        "transfer": {k: v for k, v in context.items()
                     if k not in ("wallet_id", "address_index", "symbol")},
    }


def sinks_from_config(config: TransferwatchConfig) -> list[NotificationSink]:
    sinks: list[NotificationSink] = []
    if config.notify.stdout:
        sinks.append(StdoutSink())
    if config.notify.webhook_url:
        sinks.append(WebhookSink(config.notify.webhook_url, config.notify.webhook_secret))
    return sinks


class NotificationEmitter:
    """
    Dispatches one notification per TransferRecord to every sink.

    emit() returns immediately; dispatches run as background tasks. Call
    drain() before shutdown to let in-flight dispatches finish.
    """

    def __init__(self, sinks: list[NotificationSink]) -> None:
        self.sinks = list(sinks)
        self._tasks: set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

    def emit(self, record: TransferRecord) -> str:
        message = build_message(record)
        context = {
            **navigation_context(record),
            "direction": record.direction,
            "address": record.address,
            "counterparty": record.counterparty,
            "amount_raw": str(record.amount_raw),
            "decimals": record.decimals,
            "block_number": record.block_number,
            "tx_id": record.tx_id,
        }
        for sink in self.sinks:
            task = asyncio.get_running_loop().create_task(
                self._dispatch(sink, message, context)
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return message

    def emit_all(self, records: list[TransferRecord]) -> list[str]:
        """Emit every record; a record that cannot be rendered is skipped."""
        messages: list[str] = []
        for r in records:
            try:
                messages.append(self.emit(r))
            except ValueError as e:
                self.failed += 1
                logger.warning("Cannot render transfer in tx %s: %s", r.tx_id, e)
        return messages

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _dispatch(self, sink: NotificationSink, message: str, context: dict[str, Any]) -> None:
        try:
            await sink.dispatch(message, context)
            self.sent += 1
        except (httpx.HTTPError, OSError, ValueError) as e:
            self.failed += 1
            logger.warning("Notification dispatch via %s failed: %s", type(sink).__name__, e)
        except Exception:
            # A sink must never take the watcher down with it
            self.failed += 1
            logger.exception("Notification dispatch via %s crashed", type(sink).__name__)
