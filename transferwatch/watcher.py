"""Trigger loop for transferwatch.

Implements the continuous polling loop for `transferwatch watch`. Two
external signals drive the fetchers:

  head changed       → every stream runs a fetch cycle
  watch set changed  → criteria are rebuilt from the new snapshot, then every
                       stream runs a fetch cycle with them

Lifecycle events are emitted as JSONL on stdout (one object per line, flushed):
  watch_start   — loop begins
  heartbeat     — once per poll, with the head and per-stream cursors
  watch_error   — recoverable error in a poll (node unreachable, db busy)
  watch_end     — cancellation → clean exit
Notifications themselves go through the configured sinks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from functools import partial
from typing import Any, Sequence

from transferwatch.config import TransferwatchConfig
from transferwatch.criteria import Criteria, criteria_for_snapshot
from transferwatch.db import Database
from transferwatch.exceptions import TransferwatchError
from transferwatch.fetcher import StreamFetcher
from transferwatch.ledger.base import EventLog, QueryLayer, TransferLog
from transferwatch.models import (
    CycleResult,
    StreamKey,
    StreamKind,
    TransferRecord,
    WatchSnapshot,
)
from transferwatch.notify import NotificationEmitter
from transferwatch.reconciler import reconcile_events, reconcile_transfers
from transferwatch.registry import TokenRegistry, load_snapshot

logger = logging.getLogger(__name__)


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print(): buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class Watcher:
    """
    Owns the per-stream fetchers, the current snapshot and its criteria.

    The snapshot is immutable and swapped by reference, so a cycle that is
    already running keeps matching against the snapshot its criteria came from.
    """

    def __init__(
        self,
        config: TransferwatchConfig,
        db: Database,
        client: QueryLayer,
        emitter: NotificationEmitter,
    ) -> None:
        self.config = config
        self.chain_id = config.node.chain_id
        self.db = db
        self.client = client
        self.emitter = emitter
        self.registry = TokenRegistry(db)

        self.head = 0
        self.snapshot = WatchSnapshot(chain_id=self.chain_id)
        self.criteria = Criteria()
        self._primed = False

        make = partial(
            StreamFetcher,
            cursors=db,
            drift_threshold=config.watch.drift_threshold,
            genesis_floor=config.watch.genesis_floor,
        )
        self.fetchers: dict[StreamKind, StreamFetcher] = {
            StreamKind.TRANSFER: make(
                key=StreamKey(self.chain_id, StreamKind.TRANSFER),
                query=client.query_transfers,
                handler=self._handle_transfers,
            ),
            StreamKind.EVENT: make(
                key=StreamKey(self.chain_id, StreamKind.EVENT),
                query=client.query_events,
                handler=self._handle_events,
            ),
        }

    # ── triggers ─────────────────────────────────────────────

    def on_head(self, head: int) -> list[asyncio.Task]:
        """New head observed: run every stream."""
        self.head = head
        return self._trigger_all()

    def on_watch_set(self, snapshot: WatchSnapshot) -> list[asyncio.Task]:
        """Watched wallets or tokens changed: rebuild criteria, restart streams."""
        self.snapshot = snapshot
        self.criteria = criteria_for_snapshot(snapshot)
        logger.info(
            "Watch set changed: %d address(es), %d transfer / %d event criteria",
            len(snapshot.addresses), len(self.criteria.transfer), len(self.criteria.event),
        )
        return self._trigger_all()

    async def poll(self) -> bool:
        """
        One poll tick: read head and snapshot, fire whichever triggers changed.

        Returns True if any trigger fired.
        """
        await self.registry.ensure_permanent(self.chain_id)
        head = await self.client.get_head()
        snapshot = await load_snapshot(self.db, self.registry, self.chain_id)

        if not self._primed or snapshot != self.snapshot:
            self._primed = True
            self.head = head
            self.on_watch_set(snapshot)
            return True
        if head != self.head:
            self.on_head(head)
            return True
        return False

    async def wait_idle(self) -> dict[StreamKind, CycleResult | None]:
        return {kind: await f.wait_idle() for kind, f in self.fetchers.items()}

    # ── plumbing ─────────────────────────────────────────────

    def _trigger_all(self) -> list[asyncio.Task]:
        criteria = {
            StreamKind.TRANSFER: self.criteria.transfer,
            StreamKind.EVENT: self.criteria.event,
        }
        return [
            fetcher.trigger(self.head, self.snapshot, criteria[kind])
            for kind, fetcher in self.fetchers.items()
        ]

    def _handle_transfers(
        self, rows: Sequence[TransferLog], snapshot: WatchSnapshot
    ) -> list[TransferRecord]:
        records = reconcile_transfers(
            rows,
            snapshot,
            native_symbol=self.config.chain.native_symbol,
            native_decimals=self.config.chain.native_decimals,
        )
        self.emitter.emit_all(records)
        return records

    def _handle_events(
        self, rows: Sequence[EventLog], snapshot: WatchSnapshot
    ) -> list[TransferRecord]:
        records = reconcile_events(rows, snapshot)
        self.emitter.emit_all(records)
        return records


async def run_once(
    config: TransferwatchConfig,
    db: Database,
    client: QueryLayer,
    emitter: NotificationEmitter,
) -> dict[str, Any]:
    """Run one catch-up cycle for both streams and report what happened."""
    watcher = Watcher(config, db, client, emitter)
    await watcher.registry.ensure_permanent(watcher.chain_id)
    head = await client.get_head()
    watcher.head = head
    watcher.on_watch_set(await load_snapshot(db, watcher.registry, watcher.chain_id))
    results = await watcher.wait_idle()
    await emitter.drain()

    streams = [r.to_dict() for r in results.values() if r is not None]
    records = [rec.to_dict() for r in results.values() if r is not None for rec in r.records]
    return {
        "chain_id": watcher.chain_id,
        "head": head,
        "addresses": len(watcher.snapshot.addresses),
        "tokens": [t.symbol for t in watcher.snapshot.tokens],
        "streams": streams,
        "notifications": records,
    }


async def run_watch(
    config: TransferwatchConfig,
    db: Database,
    client: QueryLayer,
    emitter: NotificationEmitter,
    interval_seconds: int | None = None,
) -> None:
    """
    Main watch loop. Runs until cancelled (KeyboardInterrupt → exit 130).

    On each poll:
    1. Read the node head and the current watch snapshot
    2. Fire watch-set-changed or head-changed triggers
    3. Emit a heartbeat
    Fetch cycles run as background tasks; a stream still busy from the last
    tick coalesces the new trigger instead of queueing it.
    """
    interval = config.watch.poll_interval_seconds if interval_seconds is None else interval_seconds
    watcher = Watcher(config, db, client, emitter)
    cycle = 0

    emit_event({
        "type": "watch_start",
        "timestamp": _now_iso(),
        "chain_id": watcher.chain_id,
        "node": config.node.url,
        "interval_secs": interval,
        "drift_threshold": config.watch.drift_threshold,
    })

    try:
        while True:
            cycle += 1
            try:
                await watcher.poll()
            except TransferwatchError as e:
                logger.warning("Poll %d failed: %s", cycle, e.message)
                emit_event({
                    "type": "watch_error",
                    "timestamp": _now_iso(),
                    "error_code": e.error_code,
                    "message": e.message,
                    "recoverable": True,
                    "cycle": cycle,
                })

            emit_event({
                "type": "heartbeat",
                "timestamp": _now_iso(),
                "cycle": cycle,
                "head": watcher.head,
                "addresses": len(watcher.snapshot.addresses),
                "streams": {
                    kind.value: f.state.value for kind, f in watcher.fetchers.items()
                },
            })

            await asyncio.sleep(interval)

    except (KeyboardInterrupt, asyncio.CancelledError):
        await emitter.drain()
        emit_event({
            "type": "watch_end",
            "timestamp": _now_iso(),
            "cycles_completed": cycle,
            "notifications_sent": emitter.sent,
        })
        return  # Caller (CLI) is responsible for sys.exit(130)
