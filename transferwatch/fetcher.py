"""Range-guarded fetcher: one cursored query stream.

Each StreamFetcher owns one StreamKey and drives it through

    IDLE → FETCHING → ADVANCED | FAILED → (next trigger) FETCHING ...

A cycle reads the cursor, queries [start, UNBOUNDED], moves the cursor, and
only then hands the rows downstream. Cursor policy:

  cursor absent      start = head if every watched wallet is fresh,
                     else genesis_floor
  rows returned      cursor = last row's block + 1
  no rows            cursor = head if there was no cursor or the head is more
                     than drift_threshold past start; otherwise unchanged

The drift guard bounds backfill for dormant wallets while never skipping a
range between two consecutive successful cycles. Failures never raise out of
a cycle: a query error leaves the cursor alone (FAILED) and the next trigger
retries; a persistence error discards the fetched rows.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

from transferwatch.exceptions import PersistenceError, QueryError, TransferwatchError
from transferwatch.ledger.base import Range
from transferwatch.models import CycleResult, StreamKey, TransferRecord, WatchSnapshot

logger = logging.getLogger(__name__)

DEFAULT_DRIFT_THRESHOLD = 100

QueryFn = Callable[[list[dict[str, str]], Range], Awaitable[Sequence[Any]]]
RowHandler = Callable[[Sequence[Any], WatchSnapshot], list[TransferRecord]]


class CursorStore(Protocol):
    async def get_cursor(self, key: StreamKey) -> int | None: ...

    async def set_cursor(self, key: StreamKey, position: int) -> None: ...


class FetchState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ADVANCED = "advanced"
    FAILED = "failed"


def resolve_start(
    cursor: int | None, head: int, all_fresh: bool, genesis_floor: int = 0
) -> int:
    """Where a cycle starts scanning."""
    if cursor is not None:
        return cursor
    if all_fresh:
        return head
    return genesis_floor


def next_cursor(
    cursor: int | None,
    start: int,
    head: int,
    rows: Sequence[Any],
    drift_threshold: int = DEFAULT_DRIFT_THRESHOLD,
) -> int | None:
    """New cursor position after a successful query, or None to leave it untouched."""
    if rows:
        return rows[-1].block_number + 1
    if cursor is None or head > start + drift_threshold:
        return head
    return None


class StreamFetcher:
    """
    Fetch cycle runner for one StreamKey.

    At most one cycle is in flight; a trigger arriving while FETCHING is
    coalesced into a single rerun that uses the most recent head, snapshot
    and criteria.
    """

    def __init__(
        self,
        key: StreamKey,
        cursors: CursorStore,
        query: QueryFn,
        handler: RowHandler,
        drift_threshold: int = DEFAULT_DRIFT_THRESHOLD,
        genesis_floor: int = 0,
    ) -> None:
        self.key = key
        self._cursors = cursors
        self._query = query
        self._handler = handler
        self.drift_threshold = drift_threshold
        self.genesis_floor = genesis_floor

        self.state = FetchState.IDLE
        self.last_result: CycleResult | None = None
        self._task: asyncio.Task | None = None
        self._pending = False
        self._latest: tuple[int, WatchSnapshot, list[dict[str, str]]] | None = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(
        self, head: int, snapshot: WatchSnapshot, criteria: list[dict[str, str]]
    ) -> asyncio.Task:
        """Start a cycle, or mark a rerun if one is already running."""
        self._latest = (head, snapshot, criteria)
        if self.busy:
            self._pending = True
            assert self._task is not None
            return self._task
        self._task = asyncio.create_task(self._run(), name=f"fetch-{self.key}")
        self._task.add_done_callback(self._log_crash)
        return self._task

    async def wait_idle(self) -> CycleResult | None:
        """Wait for the in-flight cycle (and any coalesced rerun) to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.last_result

    async def _run(self) -> CycleResult:
        while True:
            self._pending = False
            assert self._latest is not None
            head, snapshot, criteria = self._latest
            result = await self.run_cycle(head, snapshot, criteria)
            if not self._pending:
                return result

    async def run_cycle(
        self, head: int, snapshot: WatchSnapshot, criteria: list[dict[str, str]]
    ) -> CycleResult:
        """Run exactly one fetch cycle. Never raises TransferwatchError."""
        self.state = FetchState.FETCHING
        result = CycleResult(key=self.key)
        self.last_result = result

        try:
            cursor = await self._cursors.get_cursor(self.key)
        except PersistenceError as e:
            return self._fail(result, e, logging.ERROR)
        result.cursor_before = cursor
        result.cursor_after = cursor

        if cursor is None and head <= 0:
            logger.info("%s: node head unknown, skipping cycle", self.key)
            self.state = FetchState.ADVANCED
            return result

        start = resolve_start(cursor, head, snapshot.all_fresh, self.genesis_floor)
        result.start = start

        if criteria:
            try:
                rows = await self._query(criteria, Range(start))
            except QueryError as e:
                return self._fail(result, e, logging.WARNING)
        else:
            rows = []
        result.rows = len(rows)

        new_cursor = next_cursor(cursor, start, head, rows, self.drift_threshold)
        if new_cursor is not None:
            try:
                await self._cursors.set_cursor(self.key, new_cursor)
            except PersistenceError as e:
                # Discard rows: they will be fetched again from the old cursor
                return self._fail(result, e, logging.ERROR)
            result.cursor_after = new_cursor

        logger.debug(
            "%s: start=%d head=%d rows=%d cursor %s -> %s",
            self.key, start, head, len(rows), cursor, result.cursor_after,
        )

        if rows:
            try:
                result.records = self._handler(rows, snapshot)
            except TransferwatchError as e:
                logger.warning("%s: row handling failed: %s", self.key, e.message)
            except Exception:
                logger.exception("%s: row handling crashed", self.key)

        self.state = FetchState.ADVANCED
        return result

    def _log_crash(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.state = FetchState.FAILED
            logger.error("%s: fetch task crashed", self.key, exc_info=exc)

    def _fail(self, result: CycleResult, err: TransferwatchError, level: int) -> CycleResult:
        logger.log(level, "%s: cycle made no progress: %s", self.key, err.message)
        result.error = err.message
        result.cursor_after = result.cursor_before
        self.state = FetchState.FAILED
        return result
