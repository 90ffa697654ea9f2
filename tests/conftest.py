"""Pytest fixtures shared across all transferwatch tests."""

from __future__ import annotations

from typing import Any

import pytest
from eth_abi import encode

from transferwatch.config import MAINNET_GENESIS_ID, TransferwatchConfig
from transferwatch.criteria import TRANSFER_TOPIC, address_topic
from transferwatch.db import Database
from transferwatch.ledger.base import EventLog, Range, TransferLog
from transferwatch.models import (
    StreamKey,
    StreamKind,
    TokenSpec,
    WalletSnapshot,
    WatchSnapshot,
)

CHAIN = MAINNET_GENESIS_ID

ADDR_A0 = "0x7567d83b7b8d80addcb281a71d54fc7b3364ffed"
ADDR_A1 = "0x1d44bf2e4a1e2b1bbd3f4c5e6a7b8c9d0e1f2a3b"
ADDR_B0 = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
STRANGER = "0x28c6c06298d514db089934071355e5743bf21d60"

VTHO = TokenSpec(
    chain_id=CHAIN,
    address="0x0000000000000000000000000000456e65726779",
    symbol="VTHO",
    decimals=18,
    name="VeThor",
    permanent=True,
)
USDC = TokenSpec(
    chain_id=CHAIN,
    address="0x1111111111111111111111111111111111111111",
    symbol="USDC",
    decimals=6,
    name="USD Coin",
)


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> TransferwatchConfig:
    """Default config pointed at an in-memory DB, stdout sink off."""
    cfg = TransferwatchConfig()
    cfg.database.path = ":memory:"
    cfg.notify.stdout = False
    return cfg


# ── DB fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
async def in_memory_db() -> Database:
    """In-memory SQLite DB with schema applied."""
    db = Database(":memory:")
    await db.connect()
    yield db
    await db.close()


# ── Model fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def wallet_a() -> WalletSnapshot:
    return WalletSnapshot(id=1, addresses=(ADDR_A0, ADDR_A1), name="main")


@pytest.fixture
def wallet_b() -> WalletSnapshot:
    return WalletSnapshot(id=2, addresses=(ADDR_B0,), name="savings")


@pytest.fixture
def sample_snapshot(wallet_a: WalletSnapshot, wallet_b: WalletSnapshot) -> WatchSnapshot:
    return WatchSnapshot(chain_id=CHAIN, wallets=(wallet_a, wallet_b), tokens=(VTHO, USDC))


def transfer_key() -> StreamKey:
    return StreamKey(CHAIN, StreamKind.TRANSFER)


def event_key() -> StreamKey:
    return StreamKey(CHAIN, StreamKind.EVENT)


def transfer_row(block: int, sender: str = STRANGER, recipient: str = ADDR_A0,
                 amount: int = 10**18, tx_id: str = "") -> TransferLog:
    return TransferLog(
        sender=sender,
        recipient=recipient,
        amount=amount,
        block_number=block,
        tx_id=tx_id or f"0x{block:064x}",
    )


def token_event_row(block: int, token: TokenSpec, sender: str, recipient: str,
                    value: int) -> EventLog:
    """Build an EventLog carrying an ABI-encoded Transfer payload."""
    return EventLog(
        address=token.address,
        topics=(TRANSFER_TOPIC, address_topic(sender), address_topic(recipient)),
        data="0x" + encode(["uint256"], [value]).hex(),
        block_number=block,
        tx_id=f"0x{block:064x}",
    )


# ── Fakes ─────────────────────────────────────────────────────────────────────


class MemoryCursors:
    """CursorStore backed by a dict, with switchable failures."""

    def __init__(self, initial: dict[StreamKey, int] | None = None) -> None:
        self.positions: dict[StreamKey, int] = dict(initial or {})
        self.fail_reads = False
        self.fail_writes = False
        self.writes: list[tuple[StreamKey, int]] = []

    async def get_cursor(self, key: StreamKey) -> int | None:
        from transferwatch.exceptions import PersistenceError

        if self.fail_reads:
            raise PersistenceError("disk I/O error")
        return self.positions.get(key)

    async def set_cursor(self, key: StreamKey, position: int) -> None:
        from transferwatch.exceptions import PersistenceError

        if self.fail_writes:
            raise PersistenceError("database is locked")
        self.writes.append((key, position))
        self.positions[key] = position


class FakeLedger:
    """
    QueryLayer over in-memory row lists.

    Honours the range lower bound and the OR-semantics of criteria for the
    fields the watcher uses; records every call for assertions.
    """

    page_size = 5

    def __init__(self, head: int = 0,
                 transfers: list[TransferLog] | None = None,
                 events: list[EventLog] | None = None) -> None:
        self.head = head
        self.transfers = list(transfers or [])
        self.events = list(events or [])
        self.transfer_calls: list[tuple[list[dict[str, str]], Range]] = []
        self.event_calls: list[tuple[list[dict[str, str]], Range]] = []
        self.error: Exception | None = None
        self.closed = False

    async def get_head(self) -> int:
        if self.error:
            raise self.error
        return self.head

    async def query_transfers(self, criteria: list[dict[str, str]], range_: Range) -> list[TransferLog]:
        self.transfer_calls.append((criteria, range_))
        if self.error:
            raise self.error
        return [
            r for r in self.transfers
            if range_.from_block <= r.block_number <= range_.to_block
            and any(_matches_transfer(c, r) for c in criteria)
        ]

    async def query_events(self, criteria: list[dict[str, str]], range_: Range) -> list[EventLog]:
        self.event_calls.append((criteria, range_))
        if self.error:
            raise self.error
        return [
            r for r in self.events
            if range_.from_block <= r.block_number <= range_.to_block
            and any(_matches_event(c, r) for c in criteria)
        ]

    async def close(self) -> None:
        self.closed = True


def _matches_transfer(criterion: dict[str, Any], row: TransferLog) -> bool:
    if "sender" in criterion and criterion["sender"] != row.sender:
        return False
    if "recipient" in criterion and criterion["recipient"] != row.recipient:
        return False
    return True


def _matches_event(criterion: dict[str, Any], row: EventLog) -> bool:
    if criterion.get("address") and criterion["address"] != row.address:
        return False
    for i in range(3):
        want = criterion.get(f"topic{i}")
        if want and (len(row.topics) <= i or row.topics[i] != want):
            return False
    return True
