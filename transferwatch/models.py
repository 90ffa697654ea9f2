"""
Shared data models for transferwatch.

These dataclasses are the canonical data shapes used across all modules:
the registry produces snapshots, the criteria builder and reconciler consume
them, the emitter renders TransferRecords. Snapshots are frozen and replaced
by reference, never mutated, so a running fetch cycle cannot observe a
half-updated address set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

Direction = Literal["in", "out"]


class StreamKind(str, Enum):
    """One independently cursored category of ledger query."""

    TRANSFER = "transfer"   # native-asset transfers
    EVENT = "event"         # token contract Transfer events


@dataclass(frozen=True)
class StreamKey:
    """Identifies one cursor. At most one cursor exists per key."""

    chain_id: str
    kind: StreamKind

    def __str__(self) -> str:
        return f"{self.kind.value}@{self.chain_id[-8:]}"


@dataclass(frozen=True)
class TokenSpec:
    """A token contract. An empty address denotes the chain's native asset."""

    chain_id: str
    address: str
    symbol: str
    decimals: int
    name: str = ""
    permanent: bool = False

    @property
    def is_native(self) -> bool:
        return not self.address

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "name": self.name,
            "permanent": self.permanent,
        }


@dataclass(frozen=True)
class WalletSnapshot:
    """A watched wallet and its ordered derived addresses (lowercase hex)."""

    id: int
    addresses: tuple[str, ...]
    name: str = ""
    fresh: bool = False     # created locally, no on-chain history

    def index_of(self, address: str) -> int:
        """Return the derivation index of address, or -1 if not owned."""
        try:
            return self.addresses.index(address.lower())
        except ValueError:
            return -1


@dataclass(frozen=True)
class WatchSnapshot:
    """Everything one fetch cycle needs to build criteria and match rows."""

    chain_id: str
    wallets: tuple[WalletSnapshot, ...] = ()
    tokens: tuple[TokenSpec, ...] = ()

    @property
    def addresses(self) -> tuple[str, ...]:
        """Union of all wallet addresses, de-duplicated, first-seen order."""
        return tuple(dict.fromkeys(a for w in self.wallets for a in w.addresses))

    @property
    def all_fresh(self) -> bool:
        """True when every watched wallet is brand new (nothing to backfill)."""
        return bool(self.wallets) and all(w.fresh for w in self.wallets)

    def token_by_address(self, address: str) -> TokenSpec | None:
        address = address.lower()
        for token in self.tokens:
            if token.address and token.address.lower() == address:
                return token
        return None


@dataclass(frozen=True)
class TransferRecord:
    """A matched, directioned transfer. Never persisted."""

    direction: Direction
    counterparty: str
    amount_raw: int
    decimals: int
    symbol: str
    wallet_id: int
    address_index: int
    address: str = ""
    block_number: int = 0
    tx_id: str = ""

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "counterparty": self.counterparty,
            "amount_raw": str(self.amount_raw),
            "decimals": self.decimals,
            "symbol": self.symbol,
            "wallet_id": self.wallet_id,
            "address_index": self.address_index,
            "address": self.address,
            "block_number": self.block_number,
            "tx_id": self.tx_id,
        }


@dataclass
class CycleResult:
    """Outcome of one fetch cycle for one stream (reported by the watcher)."""

    key: StreamKey
    start: int | None = None
    rows: int = 0
    cursor_before: int | None = None
    cursor_after: int | None = None
    records: list[TransferRecord] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "stream": self.key.kind.value,
            "chain_id": self.key.chain_id,
            "start": self.start,
            "rows": self.rows,
            "cursor_before": self.cursor_before,
            "cursor_after": self.cursor_after,
            "notifications": len(self.records),
            "error": self.error,
        }
