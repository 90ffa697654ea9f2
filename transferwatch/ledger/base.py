"""Query layer protocol and raw row shapes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

# Upper bound used for an open-ended block range
UNBOUNDED = 2**32 - 1


@dataclass(frozen=True)
class Range:
    """Inclusive block range."""

    from_block: int
    to_block: int = UNBOUNDED

    def to_dict(self) -> dict[str, Any]:
        return {"unit": "block", "from": self.from_block, "to": self.to_block}


@dataclass(frozen=True)
class TransferLog:
    """
    A native-asset transfer row as returned by the node.

    Addresses are lowercase; amount is in the smallest native unit.
    """

    sender: str
    recipient: str
    amount: int
    block_number: int
    tx_id: str = ""
    clause_index: int = 0


@dataclass(frozen=True)
class EventLog:
    """A contract event row as returned by the node. Payload is left encoded."""

    address: str                # emitting contract, lowercase
    topics: tuple[str, ...]     # 0x-prefixed 32-byte hex strings
    data: str                   # 0x-prefixed hex
    block_number: int
    tx_id: str = ""
    clause_index: int = 0


@runtime_checkable
class QueryLayer(Protocol):
    """
    Protocol for the ledger node client.

    Query layers are responsible for:
    - Talking to the node and paging through results
    - Normalizing rows into TransferLog / EventLog, ascending by block
    - Raising QueryError subclasses on transport or protocol failure

    They are NOT responsible for cursors, decoding or matching.
    """

    page_size: int

    async def get_head(self) -> int:
        """Return the current best block number."""
        ...

    async def query_transfers(
        self, criteria: list[dict[str, str]], range_: Range
    ) -> list[TransferLog]:
        """Return native transfers matching ANY criterion within range_."""
        ...

    async def query_events(
        self, criteria: list[dict[str, str]], range_: Range
    ) -> list[EventLog]:
        """Return contract events matching ANY criterion within range_."""
        ...

    async def close(self) -> None:
        ...
