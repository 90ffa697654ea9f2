"""Turn raw ledger rows into directioned TransferRecords.

Two inputs, one output shape:
  - native transfers already carry sender/recipient/amount
  - token events carry an ABI-encoded Transfer payload that is decoded here

Every row is then matched against every watched wallet. A recipient owned by a
wallet yields an "in" record, a sender owned by a wallet yields an "out"
record; both checks are independent, so a transfer between two addresses of
one wallet yields exactly one of each. Rows nobody owns are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from transferwatch.criteria import TRANSFER_TOPIC
from transferwatch.exceptions import DecodeError, LookupMiss
from transferwatch.ledger.base import EventLog, TransferLog
from transferwatch.models import TransferRecord, WatchSnapshot

logger = logging.getLogger(__name__)

NATIVE_SYMBOL = "VET"
NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class DecodedTransfer:
    sender: str
    recipient: str
    value: int


def decode_transfer_event(row: EventLog) -> DecodedTransfer:
    """
    Decode a Transfer(address indexed, address indexed, uint256) event.

    Raises DecodeError if the topics or data do not fit the schema.
    """
    if len(row.topics) != 3 or row.topics[0].lower() != TRANSFER_TOPIC:
        raise DecodeError(
            f"Not a Transfer event: {len(row.topics)} topic(s) at block {row.block_number}",
            details={"tx_id": row.tx_id, "address": row.address},
        )
    try:
        (sender,) = decode(["address"], _hex_bytes(row.topics[1]))
        (recipient,) = decode(["address"], _hex_bytes(row.topics[2]))
        (value,) = decode(["uint256"], _hex_bytes(row.data))
    except (DecodingError, ValueError) as e:
        raise DecodeError(
            f"Malformed Transfer payload at block {row.block_number}: {e}",
            details={"tx_id": row.tx_id, "address": row.address},
        ) from e
    return DecodedTransfer(sender=sender.lower(), recipient=recipient.lower(), value=int(value))


def match_transfer(
    snapshot: WatchSnapshot,
    sender: str,
    recipient: str,
    amount: int,
    decimals: int,
    symbol: str,
    block_number: int = 0,
    tx_id: str = "",
) -> list[TransferRecord]:
    """Match one transfer against every wallet in the snapshot."""
    sender = sender.lower()
    recipient = recipient.lower()
    records: list[TransferRecord] = []

    for wallet in snapshot.wallets:
        idx = wallet.index_of(recipient)
        if idx >= 0:
            records.append(TransferRecord(
                direction="in",
                counterparty=sender,
                amount_raw=amount,
                decimals=decimals,
                symbol=symbol,
                wallet_id=wallet.id,
                address_index=idx,
                address=recipient,
                block_number=block_number,
                tx_id=tx_id,
            ))
        idx = wallet.index_of(sender)
        if idx >= 0:
            records.append(TransferRecord(
                direction="out",
                counterparty=recipient,
                amount_raw=amount,
                decimals=decimals,
                symbol=symbol,
                wallet_id=wallet.id,
                address_index=idx,
                address=sender,
                block_number=block_number,
                tx_id=tx_id,
            ))
    return records


def reconcile_transfers(
    rows: Iterable[TransferLog],
    snapshot: WatchSnapshot,
    native_symbol: str = NATIVE_SYMBOL,
    native_decimals: int = NATIVE_DECIMALS,
) -> list[TransferRecord]:
    records: list[TransferRecord] = []
    for row in rows:
        records.extend(match_transfer(
            snapshot,
            row.sender,
            row.recipient,
            row.amount,
            native_decimals,
            native_symbol,
            block_number=row.block_number,
            tx_id=row.tx_id,
        ))
    return records


def reconcile_events(rows: Iterable[EventLog], snapshot: WatchSnapshot) -> list[TransferRecord]:
    """Decode token events and match them; bad or orphaned rows are skipped."""
    records: list[TransferRecord] = []
    for row in rows:
        try:
            records.extend(_reconcile_event(row, snapshot))
        except LookupMiss as e:
            logger.debug("Dropping event row: %s", e.message)
        except DecodeError as e:
            logger.warning("Dropping undecodable event row: %s", e.message)
    return records


def _reconcile_event(row: EventLog, snapshot: WatchSnapshot) -> list[TransferRecord]:
    token = snapshot.token_by_address(row.address)
    if token is None:
        raise LookupMiss(
            f"Token {row.address} is no longer active",
            details={"address": row.address, "block_number": row.block_number},
        )
    decoded = decode_transfer_event(row)
    return match_transfer(
        snapshot,
        decoded.sender,
        decoded.recipient,
        decoded.value,
        token.decimals,
        token.symbol,
        block_number=row.block_number,
        tx_id=row.tx_id,
    )


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))
