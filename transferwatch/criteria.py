"""Query criteria derived from watched addresses and active tokens.

Criteria in one list are OR-combined by the node, never AND-ed. "Either side
of a transfer matches" therefore needs one criterion per side:

  transfer stream: {sender: a}, {recipient: a}                 for each address
  event stream:    {address: t, topic0: Transfer, topic1: a},
                   {address: t, topic0: Transfer, topic2: a}   for each address × token

All functions here are pure; identical inputs give identical lists in
identical order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from eth_utils import keccak

from transferwatch.models import TokenSpec, WatchSnapshot

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_TOPIC = "0x" + keccak(text=TRANSFER_EVENT_SIGNATURE).hex()


@dataclass(frozen=True)
class Criteria:
    transfer: list[dict[str, str]] = field(default_factory=list)
    event: list[dict[str, str]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.transfer and not self.event


def address_topic(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte indexed topic."""
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def build_transfer_criteria(addresses: Iterable[str]) -> list[dict[str, str]]:
    criteria: list[dict[str, str]] = []
    for addr in _unique(addresses):
        criteria.append({"sender": addr})
        criteria.append({"recipient": addr})
    return criteria


def build_event_criteria(
    addresses: Iterable[str], tokens: Iterable[TokenSpec]
) -> list[dict[str, str]]:
    contracts = _unique(t.address for t in tokens if not t.is_native)
    criteria: list[dict[str, str]] = []
    for addr in _unique(addresses):
        topic = address_topic(addr)
        for contract in contracts:
            criteria.append({"address": contract, "topic0": TRANSFER_TOPIC, "topic1": topic})
            criteria.append({"address": contract, "topic0": TRANSFER_TOPIC, "topic2": topic})
    return criteria


def build_criteria(addresses: Iterable[str], tokens: Iterable[TokenSpec]) -> Criteria:
    addresses = list(addresses)
    return Criteria(
        transfer=build_transfer_criteria(addresses),
        event=build_event_criteria(addresses, tokens),
    )


def criteria_for_snapshot(snapshot: WatchSnapshot) -> Criteria:
    return build_criteria(snapshot.addresses, snapshot.tokens)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v.lower() for v in values if v))
