"""
Query layer for transferwatch.

Provides a factory function `get_query_layer()` that returns the node client
for the configured chain. All clients implement QueryLayer.

Usage:
    from transferwatch.ledger import get_query_layer
    client = get_query_layer(config)
    head = await client.get_head()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from transferwatch.ledger.base import UNBOUNDED, EventLog, QueryLayer, Range, TransferLog

if TYPE_CHECKING:
    from transferwatch.config import TransferwatchConfig

__all__ = [
    "UNBOUNDED",
    "EventLog",
    "QueryLayer",
    "Range",
    "TransferLog",
    "get_query_layer",
]


def get_query_layer(config: TransferwatchConfig) -> QueryLayer:
    """
    Factory: return a node client configured from config.node / config.watch.

    Raises:
        ValueError: node.url is empty
    """
    if not config.node.url:
        raise ValueError("node.url is not configured")

    from transferwatch.ledger.thor import ThorClient

    return ThorClient(
        base_url=config.node.url,
        page_size=config.watch.page_size,
        max_pages=config.watch.max_pages,
        timeout=config.node.timeout_seconds,
    )
