"""Token registry and watch snapshot loading.

The registry answers one question for the core: which token contracts are
active on a chain right now. A token is active when it is permanent (e.g. the
energy token that every account holds) or its symbol is in the user's
active-symbol list. The native asset is never part of the answer; it is
watched through transfer queries instead.
"""

from __future__ import annotations

import logging

from transferwatch.db import Database, wallet_snapshot
from transferwatch.exceptions import TokenNotFoundError
from transferwatch.models import TokenSpec, WatchSnapshot

logger = logging.getLogger(__name__)

# VTHO energy contract, identical address on every Thor network
ENERGY_ADDRESS = "0x0000000000000000000000000000456e65726779"

_PERMANENT_TOKENS: list[dict] = [
    {"address": ENERGY_ADDRESS, "symbol": "VTHO", "name": "VeThor", "decimals": 18},
]


def permanent_tokens(chain_id: str) -> list[TokenSpec]:
    return [
        TokenSpec(chain_id=chain_id.lower(), permanent=True, **entry)
        for entry in _PERMANENT_TOKENS
    ]


class TokenRegistry:
    """
    Read-mostly view over the tokens table.

    Usage:
        registry = TokenRegistry(db)
        await registry.ensure_permanent(chain_id)
        tokens = await registry.active_tokens_for_chain(chain_id)
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def ensure_permanent(self, chain_id: str) -> None:
        """Seed the permanent tokens for a chain (idempotent)."""
        await self._db.upsert_tokens(permanent_tokens(chain_id))

    async def register(self, token: TokenSpec) -> TokenSpec:
        if token.is_native:
            raise ValueError("The native asset is not a registrable token")
        await self._db.upsert_tokens([token])
        return token

    async def all_tokens(self, chain_id: str | None = None) -> list[TokenSpec]:
        return await self._db.list_tokens(chain_id)

    async def active_tokens_for_chain(self, chain_id: str) -> list[TokenSpec]:
        """Non-native tokens of chain_id that are permanent or have an active symbol."""
        tokens = await self._db.list_tokens(chain_id)
        active = set(await self._db.get_active_symbols())
        return [
            t for t in tokens
            if not t.is_native and (t.permanent or t.symbol in active)
        ]

    async def activate(self, symbols: list[str], chain_id: str | None = None) -> list[str]:
        """
        Add symbols to the active list.

        Raises TokenNotFoundError for a symbol no registered token carries.
        """
        known = {t.symbol for t in await self._db.list_tokens(chain_id)}
        unknown = [s for s in symbols if s not in known]
        if unknown:
            raise TokenNotFoundError(
                f"Unknown token symbol(s): {', '.join(unknown)}",
                details={"symbols": unknown},
            )
        current = await self._db.get_active_symbols()
        return await self._db.set_active_symbols(current + list(symbols))

    async def deactivate(self, symbols: list[str]) -> list[str]:
        current = await self._db.get_active_symbols()
        return await self._db.set_active_symbols([s for s in current if s not in symbols])


async def load_snapshot(db: Database, registry: TokenRegistry, chain_id: str) -> WatchSnapshot:
    """
    Read wallets and active tokens into one immutable snapshot.

    Criteria and row matching for a cycle are both drawn from the returned
    object, so an address added mid-cycle is simply picked up next time.
    """
    wallets = await db.list_wallets(chain_id)
    tokens = await registry.active_tokens_for_chain(chain_id)
    snapshot = WatchSnapshot(
        chain_id=chain_id.lower(),
        wallets=tuple(wallet_snapshot(w) for w in wallets),
        tokens=tuple(tokens),
    )
    logger.debug(
        "Loaded snapshot: %d wallet(s), %d address(es), %d token(s)",
        len(snapshot.wallets), len(snapshot.addresses), len(snapshot.tokens),
    )
    return snapshot
