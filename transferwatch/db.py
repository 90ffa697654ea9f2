"""SQLite state management for transferwatch.

Manages the watched wallet list, token registry, settings, and stream cursors.
All database operations are async (aiosqlite).

Schema:
  - wallets: watched wallets and their ordered derived addresses
  - tokens: known token contracts per chain
  - settings: small key/value store (active token symbols)
  - cursors: last-processed block height per (chain_id, stream_kind)

Every sqlite failure surfaces as PersistenceError.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from transferwatch.exceptions import (
    PersistenceError,
    WalletExistsError,
    WalletNotFoundError,
)
from transferwatch.models import StreamKey, TokenSpec, WalletSnapshot

DEFAULT_DB_PATH = Path.home() / ".transferwatch" / "transferwatch.db"

# SQL schema, applied on connect if tables don't exist
_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS wallets (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    chain_id     TEXT NOT NULL,
    name         TEXT NOT NULL DEFAULT '',
    addresses    TEXT NOT NULL DEFAULT '[]',
    fresh        INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL,
    active       INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS tokens (
    chain_id     TEXT NOT NULL,
    address      TEXT NOT NULL,
    symbol       TEXT NOT NULL,
    name         TEXT NOT NULL DEFAULT '',
    decimals     INTEGER NOT NULL,
    permanent    INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (chain_id, address)
);

CREATE TABLE IF NOT EXISTS settings (
    key          TEXT PRIMARY KEY,
    value        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cursors (
    chain_id     TEXT NOT NULL,
    stream_kind  TEXT NOT NULL CHECK (stream_kind IN ('transfer', 'event')),
    position     INTEGER NOT NULL,
    updated_at   TEXT NOT NULL,
    PRIMARY KEY (chain_id, stream_kind)
);

CREATE INDEX IF NOT EXISTS idx_wallets_chain ON wallets(chain_id);
CREATE INDEX IF NOT EXISTS idx_tokens_symbol ON tokens(chain_id, symbol);
"""

SCHEMA_VERSION = 1

ACTIVE_SYMBOLS_KEY = "active_token_symbols"


class Database:
    """
    Async SQLite database manager for transferwatch.

    Usage:
        db = Database(":memory:")
        await db.connect()
        wallets = await db.list_wallets(chain_id)
        await db.close()

    Or as async context manager:
        async with Database(path) as db:
            ...
    """

    def __init__(self, db_path: str = str(DEFAULT_DB_PATH)) -> None:
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open DB connection and run schema migrations."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._apply_schema()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to connect to database: {e}") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Database is not connected")
        return self._conn

    # ──────────────────────────────────────────────────────────
    # Wallets
    # ──────────────────────────────────────────────────────────

    async def add_wallet(
        self,
        chain_id: str,
        addresses: list[str],
        name: str = "",
        fresh: bool = False,
    ) -> dict[str, Any]:
        """
        Register a wallet with its ordered derived addresses.

        `fresh` marks a wallet created locally with no on-chain history; such
        wallets start their streams at the current head instead of backfilling.
        """
        addresses = list(dict.fromkeys(a.lower() for a in addresses))
        created_at = datetime.now(tz=timezone.utc).isoformat()

        try:
            async with self.conn.execute(
                """
                INSERT INTO wallets (chain_id, name, addresses, fresh, created_at, active)
                VALUES (?, ?, ?, ?, ?, 1)
                """,
                (chain_id.lower(), name, json.dumps(addresses), 1 if fresh else 0, created_at),
            ) as cursor:
                row_id = cursor.lastrowid
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to add wallet: {e}") from e

        return {
            "id": row_id,
            "chain_id": chain_id.lower(),
            "name": name,
            "addresses": addresses,
            "fresh": fresh,
            "created_at": created_at,
            "active": True,
        }

    async def list_wallets(
        self, chain_id: str | None = None, active_only: bool = True
    ) -> list[dict[str, Any]]:
        """List wallets, oldest first, with optional chain filter."""
        query = "SELECT * FROM wallets"
        params: list[Any] = []
        conditions: list[str] = []

        if active_only:
            conditions.append("active = 1")
        if chain_id:
            conditions.append("chain_id = ?")
            params.append(chain_id.lower())

        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id ASC"

        try:
            wallets = []
            async with self.conn.execute(query, params) as cursor:
                async for row in cursor:
                    wallets.append(_wallet_row(row))
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to list wallets: {e}") from e
        return wallets

    async def get_wallet(self, wallet_id: int) -> dict[str, Any]:
        """
        Get an active wallet by id.

        Raises WalletNotFoundError if not found.
        """
        try:
            async with self.conn.execute(
                "SELECT * FROM wallets WHERE id = ? AND active = 1", (wallet_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to read wallet: {e}") from e

        if not row:
            raise WalletNotFoundError(
                f"Wallet {wallet_id} not found", details={"wallet_id": wallet_id}
            )
        return _wallet_row(row)

    async def add_watch_address(self, wallet_id: int, address: str) -> dict[str, Any]:
        """
        Append a newly derived address to a wallet.

        Raises WalletExistsError if the wallet already owns the address.
        """
        wallet = await self.get_wallet(wallet_id)
        address = address.lower()
        if address in wallet["addresses"]:
            raise WalletExistsError(
                f"Wallet {wallet_id} already owns {address}",
                details={"wallet_id": wallet_id, "address": address},
            )
        wallet["addresses"].append(address)
        try:
            await self.conn.execute(
                "UPDATE wallets SET addresses = ? WHERE id = ?",
                (json.dumps(wallet["addresses"]), wallet_id),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to update wallet: {e}") from e
        return wallet

    async def remove_wallet(self, wallet_id: int) -> dict[str, Any]:
        """Mark a wallet inactive. Its addresses stop being watched."""
        await self.get_wallet(wallet_id)
        try:
            await self.conn.execute(
                "UPDATE wallets SET active = 0 WHERE id = ?", (wallet_id,)
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to remove wallet: {e}") from e
        return {"status": "removed", "wallet_id": wallet_id}

    # ──────────────────────────────────────────────────────────
    # Tokens
    # ──────────────────────────────────────────────────────────

    async def upsert_tokens(self, tokens: list[TokenSpec]) -> int:
        """Insert or replace token specs. Returns number of rows written."""
        try:
            for token in tokens:
                await self.conn.execute(
                    """
                    INSERT OR REPLACE INTO tokens
                    (chain_id, address, symbol, name, decimals, permanent)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        token.chain_id.lower(),
                        token.address.lower(),
                        token.symbol,
                        token.name,
                        token.decimals,
                        1 if token.permanent else 0,
                    ),
                )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save tokens: {e}") from e
        return len(tokens)

    async def list_tokens(self, chain_id: str | None = None) -> list[TokenSpec]:
        """List registered tokens, permanent first, then by symbol."""
        query = "SELECT * FROM tokens"
        params: list[Any] = []
        if chain_id:
            query += " WHERE chain_id = ?"
            params.append(chain_id.lower())
        query += " ORDER BY permanent DESC, symbol ASC, address ASC"

        try:
            tokens = []
            async with self.conn.execute(query, params) as cursor:
                async for row in cursor:
                    tokens.append(
                        TokenSpec(
                            chain_id=row["chain_id"],
                            address=row["address"],
                            symbol=row["symbol"],
                            decimals=int(row["decimals"]),
                            name=row["name"],
                            permanent=bool(row["permanent"]),
                        )
                    )
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to list tokens: {e}") from e
        return tokens

    async def get_active_symbols(self) -> list[str]:
        raw = await self._get_setting(ACTIVE_SYMBOLS_KEY)
        return json.loads(raw) if raw else []

    async def set_active_symbols(self, symbols: list[str]) -> list[str]:
        symbols = list(dict.fromkeys(symbols))
        await self._set_setting(ACTIVE_SYMBOLS_KEY, json.dumps(symbols))
        return symbols

    # ──────────────────────────────────────────────────────────
    # Cursors
    # ──────────────────────────────────────────────────────────

    async def get_cursor(self, key: StreamKey) -> int | None:
        """Return the stored position for a stream, or None if never set."""
        try:
            async with self.conn.execute(
                "SELECT position FROM cursors WHERE chain_id = ? AND stream_kind = ?",
                (key.chain_id.lower(), key.kind.value),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to read cursor {key}: {e}") from e
        return int(row["position"]) if row else None

    async def set_cursor(self, key: StreamKey, position: int) -> None:
        """Create or move the cursor for a stream. Cursors are never deleted."""
        try:
            await self.conn.execute(
                """
                INSERT INTO cursors (chain_id, stream_kind, position, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(chain_id, stream_kind)
                DO UPDATE SET position = excluded.position, updated_at = excluded.updated_at
                """,
                (
                    key.chain_id.lower(),
                    key.kind.value,
                    int(position),
                    datetime.now(tz=timezone.utc).isoformat(),
                ),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to write cursor {key}: {e}") from e

    async def list_cursors(self) -> list[dict[str, Any]]:
        try:
            rows = []
            async with self.conn.execute(
                "SELECT * FROM cursors ORDER BY chain_id, stream_kind"
            ) as cursor:
                async for row in cursor:
                    rows.append(dict(row))
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to list cursors: {e}") from e
        return rows

    # ──────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────

    async def _get_setting(self, key: str) -> str | None:
        try:
            async with self.conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to read setting {key}: {e}") from e
        return row["value"] if row else None

    async def _set_setting(self, key: str, value: str) -> None:
        try:
            await self.conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value)
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to write setting {key}: {e}") from e

    async def _apply_schema(self) -> None:
        """Apply schema migrations idempotently."""
        await self.conn.executescript(_SCHEMA)
        await self.conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self.conn.commit()


def _wallet_row(row: aiosqlite.Row) -> dict[str, Any]:
    w = dict(row)
    w["addresses"] = json.loads(w.get("addresses") or "[]")
    w["fresh"] = bool(w["fresh"])
    w["active"] = bool(w["active"])
    return w


def wallet_snapshot(w: dict[str, Any]) -> WalletSnapshot:
    """Freeze a wallet row into the shape the core consumes."""
    return WalletSnapshot(
        id=int(w["id"]),
        addresses=tuple(a.lower() for a in w["addresses"]),
        name=w.get("name", ""),
        fresh=bool(w.get("fresh", False)),
    )
