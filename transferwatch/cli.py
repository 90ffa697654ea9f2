"""Click CLI entry point for transferwatch.

All commands are thin orchestration wrappers; business logic lives in
config, db, registry, criteria, fetcher, reconciler, notify and watcher.

Exit codes:
  0 — success
  1 — generic / usage error
  2 — node query error
  4 — data error (invalid address, unknown wallet or token)
  5 — config error
  6 — database error
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
import sys
from pathlib import Path
from typing import Any

import click

from transferwatch import __version__
from transferwatch.config import (
    TransferwatchConfig,
    get_default_config_path,
    load_config,
    save_config,
)
from transferwatch.db import Database
from transferwatch.exceptions import InvalidAddressError, TransferwatchError
from transferwatch.logs import configure_logging
from transferwatch.models import TokenSpec
from transferwatch.output import format_output, mask_secret
from transferwatch.registry import TokenRegistry

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
FORMATS = ["json", "jsonl", "table"]


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: TransferwatchError | Exception) -> None:
    """Write error JSON to stderr and exit with the mapped code."""
    if isinstance(err, TransferwatchError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "cli_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _db_from_config(config: TransferwatchConfig) -> Database:
    db_path = config.database.path
    if db_path and db_path != ":memory:":
        db_path = str(Path(db_path).expanduser())
    return Database(db_path)


def _validate_addresses(addresses: tuple[str, ...] | list[str]) -> list[str]:
    for a in addresses:
        if not ADDRESS_RE.match(a):
            raise InvalidAddressError(
                f"Invalid address: {a!r}. Must be 0x + 40 hex chars.",
                details={"address": a},
            )
    return [a.lower() for a in addresses]


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except TransferwatchError as e:
        _output_error(e)


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="TRANSFERWATCH_CONFIG",
    default=None,
    help="Config file path (default: ~/.transferwatch/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(FORMATS),
    default=None,
    help="Output format (overrides config default)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, output_format: str | None) -> None:
    """transferwatch — watch wallet addresses for incoming and outgoing transfers."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except TransferwatchError:
        # On config errors, use defaults (so config init still works)
        config = TransferwatchConfig()

    configure_logging(config.logging.level)
    ctx.obj["config"] = config
    ctx.obj["format"] = output_format or config.output.default_format
    ctx.obj["config_path"] = config_path


# ── Wallet commands ───────────────────────────────────────────────────────────


@cli.group()
def wallet() -> None:
    """Manage watched wallets."""


@wallet.command("add")
@click.argument("addresses", nargs=-1, required=True)
@click.option("--name", default="", help="Human-readable wallet name")
@click.option(
    "--fresh",
    is_flag=True,
    help="Newly created wallet with no history; do not backfill",
)
@click.pass_context
def wallet_add(ctx: click.Context, addresses: tuple[str, ...], name: str, fresh: bool) -> None:
    """Watch a wallet owning ADDRESSES (in derivation order)."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        normalized = _validate_addresses(addresses)
        async with _db_from_config(config) as db:
            w = await db.add_wallet(config.node.chain_id, normalized, name=name, fresh=fresh)
        click.echo(format_output({"status": "added", "wallet": w}, "json"))

    _run(_go())


@wallet.command("derive")
@click.argument("wallet_id", type=int)
@click.argument("address")
@click.pass_context
def wallet_derive(ctx: click.Context, wallet_id: int, address: str) -> None:
    """Append a newly derived ADDRESS to WALLET_ID."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        (normalized,) = _validate_addresses([address])
        async with _db_from_config(config) as db:
            w = await db.add_watch_address(wallet_id, normalized)
        click.echo(format_output({"status": "updated", "wallet": w}, "json"))

    _run(_go())


@wallet.command("list")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def wallet_list(ctx: click.Context, fmt: str | None) -> None:
    """List watched wallets for the configured chain."""
    config: TransferwatchConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _go() -> None:
        async with _db_from_config(config) as db:
            wallets = await db.list_wallets(config.node.chain_id)
        click.echo(format_output(
            {"count": len(wallets), "wallets": wallets}, fmt, color=config.output.color
        ))

    _run(_go())


@wallet.command("remove")
@click.argument("wallet_id", type=int)
@click.pass_context
def wallet_remove(ctx: click.Context, wallet_id: int) -> None:
    """Stop watching WALLET_ID."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        async with _db_from_config(config) as db:
            result = await db.remove_wallet(wallet_id)
        click.echo(format_output(result, "json"))

    _run(_go())


# ── Token commands ────────────────────────────────────────────────────────────


@cli.group()
def token() -> None:
    """Manage the token registry."""


@token.command("list")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def token_list(ctx: click.Context, fmt: str | None) -> None:
    """List registered tokens and which ones are watched."""
    config: TransferwatchConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _go() -> None:
        async with _db_from_config(config) as db:
            registry = TokenRegistry(db)
            await registry.ensure_permanent(config.node.chain_id)
            tokens = await registry.all_tokens(config.node.chain_id)
            active = await db.get_active_symbols()
        click.echo(format_output(
            {"tokens": [t.to_dict() for t in tokens], "active_symbols": active},
            fmt,
            color=config.output.color,
        ))

    _run(_go())


@token.command("add")
@click.argument("address")
@click.option("--symbol", required=True)
@click.option("--decimals", required=True, type=click.IntRange(0, 77))
@click.option("--name", default="")
@click.pass_context
def token_add(ctx: click.Context, address: str, symbol: str, decimals: int, name: str) -> None:
    """Register the token contract at ADDRESS."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        (normalized,) = _validate_addresses([address])
        spec = TokenSpec(
            chain_id=config.node.chain_id,
            address=normalized,
            symbol=symbol,
            decimals=decimals,
            name=name,
        )
        async with _db_from_config(config) as db:
            await TokenRegistry(db).register(spec)
        click.echo(format_output({"status": "registered", "token": spec.to_dict()}, "json"))

    _run(_go())


@token.command("activate")
@click.argument("symbols", nargs=-1, required=True)
@click.pass_context
def token_activate(ctx: click.Context, symbols: tuple[str, ...]) -> None:
    """Start watching token SYMBOLS."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        async with _db_from_config(config) as db:
            active = await TokenRegistry(db).activate(list(symbols), config.node.chain_id)
        click.echo(format_output({"status": "updated", "active_symbols": active}, "json"))

    _run(_go())


@token.command("deactivate")
@click.argument("symbols", nargs=-1, required=True)
@click.pass_context
def token_deactivate(ctx: click.Context, symbols: tuple[str, ...]) -> None:
    """Stop watching token SYMBOLS (permanent tokens stay watched)."""
    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        async with _db_from_config(config) as db:
            active = await TokenRegistry(db).deactivate(list(symbols))
        click.echo(format_output({"status": "updated", "active_symbols": active}, "json"))

    _run(_go())


# ── Cursor commands ───────────────────────────────────────────────────────────


@cli.group()
def cursor() -> None:
    """Inspect stream cursors."""


@cursor.command("list")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.pass_context
def cursor_list(ctx: click.Context, fmt: str | None) -> None:
    """Show the last processed block of every stream."""
    config: TransferwatchConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _go() -> None:
        async with _db_from_config(config) as db:
            cursors = await db.list_cursors()
        click.echo(format_output({"cursors": cursors}, fmt, color=config.output.color))

    _run(_go())


# ── Scan / watch ──────────────────────────────────────────────────────────────


@cli.command("scan")
@click.option("--format", "fmt", type=click.Choice(FORMATS), default=None)
@click.option("--quiet", is_flag=True, help="Do not dispatch notifications to sinks")
@click.pass_context
def scan_command(ctx: click.Context, fmt: str | None, quiet: bool) -> None:
    """Run one catch-up cycle for every stream and report new transfers."""
    from transferwatch.ledger import get_query_layer
    from transferwatch.notify import NotificationEmitter, WebhookSink
    from transferwatch.watcher import run_once

    config: TransferwatchConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "json")

    async def _go() -> dict[str, Any]:
        # stdout carries the report here, so only the webhook sink applies
        sinks = []
        if config.notify.webhook_url and not quiet:
            sinks.append(WebhookSink(config.notify.webhook_url, config.notify.webhook_secret))
        client = get_query_layer(config)
        try:
            async with _db_from_config(config) as db:
                return await run_once(config, db, client, NotificationEmitter(sinks))
        finally:
            await client.close()

    result = _run(_go())
    click.echo(format_output(result, fmt, color=config.output.color))


@cli.command("watch")
@click.option("--interval", default=None, type=click.IntRange(0), help="Poll interval seconds")
@click.pass_context
def watch_command(ctx: click.Context, interval: int | None) -> None:
    """Watch for new transfers, emitting notifications as JSONL."""
    from transferwatch.ledger import get_query_layer
    from transferwatch.notify import NotificationEmitter, sinks_from_config
    from transferwatch.watcher import run_watch

    config: TransferwatchConfig = ctx.obj["config"]

    async def _go() -> None:
        client = get_query_layer(config)
        emitter = NotificationEmitter(sinks_from_config(config))
        try:
            async with _db_from_config(config) as db:
                await run_watch(config, db, client, emitter, interval_seconds=interval)
        finally:
            await client.close()

    try:
        _run(_go())
        sys.exit(130)  # loop ended (normal exit via SIGINT/cancel)
    except KeyboardInterrupt:
        sys.exit(130)


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage transferwatch configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.transferwatch/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided) if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(json.dumps({
            "status": "already_exists",
            "config_path": str(config_path),
            "hint": "Use --force to reinitialize",
        }))
        return

    status = "initialized"
    backup = None
    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(TransferwatchConfig(), str(config_path))

    result: dict[str, Any] = {"status": status, "config_path": str(config_path)}
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. watch.drift_threshold)."""
    config_path = ctx.obj.get("config_path")
    config: TransferwatchConfig = ctx.obj["config"]

    parts = key.split(".", 1)
    if len(parts) != 2:
        _output_error(ValueError(f"Key must be in form section.key, got: {key!r}"))
    section_name, field_name = parts
    section = getattr(config, section_name, None)
    if section is None or not hasattr(section, field_name):
        from transferwatch.exceptions import ConfigInvalidError

        _output_error(ConfigInvalidError(f"Unknown config key: {key!r}"))

    current = getattr(section, field_name)
    try:
        if isinstance(current, bool):
            typed_value: Any = value.lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
    except (ValueError, TypeError) as e:
        from transferwatch.exceptions import ConfigInvalidError

        _output_error(ConfigInvalidError(str(e)))
    setattr(section, field_name, typed_value)

    save_config(config, config_path)

    display_value = mask_secret(str(typed_value)) if "secret" in field_name else typed_value
    click.echo(json.dumps({"status": "updated", "key": key, "value": display_value}))


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (secrets masked)."""
    config: TransferwatchConfig = ctx.obj["config"]
    provided = ctx.obj.get("config_path")

    result = {
        "config_path": str(Path(provided) if provided else get_default_config_path()),
        "node": {
            "url": config.node.url,
            "chain_id": config.node.chain_id,
            "timeout_seconds": config.node.timeout_seconds,
        },
        "chain": {
            "native_symbol": config.chain.native_symbol,
            "native_decimals": config.chain.native_decimals,
        },
        "watch": {
            "poll_interval_seconds": config.watch.poll_interval_seconds,
            "drift_threshold": config.watch.drift_threshold,
            "page_size": config.watch.page_size,
            "max_pages": config.watch.max_pages,
            "genesis_floor": config.watch.genesis_floor,
        },
        "notify": {
            "stdout": config.notify.stdout,
            "webhook_url": config.notify.webhook_url,
            "webhook_secret": mask_secret(config.notify.webhook_secret),
        },
        "database": {"path": config.database.path},
        "output": {
            "default_format": config.output.default_format,
            "color": config.output.color,
        },
        "logging": {"level": config.logging.level},
    }
    click.echo(format_output(result, "json"))


if __name__ == "__main__":
    cli()
