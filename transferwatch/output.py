"""Output format routing for transferwatch.

Converts result dicts to the requested format: json, jsonl, table.

Design rules:
- JSON: 2-space indent, utf-8
- JSONL: one JSON object per line, no trailing whitespace
- Table: Rich-formatted, green=incoming, red=outgoing

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import io
import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

VALID_FORMATS = {"json", "jsonl", "table"}


def format_output(data: Any, fmt: str, color: bool = False) -> str:
    """
    Format data for stdout output.

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    if fmt == "table":
        return format_table(data, color=color)
    return format_json(data)


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_jsonl(data: Any) -> str:
    """
    Format as JSONL.

    A scan result becomes scan_start, one notification per line, scan_end.
    Lists become one line per item; anything else a single line.
    """
    lines: list[str] = []

    if isinstance(data, dict) and "notifications" in data and "streams" in data:
        lines.append(json.dumps({
            "type": "scan_start",
            "chain_id": data.get("chain_id", ""),
            "head": data.get("head", 0),
        }))
        for n in data["notifications"]:
            lines.append(json.dumps({"type": "transfer", **n}))
        lines.append(json.dumps({
            "type": "scan_end",
            "streams": data["streams"],
            "notifications": len(data["notifications"]),
        }))
    elif isinstance(data, list):
        lines.extend(json.dumps(item) for item in data)
    else:
        lines.append(json.dumps(data))

    return "\n".join(lines)


def format_table(data: Any, color: bool = False) -> str:
    """
    Format as a Rich terminal table, with ANSI styles only when color is set.

    Handles scan results, wallet lists, token lists and cursor lists; any
    other value is printed as JSON.
    """
    buf = io.StringIO()
    console = Console(
        file=buf,
        highlight=False,
        markup=True,
        width=120,
        force_terminal=color,
        no_color=not color,
    )

    if isinstance(data, dict) and "notifications" in data and "streams" in data:
        _render_scan_table(console, data)
    elif isinstance(data, dict) and "wallets" in data:
        _render_wallet_table(console, data)
    elif isinstance(data, dict) and "tokens" in data:
        _render_token_table(console, data)
    elif isinstance(data, dict) and "cursors" in data:
        _render_cursor_table(console, data)
    else:
        console.print_json(json.dumps(data))

    return buf.getvalue()


def short_address(address: str) -> str:
    return f"{address[:8]}…{address[-6:]}" if len(address) > 16 else address


def _direction_color(direction: str) -> str:
    return "green" if direction == "in" else "red"


def _render_scan_table(console: Console, data: dict[str, Any]) -> None:
    streams = Table(title=f"Streams @ head {data.get('head', 0)}", header_style="bold blue")
    streams.add_column("Stream")
    streams.add_column("Start", justify="right")
    streams.add_column("Rows", justify="right")
    streams.add_column("Cursor", justify="right")
    streams.add_column("Error", style="red")
    for s in data.get("streams", []):
        streams.add_row(
            s.get("stream", ""),
            str(s.get("start") if s.get("start") is not None else "—"),
            str(s.get("rows", 0)),
            f"{s.get('cursor_before')} → {s.get('cursor_after')}",
            s.get("error") or "",
        )
    console.print(streams)

    notes = data.get("notifications", [])
    if not notes:
        console.print("No new transfers.")
        return

    table = Table(title="Transfers", header_style="bold blue")
    table.add_column("Block", justify="right")
    table.add_column("Dir", justify="center")
    table.add_column("Wallet", justify="right")
    table.add_column("Address", style="cyan", no_wrap=True)
    table.add_column("Counterparty", no_wrap=True)
    table.add_column("Amount (raw)", justify="right")
    table.add_column("Symbol")
    for n in notes:
        direction = n.get("direction", "")
        table.add_row(
            str(n.get("block_number", "")),
            Text(direction, style=_direction_color(direction)),
            f"{n.get('wallet_id')}/{n.get('address_index')}",
            short_address(n.get("address", "")),
            short_address(n.get("counterparty", "")),
            str(n.get("amount_raw", "")),
            n.get("symbol", ""),
        )
    console.print(table)


def _render_wallet_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Watched Wallets", header_style="bold blue")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Addresses", style="cyan")
    table.add_column("Fresh", justify="center")
    table.add_column("Created")

    for w in data.get("wallets", []):
        table.add_row(
            str(w.get("id", "")),
            w.get("name", "") or "—",
            "\n".join(f"{i}: {short_address(a)}" for i, a in enumerate(w.get("addresses", []))),
            "yes" if w.get("fresh") else "—",
            str(w.get("created_at", ""))[:19],
        )

    console.print(table)
    console.print(f"Total: [bold]{data.get('count', len(data.get('wallets', [])))}[/bold] wallets")


def _render_token_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Tokens", header_style="bold blue")
    table.add_column("Symbol")
    table.add_column("Name")
    table.add_column("Contract", style="cyan")
    table.add_column("Decimals", justify="right")
    table.add_column("Active", justify="center")
    active = set(data.get("active_symbols", []))
    for t in data.get("tokens", []):
        is_active = t.get("permanent") or t.get("symbol") in active
        table.add_row(
            t.get("symbol", ""),
            t.get("name", ""),
            short_address(t.get("address", "")),
            str(t.get("decimals", "")),
            "permanent" if t.get("permanent") else ("yes" if is_active else "—"),
        )
    console.print(table)


def _render_cursor_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Stream Cursors", header_style="bold blue")
    table.add_column("Chain")
    table.add_column("Stream")
    table.add_column("Position", justify="right")
    table.add_column("Updated")
    for c in data.get("cursors", []):
        table.add_row(
            short_address(c.get("chain_id", "")),
            c.get("stream_kind", ""),
            str(c.get("position", "")),
            str(c.get("updated_at", ""))[:19],
        )
    console.print(table)


def mask_secret(value: str) -> str:
    """
    Mask a secret for safe display.

    'abcdefg123' → 'abcd****'
    '' → '****'
    """
    if not value or len(value) <= 4:
        return "****"
    return value[:4] + "****"
