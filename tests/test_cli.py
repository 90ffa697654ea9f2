"""Tests for transferwatch/cli.py — Click CLI entry point."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from transferwatch.cli import cli

from conftest import ADDR_A0, ADDR_A1, STRANGER, USDC, FakeLedger, transfer_row


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def temp_config_path(tmp_path: Path) -> Path:
    return tmp_path / "config.toml"


@pytest.fixture
def config_env(tmp_path: Path, temp_config_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point config and DB at temp paths for CLI tests."""
    monkeypatch.setenv("TRANSFERWATCH_CONFIG_PATH", str(temp_config_path))
    monkeypatch.setenv("TRANSFERWATCH_DB_PATH", str(tmp_path / "test_tw.db"))
    monkeypatch.setenv("TRANSFERWATCH_NOTIFY_STDOUT", "false")


# ── version ───────────────────────────────────────────────────────────────────


def test_cli_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


# ── config commands ───────────────────────────────────────────────────────────


def test_config_init(runner: CliRunner, temp_config_path: Path, config_env: None) -> None:
    result = runner.invoke(cli, ["config", "init"])
    assert result.exit_code == 0
    output = json.loads(result.stdout)
    assert output["status"] == "initialized"
    assert temp_config_path.exists()

    again = runner.invoke(cli, ["config", "init"])
    assert json.loads(again.stdout)["status"] == "already_exists"

    forced = runner.invoke(cli, ["config", "init", "--force"])
    output = json.loads(forced.stdout)
    assert output["status"] == "reinitialized"
    assert Path(output["backup"]).exists()


def test_config_show_masks_secret(runner: CliRunner, temp_config_path: Path, config_env: None) -> None:
    temp_config_path.write_text('[notify]\nwebhook_secret = "supersecretvalue"\n')
    result = runner.invoke(cli, ["config", "show"])
    assert result.exit_code == 0
    output = json.loads(result.stdout)
    assert output["notify"]["webhook_secret"] == "supe****"
    assert output["watch"]["drift_threshold"] == 100


def test_config_set(runner: CliRunner, temp_config_path: Path, config_env: None) -> None:
    result = runner.invoke(cli, ["config", "set", "watch.drift_threshold", "250"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "status": "updated", "key": "watch.drift_threshold", "value": 250,
    }
    assert "drift_threshold = 250" in temp_config_path.read_text()


def test_config_set_unknown_key(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["config", "set", "watch.nope", "1"])
    assert result.exit_code == 5


# ── wallet commands ───────────────────────────────────────────────────────────


def test_wallet_add_and_list(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["wallet", "add", ADDR_A0, ADDR_A1, "--name", "main", "--fresh"])
    assert result.exit_code == 0
    output = json.loads(result.stdout)
    assert output["status"] == "added"
    assert output["wallet"]["addresses"] == [ADDR_A0, ADDR_A1]
    assert output["wallet"]["fresh"] is True

    listed = json.loads(runner.invoke(cli, ["wallet", "list"]).stdout)
    assert listed["count"] == 1
    assert listed["wallets"][0]["name"] == "main"


def test_wallet_add_invalid_address(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["wallet", "add", "not_an_address"])
    assert result.exit_code == 4
    assert "invalid_address" in result.output


def test_wallet_derive(runner: CliRunner, config_env: None) -> None:
    wallet_id = json.loads(runner.invoke(cli, ["wallet", "add", ADDR_A0]).stdout)["wallet"]["id"]
    result = runner.invoke(cli, ["wallet", "derive", str(wallet_id), ADDR_A1])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["wallet"]["addresses"] == [ADDR_A0, ADDR_A1]

    dup = runner.invoke(cli, ["wallet", "derive", str(wallet_id), ADDR_A1])
    assert dup.exit_code == 4


def test_wallet_remove(runner: CliRunner, config_env: None) -> None:
    wallet_id = json.loads(runner.invoke(cli, ["wallet", "add", ADDR_A0]).stdout)["wallet"]["id"]
    result = runner.invoke(cli, ["wallet", "remove", str(wallet_id)])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["status"] == "removed"
    assert json.loads(runner.invoke(cli, ["wallet", "list"]).stdout)["count"] == 0


def test_wallet_remove_not_found(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["wallet", "remove", "999"])
    assert result.exit_code == 4
    assert "wallet_not_found" in result.output


def test_wallet_list_table(runner: CliRunner, config_env: None) -> None:
    runner.invoke(cli, ["wallet", "add", ADDR_A0, "--name", "main"])
    result = runner.invoke(cli, ["--format", "table", "wallet", "list"])
    assert result.exit_code == 0
    assert "Watched Wallets" in result.stdout


# ── token commands ────────────────────────────────────────────────────────────


def test_token_list_includes_permanent(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["token", "list"])
    assert result.exit_code == 0
    output = json.loads(result.stdout)
    assert [t["symbol"] for t in output["tokens"]] == ["VTHO"]
    assert output["active_symbols"] == []


def test_token_add_activate_deactivate(runner: CliRunner, config_env: None) -> None:
    added = runner.invoke(cli, [
        "token", "add", USDC.address, "--symbol", "USDC", "--decimals", "6", "--name", "USD Coin",
    ])
    assert added.exit_code == 0
    assert json.loads(added.stdout)["token"]["decimals"] == 6

    activated = runner.invoke(cli, ["token", "activate", "USDC"])
    assert activated.exit_code == 0
    assert json.loads(activated.stdout)["active_symbols"] == ["USDC"]

    deactivated = runner.invoke(cli, ["token", "deactivate", "USDC"])
    assert json.loads(deactivated.stdout)["active_symbols"] == []


def test_token_activate_unknown(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["token", "activate", "NOPE"])
    assert result.exit_code == 4
    assert "token_not_found" in result.output


# ── cursor / scan ─────────────────────────────────────────────────────────────


def test_cursor_list_empty(runner: CliRunner, config_env: None) -> None:
    result = runner.invoke(cli, ["cursor", "list"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"cursors": []}


def test_scan_reports_transfers_and_moves_cursors(runner: CliRunner, config_env: None) -> None:
    runner.invoke(cli, ["wallet", "add", ADDR_A0])
    ledger = FakeLedger(head=1000, transfers=[transfer_row(995, sender=STRANGER, recipient=ADDR_A0)])

    with patch("transferwatch.ledger.get_query_layer", return_value=ledger):
        result = runner.invoke(cli, ["scan"])

    assert result.exit_code == 0, result.output
    output = json.loads(result.stdout)
    assert output["head"] == 1000
    assert len(output["notifications"]) == 1
    assert output["notifications"][0]["direction"] == "in"
    assert ledger.closed

    cursors = json.loads(runner.invoke(cli, ["cursor", "list"]).stdout)["cursors"]
    assert {c["stream_kind"]: c["position"] for c in cursors} == {"transfer": 996, "event": 1000}


def test_scan_jsonl(runner: CliRunner, config_env: None) -> None:
    ledger = FakeLedger(head=10)
    with patch("transferwatch.ledger.get_query_layer", return_value=ledger):
        result = runner.invoke(cli, ["scan", "--format", "jsonl"])
    assert result.exit_code == 0
    types = [json.loads(line)["type"] for line in result.stdout.splitlines()]
    assert types == ["scan_start", "scan_end"]


def test_scan_node_unreachable(runner: CliRunner, config_env: None) -> None:
    from transferwatch.exceptions import NodeConnectionError

    ledger = FakeLedger(head=10)
    ledger.error = NodeConnectionError("refused")
    with patch("transferwatch.ledger.get_query_layer", return_value=ledger):
        result = runner.invoke(cli, ["scan"])
    assert result.exit_code == 2
    assert "node_connection_failed" in result.output
    assert ledger.closed


def test_table_output_respects_no_color(
    runner: CliRunner, config_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    runner.invoke(cli, ["wallet", "add", ADDR_A0])
    colored = runner.invoke(cli, ["--format", "table", "wallet", "list"], color=True)
    assert "\x1b[" in colored.stdout

    monkeypatch.setenv("TRANSFERWATCH_NO_COLOR", "1")
    plain = runner.invoke(cli, ["--format", "table", "wallet", "list"], color=True)
    assert plain.exit_code == 0
    assert "\x1b[" not in plain.stdout
    assert "Watched Wallets" in plain.stdout


def test_config_set_chain_id_moves_node_url(
    runner: CliRunner, temp_config_path: Path, config_env: None
) -> None:
    from transferwatch.config import PRESET_NODES, TESTNET_GENESIS_ID

    runner.invoke(cli, ["config", "init"])
    result = runner.invoke(cli, ["config", "set", "node.chain_id", TESTNET_GENESIS_ID])
    assert result.exit_code == 0

    shown = json.loads(runner.invoke(cli, ["config", "show"]).stdout)
    assert shown["node"]["chain_id"] == TESTNET_GENESIS_ID
    assert shown["node"]["url"] == PRESET_NODES[TESTNET_GENESIS_ID]


def test_scan_survives_crashing_webhook_url(
    runner: CliRunner, config_env: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TRANSFERWATCH_WEBHOOK_URL", "http://[::1")
    runner.invoke(cli, ["wallet", "add", ADDR_A0])
    ledger = FakeLedger(head=1000, transfers=[transfer_row(995, sender=STRANGER, recipient=ADDR_A0)])

    with patch("transferwatch.ledger.get_query_layer", return_value=ledger):
        result = runner.invoke(cli, ["scan"])

    assert result.exit_code == 0, result.output
    assert len(json.loads(result.stdout)["notifications"]) == 1
