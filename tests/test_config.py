"""Tests for transferwatch/config.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from transferwatch.config import (
    MAINNET_GENESIS_ID,
    PRESET_NODES,
    TESTNET_GENESIS_ID,
    TransferwatchConfig,
    get_default_config_path,
    load_config,
    save_config,
)
from transferwatch.exceptions import ConfigInvalidError

# ── load_config ───────────────────────────────────────────────────────────────


def test_load_config_returns_defaults_when_no_file(tmp_path: Path) -> None:
    """load_config should return defaults when config file doesn't exist."""
    config = load_config(str(tmp_path / "nonexistent.toml"))
    assert isinstance(config, TransferwatchConfig)
    assert config.node.chain_id == MAINNET_GENESIS_ID
    assert config.node.url == PRESET_NODES[MAINNET_GENESIS_ID]
    assert config.watch.drift_threshold == 100
    assert config.watch.page_size == 5
    assert config.output.default_format == "json"


def test_load_config_from_valid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("""
[node]
chain_id = "0x000000000B2BCE3C70BC649A02749E8687721B09ED2E15997F466536B20BB127"

[watch]
drift_threshold = 250
page_size = 50
genesis_floor = 1000

[notify]
webhook_url = "https://hooks.example.com/tw"

[output]
default_format = "table"
""")
    config = load_config(str(config_file))
    assert config.node.chain_id == TESTNET_GENESIS_ID
    # Testnet has a preset node, so no url is needed
    assert config.node.url == "https://testnet.veblocks.net"
    assert config.watch.drift_threshold == 250
    assert config.watch.page_size == 50
    assert config.watch.genesis_floor == 1000
    assert config.notify.webhook_url == "https://hooks.example.com/tw"
    assert config.output.default_format == "table"


def test_load_config_invalid_toml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("this is not valid toml = [broken")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_load_config_unknown_chain_requires_url(tmp_path: Path) -> None:
    """A chain without a preset node must name its node explicitly."""
    config_file = tmp_path / "config.toml"
    config_file.write_text('[node]\nchain_id = "0xdeadbeef"\n')
    with pytest.raises(ConfigInvalidError, match="node.url"):
        load_config(str(config_file))


def test_load_config_custom_chain_with_url(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[node]\nchain_id = "0xdeadbeef"\nurl = "http://localhost:8669"\n')
    config = load_config(str(config_file))
    assert config.node.url == "http://localhost:8669"


@pytest.mark.parametrize(
    "section,body",
    [
        ("watch", "drift_threshold = -1"),
        ("watch", "page_size = 0"),
        ("watch", "max_pages = 0"),
        ("watch", "genesis_floor = -5"),
        ("output", 'default_format = "csv"'),
        ("logging", 'level = "CHATTY"'),
    ],
)
def test_load_config_rejects_invalid_values(tmp_path: Path, section: str, body: str) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(f"[{section}]\n{body}\n")
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


def test_load_config_non_numeric_value(tmp_path: Path) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[watch]\npage_size = "many"\n')
    with pytest.raises(ConfigInvalidError):
        load_config(str(config_file))


# ── env overrides ─────────────────────────────────────────────────────────────


def test_env_overrides_take_precedence(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text("[watch]\ndrift_threshold = 10\n")
    monkeypatch.setenv("TRANSFERWATCH_DRIFT_THRESHOLD", "42")
    monkeypatch.setenv("TRANSFERWATCH_DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("TRANSFERWATCH_LOG_LEVEL", "debug")
    monkeypatch.setenv("TRANSFERWATCH_NOTIFY_STDOUT", "false")

    config = load_config(str(config_file))
    assert config.watch.drift_threshold == 42
    assert config.database.path == str(tmp_path / "x.db")
    assert config.logging.level == "DEBUG"
    assert config.notify.stdout is False


def test_env_override_bad_int(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSFERWATCH_PAGE_SIZE", "lots")
    with pytest.raises(ConfigInvalidError, match="TRANSFERWATCH_PAGE_SIZE"):
        load_config(str(tmp_path / "none.toml"))


def test_env_config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "env.toml"
    config_file.write_text("[watch]\nmax_pages = 3\n")
    monkeypatch.setenv("TRANSFERWATCH_CONFIG_PATH", str(config_file))
    assert load_config().watch.max_pages == 3


def test_env_chain_id_switches_preset_node(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSFERWATCH_CHAIN_ID", TESTNET_GENESIS_ID.upper().replace("0X", "0x"))
    config = load_config(str(tmp_path / "none.toml"))
    assert config.node.chain_id == TESTNET_GENESIS_ID
    assert config.node.url == PRESET_NODES[TESTNET_GENESIS_ID]


def test_saved_preset_url_follows_chain_id(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    config = TransferwatchConfig()
    save_config(config, str(path))
    assert PRESET_NODES[MAINNET_GENESIS_ID] in path.read_text()

    config.node.chain_id = TESTNET_GENESIS_ID
    save_config(config, str(path))

    loaded = load_config(str(path))
    assert loaded.node.url == PRESET_NODES[TESTNET_GENESIS_ID]


def test_custom_url_is_kept_across_chain_change(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text('[node]\nurl = "http://localhost:8669"\n')
    monkeypatch.setenv("TRANSFERWATCH_CHAIN_ID", TESTNET_GENESIS_ID)
    assert load_config(str(config_file)).node.url == "http://localhost:8669"


def test_preset_url_for_chain_without_preset_is_rejected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_file = tmp_path / "config.toml"
    config_file.write_text(f'[node]\nurl = "{PRESET_NODES[MAINNET_GENESIS_ID]}"\n')
    monkeypatch.setenv("TRANSFERWATCH_CHAIN_ID", "0xdeadbeef")
    with pytest.raises(ConfigInvalidError, match="node.url"):
        load_config(str(config_file))


def test_env_no_color(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSFERWATCH_NO_COLOR", "1")
    assert load_config(str(tmp_path / "none.toml")).output.color is False


# ── save_config ───────────────────────────────────────────────────────────────


def test_save_and_reload(tmp_path: Path) -> None:
    config = TransferwatchConfig()
    config.watch.drift_threshold = 7
    config.notify.webhook_secret = "s3cret"
    path = save_config(config, str(tmp_path / "sub" / "config.toml"))
    assert path.exists()

    reloaded = load_config(str(path))
    assert reloaded.watch.drift_threshold == 7
    assert reloaded.notify.webhook_secret == "s3cret"


def test_default_config_path() -> None:
    path = get_default_config_path()
    assert path.name == "config.toml"
    assert path.parent.name == ".transferwatch"
