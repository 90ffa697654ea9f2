"""
Config loading for transferwatch.

Sources (in precedence order, highest first):
  1. Environment variables (TRANSFERWATCH_*)
  2. ~/.transferwatch/config.toml
  3. Built-in defaults

Usage:
    from transferwatch.config import load_config
    config = load_config()
    print(config.node.url, config.watch.drift_threshold)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from transferwatch.exceptions import ConfigInvalidError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".transferwatch"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

# Genesis block ids double as chain ids
MAINNET_GENESIS_ID = "0x00000000851caf3cfdb6e899cf5958bfb1ac3413d346d43539627e6be7ec4b4a"
TESTNET_GENESIS_ID = "0x000000000b2bce3c70bc649a02749e8687721b09ed2e15997f466536b20bb127"

PRESET_NODES: dict[str, str] = {
    MAINNET_GENESIS_ID: "https://mainnet.veblocks.net",
    TESTNET_GENESIS_ID: "https://testnet.veblocks.net",
}

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("TRANSFERWATCH_NODE_URL", "node.url", str),
    ("TRANSFERWATCH_CHAIN_ID", "node.chain_id", str),
    ("TRANSFERWATCH_NODE_TIMEOUT", "node.timeout_seconds", float),
    ("TRANSFERWATCH_NATIVE_SYMBOL", "chain.native_symbol", str),
    ("TRANSFERWATCH_POLL_INTERVAL", "watch.poll_interval_seconds", int),
    ("TRANSFERWATCH_DRIFT_THRESHOLD", "watch.drift_threshold", int),
    ("TRANSFERWATCH_PAGE_SIZE", "watch.page_size", int),
    ("TRANSFERWATCH_MAX_PAGES", "watch.max_pages", int),
    ("TRANSFERWATCH_GENESIS_FLOOR", "watch.genesis_floor", int),
    ("TRANSFERWATCH_WEBHOOK_URL", "notify.webhook_url", str),
    ("TRANSFERWATCH_WEBHOOK_SECRET", "notify.webhook_secret", str),
    ("TRANSFERWATCH_DB_PATH", "database.path", str),
    ("TRANSFERWATCH_OUTPUT_FORMAT", "output.default_format", str),
    ("TRANSFERWATCH_LOG_LEVEL", "logging.level", str),
]

VALID_FORMATS = {"json", "jsonl", "table"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class NodeConfig:
    """Ledger node connection."""

    url: str = PRESET_NODES[MAINNET_GENESIS_ID]
    chain_id: str = MAINNET_GENESIS_ID
    timeout_seconds: float = 15.0


@dataclass
class ChainConfig:
    """Native asset rendering."""

    native_symbol: str = "VET"
    native_decimals: int = 18


@dataclass
class WatchConfig:
    """Fetch cycle policy constants."""

    poll_interval_seconds: int = 10
    drift_threshold: int = 100      # blocks; zero-row cycles lagging more than this snap to head
    page_size: int = 5              # rows per node request
    max_pages: int = 20             # requests per fetch cycle
    genesis_floor: int = 0          # backfill start when no cursor exists


@dataclass
class NotifyConfig:
    """Notification sinks."""

    stdout: bool = True
    webhook_url: str = ""
    webhook_secret: str = ""


@dataclass
class DatabaseConfig:
    """SQLite database location."""

    path: str = str(DEFAULT_CONFIG_DIR / "transferwatch.db")


@dataclass
class OutputConfig:
    """Output formatting defaults."""

    default_format: str = "json"        # json | jsonl | table
    color: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class TransferwatchConfig:
    """Full configuration object. Passed via Click context to all commands."""

    node: NodeConfig = field(default_factory=NodeConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None = None) -> TransferwatchConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses TRANSFERWATCH_CONFIG_PATH
              env var or default (~/.transferwatch/config.toml).

    Returns:
        TransferwatchConfig with all values resolved.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        config = _dict_to_config(raw)
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value in {config_path}: {e}") from e
    _apply_env_overrides(config)
    _validate_config(config)

    return config


def save_config(config: TransferwatchConfig, path: str | None = None) -> Path:
    """
    Serialize TransferwatchConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
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
            "webhook_secret": config.notify.webhook_secret,
        },
        "database": {
            "path": config.database.path,
        },
        "output": {
            "default_format": config.output.default_format,
            "color": config.output.color,
        },
        "logging": {
            "level": config.logging.level,
        },
    }

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def get_default_config_path() -> Path:
    """Return the config file path used when none is given explicitly."""
    return _resolve_config_path(None)


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("TRANSFERWATCH_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> TransferwatchConfig:
    """Build TransferwatchConfig from raw TOML dict, applying defaults for missing keys."""
    config = TransferwatchConfig()

    node = raw.get("node", {})
    config.node.chain_id = str(node.get("chain_id", MAINNET_GENESIS_ID)).lower()
    config.node.url = node.get("url", "")
    config.node.timeout_seconds = float(node.get("timeout_seconds", 15.0))

    chain = raw.get("chain", {})
    config.chain.native_symbol = chain.get("native_symbol", "VET")
    config.chain.native_decimals = int(chain.get("native_decimals", 18))

    watch = raw.get("watch", {})
    config.watch.poll_interval_seconds = int(watch.get("poll_interval_seconds", 10))
    config.watch.drift_threshold = int(watch.get("drift_threshold", 100))
    config.watch.page_size = int(watch.get("page_size", 5))
    config.watch.max_pages = int(watch.get("max_pages", 20))
    config.watch.genesis_floor = int(watch.get("genesis_floor", 0))

    notify = raw.get("notify", {})
    config.notify.stdout = bool(notify.get("stdout", True))
    config.notify.webhook_url = notify.get("webhook_url", "")
    config.notify.webhook_secret = notify.get("webhook_secret", "")

    db = raw.get("database", {})
    config.database.path = db.get("path", str(DEFAULT_CONFIG_DIR / "transferwatch.db"))

    output = raw.get("output", {})
    config.output.default_format = output.get("default_format", "json")
    config.output.color = bool(output.get("color", True))

    logging_section = raw.get("logging", {})
    config.logging.level = str(logging_section.get("level", "WARNING")).upper()

    return config


def _apply_env_overrides(config: TransferwatchConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    stdout_flag = os.environ.get("TRANSFERWATCH_NOTIFY_STDOUT")
    if stdout_flag is not None:
        config.notify.stdout = stdout_flag.lower() in ("1", "true", "yes")

    if os.environ.get("TRANSFERWATCH_NO_COLOR"):
        config.output.color = False

    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e

    config.node.chain_id = config.node.chain_id.lower()
    config.logging.level = config.logging.level.upper()
    config.node.url = _resolve_node_url(config.node.url, config.node.chain_id)


def _resolve_node_url(url: str, chain_id: str) -> str:
    """
    Pick the node url for chain_id.

    An empty url, or one that is the preset node of some chain, follows
    chain_id to its own preset. A custom url is kept as is. A chain without
    a preset resolves to "" and fails validation.
    """
    if url and url.rstrip("/") not in PRESET_NODES.values():
        return url
    return PRESET_NODES.get(chain_id, "")


def _validate_config(config: TransferwatchConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if not config.node.url:
        raise ConfigInvalidError(
            f"node.url is required for chain {config.node.chain_id!r} (no preset node)"
        )
    if config.watch.drift_threshold < 0:
        raise ConfigInvalidError(
            f"watch.drift_threshold must be non-negative, got {config.watch.drift_threshold}"
        )
    if config.watch.page_size < 1:
        raise ConfigInvalidError(
            f"watch.page_size must be >= 1, got {config.watch.page_size}"
        )
    if config.watch.max_pages < 1:
        raise ConfigInvalidError(
            f"watch.max_pages must be >= 1, got {config.watch.max_pages}"
        )
    if config.watch.genesis_floor < 0:
        raise ConfigInvalidError(
            f"watch.genesis_floor must be non-negative, got {config.watch.genesis_floor}"
        )
    if config.watch.poll_interval_seconds < 0:
        raise ConfigInvalidError(
            f"watch.poll_interval_seconds must be non-negative, "
            f"got {config.watch.poll_interval_seconds}"
        )
    if config.output.default_format not in VALID_FORMATS:
        raise ConfigInvalidError(
            f"output.default_format must be one of {VALID_FORMATS}, "
            f"got {config.output.default_format!r}"
        )
    if config.logging.level not in VALID_LOG_LEVELS:
        raise ConfigInvalidError(
            f"logging.level must be one of {VALID_LOG_LEVELS}, got {config.logging.level!r}"
        )
