"""
Custom exception hierarchy for transferwatch.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all TransferwatchError subclasses and formats them as JSON output.
Inside the watch loop none of these escape a cycle: every failure degrades to
"this cycle made no progress, try again on the next trigger".

Exit code mapping:
  1 — TransferwatchError (generic CLI error)
  2 — QueryError (node timeout, connection failure, bad response)
  4 — DataError (malformed payload, lookup miss, unknown wallet/token)
  5 — ConfigError (malformed config)
  6 — PersistenceError (SQLite failure)
"""


class TransferwatchError(Exception):
    """Base exception for all transferwatch errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class QueryError(TransferwatchError):
    """The query layer failed with a transport or protocol error."""

    exit_code = 2
    error_code = "query_error"


class NodeTimeoutError(QueryError):
    """Request to the node timed out."""

    error_code = "node_timeout"


class NodeConnectionError(QueryError):
    """Could not connect to the node."""

    error_code = "node_connection_failed"


class NodeResponseError(QueryError):
    """Node answered with a non-2xx status or a body we cannot parse."""

    error_code = "node_bad_response"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class DataError(TransferwatchError):
    """Data validation or not-found error."""

    exit_code = 4
    error_code = "data_error"


class DecodeError(DataError):
    """An event payload does not match the Transfer event schema."""

    error_code = "decode_error"


class LookupMiss(DataError):
    """A row refers to a token or wallet no longer present in the snapshot."""

    error_code = "lookup_miss"


class InvalidAddressError(DataError):
    """Address is not 0x + 40 hex chars."""

    error_code = "invalid_address"


class WalletNotFoundError(DataError):
    """Wallet id is not in the watched wallet list."""

    error_code = "wallet_not_found"


class WalletExistsError(DataError):
    """An address is already owned by this wallet."""

    error_code = "wallet_exists"


class TokenNotFoundError(DataError):
    """Token symbol is not registered for the chain."""

    error_code = "token_not_found"


class ConfigError(TransferwatchError):
    """Configuration could not be loaded or is inconsistent."""

    exit_code = 5
    error_code = "config_error"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class PersistenceError(TransferwatchError):
    """SQLite operation failed."""

    exit_code = 6
    error_code = "db_error"
