"""transferwatch — incremental transfer watcher for locally held wallets."""

__version__ = "0.1.0"
