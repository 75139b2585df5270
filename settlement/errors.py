from typing import Optional


class SettlementError(Exception):
    """Base class for settlement pipeline errors"""


class ConfigurationError(SettlementError):
    """Required configuration is missing or invalid"""


class RpcError(SettlementError):
    """A wallet RPC call failed (transport, timeout, HTTP status or daemon error)"""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"{method} RPC error {code}: {message}" if code is not None else f"{method} RPC error: {message}")


class StorageError(SettlementError):
    """Reading or writing invoices, subscriptions or the ledger failed"""
