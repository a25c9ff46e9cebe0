from __future__ import annotations


class ChainSyncError(Exception):
    """Base class for errors raised by the sync engine."""


class WatcherNotFoundError(ChainSyncError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Contract not found or not being indexed: {address}")
        self.address = address


class InvalidAddressError(ChainSyncError, ValueError):
    pass


class InvalidEventSignatureError(ChainSyncError, ValueError):
    pass


class ProviderConnectionError(ChainSyncError):
    """The chain node did not answer a liveness probe or refused the connection."""


class BatchFetchError(ChainSyncError):
    """An RPC call serving a block/log batch failed."""


class DecodeError(ChainSyncError):
    """A log does not match the shape of the expected event."""


class ThrottleTimeoutError(ChainSyncError):
    pass
