from __future__ import annotations

import asyncio
import logging
import time
from functools import wraps
from typing import Any, Mapping

from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider
from web3.exceptions import BlockNotFound, TimeExhausted
from web3.exceptions import ProviderConnectionError as Web3ProviderConnectionError

from chain_sync_engine.app.domain.errors import BatchFetchError, ProviderConnectionError
from chain_sync_engine.app.domain.models import (
    BlockTag,
    BlockTransaction,
    ChainBlock,
    ChainLog,
    Withdrawal,
)
from chain_sync_engine.app.domain.ports.out import LogCallback

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    Web3ProviderConnectionError,
    TimeExhausted,
    BlockNotFound,
    asyncio.TimeoutError,
    ConnectionError,
)


def retry_web3(func):
    """Retry transient transport errors for up to `self.retry_seconds` before re-raising."""

    @wraps(func)
    async def wrapper(self: "Web3ChainProvider", *args, **kwargs):
        start = time.monotonic()
        attempt = 1

        while True:
            try:
                return await func(self, *args, **kwargs)
            except _TRANSIENT_ERRORS as exc:
                remaining = self.retry_seconds - (time.monotonic() - start)
                if remaining <= 0:
                    logger.error(
                        "RPC %s failed after %s attempts: %s: %s",
                        func.__name__,
                        attempt,
                        type(exc).__name__,
                        exc,
                    )
                    raise

                logger.warning(
                    "RPC %s error on attempt #%s: %s: %s. Retrying, time left: %.1fs",
                    func.__name__,
                    attempt,
                    type(exc).__name__,
                    exc,
                    remaining,
                )
                await asyncio.sleep(min(1.0, remaining))
                attempt += 1

    return wrapper


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _as_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return HexBytes(value).to_0x_hex()
    return str(value)


def to_chain_log(raw: Mapping[str, Any]) -> ChainLog:
    """Normalize a web3 log (formatted AttributeDict or raw JSON-RPC dict)."""
    return ChainLog(
        address=str(raw["address"]).lower(),
        block_number=_as_int(raw["blockNumber"]),
        transaction_hash=_as_hex(raw["transactionHash"]).lower(),
        log_index=_as_int(raw["logIndex"]),
        topics=tuple(bytes(HexBytes(t)) for t in raw.get("topics", [])),
        data=bytes(HexBytes(raw.get("data", b""))),
    )


def to_chain_block(raw: Mapping[str, Any]) -> ChainBlock:
    transactions: list[BlockTransaction] = []
    for tx in raw.get("transactions") or []:
        # hashes only when the block was requested without full transactions
        if not isinstance(tx, Mapping):
            continue
        to_address = tx.get("to")
        transactions.append(
            BlockTransaction(
                hash=_as_hex(tx["hash"]).lower(),
                from_address=str(tx["from"]),
                to_address=str(to_address) if to_address else None,
                value=_as_int(tx.get("value", 0)),
            )
        )

    withdrawals = [
        Withdrawal(
            index=_as_int(w["index"]),
            address=str(w["address"]),
            amount=_as_int(w["amount"]),
        )
        for w in raw.get("withdrawals") or []
    ]

    return ChainBlock(
        number=_as_int(raw["number"]),
        timestamp=_as_int(raw["timestamp"]),
        transactions=tuple(transactions),
        withdrawals=tuple(withdrawals),
    )


class Web3ChainProvider:
    """
    ChainRpcProvider backed by AsyncWeb3.

    - request/response calls use an AsyncHTTPProvider,
    - log subscriptions and the liveness probe use a WebSocketProvider,
      whose notifications are consumed by one reader task and dispatched
      to per-subscription callbacks.
    """

    def __init__(
        self,
        *,
        http_url: str,
        wss_url: str | None = None,
        request_timeout: int = 30,
        retry_seconds: float = 10.0,
    ) -> None:
        self.http_url = http_url
        self.wss_url = wss_url
        self.request_timeout = request_timeout
        self.retry_seconds = retry_seconds

        self._w3 = AsyncWeb3(
            AsyncHTTPProvider(
                http_url,
                request_kwargs={"timeout": request_timeout},
            )
        )
        self._ws: AsyncWeb3 | None = None
        self._reader: asyncio.Task[None] | None = None
        self._callbacks: dict[str, LogCallback] = {}
        self._connect_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Request / response
    # ------------------------------------------------------------------

    @retry_web3
    async def current_head(self) -> int:
        return int(await self._w3.eth.block_number)

    @retry_web3
    async def code_exists(self, address: str, block_tag: BlockTag) -> bool:
        code = await self._w3.eth.get_code(AsyncWeb3.to_checksum_address(address), block_tag)
        return len(code) > 0

    @retry_web3
    async def get_balance(self, address: str) -> int:
        return int(await self._w3.eth.get_balance(AsyncWeb3.to_checksum_address(address)))

    async def raw_block(
        self,
        block_number: int,
        *,
        include_transactions: bool = True,
    ) -> ChainBlock | None:
        try:
            raw = await self._get_block(block_number, include_transactions)
        except BlockNotFound:
            return None
        except Exception as exc:
            raise BatchFetchError(f"eth_getBlockByNumber({block_number}) failed: {exc}") from exc
        return to_chain_block(raw)

    @retry_web3
    async def _get_block(self, block_number: int, full_transactions: bool) -> Mapping[str, Any]:
        return await self._w3.eth.get_block(block_number, full_transactions=full_transactions)

    async def query_logs(
        self,
        *,
        address: str,
        topic0: bytes,
        from_block: int,
        to_block: int,
    ) -> list[ChainLog]:
        params = {
            "address": AsyncWeb3.to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [HexBytes(topic0).to_0x_hex()],
        }
        try:
            raw_logs = await self._get_logs(params)
        except Exception as exc:
            raise BatchFetchError(
                f"eth_getLogs({address}, {from_block}-{to_block}) failed: {exc}"
            ) from exc

        logs = [to_chain_log(r) for r in raw_logs if not r.get("removed")]
        logs.sort(key=lambda log: (log.block_number, log.log_index))
        return logs

    @retry_web3
    async def _get_logs(self, params: dict[str, Any]) -> list[Mapping[str, Any]]:
        return list(await self._w3.eth.get_logs(params))

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            if not self.wss_url:
                raise ProviderConnectionError("RPC_WSS_URL is not configured; live subscriptions unavailable")

            logger.info("Connecting to provider via WSS...")
            ws = AsyncWeb3(WebSocketProvider(self.wss_url))
            try:
                await ws.provider.connect()
            except Exception as exc:
                raise ProviderConnectionError(f"WebSocket connection failed: {exc}") from exc

            self._ws = ws
            self._reader = asyncio.create_task(self._read_subscriptions(ws), name="ws-subscription-reader")

    async def _read_subscriptions(self, ws: AsyncWeb3) -> None:
        try:
            async for payload in ws.socket.process_subscriptions():
                handle = payload.get("subscription")
                result = payload.get("result")
                callback = self._callbacks.get(str(handle))
                if callback is None or not isinstance(result, Mapping):
                    continue
                if result.get("removed"):
                    logger.debug("Ignoring removed log on subscription %s", handle)
                    continue
                try:
                    await callback(to_chain_log(result))
                except Exception:
                    logger.exception("Subscription callback failed for %s", handle)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # The heartbeat notices the dead socket and reconnects.
            logger.error("Subscription reader stopped: %s", exc)

    async def subscribe_logs(
        self,
        *,
        address: str,
        topic0: bytes,
        callback: LogCallback,
    ) -> str:
        await self.connect()
        if self._ws is None:
            raise ProviderConnectionError("WebSocket connection is not open")

        handle = await self._ws.eth.subscribe(
            "logs",
            {
                "address": AsyncWeb3.to_checksum_address(address),
                "topics": [HexBytes(topic0).to_0x_hex()],
            },
        )
        handle = str(handle)
        self._callbacks[handle] = callback
        return handle

    async def unsubscribe(self, handle: str) -> None:
        self._callbacks.pop(handle, None)
        if self._ws is None:
            return
        await self._ws.eth.unsubscribe(handle)

    async def ping(self) -> None:
        try:
            await self.connect()
            if self._ws is None:
                raise ProviderConnectionError("WebSocket connection is not open")
            await asyncio.wait_for(self._ws.eth.block_number, timeout=self.request_timeout)
        except ProviderConnectionError:
            raise
        except Exception as exc:
            raise ProviderConnectionError(f"Provider probe failed: {exc}") from exc

    async def reconnect(self) -> None:
        await self._disconnect()
        await self.connect()

    async def close(self) -> None:
        await self._disconnect()

    async def _disconnect(self) -> None:
        self._callbacks.clear()
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None

        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if ws is not None:
            try:
                await ws.provider.disconnect()
            except Exception as exc:
                logger.debug("Ignoring error while closing WebSocket: %s", exc)
