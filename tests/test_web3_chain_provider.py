from unittest.mock import AsyncMock, patch

import pytest
from hexbytes import HexBytes

from chain_sync_engine.app.domain.errors import ProviderConnectionError
from chain_sync_engine.app.infrastructure.rpc.web3_chain_provider import (
    Web3ChainProvider,
    to_chain_block,
    to_chain_log,
)
from tests.conftest import TRANSFER_TOPIC


def test_log_from_formatted_web3_response():
    raw = {
        "address": "0x6B175474E89094C44Da98b954EedeAC495271d0F",
        "blockNumber": 101,
        "transactionHash": HexBytes("0x" + "AB" * 32),
        "logIndex": 4,
        "topics": [HexBytes(TRANSFER_TOPIC)],
        "data": HexBytes("0x01"),
        "removed": False,
    }

    log = to_chain_log(raw)

    assert log.address == "0x6b175474e89094c44da98b954eedeac495271d0f"
    assert log.block_number == 101
    assert log.transaction_hash == "0x" + "ab" * 32
    assert log.log_index == 4
    assert log.topics == (TRANSFER_TOPIC,)
    assert log.data == b"\x01"


def test_log_from_raw_subscription_payload():
    raw = {
        "address": "0x6b175474e89094c44da98b954eedeac495271d0f",
        "blockNumber": "0x65",
        "transactionHash": "0x" + "cd" * 32,
        "logIndex": "0x0",
        "topics": ["0x" + TRANSFER_TOPIC.hex()],
        "data": "0x",
    }

    log = to_chain_log(raw)

    assert log.block_number == 101
    assert log.log_index == 0
    assert log.topics == (TRANSFER_TOPIC,)
    assert log.data == b""


def test_block_with_transactions_and_withdrawals():
    raw = {
        "number": 9,
        "timestamp": 1_700_000_009,
        "transactions": [
            {
                "hash": HexBytes("0x" + "01" * 32),
                "from": "0x1111111111111111111111111111111111111111",
                "to": "0x2222222222222222222222222222222222222222",
                "value": 7,
            },
            {
                "hash": HexBytes("0x" + "02" * 32),
                "from": "0x1111111111111111111111111111111111111111",
                "to": None,
                "value": 0,
            },
        ],
        "withdrawals": [
            {"index": "0x3", "validatorIndex": "0x10", "address": "0x1111111111111111111111111111111111111111", "amount": "0x5"},
        ],
    }

    block = to_chain_block(raw)

    assert block.number == 9
    assert [tx.value for tx in block.transactions] == [7, 0]
    assert block.transactions[1].to_address is None
    assert block.withdrawals[0].index == 3
    assert block.withdrawals[0].amount == 5


def test_block_with_transaction_hashes_only():
    block = to_chain_block({"number": "0xa", "timestamp": "0x10", "transactions": [HexBytes("0x" + "01" * 32)]})

    assert block.number == 10
    assert block.timestamp == 16
    assert block.transactions == ()
    assert block.withdrawals == ()


@pytest.mark.asyncio
async def test_missing_websocket_raises_connection_error():
    provider = Web3ChainProvider(http_url="http://localhost:8545", wss_url="ws://localhost:8546")

    # connect() returning without opening a socket
    with patch.object(provider, "connect", AsyncMock()):
        with pytest.raises(ProviderConnectionError, match="not open"):
            await provider.subscribe_logs(address="0x" + "11" * 20, topic0=TRANSFER_TOPIC, callback=AsyncMock())
        with pytest.raises(ProviderConnectionError, match="not open"):
            await provider.ping()
