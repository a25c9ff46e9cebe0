import json

import pytest
from eth_abi import encode
from eth_utils import keccak

from chain_sync_engine.app.domain.errors import DecodeError, InvalidEventSignatureError
from chain_sync_engine.app.domain.models import ChainLog
from chain_sync_engine.app.infrastructure.decoders.event_signature_decoder import (
    EventSignatureDecoder,
    parse_event_signature,
)
from tests.conftest import ALICE, BOB, TRANSFER, TRANSFER_TOPIC, address_topic, transfer_log


def test_topic0_is_keccak_of_canonical_signature():
    decoder = EventSignatureDecoder(event_signature=TRANSFER)

    assert decoder.topic0 == TRANSFER_TOPIC
    assert decoder.event_name == "Transfer"
    assert decoder.event_signature == TRANSFER


def test_full_fragment_uses_parameter_names_and_indexed_flags():
    decoder = EventSignatureDecoder(
        event_signature="event Transfer(address indexed from, address indexed to, uint256 value)"
    )

    assert decoder.canonical_signature == TRANSFER
    assert decoder.decode(transfer_log(10, value=10**30)) == {
        "from": ALICE,
        "to": BOB,
        "value": str(10**30),
    }


def test_bare_signature_takes_leading_params_as_indexed():
    decoder = EventSignatureDecoder(event_signature=TRANSFER)

    assert decoder.decode(transfer_log(10, value=5)) == {
        "arg0": ALICE,
        "arg1": BOB,
        "arg2": "5",
    }


def test_bytes_and_bools_are_normalized():
    decoder = EventSignatureDecoder(event_signature="event Stored(bytes32 indexed id, bytes payload, bool ok)")
    log = ChainLog(
        address="0x6b175474e89094c44da98b954eedeac495271d0f",
        block_number=1,
        transaction_hash="0x" + "ab" * 32,
        log_index=0,
        topics=(keccak(text="Stored(bytes32,bytes,bool)"), b"\x11" * 32),
        data=encode(["bytes", "bool"], [b"\x01\x02", True]),
    )

    assert decoder.decode(log) == {
        "id": "0x" + "11" * 32,
        "payload": "0x0102",
        "ok": True,
    }


def test_indexed_string_is_kept_as_topic_hash():
    decoder = EventSignatureDecoder(event_signature="event Named(string indexed name, uint256 id)")
    name_hash = keccak(text="alice")
    log = ChainLog(
        address="0x6b175474e89094c44da98b954eedeac495271d0f",
        block_number=1,
        transaction_hash="0x" + "cd" * 32,
        log_index=0,
        topics=(keccak(text="Named(string,uint256)"), name_hash),
        data=encode(["uint256"], [7]),
    )

    assert decoder.decode(log) == {"name": "0x" + name_hash.hex(), "id": "7"}


def test_abi_file_supplies_names(tmp_path):
    abi = [
        {
            "type": "event",
            "name": "Transfer",
            "anonymous": False,
            "inputs": [
                {"name": "src", "type": "address", "indexed": True},
                {"name": "dst", "type": "address", "indexed": True},
                {"name": "wad", "type": "uint256", "indexed": False},
            ],
        }
    ]
    abi_path = tmp_path / "dai.json"
    abi_path.write_text(json.dumps({"abi": abi}))

    decoder = EventSignatureDecoder(event_signature=TRANSFER, abi_path=abi_path)

    assert decoder.decode(transfer_log(3, value=9)) == {"src": ALICE, "dst": BOB, "wad": "9"}


def test_other_event_is_rejected():
    decoder = EventSignatureDecoder(event_signature="Approval(address,address,uint256)")

    with pytest.raises(DecodeError):
        decoder.decode(transfer_log(1))


def test_topic_count_mismatch_is_rejected():
    decoder = EventSignatureDecoder(
        event_signature="event Transfer(address indexed from, address to, uint256 value)"
    )

    with pytest.raises(DecodeError):
        decoder.decode(transfer_log(1))


def test_truncated_data_is_rejected():
    decoder = EventSignatureDecoder(event_signature=TRANSFER)
    log = ChainLog(
        address="0x6b175474e89094c44da98b954eedeac495271d0f",
        block_number=1,
        transaction_hash="0x" + "ef" * 32,
        log_index=0,
        topics=(TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB)),
        data=b"\x01",
    )

    with pytest.raises(DecodeError):
        decoder.decode(log)


def test_int_aliases_are_canonicalized():
    spec = parse_event_signature("Deposit(address indexed, uint)")

    assert spec.canonical == "Deposit(address,uint256)"
    assert [p.indexed for p in spec.params] == [True, False]


@pytest.mark.parametrize(
    "signature",
    [
        "Transfer",
        "Transfer(address,address",
        "Transfer(foo,bar)",
        "(address)",
        "Transfer(address,,uint256)",
        "event Anon(address indexed from) anonymous",
    ],
)
def test_invalid_signatures_are_rejected(signature):
    with pytest.raises(InvalidEventSignatureError):
        parse_event_signature(signature)
