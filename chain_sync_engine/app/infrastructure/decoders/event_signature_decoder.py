from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from chain_sync_engine.app.domain.errors import DecodeError, InvalidEventSignatureError
from chain_sync_engine.app.domain.models import ChainLog

_NAME_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_ELEMENTARY_RE = re.compile(
    r"^(address|bool|string|bytes([1-9]|[12][0-9]|3[0-2])?|u?int(8|16|24|32|40|48|56|64|72|80|88|96|104|112|120|128|136|144|152|160|168|176|184|192|200|208|216|224|232|240|248|256)?)(\[[0-9]*\])*$"
)


@dataclass(frozen=True)
class EventParam:
    type: str
    name: str
    indexed: bool | None  # None: signature did not say


@dataclass(frozen=True)
class EventSpec:
    name: str
    params: tuple[EventParam, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.params)})"


def _split_top_level(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise InvalidEventSignatureError("Unbalanced parentheses in event signature")
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if depth != 0:
        raise InvalidEventSignatureError("Unbalanced parentheses in event signature")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def _normalize_type(raw: str) -> str:
    typ = raw.replace(" ", "")
    if typ.startswith("("):
        # tuple: "(address,uint256)[]"
        close = typ.rfind(")")
        inner = _split_top_level(typ[1:close])
        suffix = typ[close + 1 :]
        return "(" + ",".join(_normalize_type(t.split()[0] if t.split() else t) for t in inner) + ")" + suffix
    if typ == "uint" or typ.startswith("uint["):
        typ = "uint256" + typ[4:]
    elif typ == "int" or typ.startswith("int["):
        typ = "int256" + typ[3:]
    if not _ELEMENTARY_RE.match(typ):
        raise InvalidEventSignatureError(f"Unsupported ABI type: {raw!r}")
    return typ


def parse_event_signature(signature: str) -> EventSpec:
    """
    Parse a human-readable event fragment.

    Accepted forms:
      Transfer(address,address,uint256)
      event Transfer(address indexed from, address indexed to, uint256 value)
    """
    text = signature.strip()
    if text.startswith("event "):
        text = text[len("event "):].strip()
    if text.endswith("anonymous"):
        raise InvalidEventSignatureError("Anonymous events have no topic0 and cannot be watched")

    open_idx = text.find("(")
    if open_idx <= 0 or not text.endswith(")"):
        raise InvalidEventSignatureError(f"Invalid event signature format: {signature!r}")

    name = text[:open_idx].strip()
    if not _NAME_RE.match(name):
        raise InvalidEventSignatureError(f"Invalid event name: {name!r}")

    params: list[EventParam] = []
    for position, chunk in enumerate(_split_top_level(text[open_idx + 1 : -1])):
        if not chunk:
            raise InvalidEventSignatureError(f"Empty parameter in event signature: {signature!r}")

        if chunk.startswith("("):
            close = chunk.rfind(")")
            end = close + 1
            while end < len(chunk) and chunk[end] in "[]0123456789":
                end += 1
            type_token, rest = chunk[:end], chunk[end:].split()
        else:
            tokens = chunk.split()
            type_token, rest = tokens[0], tokens[1:]

        indexed: bool | None = None
        if rest and rest[0] == "indexed":
            indexed = True
            rest = rest[1:]
        if len(rest) > 1 or (rest and not _NAME_RE.match(rest[0])):
            raise InvalidEventSignatureError(f"Invalid parameter declaration: {chunk!r}")

        params.append(
            EventParam(
                type=_normalize_type(type_token),
                name=rest[0] if rest else f"arg{position}",
                indexed=indexed,
            )
        )

    if any(p.indexed for p in params):
        params = [EventParam(p.type, p.name, bool(p.indexed)) for p in params]

    return EventSpec(name=name, params=tuple(params))


def load_event_abi(abi_path: Path, event_name: str) -> dict[str, Any] | None:
    """Return the ABI entry for event_name, or None when the ABI does not declare it."""
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")
    data = json.loads(abi_path.read_text(encoding="utf-8"))

    # Common formats:
    # - [ ... ] (ABI list)
    # - { "abi": [ ... ] } (artifact)
    if isinstance(data, list):
        abi = data
    elif isinstance(data, dict) and isinstance(data.get("abi"), list):
        abi = data["abi"]
    else:
        raise ValueError(
            f"Unsupported ABI JSON format in {abi_path}. Expected list or dict with 'abi' list."
        )

    events = [x for x in abi if isinstance(x, dict) and x.get("type") == "event" and x.get("name") == event_name]
    if not events:
        return None
    if len(events) > 1:
        raise ValueError(
            f"Multiple events named {event_name!r} found in ABI. "
            "Disambiguation by full signature is required."
        )
    return events[0]


def _abi_type(inp: Mapping[str, Any]) -> str:
    typ = inp["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in inp.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def spec_from_abi(event_abi: Mapping[str, Any]) -> EventSpec:
    name = event_abi.get("name")
    inputs = event_abi.get("inputs", [])
    if not isinstance(name, str) or not isinstance(inputs, list):
        raise ValueError("Invalid event ABI: missing name/inputs")
    params = []
    for position, inp in enumerate(inputs):
        if not isinstance(inp, dict) or "type" not in inp:
            raise ValueError("Invalid event ABI inputs")
        params.append(
            EventParam(
                type=_abi_type(inp),
                name=inp.get("name") or f"arg{position}",
                indexed=bool(inp.get("indexed")),
            )
        )
    return EventSpec(name=name, params=tuple(params))


class EventSignatureDecoder:
    """
    ABI-based decoder for one event, built from its human-readable signature.

    It:
    - parses the signature (or takes names/indexed flags from an ABI file),
    - computes topic0 = keccak("EventName(type1,type2,...)"),
    - decodes indexed args from topics and non-indexed args from `data` with eth_abi,
    - normalizes values into JSON-safe form (ints as decimal strings, bytes as hex).

    When the signature does not mark indexed parameters, the number of topics
    on each log decides: the first len(topics) - 1 parameters are taken as
    indexed, which is the layout of ERC-20/721 Transfer and Approval.
    """

    def __init__(self, *, event_signature: str, abi_path: Path | None = None) -> None:
        spec = parse_event_signature(event_signature)
        if abi_path is not None:
            event_abi = load_event_abi(abi_path, spec.name)
            if event_abi is not None:
                abi_spec = spec_from_abi(event_abi)
                if abi_spec.canonical == spec.canonical:
                    spec = abi_spec

        self._spec = spec
        self._signature = event_signature
        self._topic0 = keccak(text=spec.canonical)

    @property
    def event_name(self) -> str:
        return self._spec.name

    @property
    def event_signature(self) -> str:
        return self._signature

    @property
    def canonical_signature(self) -> str:
        return self._spec.canonical

    @property
    def topic0(self) -> bytes:
        return self._topic0

    def decode(self, log: ChainLog) -> dict[str, Any]:
        # 1) must match expected event
        if not log.topics or bytes(log.topics[0]) != self._topic0:
            raise DecodeError(
                f"Log {log.transaction_hash}:{log.log_index} is not {self._spec.canonical}"
            )

        indexed_topics = [bytes(t) for t in log.topics[1:]]
        params = self._spec.params

        # 2) split params into indexed / non-indexed
        if any(p.indexed is not None for p in params):
            indexed = [p for p in params if p.indexed]
            non_indexed = [p for p in params if not p.indexed]
        else:
            if len(indexed_topics) > len(params):
                raise DecodeError(f"Too many topics for {self._spec.canonical}")
            indexed = list(params[: len(indexed_topics)])
            non_indexed = list(params[len(indexed_topics):])

        if len(indexed) != len(indexed_topics):
            raise DecodeError(
                f"Expected {len(indexed)} indexed topics for {self._spec.canonical}, "
                f"got {len(indexed_topics)}"
            )

        out: dict[str, Any] = {}
        for param, topic in zip(indexed, indexed_topics, strict=True):
            out[param.name] = self._decode_topic(param.type, topic)

        # 3) decode non-indexed from data
        if non_indexed:
            types = [p.type for p in non_indexed]
            try:
                values = abi_decode(types, bytes(log.data))
            except (DecodingError, ValueError, OverflowError) as exc:
                raise DecodeError(f"Cannot decode data of {self._spec.canonical}: {exc}") from exc
            for param, value in zip(non_indexed, values, strict=True):
                out[param.name] = self._normalize_abi_value(param.type, value)

        # Keep declaration order
        return {p.name: out[p.name] for p in params}

    # ---------------------------------------------------------------------
    # Topic / ABI value normalization
    # ---------------------------------------------------------------------

    def _decode_topic(self, typ: str, topic: bytes) -> Any:
        if len(topic) != 32:
            raise DecodeError(f"Expected 32 bytes topic, got len={len(topic)}")
        # Dynamic and composite indexed values are stored as their keccak hash.
        if typ in ("string", "bytes") or typ.endswith("]") or typ.startswith("("):
            return "0x" + topic.hex()
        try:
            (value,) = abi_decode([typ], topic)
        except (DecodingError, ValueError, OverflowError) as exc:
            raise DecodeError(f"Cannot decode topic as {typ}: {exc}") from exc
        return self._normalize_abi_value(typ, value)

    def _normalize_abi_value(self, typ: str, val: Any) -> Any:
        if isinstance(val, (list, tuple)):
            return [self._normalize_abi_value(_element_type(typ), v) for v in val]

        if typ == "address" and isinstance(val, str):
            return to_checksum_address(val)

        if isinstance(val, bool):
            return val

        if isinstance(val, int):
            # uint256 and friends overflow JSON/float precision; keep them as strings
            return str(val)

        if isinstance(val, (bytes, bytearray, memoryview)):
            return "0x" + bytes(val).hex()

        return val


def _element_type(typ: str) -> str:
    if typ.endswith("]"):
        return typ[: typ.rfind("[")]
    # tuple components carry mixed types; leave them to the value-based branches
    return ""
