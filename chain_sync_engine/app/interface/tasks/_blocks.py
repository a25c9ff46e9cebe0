from __future__ import annotations

from typing import Literal

_EARLIEST: Literal["earliest"] = "earliest"
_LATEST: Literal["latest"] = "latest"


def parse_from_block(value: int | str | None) -> int | None:
    """int, "" / "earliest" (None: let the engine decide)."""
    if value is None or isinstance(value, int):
        return value
    raw = value.strip().lower()
    if raw in ("", _EARLIEST):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Unsupported from_block value: {value!r}")


def parse_to_block(value: int | str | None) -> int | Literal["latest"] | None:
    """int, "" / "latest"."""
    if value is None or isinstance(value, int):
        return value
    raw = value.strip().lower()
    if raw in ("", _LATEST):
        return _LATEST
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Unsupported to_block value: {value!r}")
