from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, PrimaryKeyConstraint, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from chain_sync_engine.app.infrastructure.db.db_base import BaseDB


class EventsDB(BaseDB):
    """
    Decoded event logs of watched contracts.

    Natural key (transaction_hash, log_index) makes inserts idempotent:
    historical replay and the live subscription may deliver the same log,
    and the second insert is dropped by ON CONFLICT DO NOTHING.
    """

    __tablename__ = "events"
    __table_args__ = (
        PrimaryKeyConstraint("transaction_hash", "log_index"),
        # Typical lookup pattern: contract + block range
        Index("ix_events_contract_block", "contract_address", "block_number"),
    )

    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    contract_address: Mapped[str] = mapped_column(Text, nullable=False)
    event_name: Mapped[str] = mapped_column(Text, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    """Parameter name -> value; integers as decimal strings, bytes as 0x hex."""
    args: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    """Timestamp of the containing block (UTC)."""
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
