from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, PrimaryKeyConstraint, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from chain_sync_engine.app.infrastructure.db.db_base import BaseDB


class WatchedContractsDB(BaseDB):
    """
    Registry of contracts whose events are being indexed.

    One row = one lower-cased contract address. Rows are never deleted:
    stopping a watcher flips is_active and keeps the checkpoint so a later
    start can resume from it.
    """

    __tablename__ = "watched_contracts"
    __table_args__ = (
        PrimaryKeyConstraint("address"),
        # resume_all() scans active watchers on every (re)start
        Index("ix_watched_contracts_is_active", "is_active"),
    )

    """Lower-cased 0x-prefixed contract address."""
    address: Mapped[str] = mapped_column(Text, nullable=False)

    """Full human-readable event signature, e.g. Transfer(address,address,uint256)."""
    event_signature: Mapped[str] = mapped_column(Text, nullable=False)

    """Highest block whose matching events were durably processed."""
    last_indexed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
