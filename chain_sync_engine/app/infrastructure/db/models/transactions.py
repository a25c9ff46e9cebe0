from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, PrimaryKeyConstraint, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from chain_sync_engine.app.infrastructure.db.db_base import BaseDB


class TransactionsDB(BaseDB):
    """
    Transactions and withdrawal credits touching addresses somebody asked about.

    hash is either the real transaction hash or a synthetic
    "withdrawal-<blockNumber>-<withdrawalIndex>" id for validator withdrawals.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        PrimaryKeyConstraint("hash"),
        Index("ix_transactions_from_block", "from_address", "block_number"),
        Index("ix_transactions_to_block", "to_address", "block_number"),
    )

    hash: Mapped[str] = mapped_column(Text, nullable=False)

    """Lower-cased sender; the zero address for withdrawals."""
    from_address: Mapped[str] = mapped_column(Text, nullable=False)

    """Lower-cased recipient; empty string for contract creations."""
    to_address: Mapped[str] = mapped_column(Text, nullable=False)

    """Value in base units (wei) as a decimal string."""
    value: Mapped[str] = mapped_column(Text, nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AddressSyncStateDB(BaseDB):
    """
    Per-address transaction sync bookkeeping.

    [synced_from_block, synced_to_block] is a contiguous, fully scanned
    interval; creation_block caches the contract-creation lookup.
    """

    __tablename__ = "address_sync_state"
    __table_args__ = (PrimaryKeyConstraint("address"),)

    address: Mapped[str] = mapped_column(Text, nullable=False)
    synced_from_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    synced_to_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    creation_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    locator_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
