from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

SCHEMA = "indexer"


class BaseDB(DeclarativeBase):
    """Declarative base shared by every table of the indexer schema."""

    metadata = MetaData(schema=SCHEMA)
