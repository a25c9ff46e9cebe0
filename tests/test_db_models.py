from chain_sync_engine.app.infrastructure.db.db_base import SCHEMA, BaseDB
from chain_sync_engine.app.infrastructure.db.models.events import EventsDB
from chain_sync_engine.app.infrastructure.db.models.transactions import AddressSyncStateDB, TransactionsDB
from chain_sync_engine.app.infrastructure.db.models.watched_contracts import WatchedContractsDB


def _pk(model):
    return [c.name for c in model.__table__.primary_key.columns]


def test_tables_live_in_indexer_schema():
    assert SCHEMA == "indexer"
    assert set(BaseDB.metadata.tables) >= {
        "indexer.watched_contracts",
        "indexer.events",
        "indexer.transactions",
        "indexer.address_sync_state",
    }


def test_conflict_targets_are_primary_keys():
    # ON CONFLICT clauses in the repositories rely on these keys
    assert _pk(WatchedContractsDB) == ["address"]
    assert _pk(EventsDB) == ["transaction_hash", "log_index"]
    assert _pk(TransactionsDB) == ["hash"]
    assert _pk(AddressSyncStateDB) == ["address"]


def test_range_query_indexes():
    events_indexes = {ix.name: [c.name for c in ix.columns] for ix in EventsDB.__table__.indexes}
    tx_indexes = {ix.name: [c.name for c in ix.columns] for ix in TransactionsDB.__table__.indexes}

    assert events_indexes["ix_events_contract_block"] == ["contract_address", "block_number"]
    assert tx_indexes["ix_transactions_from_block"] == ["from_address", "block_number"]
    assert tx_indexes["ix_transactions_to_block"] == ["to_address", "block_number"]
