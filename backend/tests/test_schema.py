"""
Schema tests.

Verifies:
- Every index name in the metadata is unique
- The full schema builds on a fresh database
"""

from collections import Counter

from sqlalchemy import create_engine, inspect

from medisupply.extensions import db


def test_index_names_are_unique(app):
    names = Counter(
        index.name
        for table in db.metadata.sorted_tables
        for index in table.indexes
    )
    assert [name for name, count in names.items() if count > 1] == []


def test_create_all_on_fresh_database(app):
    engine = create_engine("sqlite:///:memory:")
    try:
        db.metadata.create_all(engine)
        indexes = {ix["name"] for ix in inspect(engine).get_indexes("audit_events")}
        assert "ix_audit_events_resource" in indexes
    finally:
        engine.dispose()
