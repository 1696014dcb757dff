import pytest
from core.store import JournalStore, connect


@pytest.fixture
def store():
    """Journal backed by an in-memory DuckDB database"""
    store = JournalStore(connect(':memory:'))
    try:
        yield store
    finally:
        store.close()
