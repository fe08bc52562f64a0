import pytest

from book import Book
from catalog_store import CatalogStore
from database import Database
from errors import PersistenceError


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


def _snapshot():
    return [
        Book(30, "Solaris", "Stanislaw Lem", "Sci-Fi", 3, 1),
        Book(7, "Dune", "Frank Herbert", "Sci-Fi", 2, 2),
        Book(12, "Emma", "Jane Austen", "Classic", 1, 0),
    ]


def test_empty_store(catalog):
    assert catalog.list_all() == []
    assert catalog.lookup(7) is None


def test_replace_preserves_engine_order(catalog):
    catalog.replace_snapshot(_snapshot())
    assert [b.id for b in catalog.list_all()] == [30, 7, 12]


def test_lookup(catalog):
    catalog.replace_snapshot(_snapshot())
    book = catalog.lookup(30)
    assert book.title == "Solaris"
    assert book.total_copies == 3
    assert book.available == 1
    assert catalog.lookup(999) is None


def test_replace_discards_previous_content(catalog):
    catalog.replace_snapshot(_snapshot())
    catalog.replace_snapshot([Book(99, "Beloved", "Toni Morrison", "Fiction", 4)])
    assert [b.id for b in catalog.list_all()] == [99]
    assert catalog.lookup(7) is None


def test_empty_snapshot_clears_store(catalog):
    catalog.replace_snapshot(_snapshot())
    catalog.replace_snapshot([])
    assert catalog.list_all() == []


def test_replace_is_idempotent(catalog):
    catalog.replace_snapshot(_snapshot())
    once = catalog.list_all()
    catalog.replace_snapshot(_snapshot())
    assert catalog.list_all() == once


def test_lookup_many_skips_missing_ids(catalog):
    catalog.replace_snapshot(_snapshot())
    found = catalog.lookup_many([7, 12, 404, 7])
    assert set(found) == {7, 12}
    assert found[12].title == "Emma"
    assert catalog.lookup_many([]) == {}


def test_failed_replace_keeps_previous_snapshot(catalog):
    catalog.replace_snapshot(_snapshot())
    # A title of None violates NOT NULL partway through the insert
    broken = _snapshot()
    broken[1].title = None
    with pytest.raises(PersistenceError):
        catalog.replace_snapshot(broken)
    assert [b.id for b in catalog.list_all()] == [30, 7, 12]


def test_disconnected_store_reports_unavailable(tmp_path):
    catalog = CatalogStore(Database(str(tmp_path / "never_opened.db")))
    with pytest.raises(PersistenceError):
        catalog.list_all()
    with pytest.raises(PersistenceError):
        catalog.replace_snapshot(_snapshot())
