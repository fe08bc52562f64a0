from typing import Dict, Iterable, List, Optional, Sequence

from book import Book
from database import Database

_COLUMNS = "id, title, author, category, total_copies, available"


class CatalogStore:
    """Local mirror of the inventory engine's item collection.

    The mirror is only ever replaced wholesale from an engine snapshot, never
    merged, so it always equals the engine's last response.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def replace_snapshot(self, items: Sequence[Book]) -> None:
        """Atomically discard the current content and install ``items`` in order."""
        rows = [
            (book.id, book.title, book.author, book.category, book.total_copies, book.available, position)
            for position, book in enumerate(items)
        ]
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM items")
            if rows:
                # INSERT OR REPLACE: a duplicated id in a snapshot keeps the last entry
                conn.executemany(
                    f"INSERT OR REPLACE INTO items ({_COLUMNS}, position) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )

    def lookup(self, item_id: int) -> Optional[Book]:
        rows = self.db.query(f"SELECT {_COLUMNS} FROM items WHERE id = ?", (item_id,))
        return Book.from_dict(dict(rows[0])) if rows else None

    def lookup_many(self, item_ids: Iterable[int]) -> Dict[int, Book]:
        """Batch lookup. Ids with no matching item are simply absent from the result."""
        ids = sorted(set(item_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self.db.query(f"SELECT {_COLUMNS} FROM items WHERE id IN ({placeholders})", tuple(ids))
        books = [Book.from_dict(dict(row)) for row in rows]
        return {book.id: book for book in books}

    def list_all(self) -> List[Book]:
        rows = self.db.query(f"SELECT {_COLUMNS} FROM items ORDER BY position")
        return [Book.from_dict(dict(row)) for row in rows]
