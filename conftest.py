import asyncio
from typing import Iterable, List, Optional

import pytest

from book import Book
from database import Database
from errors import EngineError
from library import Library


class FakeInventoryEngine:
    """In-memory stand-in for the inventory engine process.

    Follows the engine's command semantics and yields to the event loop on
    every call, the way a real subprocess round trip does.
    ``refuse_empty_issue=False`` makes an issue of an exhausted book a silent
    no-op instead of a failure.
    """

    def __init__(self, books: Iterable[Book] = (), *, refuse_empty_issue: bool = True) -> None:
        self.books: List[Book] = [_copy(b) for b in books]
        self.refuse_empty_issue = refuse_empty_issue
        self.calls: List[tuple] = []
        self.fail_with: Optional[str] = None
        self.output_override: Optional[List[Book]] = None

    def _snapshot(self) -> List[Book]:
        if self.output_override is not None:
            return [_copy(b) for b in self.output_override]
        return [_copy(b) for b in self.books]

    def _find(self, item_id: int) -> Optional[Book]:
        for book in self.books:
            if book.id == item_id:
                return book
        return None

    async def _enter(self, *call) -> None:
        self.calls.append(call)
        await asyncio.sleep(0)
        if self.fail_with:
            message, self.fail_with = self.fail_with, None
            raise EngineError(message, returncode=1, stderr=message)

    async def list(self) -> List[Book]:
        await self._enter("list")
        return self._snapshot()

    async def add(self, item_id, title, author, category, total_copies) -> List[Book]:
        await self._enter("add", item_id, title, author, category, total_copies)
        if self._find(item_id):
            raise EngineError(f"Book ID {item_id} already exists!", returncode=1)
        self.books.append(Book(item_id, title, author, category, total_copies))
        self.books.sort(key=lambda b: b.id)
        return self._snapshot()

    async def delete(self, item_id) -> List[Book]:
        await self._enter("delete", item_id)
        self.books = [b for b in self.books if b.id != item_id]
        return self._snapshot()

    async def issue(self, item_id) -> List[Book]:
        await self._enter("issue", item_id)
        book = self._find(item_id)
        if book is None:
            raise EngineError(f"Book ID {item_id} not found.", returncode=1)
        if book.available > 0:
            book.available -= 1
        elif self.refuse_empty_issue:
            raise EngineError(f"No copies of book {item_id} available.", returncode=1)
        return self._snapshot()

    async def return_book(self, item_id) -> List[Book]:
        await self._enter("return", item_id)
        book = self._find(item_id)
        if book is None:
            raise EngineError(f"Book ID {item_id} not found.", returncode=1)
        if book.available < book.total_copies:
            book.available += 1
        return self._snapshot()

    def commands(self) -> List[str]:
        return [call[0] for call in self.calls]


def _copy(book: Book) -> Book:
    return Book.from_dict(book.to_dict())


@pytest.fixture
def db(tmp_path):
    # Each test gets its own SQLite file
    database = Database(str(tmp_path / "library_test.db")).connect()
    yield database
    database.close()


@pytest.fixture
def engine():
    return FakeInventoryEngine([
        Book(7, "Dune", "Frank Herbert", "Sci-Fi", 2),
        Book(12, "Emma", "Jane Austen", "Classic", 1),
    ])


@pytest.fixture
def lib(engine, db):
    library = Library(engine, db)
    # Start from a catalog that mirrors the engine, as after a GET /items
    asyncio.run(library.list_books())
    engine.calls.clear()
    yield library
    library.close()
