import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional

from book import Book
from catalog_store import CatalogStore
from config import Settings
from database import Database
from errors import NotFoundError, OutOfStockError, ValidationError
from inventory_engine import InventoryEngine
from issue_ledger import IssueLedger, utc_now
from issue_record import IssueRecord
from issues_view import IssuesView

logger = logging.getLogger(__name__)


class Library:
    """Keeps the local catalog and the issue ledger reconciled with the inventory engine.

    Every operation follows the same order: check preconditions against local
    state, make exactly one engine call, install the returned snapshot, then
    touch the ledger. Nothing local changes before the engine call succeeds,
    so a failed call needs no rollback.

    With ``serialize_issues`` on, issue and return hold a per-item lock from
    the precondition check through the ledger write. With it off, two
    concurrent issues of the last copy can both pass the availability check;
    ``check_consistency()`` reports the resulting over-issue.
    """

    def __init__(self, engine: InventoryEngine, db: Database, *, serialize_issues: bool = True) -> None:
        self.engine = engine
        self.db = db
        self.catalog = CatalogStore(db)
        self.ledger = IssueLedger(db)
        self.issues_view = IssuesView(self.catalog, self.ledger)
        self.serialize_issues = serialize_issues
        self._item_locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Dict[int, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "Library":
        """Connect to the database (or fail) and wire up the configured engine."""
        db = Database(settings.database_file).connect()
        engine = InventoryEngine(settings.engine_argv, env={"INVENTORY_DATA_FILE": settings.engine_data_file})
        return cls(engine, db, serialize_issues=settings.serialize_issues)

    def close(self) -> None:
        self.db.close()

    # ------------------------- Catalog operations ------------------------- #
    async def list_books(self) -> List[Book]:
        """Resync the catalog from the engine and return it."""
        snapshot = await self.engine.list()
        return self._install(snapshot)

    async def add_book(self, item_id: Any, title: Any, author: Any, category: Any, total_copies: Any) -> List[Book]:
        item_id = _require_int(item_id, "id")
        title = _require_text(title, "title")
        author = _require_text(author, "author")
        category = _require_text(category, "category")
        total_copies = _require_int(total_copies, "totalCopies")
        if total_copies < 1:
            raise ValidationError("totalCopies must be at least 1.")

        snapshot = await self.engine.add(item_id, title, author, category, total_copies)
        logger.info(f"Added book {item_id} ({total_copies} copies)")
        return self._install(snapshot)

    async def delete_book(self, item_id: Any) -> List[Book]:
        item_id = _require_int(item_id, "id")
        snapshot = await self.engine.delete(item_id)
        logger.info(f"Deleted book {item_id}")
        return self._install(snapshot)

    def find_book(self, item_id: int) -> Optional[Book]:
        return self.catalog.lookup(item_id)

    # ------------------------- Circulation ------------------------- #
    async def issue_book(self, item_id: Any, borrower_name: Any, borrower_id: Any) -> List[Book]:
        item_id = _require_int(item_id, "id")
        borrower_name = _require_text(borrower_name, "borrowerName")
        borrower_id = _require_text(borrower_id, "borrowerId")

        async with self._item_guard(item_id):
            book = self.catalog.lookup(item_id)
            if book is None:
                raise NotFoundError(f"Book {item_id} not found.")
            if book.available <= 0:
                raise OutOfStockError(f"No copies of book {item_id} are available.")
            return await self._run_to_completion(self._commit_issue(item_id, borrower_name, borrower_id))

    async def return_book(self, item_id: Any, borrower_id: Any) -> List[Book]:
        item_id = _require_int(item_id, "id")
        borrower_id = _require_text(borrower_id, "borrowerId")

        async with self._item_guard(item_id):
            record = self.ledger.find_open_issue(item_id, borrower_id)
            if record is None:
                raise NotFoundError(f"No open issue of book {item_id} for borrower {borrower_id}.")
            return await self._run_to_completion(self._commit_return(record))

    async def _commit_issue(self, item_id: int, borrower_name: str, borrower_id: str) -> List[Book]:
        snapshot = await self.engine.issue(item_id)
        books = self._install(snapshot)
        record_id = self.ledger.create_issue(item_id, borrower_name, borrower_id)
        logger.info(f"Issued book {item_id} to {borrower_id} (record {record_id})")
        return books

    async def _commit_return(self, record: IssueRecord) -> List[Book]:
        snapshot = await self.engine.return_book(record.item_id)
        books = self._install(snapshot)
        self.ledger.close_issue(record.id, utc_now())
        logger.info(f"Returned book {record.item_id} from {record.borrower_id} (record {record.id})")
        return books

    # ------------------------- Reporting ------------------------- #
    def list_issues_with_titles(self) -> List[Dict[str, Any]]:
        return self.issues_view.list_issues_with_titles()

    def check_consistency(self) -> List[Dict[str, Any]]:
        """Items whose open loans exceed the copies the catalog shows as out.

        Open loans against a book that is no longer in the catalog count as
        faults too (``onLoan`` is then None).
        """
        books = {book.id: book for book in self.catalog.list_all()}
        faults = []
        for item_id, open_count in sorted(self.ledger.open_counts().items()):
            book = books.get(item_id)
            on_loan = book.on_loan if book else None
            if on_loan is None or open_count > on_loan:
                faults.append({"itemId": item_id, "openIssues": open_count, "onLoan": on_loan})
                logger.warning(f"Ledger/catalog mismatch for book {item_id}: {open_count} open issues, {on_loan} on loan")
        return faults

    # ------------------------- Helpers ------------------------- #
    def _install(self, snapshot: List[Book]) -> List[Book]:
        self.catalog.replace_snapshot(snapshot)
        return self.catalog.list_all()

    @asynccontextmanager
    async def _item_guard(self, item_id: int) -> AsyncIterator[None]:
        if not self.serialize_issues:
            yield
            return
        lock = self._item_locks.setdefault(item_id, asyncio.Lock())
        self._lock_users[item_id] = self._lock_users.get(item_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[item_id] -= 1
            if not self._lock_users[item_id]:
                del self._lock_users[item_id]
                del self._item_locks[item_id]

    async def _run_to_completion(self, commit: Awaitable[List[Book]]) -> List[Book]:
        """Run the engine call and local commit even if the caller is cancelled.

        On cancellation the caller still waits, inside the item guard, until
        the commit has landed, then re-raises CancelledError. A commit failure
        nobody is left to receive is logged.
        """
        task = asyncio.ensure_future(commit)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            while not task.done():
                try:
                    await asyncio.wait({task})
                except asyncio.CancelledError:
                    continue
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"Commit failed after its caller was cancelled: {task.exception()}")
            raise


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing field: {field}")
    return value.strip()


def _require_int(value: Any, field: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Missing field: {field}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer.") from exc
