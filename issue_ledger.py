import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from database import Database
from errors import NotFoundError, ValidationError
from issue_record import IssueRecord

_COLUMNS = "id, item_id, borrower_name, borrower_id, issued_at, returned_at"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp (sorts lexicographically)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class IssueLedger:
    """Append-mostly ledger of loans.

    Records are inserted by a successful issue and closed once by a successful
    return; nothing is ever deleted. Newest-first ordering uses ``issued_at``
    with the insertion order (rowid) as a tie-breaker.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_issue(
        self,
        item_id: int,
        borrower_name: str,
        borrower_id: str,
        issued_at: Optional[str] = None,
    ) -> str:
        if not borrower_name or not borrower_name.strip():
            raise ValidationError("borrowerName cannot be empty.")
        if not borrower_id or not borrower_id.strip():
            raise ValidationError("borrowerId cannot be empty.")

        record_id = uuid.uuid4().hex
        with self.db.transaction() as conn:
            conn.execute(
                f"INSERT INTO issues ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, NULL)",
                (record_id, int(item_id), borrower_name.strip(), borrower_id.strip(), issued_at or utc_now()),
            )
        return record_id

    def find_open_issue(self, item_id: int, borrower_id: str) -> Optional[IssueRecord]:
        rows = self.db.query(
            f"""SELECT {_COLUMNS} FROM issues
                WHERE item_id = ? AND borrower_id = ? AND returned_at IS NULL
                ORDER BY issued_at DESC, rowid DESC LIMIT 1""",
            (int(item_id), borrower_id.strip()),
        )
        return IssueRecord.from_row(rows[0]) if rows else None

    def close_issue(self, record_id: str, returned_at: Optional[str] = None) -> None:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE issues SET returned_at = ? WHERE id = ? AND returned_at IS NULL",
                (returned_at or utc_now(), record_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No open issue record with id {record_id}.")

    def get(self, record_id: str) -> Optional[IssueRecord]:
        rows = self.db.query(f"SELECT {_COLUMNS} FROM issues WHERE id = ?", (record_id,))
        return IssueRecord.from_row(rows[0]) if rows else None

    def list_all(self) -> List[IssueRecord]:
        rows = self.db.query(f"SELECT {_COLUMNS} FROM issues ORDER BY issued_at DESC, rowid DESC")
        return [IssueRecord.from_row(row) for row in rows]

    def open_counts(self) -> Dict[int, int]:
        """Number of open records per item id."""
        rows = self.db.query(
            "SELECT item_id, COUNT(*) AS open_count FROM issues WHERE returned_at IS NULL GROUP BY item_id"
        )
        return {row["item_id"]: row["open_count"] for row in rows}
