from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class IssueRecord:
    """One loan of a book to a borrower.

    A record is open while ``returned_at`` is None and closed once it is set.
    ``item_id`` is a plain value; the book may have been deleted since.
    """

    id: str
    item_id: int
    borrower_name: str
    borrower_id: str
    issued_at: str
    returned_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.returned_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "borrowerName": self.borrower_name,
            "borrowerId": self.borrower_id,
            "issuedAt": self.issued_at,
            "returnedAt": self.returned_at,
        }

    @staticmethod
    def from_row(row: Any) -> "IssueRecord":
        return IssueRecord(
            id=row["id"],
            item_id=row["item_id"],
            borrower_name=row["borrower_name"],
            borrower_id=row["borrower_id"],
            issued_at=row["issued_at"],
            returned_at=row["returned_at"],
        )
