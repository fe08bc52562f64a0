from typing import Any, Dict, List

from catalog_store import CatalogStore
from issue_ledger import IssueLedger

UNKNOWN_TITLE = "Unknown"


class IssuesView:
    """Read-only report joining ledger records with catalog titles."""

    def __init__(self, catalog: CatalogStore, ledger: IssueLedger) -> None:
        self.catalog = catalog
        self.ledger = ledger

    def list_issues_with_titles(self) -> List[Dict[str, Any]]:
        records = self.ledger.list_all()
        books = self.catalog.lookup_many({record.item_id for record in records})
        rows = []
        for record in records:
            book = books.get(record.item_id)
            rows.append({
                "itemId": record.item_id,
                # Books deleted after issuance are reported rather than dropped
                "itemTitle": book.title if book else UNKNOWN_TITLE,
                "borrowerName": record.borrower_name,
                "borrowerId": record.borrower_id,
                "issuedAt": record.issued_at,
            })
        return rows
