from __future__ import annotations

from typing import Any, Dict


class Book:
    """Represents a single catalog item: a title with a count of physical copies."""

    def __init__(
        self,
        id: int,
        title: str,
        author: str,
        category: str,
        total_copies: int,
        available: int | None = None,
    ) -> None:
        self.id = int(id)
        self.title = title.strip()
        self.author = author.strip()
        self.category = category.strip()
        self.total_copies = int(total_copies)
        self.available = self.total_copies if available is None else int(available)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ID: {self.id}, {self.available}/{self.total_copies})"

    def __repr__(self) -> str:
        return (
            f"Book(id={self.id!r}, title={self.title!r}, author={self.author!r}, "
            f"category={self.category!r}, total_copies={self.total_copies!r}, available={self.available!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    @property
    def on_loan(self) -> int:
        """Copies currently out of the library."""
        return self.total_copies - self.available

    def is_consistent(self) -> bool:
        return self.total_copies >= 1 and 0 <= self.available <= self.total_copies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "totalCopies": self.total_copies,
            "available": self.available,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Book":
        """Build a Book from an engine snapshot entry or a stored row.

        The engine writes the copy count as ``total``; API payloads and stored
        rows use ``totalCopies`` / ``total_copies``.
        """
        if "totalCopies" in data:
            total = data["totalCopies"]
        elif "total_copies" in data:
            total = data["total_copies"]
        else:
            total = data["total"]
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            category=data["category"],
            total_copies=total,
            available=data.get("available"),
        )
