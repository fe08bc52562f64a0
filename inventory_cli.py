"""Reference inventory engine.

Owns the authoritative copy counts in a small text data file and answers
every command with the complete collection as a JSON array on stdout. It is
the process the circulation service drives through ``InventoryEngine``::

    python -m inventory_cli list
    python -m inventory_cli add 7 Dune Frank_Herbert Sci-Fi 2
    python -m inventory_cli issue 7

Each data-file line is ``id,title,author,category,available,total``.
Invocations are not serialized against each other.
"""

import csv
import json
import os
import tempfile
from typing import Any, Dict, List, Optional

import typer

app = typer.Typer(help="Reference inventory engine", add_completion=False)


def load_books(path: str) -> List[Dict[str, Any]]:
    """Read the data file. A missing file is an empty collection; bad lines are skipped."""
    if not os.path.exists(path):
        return []
    books = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        for row in csv.reader(f):
            if len(row) < 6:
                continue
            try:
                books.append({
                    "id": int(row[0]),
                    "title": row[1],
                    "author": row[2],
                    "category": row[3],
                    "available": int(row[4]),
                    "total": int(row[5]),
                })
            except ValueError:
                continue
    return books


def save_books(path: str, books: List[Dict[str, Any]]) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".books-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            for book in books:
                writer.writerow([book["id"], book["title"], book["author"], book["category"], book["available"], book["total"]])
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def find_book(books: List[Dict[str, Any]], book_id: int) -> Optional[Dict[str, Any]]:
    for book in books:
        if book["id"] == book_id:
            return book
    return None


def _emit(books: List[Dict[str, Any]]) -> None:
    typer.echo(json.dumps(books, ensure_ascii=False, separators=(",", ":")))


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    ctx: typer.Context,
    data_file: str = typer.Option(
        "books.txt",
        "--data-file",
        "-f",
        envvar="INVENTORY_DATA_FILE",
        help="Path of the inventory data file",
    ),
):
    ctx.obj = {"data_file": data_file}


@app.command("list")
def cmd_list(ctx: typer.Context):
    """Print every book."""
    _emit(load_books(ctx.obj["data_file"]))


@app.command("add")
def cmd_add(ctx: typer.Context, book_id: int, title: str, author: str, category: str, total_copies: int):
    """Add a book with all copies available, keeping the collection sorted by id."""
    path = ctx.obj["data_file"]
    books = load_books(path)
    if total_copies < 1:
        _fail(f"Total copies must be at least 1, got {total_copies}.")
    if find_book(books, book_id):
        _fail(f"Book ID {book_id} already exists! Not adding duplicate.")
    books.append({
        "id": book_id,
        "title": title,
        "author": author,
        "category": category,
        "available": total_copies,
        "total": total_copies,
    })
    books.sort(key=lambda b: b["id"])
    save_books(path, books)
    _emit(books)


@app.command("delete")
def cmd_delete(ctx: typer.Context, book_id: int):
    """Delete a book. Unknown ids leave the collection unchanged."""
    path = ctx.obj["data_file"]
    books = [b for b in load_books(path) if b["id"] != book_id]
    save_books(path, books)
    _emit(books)


@app.command("issue")
def cmd_issue(ctx: typer.Context, book_id: int):
    """Take one copy out of the library."""
    path = ctx.obj["data_file"]
    books = load_books(path)
    book = find_book(books, book_id)
    if book is None:
        _fail(f"Book ID {book_id} not found.")
    if book["available"] <= 0:
        _fail(f"No copies of book {book_id} available.")
    book["available"] -= 1
    save_books(path, books)
    _emit(books)


@app.command("return")
def cmd_return(ctx: typer.Context, book_id: int):
    """Bring one copy back. Already-complete books stay at their total."""
    path = ctx.obj["data_file"]
    books = load_books(path)
    book = find_book(books, book_id)
    if book is None:
        _fail(f"Book ID {book_id} not found.")
    if book["available"] < book["total"]:
        book["available"] += 1
        save_books(path, books)
    _emit(books)


if __name__ == "__main__":
    app()
