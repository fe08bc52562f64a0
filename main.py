import asyncio
import inspect
import json
import logging
import subprocess
import sys
from typing import Any, Callable, Dict, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from book import Book
from config import settings
from errors import LibraryError
from library import Library

APP_NAME = "Library CLI"

console = Console()

app = typer.Typer(help=APP_NAME, add_completion=False)

_state: Dict[str, Any] = {"output": "table"}


@app.callback()
def _global_options(
    output: str = typer.Option("table", "--output", "-o", help="Output format: table | json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine calls"),
):
    """Global options for the CLI."""
    if output not in ("table", "json"):
        raise typer.BadParameter("Output must be 'table' or 'json'.", param_hint="--output")
    _state["output"] = output
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)


def _run(operation: Callable[[Library], Any]) -> Any:
    """Open the library, run one operation, and close it again.

    Library errors are printed and end the command with exit code 1.
    """
    try:
        lib = Library.from_settings(settings)
    except LibraryError as e:
        console.print(f"[bold red]Library unavailable: {e}[/]")
        raise typer.Exit(code=1)
    try:
        result = operation(lib)
        if inspect.isawaitable(result):
            result = asyncio.run(result)
        return result
    except LibraryError as e:
        console.print(f"[bold red]Error: {e}[/]")
        raise typer.Exit(code=1)
    finally:
        lib.close()


def _print_books(books: List[Book]) -> None:
    if _state["output"] == "json":
        typer.echo(json.dumps([b.to_dict() for b in books]))
        return
    if not books:
        console.print("No books in library.")
        return
    table = Table(title="Books", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Category")
    table.add_column("Avail/Total", justify="right")
    for b in books:
        table.add_row(str(b.id), b.title, b.author, b.category, f"{b.available}/{b.total_copies}")
    console.print(table)


@app.command("list")
def cli_list():
    """Resync with the inventory engine and list every book."""
    _print_books(_run(lambda lib: lib.list_books()))


@app.command("add")
def cli_add(
    book_id: int,
    title: str,
    author: str,
    category: str,
    total_copies: int = typer.Argument(..., help="Number of physical copies"),
):
    """Add a book to the inventory."""
    _print_books(_run(lambda lib: lib.add_book(book_id, title, author, category, total_copies)))


@app.command("delete")
def cli_delete(book_id: int):
    """Delete a book. Its loan history is kept."""
    _print_books(_run(lambda lib: lib.delete_book(book_id)))


@app.command("issue")
def cli_issue(book_id: int, borrower_name: str, borrower_id: str):
    """Issue one copy of a book to a borrower."""
    books = _run(lambda lib: lib.issue_book(book_id, borrower_name, borrower_id))
    if _state["output"] == "table":
        console.print(f"Issued book {book_id} to {borrower_name} ({borrower_id}).")
    _print_books(books)


@app.command("return")
def cli_return(book_id: int, borrower_id: str):
    """Return the borrower's most recent open loan of a book."""
    books = _run(lambda lib: lib.return_book(book_id, borrower_id))
    if _state["output"] == "table":
        console.print(f"Book {book_id} returned by {borrower_id}.")
    _print_books(books)


@app.command("issues")
def cli_issues():
    """List all loans, newest first."""
    rows = _run(lambda lib: lib.list_issues_with_titles())
    if _state["output"] == "json":
        typer.echo(json.dumps(rows))
        return
    if not rows:
        console.print("No issues recorded.")
        return
    table = Table(title="Issues", box=box.SIMPLE)
    for column in ("Book", "Title", "Borrower", "Borrower ID", "Issued at"):
        table.add_column(column)
    for row in rows:
        table.add_row(str(row["itemId"]), row["itemTitle"], row["borrowerName"], row["borrowerId"], row["issuedAt"])
    console.print(table)


@app.command("check")
def cli_check():
    """Compare open loans with the copies the catalog shows as out."""
    faults = _run(lambda lib: lib.check_consistency())
    if _state["output"] == "json":
        typer.echo(json.dumps(faults))
    elif not faults:
        console.print("Catalog and ledger are consistent.")
    else:
        for fault in faults:
            on_loan = "missing from catalog" if fault["onLoan"] is None else f"{fault['onLoan']} on loan"
            console.print(f"[yellow]Book {fault['itemId']}: {fault['openIssues']} open issues, {on_loan}[/]")
    if faults:
        raise typer.Exit(code=1)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"Starting API on http://{host}:{port}")
    cmd = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    try:
        subprocess.run(cmd, check=False)
    except KeyboardInterrupt:
        console.print("Server stopped.")


if __name__ == "__main__":
    app()
