import asyncio
import json
import logging
import os
import re
import time
from typing import Dict, List, Optional, Sequence

from book import Book
from errors import EngineError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_REQUIRED_KEYS = ("id", "title", "author", "category", "available")
_TOTAL_KEYS = ("total", "totalCopies")


def escape_argument(value: object) -> str:
    """The engine splits on whitespace, so callers replace it with underscores."""
    return _WHITESPACE.sub("_", str(value).strip())


def parse_snapshot(output: str) -> List[Book]:
    """Decode the engine's stdout into a full snapshot.

    Empty output is an empty collection. Anything that is not a JSON array of
    well-formed items, including an item that breaks ``0 <= available <= total``,
    raises EngineError so that a partial snapshot is never adopted.
    """
    if not output or not output.strip():
        return []
    try:
        payload = json.loads(output)
    except json.JSONDecodeError as exc:
        raise EngineError(f"Inventory engine returned unparseable output: {exc}") from exc
    if not isinstance(payload, list):
        raise EngineError(f"Inventory engine returned {type(payload).__name__}, expected an array.")

    books: List[Book] = []
    seen = set()
    for entry in payload:
        if not isinstance(entry, dict):
            raise EngineError("Inventory engine returned a non-object item.")
        missing = [key for key in _REQUIRED_KEYS if entry.get(key) is None]
        if missing or all(entry.get(key) is None for key in _TOTAL_KEYS):
            raise EngineError(f"Inventory engine returned an item without {missing or 'total'}: {entry!r}")
        try:
            book = Book.from_dict(entry)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise EngineError(f"Inventory engine returned a malformed item: {entry!r}") from exc
        if not book.is_consistent():
            raise EngineError(
                f"Inventory engine reported {book.available}/{book.total_copies} copies for item {book.id}."
            )
        if book.id in seen:
            raise EngineError(f"Inventory engine returned item {book.id} twice.")
        seen.add(book.id)
        books.append(book)
    return books


class InventoryEngine:
    """Client for the external inventory engine process.

    Every call runs one engine command and returns the complete item
    collection. Calls are serialized through a single lock: the engine keeps
    its state in a file that it rewrites on every command and does not
    serialize concurrent invocations itself.
    """

    def __init__(self, argv: Sequence[str], env: Optional[Dict[str, str]] = None) -> None:
        if not argv:
            raise ValueError("Inventory engine command cannot be empty.")
        self.argv = list(argv)
        self.env = env
        self._lock = asyncio.Lock()

    async def list(self) -> List[Book]:
        return await self.run("list")

    async def add(self, item_id: int, title: str, author: str, category: str, total_copies: int) -> List[Book]:
        return await self.run(
            "add",
            str(int(item_id)),
            escape_argument(title),
            escape_argument(author),
            escape_argument(category),
            str(int(total_copies)),
        )

    async def delete(self, item_id: int) -> List[Book]:
        return await self.run("delete", str(int(item_id)))

    async def issue(self, item_id: int) -> List[Book]:
        return await self.run("issue", str(int(item_id)))

    async def return_book(self, item_id: int) -> List[Book]:
        return await self.run("return", str(int(item_id)))

    async def run(self, command: str, *args: str) -> List[Book]:
        argv = [*self.argv, command, *args]
        env = None
        if self.env:
            env = {**os.environ, **self.env}

        async with self._lock:
            started = time.perf_counter()
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                )
            except OSError as exc:
                logger.error(f"Could not start inventory engine {self.argv[0]}: {exc}")
                raise EngineError(f"Could not start inventory engine: {exc}") from exc
            stdout, stderr = await process.communicate()

        elapsed_ms = (time.perf_counter() - started) * 1000
        err_text = stderr.decode("utf-8", errors="replace").strip()
        logger.debug(f"Inventory engine '{command}' finished in {elapsed_ms:.1f}ms with code {process.returncode}")

        if process.returncode != 0:
            logger.error(f"Inventory engine '{command}' failed with code {process.returncode}: {err_text}")
            raise EngineError(
                f"Inventory engine command '{command}' failed.",
                returncode=process.returncode,
                stderr=err_text,
            )
        return parse_snapshot(stdout.decode("utf-8", errors="replace"))
