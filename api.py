import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from book import Book
from config import Settings, settings
from errors import LibraryError, NotFoundError, OutOfStockError, ValidationError
from library import Library

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


# --- Models ---
class ItemModel(BaseModel):
    id: int
    title: str
    author: str
    category: str
    totalCopies: int
    available: int


class ItemCreateModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    author: str
    category: str
    total_copies: int = Field(alias="totalCopies")


class IssueRequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    borrower_name: str = Field(alias="borrowerName")
    borrower_id: str = Field(alias="borrowerId")


class ReturnRequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    borrower_id: str = Field(alias="borrowerId")


class IssueRowModel(BaseModel):
    itemId: int
    itemTitle: str
    borrowerName: str
    borrowerId: str
    issuedAt: str


class ConsistencyFaultModel(BaseModel):
    itemId: int
    openIssues: int
    onLoan: Optional[int] = None


def _items(books: List[Book]) -> List[dict]:
    return [book.to_dict() for book in books]


def _raise_http(exc: LibraryError, failure_detail: str) -> None:
    """Translate a library error into the matching HTTP status."""
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, OutOfStockError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    # Engine and persistence faults: log the cause, answer generically
    logger.error(f"{failure_detail}: {exc}")
    raise HTTPException(status_code=500, detail=failure_detail) from exc


def create_app(app_settings: Optional[Settings] = None, library: Optional[Library] = None) -> FastAPI:
    """Build the API. Passing ``library`` skips construction and leaves it open on shutdown."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Connect-or-fail at startup: a bad database path aborts the server here
        owned = library is None
        app.state.library = library or Library.from_settings(app_settings)
        try:
            # Resync so circulation calls see the engine's items before any GET /items
            try:
                await app.state.library.list_books()
            except LibraryError as e:
                logger.warning(f"Startup catalog resync failed, serving the stored catalog: {e}")
            yield
        finally:
            if owned:
                app.state.library.close()

    app = FastAPI(title=app_settings.app_name, version=app_settings.app_version, lifespan=lifespan)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def missing_fields_handler(request: Request, exc: RequestValidationError):
        fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
        detail = f"Missing or invalid fields: {', '.join(fields)}" if fields else "Missing fields"
        return JSONResponse(status_code=400, content={"detail": detail})

    def get_library(request: Request) -> Library:
        return request.app.state.library

    # --- Health Check ---
    @app.get("/health")
    async def health(lib: Library = Depends(get_library)):
        db_ok = lib.db.ping()
        return {
            "status": "healthy" if db_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db_ok,
        }

    # --- Items ---
    @app.get("/items", response_model=List[ItemModel])
    async def list_items(lib: Library = Depends(get_library)):
        try:
            return _items(await lib.list_books())
        except LibraryError as e:
            _raise_http(e, "Failed to list books")

    @app.post("/items", response_model=List[ItemModel])
    async def add_item(payload: ItemCreateModel, lib: Library = Depends(get_library)):
        try:
            books = await lib.add_book(payload.id, payload.title, payload.author, payload.category, payload.total_copies)
            return _items(books)
        except LibraryError as e:
            _raise_http(e, "Failed to add book")

    @app.delete("/items/{item_id}", response_model=List[ItemModel])
    async def delete_item(item_id: int, lib: Library = Depends(get_library)):
        try:
            return _items(await lib.delete_book(item_id))
        except LibraryError as e:
            _raise_http(e, "Failed to delete book")

    @app.post("/items/{item_id}/issue", response_model=List[ItemModel])
    async def issue_item(item_id: int, payload: IssueRequestModel, lib: Library = Depends(get_library)):
        try:
            return _items(await lib.issue_book(item_id, payload.borrower_name, payload.borrower_id))
        except LibraryError as e:
            _raise_http(e, "Failed to issue book")

    @app.post("/items/{item_id}/return", response_model=List[ItemModel])
    async def return_item(item_id: int, payload: ReturnRequestModel, lib: Library = Depends(get_library)):
        try:
            return _items(await lib.return_book(item_id, payload.borrower_id))
        except LibraryError as e:
            _raise_http(e, "Failed to return book")

    # --- Issues ---
    @app.get("/issues", response_model=List[IssueRowModel])
    async def list_issues(lib: Library = Depends(get_library)):
        try:
            return lib.list_issues_with_titles()
        except LibraryError as e:
            _raise_http(e, "Failed to list issues")

    @app.get("/issues/consistency", response_model=List[ConsistencyFaultModel])
    async def issues_consistency(lib: Library = Depends(get_library)):
        try:
            return lib.check_consistency()
        except LibraryError as e:
            _raise_http(e, "Failed to check consistency")

    return app


app = create_app()
