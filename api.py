import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

import reports
from ai_service import BookMetadataService
from book import Book, BorrowRecord
from config import settings
from exceptions import InvalidState, LibraryError, MalformedInput, NotFound
from library import Library, log_reservation_ready

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- Middleware ---
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Library instance ---
_library: Optional[Library] = None


def get_library() -> Library:
    """Return the process-wide Library, creating it on first use."""
    global _library
    if _library is None:
        _library = Library(db_file=settings.database_file)
        _library.subscribe(log_reservation_ready)
    return _library


def get_metadata_service() -> BookMetadataService:
    return BookMetadataService()


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error mapping ---
def _error_body(exc: LibraryError) -> Dict[str, Optional[str]]:
    return {"detail": str(exc), "operation": exc.operation, "book_id": exc.book_id}


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content=_error_body(exc))


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return JSONResponse(status_code=409, content=_error_body(exc))


@app.exception_handler(MalformedInput)
async def malformed_input_handler(request: Request, exc: MalformedInput):
    return JSONResponse(status_code=422, content=_error_body(exc))


# --- Models ---
class BorrowRecordModel(BaseModel):
    borrower_name: str
    borrow_date: str
    return_date: Optional[str] = None


class BookModel(BaseModel):
    id: str
    title: str
    author: str = ""
    isbn: str = ""
    category: str = ""
    publish_date: str = ""
    summary: str = ""
    cover_url: str = ""
    status: str
    borrower_name: Optional[str] = None
    borrow_date: Optional[str] = None
    due_date: Optional[str] = None
    reserved_by: Optional[str] = None
    borrow_history: List[BorrowRecordModel] = Field(default_factory=list)

    @classmethod
    def from_book(cls, book: Book) -> "BookModel":
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            isbn=book.isbn,
            category=book.category,
            publish_date=book.publish_date,
            summary=book.summary,
            cover_url=book.cover_url,
            status=book.status.value,
            borrower_name=book.borrower_name,
            borrow_date=book.borrow_date,
            due_date=book.due_date,
            reserved_by=book.reserved_by,
            borrow_history=[
                BorrowRecordModel(borrower_name=r.borrower_name, borrow_date=r.borrow_date, return_date=r.return_date)
                for r in book.borrow_history
            ],
        )


class BookPayload(BaseModel):
    title: str
    author: str = ""
    isbn: str = ""
    category: str = ""
    publish_date: str = ""
    summary: str = ""
    cover_url: str = ""
    status: Optional[str] = Field(default=None, description="Only AVAILABLE or LOST, and only on update")
    borrow_history: Optional[List[BorrowRecordModel]] = None

    def to_fields(self) -> dict:
        fields = self.model_dump(exclude={"borrow_history"})
        if self.borrow_history is not None:
            fields["borrow_history"] = [BorrowRecord(**r.model_dump()) for r in self.borrow_history]
        return fields


class BorrowRequest(BaseModel):
    borrower_name: str


class ReserveRequest(BaseModel):
    reader_name: str


class ReaderStatsModel(BaseModel):
    name: str
    borrow_count: int
    current_borrowed: int


class OverdueBookModel(BaseModel):
    book: BookModel
    overdue_days: int
    severity: str


class PopularBookModel(BaseModel):
    book: BookModel
    borrow_count: int


class HistoryEntryModel(BaseModel):
    book_id: str
    book_title: str
    borrower_name: str
    borrow_date: str
    return_date: Optional[str] = None


class SuggestionRequest(BaseModel):
    title: str


class SuggestionModel(BaseModel):
    author: str = ""
    category: str = ""
    summary: str = ""
    isbn: str = ""
    publish_date: str = ""


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health check with the current collection size."""
    db_ok = True
    total = 0
    try:
        total = len(library.list_books())
    except Exception as e:
        logger.error(f"Health check could not read the collection: {e}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "total_books": total,
        "db": db_ok,
        "services": {"ai_assist": BookMetadataService().is_available()},
    }


# --- Catalog ---
@app.get("/books", response_model=List[BookModel])
def get_books(
    q: Optional[str] = Query(None, description="Title or author search"),
    category: Optional[str] = Query(None, description="Only books in this category"),
    library: Library = Depends(get_library),
):
    return [BookModel.from_book(b) for b in library.search_books(q or "", category)]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return BookModel.from_book(library.get_book(book_id))


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_book(payload: BookPayload, library: Library = Depends(get_library)):
    return BookModel.from_book(library.create_or_update(payload.to_fields()))


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, payload: BookPayload, library: Library = Depends(get_library)):
    return BookModel.from_book(library.create_or_update(payload.to_fields(), existing_id=book_id))


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    library.delete_book(book_id)
    return {"message": "Book deleted."}


# --- Circulation ---
@app.post("/books/{book_id}/borrow", response_model=BookModel, dependencies=[Depends(get_api_key)])
def borrow_book(book_id: str, request: BorrowRequest, library: Library = Depends(get_library)):
    return BookModel.from_book(library.borrow(book_id, request.borrower_name))


@app.post("/books/{book_id}/return", response_model=BookModel, dependencies=[Depends(get_api_key)])
def return_book(book_id: str, library: Library = Depends(get_library)):
    return BookModel.from_book(library.return_book(book_id))


@app.post("/books/{book_id}/reservation", response_model=BookModel, dependencies=[Depends(get_api_key)])
def reserve_book(book_id: str, request: ReserveRequest, library: Library = Depends(get_library)):
    return BookModel.from_book(library.reserve(book_id, request.reader_name))


@app.delete("/books/{book_id}/reservation", response_model=BookModel, dependencies=[Depends(get_api_key)])
def cancel_reservation(book_id: str, library: Library = Depends(get_library)):
    return BookModel.from_book(library.cancel_reservation(book_id))


@app.post("/books/{book_id}/lost", response_model=BookModel, dependencies=[Depends(get_api_key)])
def mark_lost(book_id: str, library: Library = Depends(get_library)):
    return BookModel.from_book(library.mark_lost(book_id))


@app.post("/books/{book_id}/found", response_model=BookModel, dependencies=[Depends(get_api_key)])
def mark_found(book_id: str, library: Library = Depends(get_library)):
    return BookModel.from_book(library.mark_found(book_id))


# --- Statistics ---
@app.get("/stats")
def get_library_stats(library: Library = Depends(get_library)) -> Dict[str, int]:
    return library.get_statistics()


@app.get("/stats/overdue", response_model=List[OverdueBookModel])
def get_overdue(library: Library = Depends(get_library)):
    books, today = library.list_books(), library.today()
    rows = []
    for book in reports.overdue_books(books, today):
        days = reports.overdue_days(book, today)
        rows.append(OverdueBookModel(book=BookModel.from_book(book), overdue_days=days,
                                     severity=reports.severity_bucket(days)))
    return rows


@app.get("/stats/overdue/severity")
def get_overdue_severity(library: Library = Depends(get_library)) -> Dict[str, int]:
    return reports.overdue_severity_buckets(library.list_books(), library.today())


@app.get("/stats/readers", response_model=List[ReaderStatsModel])
def get_reader_stats(library: Library = Depends(get_library)):
    return [
        ReaderStatsModel(name=s.name, borrow_count=s.borrow_count, current_borrowed=s.current_borrowed)
        for s in reports.reader_stats(library.list_books())
    ]


@app.get("/stats/categories")
def get_categories(library: Library = Depends(get_library)) -> Dict[str, int]:
    return reports.category_distribution(library.list_books())


@app.get("/stats/popular", response_model=List[PopularBookModel])
def get_popular(limit: int = Query(settings.default_popular_limit, ge=1, le=100),
                library: Library = Depends(get_library)):
    return [
        PopularBookModel(book=BookModel.from_book(b), borrow_count=len(b.borrow_history))
        for b in reports.popular_books(library.list_books(), limit)
    ]


@app.get("/history", response_model=List[HistoryEntryModel])
def get_history(q: Optional[str] = Query(None, description="Book title or borrower"),
                library: Library = Depends(get_library)):
    term = (q or "").strip().lower()
    entries = reports.borrow_records(library.list_books())
    if term:
        entries = [e for e in entries if term in e.book_title.lower() or term in e.borrower_name.lower()]
    return [HistoryEntryModel(**vars(e)) for e in entries]


@app.get("/history/summary")
def get_history_summary(library: Library = Depends(get_library)) -> Dict[str, int]:
    return reports.history_summary(library.list_books())


# --- Bulk transfer ---
@app.get("/export/json")
def export_books_json(library: Library = Depends(get_library)):
    """Export the whole collection, including borrow history, as JSON."""
    return Response(
        content=library.export_snapshot(),
        media_type="application/json",
        headers={
            "Content-Disposition": f"attachment; filename=libgenius_books_{library.today().isoformat()}.json"
        },
    )


@app.post("/import/json", dependencies=[Depends(get_api_key)])
async def import_books_json(request: Request, library: Library = Depends(get_library)):
    """Replace the whole collection with an exported snapshot."""
    body = await request.body()
    # SQLite writes and the engine lock block, keep them off the event loop
    count = await run_in_threadpool(library.import_snapshot, body)
    return {"imported": count, "message": f"Collection replaced with {count} books"}


# --- AI assistant ---
@app.post("/ai/suggest", response_model=Optional[SuggestionModel])
async def suggest_metadata(request: SuggestionRequest,
                           service: BookMetadataService = Depends(get_metadata_service)):
    """Advisory catalog fields for a title; null when the assistant has nothing."""
    suggestion = await service.suggest_book_metadata(request.title)
    if suggestion is None:
        return None
    return SuggestionModel(**suggestion.to_dict())
