import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from entities import CopyStatus, FineState, MemberCategory, MemberStatus, ReservationStatus
from errors import InvalidStateError, NotFoundError, StoreFailure
from library import Library

logger = logging.getLogger(__name__)

router = APIRouter()

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency validating the API key on state-changing endpoints."""
    if api_key == settings.api_key:
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail="Could not validate credentials",
        )

def get_library(request: Request) -> Library:
    return request.app.state.library

# --- Models ---
class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

class MemberModel(_ORMModel):
    id: int
    member_id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    member_type: MemberCategory
    status: MemberStatus
    registration_date: date
    max_books_allowed: int
    borrowing_period_days: int
    renewal_limit: int
    fine_rate_per_day: Decimal

class MemberCreateModel(BaseModel):
    full_name: str
    email: str
    member_type: MemberCategory = MemberCategory.STUDENT
    phone: Optional[str] = None
    address: Optional[str] = None

class MemberStatusModel(BaseModel):
    status: MemberStatus

class BookModel(_ORMModel):
    id: int
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    publication_year: Optional[int] = None

class BookCopyModel(_ORMModel):
    id: int
    accession_number: str
    book_id: int
    status: CopyStatus
    location: Optional[str] = None
    acquired_date: Optional[date] = None

class BookCreateModel(BaseModel):
    title: str
    accession_number: str = Field(description="Label of the first physical copy")
    author: Optional[str] = None
    isbn: Optional[str] = None
    publication_year: Optional[int] = None
    location: Optional[str] = None

class BookCreatedModel(BaseModel):
    book: BookModel
    first_copy: BookCopyModel

class CopyCreateModel(BaseModel):
    accession_number: str
    location: Optional[str] = None

class CopyStatusModel(BaseModel):
    status: CopyStatus

class MemberBorrowingInfoModel(_ORMModel):
    id: int
    member_id: str
    full_name: str
    email: str
    status: MemberStatus
    max_books_allowed: int
    borrowing_period_days: int
    fine_rate_per_day: Decimal
    current_borrowings: int

class BookCopyBorrowingInfoModel(_ORMModel):
    id: int
    accession_number: str
    status: CopyStatus
    location: Optional[str] = None
    book_id: int
    title: str
    isbn: Optional[str] = None

class BorrowingReturnInfoModel(_ORMModel):
    id: int
    borrowed_date: date
    due_date: date
    member_pk: int
    member_id: str
    full_name: str
    fine_rate_per_day: Decimal
    book_copy_id: int
    accession_number: str
    title: str

class BorrowingModel(_ORMModel):
    id: int
    member_id: int
    book_copy_id: int
    borrowed_date: date
    due_date: date
    return_date: Optional[date] = None
    renewal_count: int = 0

class BorrowRequest(BaseModel):
    member_id: str = Field(description="Human-facing member id, e.g. LIB-2024-00001")
    accession_number: str

class ReturnRequest(BaseModel):
    accession_number: str

class FineModel(_ORMModel):
    id: int
    member_id: int
    transaction_id: Optional[int] = None
    amount: Decimal
    reason: str
    state: FineState
    paid: bool
    waived: bool
    payment_date: Optional[date] = None
    waiver_reason: Optional[str] = None

class ReturnResultModel(_ORMModel):
    transaction: BorrowingModel
    days_overdue: int
    fine: Optional[FineModel] = None
    fine_error: Optional[str] = None

class WaiveRequest(BaseModel):
    reason: Optional[str] = None

class TotalUnpaidModel(BaseModel):
    total: Decimal

class ReservationModel(_ORMModel):
    id: int
    member_id: int
    book_id: int
    reservation_date: date
    expiration_date: date
    status: ReservationStatus

class ReservationCreateModel(BaseModel):
    member_id: str
    book_id: int

class StatsModel(BaseModel):
    total_copies: int
    available_copies: int
    active_members: int
    active_borrowings: int
    overdue_borrowings: int
    pending_reservations: int
    unpaid_fines_total: Decimal

# --- Health ---
@router.get("/health")
def health(library: Library = Depends(get_library)):
    db_ok = True
    try:
        library.store.ping()
    except StoreFailure:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }

@router.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    return StatsModel(**library.get_statistics())

# --- Members ---
@router.post("/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def register_member(payload: MemberCreateModel, library: Library = Depends(get_library)):
    member = library.members.register_member(
        payload.full_name, payload.email, payload.member_type,
        phone=payload.phone, address=payload.address,
    )
    return MemberModel.model_validate(member)

@router.get("/members", response_model=List[MemberModel])
def list_members(q: Optional[str] = Query(None, description="Name, email or member id"),
                 library: Library = Depends(get_library)):
    return [MemberModel.model_validate(m) for m in library.members.search_members(q or "")]

@router.get("/members/{member_id}", response_model=MemberModel)
def get_member(member_id: str, library: Library = Depends(get_library)):
    return MemberModel.model_validate(library.members.require(member_id))

@router.put("/members/{member_id}/status", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def set_member_status(member_id: str, payload: MemberStatusModel, library: Library = Depends(get_library)):
    return MemberModel.model_validate(library.members.set_status(member_id, payload.status))

# --- Catalog ---
@router.post("/books", response_model=BookCreatedModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book, copy = library.catalog.add_book(
        payload.title, payload.accession_number,
        author=payload.author, isbn=payload.isbn,
        publication_year=payload.publication_year, location=payload.location,
    )
    return BookCreatedModel(book=BookModel.model_validate(book), first_copy=BookCopyModel.model_validate(copy))

@router.get("/books", response_model=List[BookModel])
def list_books(q: Optional[str] = Query(None, description="Title, author or ISBN"),
               library: Library = Depends(get_library)):
    return [BookModel.model_validate(b) for b in library.catalog.search_books(q or "")]

@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, library: Library = Depends(get_library)):
    return BookModel.model_validate(library.catalog.get_book(book_id))

@router.get("/books/{book_id}/copies", response_model=List[BookCopyModel])
def list_copies(book_id: int, library: Library = Depends(get_library)):
    return [BookCopyModel.model_validate(c) for c in library.catalog.list_copies(book_id)]

@router.post("/books/{book_id}/copies", response_model=BookCopyModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def add_copy(book_id: int, payload: CopyCreateModel, library: Library = Depends(get_library)):
    copy = library.catalog.add_copy(book_id, payload.accession_number, payload.location)
    return BookCopyModel.model_validate(copy)

@router.put("/copies/{accession_number}/status", response_model=BookCopyModel,
            dependencies=[Depends(get_api_key)])
def set_copy_status(accession_number: str, payload: CopyStatusModel, library: Library = Depends(get_library)):
    return BookCopyModel.model_validate(library.catalog.set_copy_status(accession_number, payload.status))

# --- Circulation lookups ---
@router.get("/circulation/members/{member_id}", response_model=MemberBorrowingInfoModel)
def lookup_member(member_id: str, library: Library = Depends(get_library)):
    info = library.circulation.lookup_member_for_borrowing(member_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Member not found.")
    return MemberBorrowingInfoModel.model_validate(info)

@router.get("/circulation/copies/{accession_number}", response_model=BookCopyBorrowingInfoModel)
def lookup_copy(accession_number: str, library: Library = Depends(get_library)):
    info = library.circulation.lookup_book_copy_for_borrowing(accession_number)
    if info is None:
        raise HTTPException(status_code=404, detail="Copy not found.")
    return BookCopyBorrowingInfoModel.model_validate(info)

@router.get("/circulation/returns/{accession_number}", response_model=BorrowingReturnInfoModel)
def lookup_return(accession_number: str, library: Library = Depends(get_library)):
    info = library.circulation.lookup_borrowing_for_return(accession_number)
    if info is None:
        raise HTTPException(status_code=404, detail="No open loan for this copy.")
    return BorrowingReturnInfoModel.model_validate(info)

# --- Circulation transitions ---
@router.post("/circulation/borrow", response_model=BorrowingModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def borrow(payload: BorrowRequest, library: Library = Depends(get_library)):
    loan = library.circulation.borrow(payload.member_id, payload.accession_number)
    return BorrowingModel.model_validate(loan)

@router.post("/circulation/return", response_model=ReturnResultModel, dependencies=[Depends(get_api_key)])
def return_copy(payload: ReturnRequest, library: Library = Depends(get_library)):
    return ReturnResultModel.model_validate(library.circulation.return_copy(payload.accession_number))

@router.get("/borrowings", response_model=List[BorrowingModel])
def list_borrowings(status: str = Query("active", description="active | overdue"),
                    library: Library = Depends(get_library)):
    if status == "active":
        loans = library.circulation.list_active_borrowings()
    elif status == "overdue":
        loans = library.circulation.list_overdue_borrowings()
    else:
        raise HTTPException(status_code=400, detail="Invalid status. Allowed: active, overdue")
    return [BorrowingModel.model_validate(l) for l in loans]

# --- Fines ---
@router.get("/fines", response_model=List[FineModel])
def list_fines(unpaid: bool = Query(False), library: Library = Depends(get_library)):
    fines = library.fines.list_unpaid_fines() if unpaid else library.fines.list_fines()
    return [FineModel.model_validate(f) for f in fines]

@router.get("/fines/total-unpaid", response_model=TotalUnpaidModel)
def total_unpaid(library: Library = Depends(get_library)):
    return TotalUnpaidModel(total=library.fines.total_unpaid())

@router.post("/fines/{fine_id}/pay", response_model=FineModel, dependencies=[Depends(get_api_key)])
def pay_fine(fine_id: int, library: Library = Depends(get_library)):
    return FineModel.model_validate(library.fines.pay_fine(fine_id))

@router.post("/fines/{fine_id}/waive", response_model=FineModel, dependencies=[Depends(get_api_key)])
def waive_fine(fine_id: int, payload: Optional[WaiveRequest] = None, library: Library = Depends(get_library)):
    reason = payload.reason if payload else None
    return FineModel.model_validate(library.fines.waive_fine(fine_id, reason))

# --- Reservations ---
@router.post("/reservations", response_model=ReservationModel, status_code=201,
             dependencies=[Depends(get_api_key)])
def create_reservation(payload: ReservationCreateModel, library: Library = Depends(get_library)):
    member = library.members.require(payload.member_id)
    return ReservationModel.model_validate(library.reservations.create_reservation(member.id, payload.book_id))

@router.get("/reservations", response_model=List[ReservationModel])
def list_reservations(library: Library = Depends(get_library)):
    return [ReservationModel.model_validate(r) for r in library.reservations.list_active_reservations()]

@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationModel,
             dependencies=[Depends(get_api_key)])
def cancel_reservation(reservation_id: int, library: Library = Depends(get_library)):
    return ReservationModel.model_validate(library.reservations.cancel_reservation(reservation_id))

@router.post("/reservations/{reservation_id}/fulfill", response_model=ReservationModel,
             dependencies=[Depends(get_api_key)])
def fulfill_reservation(reservation_id: int, library: Library = Depends(get_library)):
    return ReservationModel.model_validate(library.reservations.fulfill_reservation(reservation_id))

# --- Error translation ---
def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler

def create_app(library: Optional[Library] = None) -> FastAPI:
    """Build the API around ``library``; without one, the lifespan opens the configured database."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        if app.state.library is None:
            app.state.library = Library(settings.database_file)
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotFoundError, _error_handler(404))
    app.add_exception_handler(InvalidStateError, _error_handler(409))
    app.add_exception_handler(StoreFailure, _error_handler(503))
    app.add_exception_handler(ValueError, _error_handler(400))

    app.include_router(router)
    return app

app = create_app()
