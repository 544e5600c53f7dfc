import logging
import subprocess
import sys
import webbrowser
from functools import wraps
from typing import Optional

import typer

from config import settings
from entities import CopyStatus, MemberCategory, MemberStatus
from errors import LibraryError
from library import Library
from utils.ui_helpers import (
    BOOK_COLUMNS,
    COPY_COLUMNS,
    FINE_COLUMNS,
    LOAN_COLUMNS,
    MEMBER_COLUMNS,
    RESERVATION_COLUMNS,
    get_output_mode,
    print_record,
    print_records,
    print_stats_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

# --- Typer CLI application ---
app = typer.Typer(help="Library circulation desk")

def reports_errors(func):
    """Turn domain and input errors into a one-line message and exit status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
        except ValueError as e:
            print(f"Invalid input: {e}")
            raise typer.Exit(code=1)
    return wrapper

def _report(record, message: str) -> None:
    if get_output_mode() == "json":
        print_record(record, message)
    else:
        print(message)

@app.callback()
def _global_options(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database file (default: LIBRARY_DB_FILE or library.db)",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
):
    """Global options for the CLI (database file, output mode)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    ctx.obj = Library(db or settings.database_file)

# --- Members ---
@app.command("register")
@reports_errors
def cli_register(
    ctx: typer.Context,
    full_name: str,
    email: str,
    member_type: MemberCategory = typer.Option(MemberCategory.STUDENT, "--type", "-t", help="Member category"),
    phone: Optional[str] = typer.Option(None, "--phone"),
    address: Optional[str] = typer.Option(None, "--address"),
):
    """Register a new member."""
    lib: Library = ctx.obj
    member = lib.members.register_member(full_name, email, member_type, phone=phone, address=address)
    _report(member, f"Registered {member.member_id}: {member.full_name} ({member.member_type.value})")

@app.command("members")
def cli_members(ctx: typer.Context, search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List members, optionally filtered by name, email or member id."""
    lib: Library = ctx.obj
    print_records(lib.members.search_members(search or ""), MEMBER_COLUMNS, "👥 Members", "No members registered.")

@app.command("member-status")
@reports_errors
def cli_member_status(ctx: typer.Context, member_id: str, status: MemberStatus):
    """Change a member's status (active, inactive, suspended, expired)."""
    lib: Library = ctx.obj
    member = lib.members.set_status(member_id, status)
    _report(member, f"Member {member.member_id} is now {member.status.value}")

# --- Catalog ---
@app.command("add-book")
@reports_errors
def cli_add_book(
    ctx: typer.Context,
    title: str,
    accession_number: str,
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    year: Optional[int] = typer.Option(None, "--year"),
    location: Optional[str] = typer.Option(None, "--location", "-l"),
):
    """Add a title together with its first physical copy."""
    lib: Library = ctx.obj
    book, copy = lib.catalog.add_book(
        title, accession_number, author=author, isbn=isbn, publication_year=year, location=location
    )
    _report(book, f"Added book {book.id}: {book.title} with copy {copy.accession_number}")

@app.command("add-copy")
@reports_errors
def cli_add_copy(
    ctx: typer.Context,
    book_id: int,
    accession_number: str,
    location: Optional[str] = typer.Option(None, "--location", "-l"),
):
    """Add another physical copy of an existing title."""
    lib: Library = ctx.obj
    copy = lib.catalog.add_copy(book_id, accession_number, location)
    _report(copy, f"Added copy {copy.accession_number} to book {book_id}")

@app.command("books")
def cli_books(ctx: typer.Context, search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List titles, optionally filtered by title, author or ISBN."""
    lib: Library = ctx.obj
    print_records(lib.catalog.search_books(search or ""), BOOK_COLUMNS, "📚 Books", "No books in library.")

@app.command("copies")
@reports_errors
def cli_copies(ctx: typer.Context, book_id: int):
    """List the physical copies of a title."""
    lib: Library = ctx.obj
    print_records(lib.catalog.list_copies(book_id), COPY_COLUMNS, "📖 Copies", "No copies for this book.")

@app.command("copy-status")
@reports_errors
def cli_copy_status(ctx: typer.Context, accession_number: str, status: CopyStatus):
    """Mark a copy lost, damaged, for repair, reserved or available again."""
    lib: Library = ctx.obj
    copy = lib.catalog.set_copy_status(accession_number, status)
    _report(copy, f"Copy {copy.accession_number} is now {copy.status.value}")

# --- Circulation ---
@app.command("borrow")
@reports_errors
def cli_borrow(ctx: typer.Context, member_id: str, accession_number: str):
    """Check a copy out to a member."""
    lib: Library = ctx.obj
    loan = lib.circulation.borrow(member_id, accession_number)
    _report(loan, f"Borrowed {accession_number} to {member_id}, due {loan.due_date.isoformat()}")

@app.command("return")
@reports_errors
def cli_return(ctx: typer.Context, accession_number: str):
    """Check a copy back in, fining the member if it is late."""
    lib: Library = ctx.obj
    result = lib.circulation.return_copy(accession_number)
    if get_output_mode() == "json":
        print_record(result, "Return")
        return
    print(f"Returned {accession_number} ({result.days_overdue} days overdue)")
    if result.fine is not None:
        print(f"Fine {result.fine.id}: {result.fine.amount} ({result.fine.reason})")
    if result.fine_error:
        print(f"Warning: the fine could not be recorded: {result.fine_error}")

@app.command("loans")
@reports_errors
def cli_loans(
    ctx: typer.Context,
    overdue: bool = typer.Option(False, "--overdue", help="Only loans past their due date"),
    member: Optional[str] = typer.Option(None, "--member", "-m", help="All loans of one member"),
):
    """List open loans."""
    lib: Library = ctx.obj
    if member:
        loans = lib.circulation.list_member_borrowings(member)
    elif overdue:
        loans = lib.circulation.list_overdue_borrowings()
    else:
        loans = lib.circulation.list_active_borrowings()
    print_records(loans, LOAN_COLUMNS, "🔄 Loans", "No loans.")

# --- Fines ---
@app.command("fines")
@reports_errors
def cli_fines(
    ctx: typer.Context,
    unpaid: bool = typer.Option(False, "--unpaid", help="Only outstanding fines"),
    member: Optional[str] = typer.Option(None, "--member", "-m"),
):
    """List fines and the outstanding total."""
    lib: Library = ctx.obj
    if member:
        fines = lib.fines.list_member_fines(member)
        if unpaid:
            fines = [f for f in fines if f.is_outstanding]
    elif unpaid:
        fines = lib.fines.list_unpaid_fines()
    else:
        fines = lib.fines.list_fines()
    print_records(fines, FINE_COLUMNS, "💰 Fines", "No fines.")
    if get_output_mode() != "json":
        print(f"Total unpaid: {lib.fines.total_unpaid()}")

@app.command("pay-fine")
@reports_errors
def cli_pay_fine(ctx: typer.Context, fine_id: int):
    """Record payment of an unpaid fine."""
    lib: Library = ctx.obj
    fine = lib.fines.pay_fine(fine_id)
    _report(fine, f"Fine {fine.id} paid ({fine.amount})")

@app.command("waive-fine")
@reports_errors
def cli_waive_fine(ctx: typer.Context, fine_id: int, reason: Optional[str] = typer.Option(None, "--reason", "-r")):
    """Waive an unpaid fine."""
    lib: Library = ctx.obj
    fine = lib.fines.waive_fine(fine_id, reason)
    _report(fine, f"Fine {fine.id} waived: {fine.waiver_reason}")

# --- Reservations ---
@app.command("reserve")
@reports_errors
def cli_reserve(ctx: typer.Context, member_id: str, book_id: int):
    """Place a hold on a title for a member."""
    lib: Library = ctx.obj
    member = lib.members.require(member_id)
    reservation = lib.reservations.create_reservation(member.id, book_id)
    _report(
        reservation,
        f"Reservation {reservation.id} placed for {member.member_id}, expires {reservation.expiration_date.isoformat()}",
    )

@app.command("reservations")
@reports_errors
def cli_reservations(ctx: typer.Context, member: Optional[str] = typer.Option(None, "--member", "-m")):
    """List active reservations, or a member's active and fulfilled ones."""
    lib: Library = ctx.obj
    if member:
        reservations = lib.reservations.list_member_reservations(lib.members.require(member).id)
    else:
        reservations = lib.reservations.list_active_reservations()
    print_records(reservations, RESERVATION_COLUMNS, "📌 Reservations", "No reservations.")

@app.command("cancel-reservation")
@reports_errors
def cli_cancel_reservation(ctx: typer.Context, reservation_id: int):
    """Cancel an active reservation."""
    lib: Library = ctx.obj
    reservation = lib.reservations.cancel_reservation(reservation_id)
    _report(reservation, f"Reservation {reservation.id} cancelled")

@app.command("fulfill-reservation")
@reports_errors
def cli_fulfill_reservation(ctx: typer.Context, reservation_id: int):
    """Mark an active reservation as fulfilled."""
    lib: Library = ctx.obj
    reservation = lib.reservations.fulfill_reservation(reservation_id)
    _report(reservation, f"Reservation {reservation.id} fulfilled")

@app.command("stats")
def cli_stats(ctx: typer.Context):
    """Show library statistics."""
    lib: Library = ctx.obj
    print_stats_result(lib.get_statistics())

@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart the server when source files change")):
    """Start the HTTP API with uvicorn and open its docs in a browser."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting web UI on {url}")
    try:
        webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not open a browser: {e}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    subprocess.run(args)

if __name__ == "__main__":
    app()
