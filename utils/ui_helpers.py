import os
import json
from typing import Any, Dict, List, Sequence, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

# (header, attribute) pairs per record kind
MEMBER_COLUMNS = [("Member ID", "member_id"), ("Name", "full_name"), ("Email", "email"),
                  ("Type", "member_type"), ("Status", "status"), ("Max Books", "max_books_allowed")]
BOOK_COLUMNS = [("ID", "id"), ("Title", "title"), ("Author", "author"), ("ISBN", "isbn")]
COPY_COLUMNS = [("Accession", "accession_number"), ("Book", "book_id"), ("Status", "status"),
                ("Location", "location")]
LOAN_COLUMNS = [("Loan", "id"), ("Member", "member_id"), ("Copy", "book_copy_id"),
                ("Borrowed", "borrowed_date"), ("Due", "due_date"), ("Returned", "return_date")]
FINE_COLUMNS = [("Fine", "id"), ("Member", "member_id"), ("Amount", "amount"), ("State", "state"),
                ("Reason", "reason")]
RESERVATION_COLUMNS = [("Reservation", "id"), ("Member", "member_id"), ("Book", "book_id"),
                       ("Reserved", "reservation_date"), ("Expires", "expiration_date"), ("Status", "status")]

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode
    else:
        # Ignore invalid values; keep the current default
        pass

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _cell(value: Any) -> str:
    if value is None:
        return "-"
    return str(getattr(value, "value", value))

def print_records(records: List[Any], columns: Sequence[Tuple[str, str]], title: str, empty_message: str) -> None:
    """Print a list of records in the current output mode.
    - plain: one ' | '-separated line per record, or ``empty_message``
    - json: JSON array of each record's ``to_dict()``
    - rich: Rich table with the given columns
    """
    mode = get_output_mode()

    if not records:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([r.to_dict() for r in records], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for header, _ in columns:
            table.add_column(header, style="white")
        for r in records:
            table.add_row(*[_cell(getattr(r, attr, None)) for _, attr in columns])
        _console.print(table)
    else:
        for r in records:
            print(" | ".join(_cell(getattr(r, attr, None)) for _, attr in columns))

def print_record(record: Any, heading: str) -> None:
    """Print a single record as ``key: value`` lines (plain), a JSON object or a Rich panel."""
    mode = get_output_mode()
    data = record.to_dict()

    if mode == "json":
        print(json.dumps(data, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {_cell(v)}" for k, v in data.items() if not isinstance(v, dict))
        _console.print(Panel.fit(content, title=heading, border_style="green"))
    else:
        print(heading)
        for k, v in data.items():
            if not isinstance(v, dict):
                print(f"{k}: {_cell(v)}")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print library statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the main metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "active_members": "Active Members",
        "active_borrowings": "Active Borrowings",
        "overdue_borrowings": "Overdue Borrowings",
        "pending_reservations": "Pending Reservations",
        "unpaid_fines_total": "Unpaid Fines",
    }

    if mode == "json":
        print(json.dumps({k: _cell(v) if k == "unpaid_fines_total" else v for k, v in stats.items()},
                         ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
