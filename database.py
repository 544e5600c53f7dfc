import sqlite3

from config import settings


def get_db_connection(db_file: str) -> sqlite3.Connection:
    """Open a connection to the SQLite database with rows addressable by column name."""
    conn = sqlite3.connect(db_file, timeout=settings.database_timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    # WAL lets readers proceed while a circulation write holds the lock
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def create_tables(db_file: str) -> None:
    """Create the circulation tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id TEXT UNIQUE NOT NULL,
                full_name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                phone TEXT,
                address TEXT,
                member_type TEXT NOT NULL
                    CHECK(member_type IN ('student', 'faculty', 'staff_member', 'guest')),
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'inactive', 'suspended', 'expired')),
                registration_date TEXT NOT NULL,
                expiration_date TEXT,
                max_books_allowed INTEGER NOT NULL CHECK(max_books_allowed >= 0),
                borrowing_period_days INTEGER NOT NULL CHECK(borrowing_period_days >= 0),
                renewal_limit INTEGER NOT NULL CHECK(renewal_limit >= 0),
                fine_rate_per_day TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT,
                isbn TEXT,
                publication_year INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_copies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                accession_number TEXT UNIQUE NOT NULL,
                book_id INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available', 'borrowed', 'reserved', 'lost', 'damaged', 'for_repair')),
                location TEXT,
                acquired_date TEXT NOT NULL,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowing_transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                book_copy_id INTEGER NOT NULL,
                borrowed_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                renewal_count INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (book_copy_id) REFERENCES book_copies(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                transaction_id INTEGER,
                amount TEXT NOT NULL,
                reason TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'unpaid'
                    CHECK(state IN ('unpaid', 'paid', 'waived')),
                payment_date TEXT,
                waiver_reason TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (transaction_id) REFERENCES borrowing_transactions(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                reservation_date TEXT NOT NULL,
                expiration_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'fulfilled', 'cancelled')),
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE
            )
        """)

        # A copy may have at most one open loan
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_open_borrowing_per_copy
            ON borrowing_transactions(book_copy_id) WHERE return_date IS NULL
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_members_full_name ON members(full_name)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_book_copies_book_id ON book_copies(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowings_member_open ON borrowing_transactions(member_id, return_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowings_due_date ON borrowing_transactions(due_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_fines_member_state ON fines(member_id, state)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book_status ON reservations(book_id, status)")

        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: str) -> None:
    """Initialize the database, creating the tables when needed."""
    create_tables(db_file)
