"""
Invoice history lookup used by duplicate detection.

The audit pipeline only ever reads from the history store. This module defines:
- InvoiceHistoryBase: the interface every history backend implements
- InMemoryInvoiceHistory: dictionary-backed store for tests and demos
- SQLiteInvoiceHistory: persistent store for single-instance deployments
- find_duplicates: timeout-bounded lookup wrapping any backend
"""

import sqlite3
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from .config import HISTORY_LOOKUP_WORKERS, logger
from .errors import CollaboratorError
from .schemas import ExtractedInvoice, SimilarInvoice


INVOICE_STATUSES = ("pending", "processing", "completed", "failed")


class InvoiceHistoryBase(ABC):
    """
    Abstract base class for invoice history stores.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    - Any SQL or document database fronting the extraction service
    """

    @abstractmethod
    def find_completed_invoices(
        self,
        caller_id: str,
        vendor: str,
        invoice_date: date,
        total: float,
        limit: int,
    ) -> list[SimilarInvoice]:
        """
        Find earlier completed invoices with the same fingerprint.

        Matching is exact on vendor, invoice date and total, and scoped to
        the invoices owned by `caller_id`.

        Args:
            caller_id: Account whose history is searched
            vendor: Vendor name as extracted
            invoice_date: Invoice issue date
            total: Invoice total
            limit: Maximum number of matches to return

        Returns:
            Matching invoices, newest first
        """
        pass

    @abstractmethod
    def record_invoice(
        self,
        caller_id: str,
        file_name: str,
        invoice: ExtractedInvoice,
        status: str = "completed",
        invoice_id: Optional[str] = None,
    ) -> str:
        """
        Store an invoice in the history and return its ID.

        Args:
            caller_id: Account the invoice belongs to
            file_name: Name of the source document
            invoice: Extracted invoice fields
            status: Processing status (only 'completed' invoices are matched)
            invoice_id: Explicit ID; a UUID is generated when omitted

        Returns:
            Invoice ID
        """
        pass


def _check_status(status: str) -> None:
    if status not in INVOICE_STATUSES:
        raise ValueError(f"Unknown invoice status: {status}")


@dataclass
class _HistoryEntry:
    id: str
    caller_id: str
    file_name: str
    status: str
    vendor: str
    invoice_date: date
    total: float
    created_at: datetime


class InMemoryInvoiceHistory(InvoiceHistoryBase):
    """In-memory invoice history (for tests and demos)."""

    def __init__(self):
        self._entries: list[_HistoryEntry] = []

    def record_invoice(
        self,
        caller_id: str,
        file_name: str,
        invoice: ExtractedInvoice,
        status: str = "completed",
        invoice_id: Optional[str] = None,
    ) -> str:
        _check_status(status)
        entry = _HistoryEntry(
            id=invoice_id or str(uuid.uuid4()),
            caller_id=caller_id,
            file_name=file_name,
            status=status,
            vendor=invoice.vendor,
            invoice_date=invoice.date,
            total=invoice.total,
            created_at=datetime.now(timezone.utc),
        )
        self._entries.append(entry)
        return entry.id

    def find_completed_invoices(
        self,
        caller_id: str,
        vendor: str,
        invoice_date: date,
        total: float,
        limit: int,
    ) -> list[SimilarInvoice]:
        matches = [
            entry for entry in self._entries
            if entry.caller_id == caller_id
            and entry.status == "completed"
            and entry.vendor == vendor
            and entry.invoice_date == invoice_date
            and entry.total == total
        ]
        matches.sort(key=lambda e: e.created_at, reverse=True)
        return [
            SimilarInvoice(id=e.id, file_name=e.file_name, created_at=e.created_at)
            for e in matches[:limit]
        ]


class SQLiteInvoiceHistory(InvoiceHistoryBase):
    """
    SQLite-backed invoice history with persistent storage.

    Features:
    - Persistent storage across application restarts
    - Index on the duplicate fingerprint (caller, vendor, date, total)
    - Thread-safe operations (a fresh connection per call)
    """

    def __init__(self, db_path: str = "invoice_history.db"):
        """
        Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file (default: invoice_history.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create the invoices table if it doesn't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT PRIMARY KEY,
                caller_id TEXT NOT NULL,
                file_name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'completed',
                vendor TEXT NOT NULL,
                invoice_date TEXT NOT NULL,
                total REAL NOT NULL,
                created_at TEXT NOT NULL,
                CHECK (status IN ('pending', 'processing', 'completed', 'failed'))
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_fingerprint
            ON invoices(caller_id, vendor, invoice_date, total)
        """)

        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def record_invoice(
        self,
        caller_id: str,
        file_name: str,
        invoice: ExtractedInvoice,
        status: str = "completed",
        invoice_id: Optional[str] = None,
    ) -> str:
        _check_status(status)
        invoice_id = invoice_id or str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()

        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO invoices
                (id, caller_id, file_name, status, vendor, invoice_date, total, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            invoice_id,
            caller_id,
            file_name,
            status,
            invoice.vendor,
            invoice.date.isoformat(),
            invoice.total,
            created_at,
        ))

        conn.commit()
        conn.close()

        return invoice_id

    def find_completed_invoices(
        self,
        caller_id: str,
        vendor: str,
        invoice_date: date,
        total: float,
        limit: int,
    ) -> list[SimilarInvoice]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            SELECT id, file_name, created_at
            FROM invoices
            WHERE caller_id = ?
              AND status = 'completed'
              AND vendor = ?
              AND invoice_date = ?
              AND total = ?
            ORDER BY created_at DESC
            LIMIT ?
        """, (caller_id, vendor, invoice_date.isoformat(), total, limit))

        rows = cursor.fetchall()
        conn.close()

        return [
            SimilarInvoice(
                id=row["id"],
                file_name=row["file_name"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


# ============================================================================
# Timeout-bounded Lookup
# ============================================================================

# Shared across audit runs; a hung query must not block the caller's thread
_lookup_executor = ThreadPoolExecutor(
    max_workers=HISTORY_LOOKUP_WORKERS,
    thread_name_prefix="history-lookup",
)


def find_duplicates(
    history: InvoiceHistoryBase,
    caller_id: str,
    invoice: ExtractedInvoice,
    limit: int,
    timeout: float,
) -> list[SimilarInvoice]:
    """
    Query the history store for exact-fingerprint duplicates of `invoice`.

    The query runs on the shared lookup pool. A timed-out query cannot be
    interrupted: it keeps its worker until the backend returns. Once
    HISTORY_LOOKUP_WORKERS queries hang, later lookups wait in the queue and
    time out as well, and interpreter shutdown joins the hung workers.

    Args:
        history: History backend to query
        caller_id: Account whose history is searched
        invoice: Invoice being audited
        limit: Maximum number of matches to return
        timeout: Seconds to wait for the backend

    Returns:
        Up to `limit` prior completed invoices with the same vendor, date and total

    Raises:
        CollaboratorError: If the backend raises or does not answer in time
    """
    future = _lookup_executor.submit(
        history.find_completed_invoices,
        caller_id,
        invoice.vendor,
        invoice.date,
        invoice.total,
        limit,
    )

    try:
        matches = future.result(timeout=timeout)
    except FutureTimeoutError as e:
        future.cancel()
        raise CollaboratorError(
            f"Invoice history lookup timed out after {timeout}s"
        ) from e
    except Exception as e:
        raise CollaboratorError(f"Invoice history lookup failed: {e}") from e

    logger.debug(f"History lookup for caller {caller_id} returned {len(matches)} match(es)")
    return list(matches)[:limit]
