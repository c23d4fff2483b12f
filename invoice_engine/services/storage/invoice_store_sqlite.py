"""
SQLite-based invoice storage.

Provides persistent storage of invoices and their status history. Several
worker processes can share one database file: status changes are
compare-and-set on the ``version`` column, and history rows are protected
by triggers that reject UPDATE and DELETE.
"""

import sqlite3
from datetime import datetime
from typing import Optional

from loguru import logger

from .invoice_store_base import InvoiceStoreBase
from ...core.exceptions import DuplicateInvoiceError
from ...models.invoice import Invoice, InvoiceStatus, StatusChangeResult, StatusHistory


class SQLiteInvoiceStore(InvoiceStoreBase):
    """
    SQLite-backed invoice store with persistent storage.

    Features:
    - Persistent storage across application restarts
    - Unique invoice numbers enforced by the schema
    - Append-only status history (enforced by triggers)
    - Atomic status update plus history insert in one transaction
    """

    def __init__(self, db_path: str = "invoices.db", timeout: float = 30.0):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (default: invoices.db)
            timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = db_path
        self.timeout = timeout
        self._init_database()

    def _init_database(self):
        """Create tables, indexes and triggers if they don't exist"""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_number TEXT NOT NULL UNIQUE,
                status INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL DEFAULT 1,
                invoice_data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                modified_at TEXT,
                CHECK (status BETWEEN 0 AND 8)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS status_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_id INTEGER NOT NULL REFERENCES invoices(id),
                from_status INTEGER,
                to_status INTEGER NOT NULL,
                changed_by TEXT NOT NULL,
                reason TEXT,
                changed_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_invoices_status
            ON invoices(status)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_history_invoice
            ON status_history(invoice_id, id)
        """)

        for action in ("UPDATE", "DELETE"):
            cursor.execute(f"""
                CREATE TRIGGER IF NOT EXISTS status_history_no_{action.lower()}
                BEFORE {action} ON status_history
                BEGIN
                    SELECT RAISE(ABORT, 'status_history is append-only');
                END
            """)

        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def add_invoice(self, invoice: Invoice, history: StatusHistory) -> Invoice:
        """
        Insert an invoice and its creation history row in one transaction.

        Raises:
            DuplicateInvoiceError: invoice number already stored
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            try:
                cursor.execute("""
                    INSERT INTO invoices (invoice_number, status, version, invoice_data, created_at, modified_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    invoice.invoice_number,
                    int(invoice.status),
                    invoice.version,
                    self._dump(invoice),
                    invoice.created_at.isoformat(),
                    invoice.modified_at.isoformat() if invoice.modified_at else None,
                ))
            except sqlite3.IntegrityError as e:
                conn.rollback()
                logger.warning("Rejected duplicate invoice number", invoice_number=invoice.invoice_number)
                raise DuplicateInvoiceError(invoice.invoice_number) from e

            invoice_id = cursor.lastrowid
            self._insert_history(cursor, invoice_id, history)
            conn.commit()
        finally:
            conn.close()

        return invoice.model_copy(update={"id": invoice_id})

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        conn = self._get_connection()
        try:
            row = conn.execute("""
                SELECT id, invoice_data FROM invoices WHERE id = ?
            """, (invoice_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_invoice(row) if row else None

    def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        conn = self._get_connection()
        try:
            row = conn.execute("""
                SELECT id, invoice_data FROM invoices WHERE invoice_number = ?
            """, (invoice_number,)).fetchone()
        finally:
            conn.close()
        return self._row_to_invoice(row) if row else None

    def update_status(
        self, invoice_id: int, expected_version: int, updated: Invoice, history: StatusHistory
    ) -> Optional[StatusChangeResult]:
        """
        Compare-and-set the invoice row and append the history row.

        Returns:
            The stored invoice and history row, or None if the row's version
            had moved on
        """
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE invoices
                SET status = ?,
                    version = ?,
                    invoice_data = ?,
                    modified_at = ?
                WHERE id = ? AND version = ?
            """, (
                int(updated.status),
                updated.version,
                self._dump(updated),
                updated.modified_at.isoformat() if updated.modified_at else None,
                invoice_id,
                expected_version,
            ))

            if cursor.rowcount == 0:
                conn.rollback()
                return None

            history_id = self._insert_history(cursor, invoice_id, history)
            conn.commit()
        finally:
            conn.close()

        return StatusChangeResult(
            invoice=updated.model_copy(update={"id": invoice_id}),
            history=history.model_copy(update={"id": history_id, "invoice_id": invoice_id}),
        )

    def get_history(self, invoice_id: int) -> list[StatusHistory]:
        """
        Status history for an invoice (insertion order, oldest first).
        """
        conn = self._get_connection()
        try:
            rows = conn.execute("""
                SELECT id, invoice_id, from_status, to_status, changed_by, reason, changed_at
                FROM status_history
                WHERE invoice_id = ?
                ORDER BY id ASC
            """, (invoice_id,)).fetchall()
        finally:
            conn.close()

        return [
            StatusHistory(
                id=row["id"],
                invoice_id=row["invoice_id"],
                from_status=InvoiceStatus(row["from_status"]) if row["from_status"] is not None else None,
                to_status=InvoiceStatus(row["to_status"]),
                changed_by=row["changed_by"],
                reason=row["reason"],
                changed_at=datetime.fromisoformat(row["changed_at"]),
            )
            for row in rows
        ]

    def list_invoices(self, status: Optional[InvoiceStatus] = None) -> list[Invoice]:
        """
        List invoices (newest first), optionally filtered by status.
        """
        conn = self._get_connection()
        try:
            if status is None:
                rows = conn.execute("""
                    SELECT id, invoice_data FROM invoices ORDER BY id DESC
                """).fetchall()
            else:
                rows = conn.execute("""
                    SELECT id, invoice_data FROM invoices WHERE status = ? ORDER BY id DESC
                """, (int(status),)).fetchall()
        finally:
            conn.close()

        return [self._row_to_invoice(row) for row in rows]

    @staticmethod
    def _dump(invoice: Invoice) -> str:
        return invoice.model_dump_json(exclude={"id"})

    @staticmethod
    def _row_to_invoice(row: sqlite3.Row) -> Invoice:
        return Invoice.model_validate_json(row["invoice_data"]).model_copy(update={"id": row["id"]})

    @staticmethod
    def _insert_history(cursor: sqlite3.Cursor, invoice_id: int, history: StatusHistory) -> int:
        cursor.execute("""
            INSERT INTO status_history (invoice_id, from_status, to_status, changed_by, reason, changed_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            invoice_id,
            int(history.from_status) if history.from_status is not None else None,
            int(history.to_status),
            history.changed_by,
            history.reason,
            history.changed_at.isoformat(),
        ))
        return cursor.lastrowid
