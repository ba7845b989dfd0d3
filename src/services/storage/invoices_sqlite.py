"""
SQLite-based invoice record store.

Provides persistent storage of invoice records, their lifecycle status, and
the known-entities reference table used for last-resort UEN resolution.
"""

import sqlite3
import json
import uuid
from datetime import datetime, UTC
from typing import Optional
from .invoice_store_base import InvoiceStoreBase, check_transition


class SQLiteInvoiceStore(InvoiceStoreBase):
    """
    SQLite-backed invoice store with persistent storage.

    Features:
    - Persistent storage across application restarts
    - Indexed lookups by vendor/customer UEN and status
    - Lifecycle transition checks on status updates
    """

    def __init__(self, db_path: str = "invoices.db"):
        """
        Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (default: invoices.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create tables if they don't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT PRIMARY KEY,
                file_name TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'draft',
                invoice_data TEXT NOT NULL,
                vendor_uen TEXT,
                customer_uen TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK (status IN ('draft', 'processing', 'submitted', 'failed', 'delivered'))
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_invoices_vendor_uen ON invoices(vendor_uen)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_invoices_customer_uen ON invoices(customer_uen)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS known_entities (
                uen TEXT PRIMARY KEY,
                name TEXT,
                type TEXT,
                status TEXT,
                gst_registered INTEGER,
                registration_date TEXT,
                industry TEXT,
                updated_at TEXT
            )
        """)

        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict:
        return {
            "id": row["id"],
            "file_name": row["file_name"],
            "status": row["status"],
            "invoice_data": json.loads(row["invoice_data"]),
            "error": row["error"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def create_invoice(self, file_name: str, invoice_data: dict | None = None) -> str:
        invoice_id = str(uuid.uuid4())
        now = datetime.now(UTC).isoformat()
        data = invoice_data or {}

        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO invoices (id, file_name, status, invoice_data, vendor_uen, customer_uen, created_at, updated_at)
            VALUES (?, ?, 'draft', ?, ?, ?, ?, ?)
        """, (invoice_id, file_name, json.dumps(data), data.get("vendor_uen"), data.get("customer_uen"), now, now))

        conn.commit()
        conn.close()

        return invoice_id

    def get_invoice(self, invoice_id: str) -> Optional[dict]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,))

        row = cursor.fetchone()
        conn.close()

        if row is None:
            return None
        return self._row_to_record(row)

    def update_invoice(self, invoice_id: str, invoice_data: dict) -> bool:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE invoices
            SET invoice_data = ?,
                vendor_uen = ?,
                customer_uen = ?,
                updated_at = ?
            WHERE id = ?
        """, (
            json.dumps(invoice_data),
            invoice_data.get("vendor_uen"),
            invoice_data.get("customer_uen"),
            datetime.now(UTC).isoformat(),
            invoice_id,
        ))

        rows_affected = cursor.rowcount
        conn.commit()
        conn.close()

        return rows_affected > 0

    def set_status(self, invoice_id: str, status: str, error: str | None = None) -> bool:
        conn = self._get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT status FROM invoices WHERE id = ?", (invoice_id,))
            row = cursor.fetchone()
            if row is None:
                return False

            check_transition(invoice_id, row["status"], status)

            cursor.execute("""
                UPDATE invoices
                SET status = ?,
                    error = ?,
                    updated_at = ?
                WHERE id = ?
            """, (status, error, datetime.now(UTC).isoformat(), invoice_id))
            conn.commit()
            return True
        finally:
            conn.close()

    def find_by_identifier(self, uen: str) -> list[dict]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            SELECT invoice_data FROM invoices
            WHERE vendor_uen = ? OR customer_uen = ?
            ORDER BY created_at DESC
        """, (uen, uen))

        rows = cursor.fetchall()
        conn.close()

        return [json.loads(row["invoice_data"]) for row in rows]

    def list_by_status(self, status: str) -> list[dict]:
        """
        Query invoice records by status (newest first).

        Args:
            status: One of 'draft', 'processing', 'submitted', 'failed', 'delivered'
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            SELECT * FROM invoices
            WHERE status = ?
            ORDER BY created_at DESC
        """, (status,))

        rows = cursor.fetchall()
        conn.close()

        return [self._row_to_record(row) for row in rows]

    def add_known_entity(self, entity: dict):
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR REPLACE INTO known_entities
                (uen, name, type, status, gst_registered, registration_date, industry, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entity["uen"],
            entity.get("name"),
            entity.get("type"),
            entity.get("status"),
            None if entity.get("gst_registered") is None else int(entity["gst_registered"]),
            entity.get("registration_date"),
            entity.get("industry"),
            entity.get("updated_at") or datetime.now(UTC).isoformat(),
        ))

        conn.commit()
        conn.close()

    def find_known_entity(self, uen: str) -> Optional[dict]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT * FROM known_entities WHERE uen = ?", (uen,))

        row = cursor.fetchone()
        conn.close()

        if row is None:
            return None

        entity = dict(row)
        if entity["gst_registered"] is not None:
            entity["gst_registered"] = bool(entity["gst_registered"])
        return entity
