"""
In-memory invoice record store (for demo and tests).
Set INVOICE_DB_PATH to use the SQLite store instead.
"""
from datetime import datetime, UTC
from typing import Dict, Optional
import copy
import uuid
from loguru import logger
from .invoice_store_base import InvoiceStoreBase, check_transition


class InMemoryInvoiceStore(InvoiceStoreBase):
    def __init__(self):
        self._invoices: Dict[str, dict] = {}
        self._known_entities: Dict[str, dict] = {}

    def create_invoice(self, file_name: str, invoice_data: dict | None = None) -> str:
        """Create a new draft invoice record and return its ID"""
        invoice_id = str(uuid.uuid4())
        now = datetime.now(UTC).isoformat()
        self._invoices[invoice_id] = {
            "id": invoice_id,
            "file_name": file_name,
            "status": "draft",
            "invoice_data": dict(invoice_data or {}),
            "error": None,
            "created_at": now,
            "updated_at": now,
        }
        return invoice_id

    def get_invoice(self, invoice_id: str) -> Optional[dict]:
        record = self._invoices.get(invoice_id)
        return copy.deepcopy(record) if record else None

    def update_invoice(self, invoice_id: str, invoice_data: dict) -> bool:
        if invoice_id not in self._invoices:
            return False

        self._invoices[invoice_id]["invoice_data"] = dict(invoice_data)
        self._invoices[invoice_id]["updated_at"] = datetime.now(UTC).isoformat()
        return True

    def set_status(self, invoice_id: str, status: str, error: str | None = None) -> bool:
        record = self._invoices.get(invoice_id)
        if record is None:
            return False

        check_transition(invoice_id, record["status"], status)
        logger.debug("Invoice status change", invoice_id=invoice_id, old=record["status"], new=status)
        record["status"] = status
        record["error"] = error
        record["updated_at"] = datetime.now(UTC).isoformat()
        return True

    def find_by_identifier(self, uen: str) -> list[dict]:
        return [
            copy.deepcopy(record["invoice_data"])
            for record in self._invoices.values()
            if uen in (record["invoice_data"].get("vendor_uen"), record["invoice_data"].get("customer_uen"))
        ]

    def list_by_status(self, status: str) -> list[dict]:
        return [copy.deepcopy(r) for r in self._invoices.values() if r["status"] == status]

    def add_known_entity(self, entity: dict):
        self._known_entities[entity["uen"]] = dict(entity)

    def find_known_entity(self, uen: str) -> Optional[dict]:
        entity = self._known_entities.get(uen)
        return dict(entity) if entity else None


def create_invoice_store(db_path: str = "") -> InvoiceStoreBase:
    """SQLite-backed store when a path is given, in-memory otherwise."""
    if db_path:
        from .invoices_sqlite import SQLiteInvoiceStore
        logger.info("Using SQLite invoice store", db_path=db_path)
        return SQLiteInvoiceStore(db_path)

    logger.info("Using in-memory invoice store")
    return InMemoryInvoiceStore()
