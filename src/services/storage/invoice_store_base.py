"""
Abstract base class for invoice record stores.

Defines the interface the pipeline needs from persisted invoice records,
enabling dependency injection and easy swapping of storage backends.
"""

from abc import ABC, abstractmethod
from typing import Optional

# draft -> processing -> {submitted, failed} -> delivered; failed jobs may be retried
LIFECYCLE_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"processing"},
    "processing": {"submitted", "failed"},
    "submitted": {"delivered"},
    "failed": {"processing", "delivered"},
    "delivered": set(),
}


class InvalidStatusTransition(ValueError):
    def __init__(self, invoice_id: str, current: str, requested: str):
        super().__init__(f"Invoice {invoice_id} cannot move from '{current}' to '{requested}'")
        self.invoice_id = invoice_id
        self.current = current
        self.requested = requested


def check_transition(invoice_id: str, current: str, requested: str):
    if requested not in LIFECYCLE_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(invoice_id, current, requested)


class InvoiceStoreBase(ABC):
    """
    Abstract base class for invoice records.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    """

    @abstractmethod
    def create_invoice(self, file_name: str, invoice_data: dict | None = None) -> str:
        """
        Create a new invoice record in 'draft' status and return its ID.

        Args:
            file_name: Name of the uploaded document
            invoice_data: Optional initial invoice fields

        Returns:
            Invoice ID (unique identifier)
        """
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Optional[dict]:
        """
        Get an invoice record by ID.

        Returns:
            Record dictionary with keys:
                - id: Invoice ID
                - file_name: Uploaded document name
                - status: One of 'draft', 'processing', 'submitted', 'failed', 'delivered'
                - invoice_data: Extracted or entered invoice fields
                - error: Last processing error or None
                - created_at / updated_at: ISO timestamps
            Returns None if not found.
        """
        pass

    @abstractmethod
    def update_invoice(self, invoice_id: str, invoice_data: dict) -> bool:
        """Replace the invoice fields. Returns False if the record does not exist."""
        pass

    @abstractmethod
    def set_status(self, invoice_id: str, status: str, error: str | None = None) -> bool:
        """
        Move an invoice along its lifecycle.

        Returns:
            True if successful, False if the invoice was not found

        Raises:
            InvalidStatusTransition: the move is not allowed from the current status
        """
        pass

    @abstractmethod
    def find_by_identifier(self, uen: str) -> list[dict]:
        """Invoice fields of every record that names the UEN as vendor or customer."""
        pass

    @abstractmethod
    def list_by_status(self, status: str) -> list[dict]:
        pass

    @abstractmethod
    def add_known_entity(self, entity: dict):
        """Register a reference entity (keys: uen, name, type, status, gst_registered, ...)."""
        pass

    @abstractmethod
    def find_known_entity(self, uen: str) -> Optional[dict]:
        pass
