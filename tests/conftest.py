"""
Shared fixtures for the invoice audit tests.
"""

from datetime import date

import pytest

from invoice_audit.history import InMemoryInvoiceHistory
from invoice_audit.schemas import ExtractedInvoice, LineItem, PurchaseOrder
from invoice_audit.stages import PipelineState


AUDIT_DATE = date(2024, 6, 1)


@pytest.fixture
def acme_invoice() -> ExtractedInvoice:
    """Round-total invoice with no line items."""
    return ExtractedInvoice(
        vendor="Acme Corp",
        invoice_number="INV-2024-001",
        date=date(2024, 1, 10),
        total=1000.00,
    )


@pytest.fixture
def itemized_invoice() -> ExtractedInvoice:
    """Invoice whose line items add up to the subtotal."""
    return ExtractedInvoice(
        vendor="Acme Corp",
        invoice_number="INV-2024-002",
        date=date(2024, 1, 10),
        due_date=date(2024, 2, 9),
        total=1087.50,
        subtotal=1006.94,
        tax=80.56,
        items=[
            LineItem(description="Consulting hours", quantity=10, unit_price=50.00, total=500.00),
            LineItem(description="Implementation", quantity=1, unit_price=506.94, total=506.94),
        ],
    )


@pytest.fixture
def acme_po() -> PurchaseOrder:
    """Purchase order matching acme_invoice."""
    return PurchaseOrder(
        po_number="PO-98765",
        vendor="Acme Corp",
        total_amount=1000.00,
    )


@pytest.fixture
def history() -> InMemoryInvoiceHistory:
    """Empty in-memory invoice history."""
    return InMemoryInvoiceHistory()


@pytest.fixture
def make_state():
    """Factory for a PipelineState evaluated on AUDIT_DATE."""
    def _make(invoice, po=None, **kwargs) -> PipelineState:
        kwargs.setdefault("as_of", AUDIT_DATE)
        return PipelineState(invoice=invoice, po=po, caller_id="user-1", **kwargs)
    return _make
