"""
Invoice Audit Service

A Python service for auditing extracted vendor invoices against purchase
orders and invoice history, producing risk flags and a confidence score.
"""

__version__ = "0.1.0"
__author__ = "Invoice Audit Team"

from .errors import AuditError, CollaboratorError, InputError, LogicError
from .history import InMemoryInvoiceHistory, InvoiceHistoryBase, SQLiteInvoiceHistory
from .schemas import AuditFlag, AuditResult, ExtractedInvoice, LineItem, PurchaseOrder, ValidationResult
from .validator import parse_invoice, parse_purchase_order, run_validation

__all__ = [
    "AuditError",
    "CollaboratorError",
    "InputError",
    "LogicError",
    "InvoiceHistoryBase",
    "InMemoryInvoiceHistory",
    "SQLiteInvoiceHistory",
    "AuditFlag",
    "AuditResult",
    "ExtractedInvoice",
    "LineItem",
    "PurchaseOrder",
    "ValidationResult",
    "parse_invoice",
    "parse_purchase_order",
    "run_validation",
]
