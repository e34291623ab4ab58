"""
Pydantic models for extracted invoice data and audit results.

This module defines the core data structures used throughout the Invoice Audit Service:
- ExtractedInvoice, LineItem and PurchaseOrder as delivered by extraction
- AuditFlag for individual findings raised by the pipeline stages
- ValidationResult and AuditResult for the aggregated audit outcome
"""

import datetime as dt
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .config import FlagCheck, FlagKind, Severity


class LineItem(BaseModel):
    """
    Represents a single line item on an invoice or purchase order.

    Attributes:
        description: Text description of the item or service
        quantity: Number of units
        unit_price: Price per unit
        total: Amount charged for this line

    quantity × unit_price is not required to equal total; mismatches
    are reported by the audit rather than rejected here.
    """
    description: str = Field(..., description="Item or service description")
    quantity: float = Field(..., ge=0, description="Number of units")
    unit_price: float = Field(..., ge=0, description="Price per unit")
    total: float = Field(..., ge=0, description="Total for this line item")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "description": "Consulting hours",
                    "quantity": 10,
                    "unit_price": 50.00,
                    "total": 500.00,
                }
            ]
        }
    }


class ExtractedInvoice(BaseModel):
    """
    Structured fields extracted from a vendor invoice.

    This is the fixed record shape the extraction step hands to the audit
    pipeline. Only the vendor, date, total and items drive the checks;
    the remaining fields are carried through for reporting.
    """

    # ========================================================================
    # Identifiers
    # ========================================================================
    vendor: str = Field(
        ...,
        min_length=1,
        description="Name of the vendor issuing the invoice"
    )
    invoice_number: Optional[str] = Field(
        None,
        description="Invoice identifier assigned by the vendor"
    )

    # ========================================================================
    # Dates
    # ========================================================================
    date: dt.date = Field(
        ...,
        description="Date when the invoice was issued"
    )
    due_date: Optional[dt.date] = Field(
        None,
        description="Payment due date"
    )

    # ========================================================================
    # Financial Information
    # ========================================================================
    total: float = Field(
        ...,
        ge=0,
        description="Total amount due"
    )
    subtotal: Optional[float] = Field(
        None,
        ge=0,
        description="Amount before tax, when printed on the invoice"
    )
    tax: Optional[float] = Field(
        None,
        ge=0,
        description="Total tax amount"
    )

    # ========================================================================
    # Line Items
    # ========================================================================
    items: list[LineItem] = Field(
        default_factory=list,
        description="Itemized list of products or services"
    )

    @field_validator("vendor")
    @classmethod
    def strip_vendor(cls, v: str) -> str:
        """Trim surrounding whitespace from the vendor name."""
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "vendor": "Acme Corp",
                    "invoice_number": "INV-2024-0042",
                    "date": "2024-01-10",
                    "due_date": "2024-02-09",
                    "total": 1080.00,
                    "subtotal": 1000.00,
                    "tax": 80.00,
                    "items": [
                        {
                            "description": "Consulting hours",
                            "quantity": 10,
                            "unit_price": 50.00,
                            "total": 500.00,
                        },
                        {
                            "description": "Implementation",
                            "quantity": 1,
                            "unit_price": 500.00,
                            "total": 500.00,
                        },
                    ],
                }
            ]
        }
    }


class PurchaseOrder(BaseModel):
    """Purchase order the invoice is cross-checked against."""
    po_number: str = Field(..., description="Purchase order number")
    vendor: str = Field(..., description="Vendor the order was placed with")
    total_amount: float = Field(..., description="Approved order total")
    items: Optional[list[LineItem]] = Field(
        None,
        description="Ordered line items, if recorded"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "po_number": "PO-98765",
                    "vendor": "Acme Corp",
                    "total_amount": 1080.00,
                    "items": None,
                }
            ]
        }
    }


# ============================================================================
# Audit Findings
# ============================================================================

def _freeze(value: Any) -> Any:
    """Recursively turn mappings into read-only proxies and lists into tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class AuditFlag(BaseModel):
    """
    A single finding raised by an audit stage.

    Flags are immutable once created. `kind` is the broad category shown
    to reviewers; `check` identifies exactly which check produced the flag
    and is what the scorer keys its summary booleans on.
    """
    kind: FlagKind = Field(..., description="Category of the finding")
    check: FlagCheck = Field(..., description="Check that raised the finding")
    severity: Severity = Field(..., description="How much the finding lowers confidence")
    message: str = Field(..., description="Human-readable explanation")
    details: Optional[Mapping[str, Any]] = Field(
        None,
        description="Amounts, names or matches supporting the finding"
    )

    @field_validator("details")
    @classmethod
    def freeze_details(cls, v: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
        """Store details read-only, including nested mappings and lists."""
        if v is None:
            return None
        return _freeze(v)

    @field_serializer("details")
    def serialize_details(self, v: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
        if v is None:
            return None
        return _thaw(v)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "kind": "amount_mismatch",
                    "check": "amount_mismatch",
                    "severity": "high",
                    "message": "Amount mismatch: Invoice $1000.0 vs PO $800.0 (25.0% difference)",
                    "details": {
                        "invoice_amount": 1000.0,
                        "po_amount": 800.0,
                        "discrepancy_percent": 25.0,
                    },
                }
            ]
        },
    )


class SimilarInvoice(BaseModel):
    """A previously completed invoice returned by the history lookup."""
    id: str
    file_name: str
    created_at: dt.datetime


# ============================================================================
# Audit Results
# ============================================================================

class Discrepancy(BaseModel):
    """Expected-versus-actual view of one flag."""
    field: str = Field(..., description="Kind of the flag this entry describes")
    expected: Optional[Any] = Field(None, description="PO amount or vendor, if known")
    actual: Optional[Any] = Field(None, description="Invoice amount or vendor, if known")
    difference: Optional[float] = Field(None, description="Discrepancy percentage, if known")


class ValidationChecks(BaseModel):
    """Pass/fail outcome per audit dimension."""
    amount_match: bool = True
    vendor_match: bool = True
    date_valid: bool = True
    no_duplicate: bool = True
    items_match: bool = True


class ValidationResult(BaseModel):
    """
    Structured summary derived from the final flag set.

    Built only by the scorer; never assembled by hand.
    """
    passed: bool = Field(
        ...,
        description="True if confidence meets the low-confidence threshold"
    )
    checks: ValidationChecks = Field(
        default_factory=ValidationChecks,
        description="Per-dimension outcome of the audit"
    )
    discrepancies: list[Discrepancy] = Field(
        default_factory=list,
        description="One entry per flag, in flag order"
    )


class AuditResult(BaseModel):
    """Complete outcome of one audit run."""
    flags: list[AuditFlag] = Field(
        default_factory=list,
        description="Findings in stage order"
    )
    confidence: int = Field(
        ...,
        ge=0,
        le=100,
        description="Overall trust score after flag penalties"
    )
    validation_results: ValidationResult

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "flags": [
                        {
                            "kind": "fraud",
                            "check": "round_amount",
                            "severity": "low",
                            "message": "Suspicious round number amount",
                            "details": {"amount": 1000.0},
                        }
                    ],
                    "confidence": 97,
                    "validation_results": {
                        "passed": True,
                        "checks": {
                            "amount_match": True,
                            "vendor_match": True,
                            "date_valid": True,
                            "no_duplicate": True,
                            "items_match": True,
                        },
                        "discrepancies": [
                            {
                                "field": "fraud",
                                "expected": None,
                                "actual": None,
                                "difference": None,
                            }
                        ],
                    },
                }
            ]
        }
    }


# ============================================================================
# API Request/Response Models
# ============================================================================

class AuditRequest(BaseModel):
    """Request body for the /audit endpoint."""
    caller_id: str = Field(
        ...,
        min_length=1,
        description="Account the invoice belongs to; scopes duplicate detection"
    )
    invoice: ExtractedInvoice
    purchase_order: Optional[PurchaseOrder] = None


class AuditResponse(BaseModel):
    """Response for the /audit endpoint."""
    result: AuditResult
    confidence_level: str = Field(
        ...,
        description="Band the confidence score falls into"
    )
