"""
Audit stages for the invoice validation pipeline.

The pipeline runs four stages in a fixed order:
- Amount check: invoice total against the purchase order
- Duplicate check: exact-fingerprint lookup in the caller's invoice history
- Fraud check: future dates, round amounts, vendor mismatch, line item totals
- PO item check: invoice and purchase order item counts

Each stage is a function that receives the current PipelineState and
returns the flags to append. Stages never edit or remove earlier flags.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from .config import (
    DEFAULT_THRESHOLDS,
    HIGH_SEVERITY_DISCREPANCY_PERCENT,
    LINE_ITEMS_DISCREPANCY_PERCENT,
    AuditThresholds,
    FlagCheck,
    FlagKind,
    Severity,
    logger,
)
from .discrepancy import percent_discrepancy, string_similarity
from .errors import CollaboratorError, LogicError
from .history import InvoiceHistoryBase, find_duplicates
from .schemas import AuditFlag, ExtractedInvoice, PurchaseOrder


@dataclass
class PipelineState:
    """
    Accumulator threaded through the stages of one audit run.

    Attributes:
        invoice: Invoice being audited
        po: Purchase order to cross-check against, if any
        caller_id: Account the invoice belongs to
        as_of: Date the audit is evaluated on
        thresholds: Limits in effect for this run
        history: Invoice history store, or None to skip duplicate detection
        history_timeout: Seconds to wait for the history store
        flags: Findings so far, in stage order (append-only)
    """
    invoice: ExtractedInvoice
    po: Optional[PurchaseOrder]
    caller_id: str
    as_of: date
    thresholds: AuditThresholds = DEFAULT_THRESHOLDS
    history: Optional[InvoiceHistoryBase] = None
    history_timeout: float = DEFAULT_THRESHOLDS.history_timeout_seconds
    flags: list[AuditFlag] = field(default_factory=list)


# Stage functions take the run state and return the flags to append
StageFn = Callable[[PipelineState], list[AuditFlag]]


@dataclass
class AuditStage:
    """
    Represents a single pipeline stage.

    Attributes:
        name: Machine-readable stage name (e.g., "amount_check")
        description: Human-readable description of the stage
        run: Function that performs the stage
    """
    name: str
    description: str
    run: StageFn


# ============================================================================
# Amount Check
# ============================================================================

def check_amount(state: PipelineState) -> list[AuditFlag]:
    """
    Compare the invoice total with the purchase order total.

    Without a PO the stage only records that one is missing.
    """
    invoice, po = state.invoice, state.po

    if po is None:
        return [AuditFlag(
            kind=FlagKind.MISSING_PO,
            check=FlagCheck.MISSING_PO,
            severity=Severity.MEDIUM,
            message="No purchase order found for validation",
        )]

    discrepancy = percent_discrepancy(po.total_amount, invoice.total)
    if discrepancy <= state.thresholds.discrepancy_percent:
        return []

    severity = Severity.HIGH if discrepancy > HIGH_SEVERITY_DISCREPANCY_PERCENT else Severity.MEDIUM
    return [AuditFlag(
        kind=FlagKind.AMOUNT_MISMATCH,
        check=FlagCheck.AMOUNT_MISMATCH,
        severity=severity,
        message=(
            f"Amount mismatch: Invoice ${invoice.total} vs PO ${po.total_amount} "
            f"({discrepancy:.1f}% difference)"
        ),
        details={
            "invoice_amount": invoice.total,
            "po_amount": po.total_amount,
            "discrepancy_percent": discrepancy,
        },
    )]


# ============================================================================
# Duplicate Check
# ============================================================================

def check_duplicate(state: PipelineState) -> list[AuditFlag]:
    """
    Look for earlier completed invoices with the same vendor, date and total.

    A history store that fails or times out makes the check inconclusive:
    the failure is logged and no flag is raised.
    """
    if state.history is None:
        logger.debug("No invoice history configured, skipping duplicate detection")
        return []

    try:
        matches = find_duplicates(
            state.history,
            state.caller_id,
            state.invoice,
            limit=state.thresholds.duplicate_lookup_limit,
            timeout=state.history_timeout,
        )
    except CollaboratorError as e:
        logger.warning(f"Duplicate detection skipped for caller {state.caller_id}: {e}")
        return []

    if not matches:
        return []

    return [AuditFlag(
        kind=FlagKind.DUPLICATE,
        check=FlagCheck.DUPLICATE,
        severity=Severity.HIGH,
        message=f"Potential duplicate invoice detected ({len(matches)} similar found)",
        details={
            "similar_invoices": [m.model_dump(mode="json") for m in matches],
        },
    )]


# ============================================================================
# Fraud Check
# ============================================================================

def check_future_date(state: PipelineState) -> Optional[AuditFlag]:
    """Invoices cannot be issued after the day they are audited."""
    if state.invoice.date <= state.as_of:
        return None
    return AuditFlag(
        kind=FlagKind.FRAUD,
        check=FlagCheck.FUTURE_DATE,
        severity=Severity.HIGH,
        message="Invoice dated in the future",
        details={"invoice_date": state.invoice.date.isoformat()},
    )


def check_round_amount(state: PipelineState) -> Optional[AuditFlag]:
    """Large totals that are an exact multiple of 100 are a common fraud marker."""
    total = state.invoice.total
    if total % 100 != 0 or total < state.thresholds.round_amount_floor:
        return None
    return AuditFlag(
        kind=FlagKind.FRAUD,
        check=FlagCheck.ROUND_AMOUNT,
        severity=Severity.LOW,
        message="Suspicious round number amount",
        details={"amount": total},
    )


def check_vendor_match(state: PipelineState) -> Optional[AuditFlag]:
    """
    The invoice vendor should be recognisably the vendor on the PO.

    Names are compared case-insensitively; small spelling differences
    are tolerated down to the configured similarity floor.
    """
    invoice, po = state.invoice, state.po
    if po is None:
        return None

    invoice_vendor = invoice.vendor.lower()
    po_vendor = po.vendor.lower()
    if invoice_vendor == po_vendor:
        return None

    similarity = string_similarity(invoice_vendor, po_vendor)
    if not 0 <= similarity <= 1:
        raise LogicError(f"Vendor similarity out of range: {similarity}")

    if similarity >= state.thresholds.vendor_similarity_floor:
        return None

    return AuditFlag(
        kind=FlagKind.FRAUD,
        check=FlagCheck.VENDOR_MISMATCH,
        severity=Severity.HIGH,
        message=f'Vendor mismatch: Invoice "{invoice.vendor}" vs PO "{po.vendor}"',
        details={
            "invoice_vendor": invoice.vendor,
            "po_vendor": po.vendor,
            "similarity": similarity,
        },
    )


def check_line_items_total(state: PipelineState) -> Optional[AuditFlag]:
    """
    Line item totals should add up to the subtotal (or the total when
    no subtotal was extracted).
    """
    invoice = state.invoice
    if not invoice.items:
        return None

    items_total = sum(item.total for item in invoice.items)
    # A zero subtotal is treated as not extracted
    expected_total = invoice.subtotal if invoice.subtotal else invoice.total
    discrepancy = percent_discrepancy(expected_total, items_total)

    if discrepancy <= LINE_ITEMS_DISCREPANCY_PERCENT:
        return None

    return AuditFlag(
        kind=FlagKind.DISCREPANCY,
        check=FlagCheck.LINE_ITEMS_TOTAL,
        severity=Severity.MEDIUM,
        message=f"Line items total (${items_total}) doesn't match invoice total (${expected_total})",
        details={
            "items_total": items_total,
            "expected_total": expected_total,
            "discrepancy": discrepancy,
        },
    )


FRAUD_CHECKS: list[Callable[[PipelineState], Optional[AuditFlag]]] = [
    check_future_date,
    check_round_amount,
    check_vendor_match,
    check_line_items_total,
]


def check_fraud(state: PipelineState) -> list[AuditFlag]:
    """Run every fraud heuristic and collect the ones that fire."""
    flags = []
    for heuristic in FRAUD_CHECKS:
        flag = heuristic(state)
        if flag is not None:
            flags.append(flag)
    return flags


# ============================================================================
# PO Item Check
# ============================================================================

def check_po_items(state: PipelineState) -> list[AuditFlag]:
    """Invoice and PO should list the same number of items."""
    invoice, po = state.invoice, state.po
    if po is None or not po.items:
        return []

    if len(invoice.items) == len(po.items):
        return []

    return [AuditFlag(
        kind=FlagKind.DISCREPANCY,
        check=FlagCheck.ITEM_COUNT,
        severity=Severity.LOW,
        message=(
            f"Item count mismatch: Invoice has {len(invoice.items)} items, "
            f"PO has {len(po.items)}"
        ),
        details={
            "invoice_items": len(invoice.items),
            "po_items": len(po.items),
        },
    )]


# ============================================================================
# Stage Registry
# ============================================================================

# All stages in execution order; output flags follow this order
AUDIT_STAGES: list[AuditStage] = [
    AuditStage(
        name="amount_check",
        description="Invoice total must be within tolerance of the purchase order total",
        run=check_amount,
    ),
    AuditStage(
        name="duplicate_check",
        description="Invoice must not match an earlier completed invoice by vendor, date and total",
        run=check_duplicate,
    ),
    AuditStage(
        name="fraud_check",
        description="Invoice must not be future-dated, suspiciously round, from an unexpected vendor "
                    "or inconsistent with its line items",
        run=check_fraud,
    ),
    AuditStage(
        name="po_item_check",
        description="Invoice must list as many items as the purchase order",
        run=check_po_items,
    ),
]


def get_stage_descriptions() -> dict[str, str]:
    """Get a mapping of stage names to their descriptions."""
    return {stage.name: stage.description for stage in AUDIT_STAGES}
