"""
Audit pipeline runner for invoice validation.

This module threads a single PipelineState through the audit stages in
order and turns the resulting flags into a scored AuditResult.
"""

import math
from datetime import date
from typing import Any, Optional

from pydantic import ValidationError

from .config import DEFAULT_THRESHOLDS, AuditThresholds, logger
from .errors import InputError, LogicError
from .history import InvoiceHistoryBase
from .schemas import AuditFlag, AuditResult, ExtractedInvoice, PurchaseOrder
from .scoring import build_validation_result, calculate_confidence, confidence_level
from .stages import AUDIT_STAGES, AuditStage, PipelineState


# ============================================================================
# Input Handling
# ============================================================================

def parse_invoice(data: dict[str, Any]) -> ExtractedInvoice:
    """
    Build an ExtractedInvoice from raw extraction output.

    Raises:
        InputError: If the data does not match the invoice shape
    """
    try:
        return ExtractedInvoice.model_validate(data)
    except ValidationError as e:
        raise InputError(f"Invalid invoice data: {e}") from e


def parse_purchase_order(data: dict[str, Any]) -> PurchaseOrder:
    """
    Build a PurchaseOrder from raw data.

    Raises:
        InputError: If the data does not match the purchase order shape
    """
    try:
        return PurchaseOrder.model_validate(data)
    except ValidationError as e:
        raise InputError(f"Invalid purchase order data: {e}") from e


def _check_amount(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if not math.isfinite(value):
        raise InputError(f"{name} must be a finite number, got {value}")
    if value < 0:
        raise InputError(f"{name} must not be negative, got {value}")


def check_input(
    invoice: ExtractedInvoice,
    caller_id: str,
    po: Optional[PurchaseOrder] = None,
) -> None:
    """
    Reject malformed audit input before any stage runs.

    Models may have been built without validation or mutated afterwards,
    so the constraints are enforced again here. A missing invoice number
    or due date is not an error.

    Raises:
        InputError: On the first violated constraint
    """
    if not caller_id or not caller_id.strip():
        raise InputError("caller_id must not be empty")
    if not invoice.vendor or not invoice.vendor.strip():
        raise InputError("Invoice vendor must not be empty")

    _check_amount("Invoice total", invoice.total)
    _check_amount("Invoice subtotal", invoice.subtotal)
    _check_amount("Invoice tax", invoice.tax)

    for i, item in enumerate(invoice.items):
        _check_amount(f"Item {i} quantity", item.quantity)
        _check_amount(f"Item {i} unit_price", item.unit_price)
        _check_amount(f"Item {i} total", item.total)

    if po is not None:
        _check_amount("PO total_amount", po.total_amount)


# ============================================================================
# Pipeline
# ============================================================================

def run_validation(
    invoice: ExtractedInvoice,
    caller_id: str,
    po: Optional[PurchaseOrder] = None,
    *,
    history: Optional[InvoiceHistoryBase] = None,
    thresholds: Optional[AuditThresholds] = None,
    timeout: Optional[float] = None,
    as_of: Optional[date] = None,
    stages: Optional[list[AuditStage]] = None,
) -> AuditResult:
    """
    Audit a single invoice.

    Runs the amount, duplicate, fraud and PO item stages in that order,
    then scores the collected flags.

    Args:
        invoice: Extracted invoice to audit
        caller_id: Account the invoice belongs to
        po: Purchase order to cross-check against
        history: Invoice history for duplicate detection (skipped when None)
        thresholds: Audit limits (defaults to the environment configuration)
        timeout: Seconds to wait for the history store
        as_of: Audit date for the future-date check (defaults to today)
        stages: Stages to run (defaults to AUDIT_STAGES)

    Returns:
        AuditResult with flags in stage order, confidence and validation summary

    Raises:
        InputError: If the invoice, PO or caller id is malformed
        LogicError: If a stage or the scorer breaks an invariant
    """
    check_input(invoice, caller_id, po)

    if thresholds is None:
        thresholds = DEFAULT_THRESHOLDS
    if timeout is None:
        timeout = thresholds.history_timeout_seconds
    if stages is None:
        stages = AUDIT_STAGES

    state = PipelineState(
        invoice=invoice,
        po=po,
        caller_id=caller_id,
        as_of=as_of or date.today(),
        thresholds=thresholds,
        history=history,
        history_timeout=timeout,
    )

    logger.info(
        f"Auditing invoice {invoice.invoice_number or '<unnumbered>'} "
        f"from {invoice.vendor} for caller {caller_id}"
    )

    for stage in stages:
        try:
            delta = stage.run(state)
        except LogicError as e:
            logger.error(f"Stage {stage.name} aborted the audit: {e}")
            raise

        for flag in delta:
            if not isinstance(flag, AuditFlag):
                raise LogicError(f"Stage {stage.name} returned {type(flag).__name__}, expected AuditFlag")

        state.flags.extend(delta)
        logger.debug(f"Stage {stage.name} raised {len(delta)} flag(s)")

    confidence = calculate_confidence(state.flags)
    validation_results = build_validation_result(
        state.flags,
        confidence,
        low_confidence=thresholds.low_confidence,
    )

    logger.info(
        f"Audit complete: {len(state.flags)} flag(s), confidence {confidence}, "
        f"{'passed' if validation_results.passed else 'failed'}"
    )

    return AuditResult(
        flags=list(state.flags),
        confidence=confidence,
        validation_results=validation_results,
    )


# ============================================================================
# Reporting
# ============================================================================

def format_result_text(result: AuditResult) -> str:
    """
    Format an AuditResult as human-readable text for CLI output.

    Args:
        result: AuditResult to format

    Returns:
        Formatted string for display
    """
    validation = result.validation_results
    lines = [
        "=" * 50,
        "AUDIT RESULT",
        "=" * 50,
        f"Confidence:  {result.confidence} ({confidence_level(result.confidence).value})",
        f"Status:      {'PASSED' if validation.passed else 'FAILED'}",
        "",
        "Checks:",
        "-" * 40,
    ]

    for check_name, passed in validation.checks.model_dump().items():
        lines.append(f"  [{'OK' if passed else 'X '}] {check_name}")
    lines.append("")

    if result.flags:
        lines.append("Flags:")
        lines.append("-" * 40)
        for flag in result.flags:
            lines.append(f"  {flag.severity.value.upper():<6} {flag.kind.value}: {flag.message}")
        lines.append("")
    else:
        lines.append("No flags raised.")
        lines.append("")

    lines.append("=" * 50)

    return "\n".join(lines)
