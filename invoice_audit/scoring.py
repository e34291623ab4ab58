"""
Confidence scoring and validation summary for a finished audit.

Everything here is derived from the final flag list alone.
"""

from collections.abc import Mapping
from typing import Any, Optional

from .config import (
    HIGH_CONFIDENCE_THRESHOLD,
    LOW_CONFIDENCE_THRESHOLD,
    MAX_CONFIDENCE,
    MEDIUM_CONFIDENCE_THRESHOLD,
    SEVERITY_PENALTIES,
    ConfidenceLevel,
    FlagCheck,
    FlagKind,
)
from .errors import LogicError
from .schemas import AuditFlag, Discrepancy, ValidationChecks, ValidationResult


def calculate_confidence(flags: list[AuditFlag]) -> int:
    """
    Start from 100 and subtract a penalty per flag based on its severity.

    Args:
        flags: Final flag list of an audit

    Returns:
        Confidence score, never below 0
    """
    penalty = sum(SEVERITY_PENALTIES[flag.severity] for flag in flags)
    confidence = max(0, MAX_CONFIDENCE - penalty)

    if not 0 <= confidence <= MAX_CONFIDENCE:
        raise LogicError(f"Confidence out of range: {confidence}")

    return confidence


def confidence_level(confidence: int) -> ConfidenceLevel:
    """Map a confidence score to its human-readable band."""
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.VERY_HIGH
    if confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if confidence >= LOW_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def build_checks(flags: list[AuditFlag]) -> ValidationChecks:
    """Each check passes unless a flag raised by the matching check exists."""
    raised = {flag.check for flag in flags}
    kinds = {flag.kind for flag in flags}

    return ValidationChecks(
        amount_match=FlagKind.AMOUNT_MISMATCH not in kinds,
        vendor_match=FlagCheck.VENDOR_MISMATCH not in raised,
        date_valid=FlagCheck.FUTURE_DATE not in raised,
        no_duplicate=FlagKind.DUPLICATE not in kinds,
        items_match=raised.isdisjoint({FlagCheck.LINE_ITEMS_TOTAL, FlagCheck.ITEM_COUNT}),
    )


def _first_present(details: Mapping[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        if details.get(key) is not None:
            return details[key]
    return None


def build_discrepancies(flags: list[AuditFlag]) -> list[Discrepancy]:
    """
    Map every flag to an expected/actual/difference entry.

    Values are read from whichever detail keys the flag carries; missing
    keys yield None.
    """
    discrepancies = []
    for flag in flags:
        details = flag.details or {}
        discrepancies.append(Discrepancy(
            field=flag.kind.value,
            expected=_first_present(details, "po_amount", "po_vendor"),
            actual=_first_present(details, "invoice_amount", "invoice_vendor"),
            difference=_first_present(details, "discrepancy_percent", "discrepancy"),
        ))
    return discrepancies


def build_validation_result(
    flags: list[AuditFlag],
    confidence: int,
    low_confidence: int = LOW_CONFIDENCE_THRESHOLD,
) -> ValidationResult:
    """
    Summarize an audit's flags.

    Args:
        flags: Final flag list of an audit
        confidence: Score from calculate_confidence
        low_confidence: Minimum score for the audit to pass

    Returns:
        ValidationResult with pass/fail, per-check booleans and discrepancies
    """
    return ValidationResult(
        passed=confidence >= low_confidence,
        checks=build_checks(flags),
        discrepancies=build_discrepancies(flags),
    )
