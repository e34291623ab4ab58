"""
Configuration constants and enums for the Invoice Audit Service.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional

# ============================================================================
# Audit Thresholds
# ============================================================================

# Flag an amount mismatch when invoice and PO differ by more than this percent
DISCREPANCY_PERCENT_THRESHOLD: Final[float] = float(
    os.getenv("DISCREPANCY_PERCENT_THRESHOLD", "5")
)

# Amount mismatches above this percent are high severity, otherwise medium
HIGH_SEVERITY_DISCREPANCY_PERCENT: Final[float] = 10.0

# Line item totals may drift this far from the invoice subtotal/total
LINE_ITEMS_DISCREPANCY_PERCENT: Final[float] = 5.0

# Round amounts at or above this floor are flagged as suspicious
FRAUD_ROUND_AMOUNT_FLOOR: Final[float] = float(os.getenv("FRAUD_ROUND_AMOUNT_FLOOR", "1000"))

# Vendor names less similar than this are treated as a mismatch
VENDOR_SIMILARITY_FLOOR: Final[float] = float(os.getenv("VENDOR_SIMILARITY_FLOOR", "0.7"))

# Guards percentage calculations against a zero expected value
EPSILON: Final[float] = 1e-9

# ============================================================================
# Confidence Scoring
# ============================================================================

LOW_CONFIDENCE_THRESHOLD: Final[int] = int(os.getenv("LOW_CONFIDENCE_THRESHOLD", "70"))
MEDIUM_CONFIDENCE_THRESHOLD: Final[int] = 85
HIGH_CONFIDENCE_THRESHOLD: Final[int] = 95

MAX_CONFIDENCE: Final[int] = 100

# ============================================================================
# Invoice History
# ============================================================================

DUPLICATE_LOOKUP_LIMIT: Final[int] = int(os.getenv("DUPLICATE_LOOKUP_LIMIT", "5"))

# Seconds to wait for the history store before skipping duplicate detection
HISTORY_LOOKUP_TIMEOUT: Final[float] = float(os.getenv("HISTORY_LOOKUP_TIMEOUT", "5.0"))

# SQLite database backing the API's invoice history (in-memory when unset)
HISTORY_DB_PATH: Final[Optional[str]] = os.getenv("HISTORY_DB_PATH")

HISTORY_LOOKUP_WORKERS: Final[int] = int(os.getenv("HISTORY_LOOKUP_WORKERS", "4"))


# ============================================================================
# Flag Enums
# ============================================================================

class FlagKind(str, Enum):
    """Broad category of an audit finding."""
    DISCREPANCY = "discrepancy"
    DUPLICATE = "duplicate"
    FRAUD = "fraud"
    MISSING_PO = "missing_po"
    AMOUNT_MISMATCH = "amount_mismatch"


class FlagCheck(str, Enum):
    """Machine-readable identifier of the check that raised a flag."""
    MISSING_PO = "missing_po"
    AMOUNT_MISMATCH = "amount_mismatch"
    DUPLICATE = "duplicate"
    FUTURE_DATE = "future_date"
    ROUND_AMOUNT = "round_amount"
    VENDOR_MISMATCH = "vendor_mismatch"
    LINE_ITEMS_TOTAL = "line_items_total"
    ITEM_COUNT = "item_count"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfidenceLevel(str, Enum):
    """Human-readable band for a confidence score."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


# Points subtracted from the starting confidence for each flag
SEVERITY_PENALTIES: Final[dict[Severity, int]] = {
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}


@dataclass(frozen=True)
class AuditThresholds:
    """
    Tunable limits for a single audit run.

    Defaults come from the environment-backed constants above; callers
    override individual values by constructing their own instance.
    """
    discrepancy_percent: float = DISCREPANCY_PERCENT_THRESHOLD
    low_confidence: int = LOW_CONFIDENCE_THRESHOLD
    duplicate_lookup_limit: int = DUPLICATE_LOOKUP_LIMIT
    round_amount_floor: float = FRAUD_ROUND_AMOUNT_FLOOR
    vendor_similarity_floor: float = VENDOR_SIMILARITY_FLOOR
    history_timeout_seconds: float = HISTORY_LOOKUP_TIMEOUT


DEFAULT_THRESHOLDS: Final[AuditThresholds] = AuditThresholds()

# ============================================================================
# API Configuration
# ============================================================================

API_HOST: Final[str] = os.getenv("API_HOST", "0.0.0.0")
API_PORT: Final[int] = int(os.getenv("API_PORT", "8000"))

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("invoice_audit")


logger = setup_logging()
