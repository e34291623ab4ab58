"""
FastAPI application for the Invoice Audit Service.

Provides REST API endpoints for:
- Health check
- Auditing an extracted invoice against an optional purchase order
- Listing the audit pipeline stages
"""

from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import API_HOST, API_PORT, HISTORY_DB_PATH, logger
from .errors import InputError, LogicError
from .history import InMemoryInvoiceHistory, InvoiceHistoryBase, SQLiteInvoiceHistory
from .schemas import AuditRequest, AuditResponse
from .scoring import confidence_level
from .validator import run_validation


# ============================================================================
# FastAPI App Configuration
# ============================================================================

app = FastAPI(
    title="Invoice Audit Service API",
    description="""
    Invoice Audit Service API.

    This API audits invoice data that has already been extracted from a
    document. Each audit cross-checks the invoice against an optional
    purchase order and the caller's invoice history.

    ## Features

    - **Amount check**: Invoice total against the PO total
    - **Duplicate detection**: Same vendor, date and total seen before
    - **Fraud heuristics**: Future dates, round amounts, vendor mismatch, line item totals
    - **Confidence score**: 0-100 summary of the findings
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Invoice History
# ============================================================================

_history: Optional[InvoiceHistoryBase] = None


def get_history() -> InvoiceHistoryBase:
    """Return the process-wide invoice history store."""
    global _history
    if _history is None:
        if HISTORY_DB_PATH:
            logger.info(f"Using SQLite invoice history at {HISTORY_DB_PATH}")
            _history = SQLiteInvoiceHistory(HISTORY_DB_PATH)
        else:
            logger.warning(
                "HISTORY_DB_PATH not set, using an empty in-memory invoice history; "
                "duplicate detection needs a store populated with `invoice-audit record`"
            )
            _history = InMemoryInvoiceHistory()
    return _history


# ============================================================================
# Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns the service status and version information.
    """
    from . import __version__
    return HealthResponse(status="ok", version=__version__)


@app.post(
    "/audit",
    response_model=AuditResponse,
    tags=["Audit"],
    summary="Audit an extracted invoice",
)
def audit_invoice(
    request: AuditRequest,
    history: InvoiceHistoryBase = Depends(get_history),
) -> AuditResponse:
    """
    Audit one invoice.

    The invoice is checked against the purchase order (if given) and the
    caller's completed invoices, then scored. Stored history is only read,
    never written.
    """
    logger.info(f"Received audit request from caller {request.caller_id}")

    result = run_validation(
        request.invoice,
        request.caller_id,
        request.purchase_order,
        history=history,
    )

    return AuditResponse(
        result=result,
        confidence_level=confidence_level(result.confidence).value,
    )


@app.get("/stages", tags=["System"])
async def list_stages():
    """
    List the audit pipeline stages in execution order.
    """
    from .stages import AUDIT_STAGES

    return {
        "total_stages": len(AUDIT_STAGES),
        "stages": [
            {"name": stage.name, "description": stage.description}
            for stage in AUDIT_STAGES
        ],
    }


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    """Reject malformed invoice data."""
    logger.warning(f"Rejected audit input: {exc}")
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


@app.exception_handler(LogicError)
async def logic_error_handler(request: Request, exc: LogicError):
    """Audits that break an internal invariant produce no result."""
    logger.error(f"Audit aborted: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Audit aborted due to an internal error"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ============================================================================
# Main Entry Point
# ============================================================================

def run_server():
    """Run the API server using uvicorn."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run_server()
