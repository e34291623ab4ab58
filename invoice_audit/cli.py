"""
Command-line interface for the Invoice Audit Service.

Provides these commands:
- audit: Audit an extracted invoice JSON file and write a report
- record: Add a completed invoice to a SQLite invoice history
- stages: List the audit pipeline stages
- version: Show the service version
"""

import json
from pathlib import Path
from typing import Any, Optional

import typer

from .config import HISTORY_LOOKUP_TIMEOUT, logger
from .errors import InputError
from .history import SQLiteInvoiceHistory
from .stages import AUDIT_STAGES
from .validator import format_result_text, parse_invoice, parse_purchase_order, run_validation


# Create Typer app
app = typer.Typer(
    name="invoice-audit",
    help="Invoice Audit Service CLI",
    add_completion=False,
)


def _load_json(path: Path) -> dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise InputError(f"{path} must contain a single JSON object")
    return data


@app.command()
def audit(
    invoice_file: Path = typer.Option(
        ...,
        "--invoice",
        "-i",
        help="JSON file containing the extracted invoice",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    caller_id: str = typer.Option(
        ...,
        "--caller-id",
        "-c",
        help="Account the invoice belongs to",
    ),
    po_file: Optional[Path] = typer.Option(
        None,
        "--po",
        "-p",
        help="JSON file containing the purchase order",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    history_db: Optional[Path] = typer.Option(
        None,
        "--history-db",
        help="SQLite invoice history used for duplicate detection",
    ),
    timeout: float = typer.Option(
        HISTORY_LOOKUP_TIMEOUT,
        "--timeout",
        help="Seconds to wait for the invoice history",
    ),
    report: Path = typer.Option(
        "audit_report.json",
        "--report",
        "-r",
        help="Output audit report JSON file path",
    ),
    fail_on_low_confidence: bool = typer.Option(
        False,
        "--fail-on-low-confidence",
        help="Exit with non-zero status if the audit does not pass",
    ),
) -> None:
    """
    Audit an extracted invoice.

    Reads the invoice (and optional purchase order) JSON, runs the audit
    pipeline, prints a summary and writes the full result to a JSON report.
    """
    typer.echo(f"Auditing invoice from: {invoice_file}")

    try:
        invoice = parse_invoice(_load_json(invoice_file))
        po = parse_purchase_order(_load_json(po_file)) if po_file else None
        history = SQLiteInvoiceHistory(str(history_db)) if history_db else None

        result = run_validation(
            invoice,
            caller_id,
            po,
            history=history,
            timeout=timeout,
        )
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in input file: {e}", err=True)
        raise typer.Exit(code=1)
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    with open(report, 'w', encoding='utf-8') as f:
        json.dump(result.model_dump(mode="json"), f, indent=2)

    typer.echo("\n" + format_result_text(result))
    typer.echo(f"\n[OK] Audit report saved to: {report}")

    if fail_on_low_confidence and not result.validation_results.passed:
        raise typer.Exit(code=1)


@app.command()
def record(
    invoice_file: Path = typer.Option(
        ...,
        "--invoice",
        "-i",
        help="JSON file containing the extracted invoice",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    caller_id: str = typer.Option(
        ...,
        "--caller-id",
        "-c",
        help="Account the invoice belongs to",
    ),
    history_db: Path = typer.Option(
        "invoice_history.db",
        "--history-db",
        help="SQLite invoice history to add the invoice to",
    ),
    file_name: Optional[str] = typer.Option(
        None,
        "--file-name",
        help="Source document name (defaults to the JSON file name)",
    ),
) -> None:
    """
    Record a completed invoice in the invoice history.

    Later audits for the same caller flag invoices with the same vendor,
    date and total as potential duplicates.
    """
    try:
        invoice = parse_invoice(_load_json(invoice_file))
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in input file: {e}", err=True)
        raise typer.Exit(code=1)
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    history = SQLiteInvoiceHistory(str(history_db))
    invoice_id = history.record_invoice(
        caller_id,
        file_name or invoice_file.name,
        invoice,
    )

    logger.info(f"Recorded invoice {invoice_id} for caller {caller_id}")
    typer.echo(f"[OK] Recorded invoice {invoice_id} in: {history_db}")


@app.command()
def stages() -> None:
    """List the audit pipeline stages in execution order."""
    for position, stage in enumerate(AUDIT_STAGES, start=1):
        typer.echo(f"{position}. {stage.name}: {stage.description}")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Invoice Audit Service v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
