"""
Tests for the command-line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from invoice_audit.cli import app


runner = CliRunner()


@pytest.fixture
def invoice_file(tmp_path):
    path = tmp_path / "invoice.json"
    path.write_text(json.dumps({
        "vendor": "Acme Corp",
        "invoice_number": "INV-2024-001",
        "date": "2024-01-10",
        "total": 1000,
    }), encoding="utf-8")
    return path


@pytest.fixture
def po_file(tmp_path):
    path = tmp_path / "po.json"
    path.write_text(json.dumps({
        "po_number": "PO-98765",
        "vendor": "Acme Corp",
        "total_amount": 1000,
    }), encoding="utf-8")
    return path


def test_audit_writes_report(tmp_path, invoice_file, po_file):
    report = tmp_path / "report.json"

    result = runner.invoke(app, [
        "audit",
        "--invoice", str(invoice_file),
        "--po", str(po_file),
        "--caller-id", "user-1",
        "--report", str(report),
    ])

    assert result.exit_code == 0
    assert "AUDIT RESULT" in result.output
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["confidence"] == 97
    assert data["validation_results"]["passed"] is True


def test_audit_fail_on_low_confidence(tmp_path, invoice_file):
    po_file = tmp_path / "po.json"
    po_file.write_text(json.dumps({
        "po_number": "PO-1",
        "vendor": "Initech",
        "total_amount": 100,
    }), encoding="utf-8")

    result = runner.invoke(app, [
        "audit",
        "--invoice", str(invoice_file),
        "--po", str(po_file),
        "--caller-id", "user-1",
        "--report", str(tmp_path / "report.json"),
        "--fail-on-low-confidence",
    ])

    assert result.exit_code == 1


def test_record_then_audit_finds_duplicate(tmp_path, invoice_file, po_file):
    history_db = tmp_path / "history.db"
    report = tmp_path / "report.json"

    recorded = runner.invoke(app, [
        "record",
        "--invoice", str(invoice_file),
        "--caller-id", "user-1",
        "--history-db", str(history_db),
    ])
    assert recorded.exit_code == 0

    result = runner.invoke(app, [
        "audit",
        "--invoice", str(invoice_file),
        "--po", str(po_file),
        "--caller-id", "user-1",
        "--history-db", str(history_db),
        "--report", str(report),
    ])

    assert result.exit_code == 0
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["validation_results"]["checks"]["no_duplicate"] is False
    assert data["flags"][0]["details"]["similar_invoices"][0]["file_name"] == "invoice.json"


def test_audit_invalid_json(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    result = runner.invoke(app, ["audit", "--invoice", str(bad), "--caller-id", "user-1"])

    assert result.exit_code == 1


def test_audit_invalid_invoice(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"vendor": "Acme Corp", "total": -1}), encoding="utf-8")

    result = runner.invoke(app, ["audit", "--invoice", str(bad), "--caller-id", "user-1"])

    assert result.exit_code == 1


def test_stages_command():
    result = runner.invoke(app, ["stages"])
    assert result.exit_code == 0
    assert "1. amount_check" in result.output
    assert "4. po_item_check" in result.output


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "Invoice Audit Service v" in result.output
