"""
Tests for the audit pipeline runner.

These tests run whole audits and check the flags, confidence and
validation summary that come out the other end.
"""

import threading
from datetime import date, timedelta

import pytest

from invoice_audit.config import FlagCheck, FlagKind, Severity
from invoice_audit.errors import InputError, LogicError
from invoice_audit.schemas import AuditFlag, ExtractedInvoice, LineItem, PurchaseOrder
from invoice_audit.stages import AUDIT_STAGES, AuditStage
from invoice_audit.validator import (
    check_input,
    format_result_text,
    parse_invoice,
    parse_purchase_order,
    run_validation,
)


# ============================================================================
# Scenarios
# ============================================================================

class TestAuditScenarios:
    """End-to-end audits of representative invoices."""

    def test_matching_po_only_round_amount_flag(self, acme_invoice, acme_po, history):
        result = run_validation(acme_invoice, "user-1", acme_po, history=history)

        assert len(result.flags) == 1
        assert result.flags[0].kind == FlagKind.FRAUD
        assert result.flags[0].severity == Severity.LOW
        assert result.confidence == 97
        assert result.validation_results.passed is True
        assert all(result.validation_results.checks.model_dump().values())

    def test_po_amount_mismatch(self, acme_invoice, history):
        po = PurchaseOrder(po_number="PO-98765", vendor="Acme Corp", total_amount=800.00)

        result = run_validation(acme_invoice, "user-1", po, history=history)

        mismatch = [f for f in result.flags if f.kind == FlagKind.AMOUNT_MISMATCH]
        assert len(mismatch) == 1
        assert mismatch[0].severity == Severity.HIGH
        assert mismatch[0].details["discrepancy_percent"] == pytest.approx(25.0)
        assert result.confidence == 82
        assert result.validation_results.checks.amount_match is False

    def test_zero_subtotal_is_not_a_line_item_discrepancy(self, history):
        invoice = ExtractedInvoice(
            vendor="Acme Corp",
            invoice_number="INV-2024-002",
            date=date(2024, 2, 1),
            total=550.00,
            subtotal=0.0,
            items=[LineItem(description="Support hours", quantity=5, unit_price=110.00, total=550.00)],
        )
        po = PurchaseOrder(po_number="PO-1", vendor="Acme Corp", total_amount=550.00)

        result = run_validation(invoice, "user-1", po, history=history)

        assert result.flags == []
        assert result.confidence == 100
        assert result.validation_results.checks.items_match is True

    def test_future_dated_invoice(self, acme_invoice, acme_po):
        acme_invoice.date = date.today() + timedelta(days=365)

        result = run_validation(acme_invoice, "user-1", acme_po)

        future = [f for f in result.flags if f.check == FlagCheck.FUTURE_DATE]
        assert len(future) == 1
        assert future[0].kind == FlagKind.FRAUD
        assert future[0].severity == Severity.HIGH
        assert "future" in future[0].message
        assert result.validation_results.checks.date_valid is False

    def test_duplicate_in_history(self, acme_invoice, acme_po, history):
        history.record_invoice("user-1", "jan.pdf", acme_invoice)
        history.record_invoice("user-1", "jan-rescan.pdf", acme_invoice)

        result = run_validation(acme_invoice, "user-1", acme_po, history=history)

        duplicates = [f for f in result.flags if f.kind == FlagKind.DUPLICATE]
        assert len(duplicates) == 1
        assert duplicates[0].severity == Severity.HIGH
        assert len(duplicates[0].details["similar_invoices"]) == 2
        assert result.validation_results.checks.no_duplicate is False

    def test_incomplete_history_is_not_a_duplicate(self, acme_invoice, acme_po, history):
        history.record_invoice("user-1", "jan.pdf", acme_invoice, status="failed")

        result = run_validation(acme_invoice, "user-1", acme_po, history=history)

        assert result.validation_results.checks.no_duplicate is True

    def test_clean_itemized_invoice(self, itemized_invoice):
        po = PurchaseOrder(
            po_number="PO-1",
            vendor="acme corp",
            total_amount=1087.50,
            items=list(itemized_invoice.items),
        )

        result = run_validation(itemized_invoice, "user-1", po)

        assert result.flags == []
        assert result.confidence == 100
        assert result.validation_results.discrepancies == []

    def test_many_flags_fail_the_audit(self, itemized_invoice, history):
        itemized_invoice.date = date.today() + timedelta(days=10)
        itemized_invoice.items[0].total = 5.00
        history.record_invoice("user-1", "copy.pdf", itemized_invoice)
        po = PurchaseOrder(
            po_number="PO-1",
            vendor="Initech",
            total_amount=500.00,
            items=[itemized_invoice.items[0]],
        )

        result = run_validation(itemized_invoice, "user-1", po, history=history)

        # high amount, duplicate, future date, vendor; medium items; low count
        assert result.confidence == 100 - 4 * 15 - 8 - 3
        assert result.validation_results.passed is False
        assert not any(result.validation_results.checks.model_dump().values())


# ============================================================================
# Properties
# ============================================================================

class TestAuditProperties:
    """Invariants that hold for every audit."""

    @pytest.mark.parametrize("total", [0.0, 99.95, 1000.00, 123456.78])
    def test_no_po_means_one_missing_po_flag(self, acme_invoice, total):
        acme_invoice.total = total

        result = run_validation(acme_invoice, "user-1")

        kinds = [f.kind for f in result.flags]
        assert kinds.count(FlagKind.MISSING_PO) == 1
        assert FlagKind.AMOUNT_MISMATCH not in kinds

    def test_flags_follow_stage_order(self, itemized_invoice, history):
        itemized_invoice.date = date.today() + timedelta(days=10)
        itemized_invoice.items[0].total = 5.00
        history.record_invoice("user-1", "copy.pdf", itemized_invoice)

        result = run_validation(itemized_invoice, "user-1", history=history)

        assert [f.check for f in result.flags] == [
            FlagCheck.MISSING_PO,
            FlagCheck.DUPLICATE,
            FlagCheck.FUTURE_DATE,
            FlagCheck.LINE_ITEMS_TOTAL,
        ]

    def test_as_of_controls_future_check(self, acme_invoice, acme_po):
        result = run_validation(acme_invoice, "user-1", acme_po, as_of=date(2023, 12, 31))
        assert result.validation_results.checks.date_valid is False

    def test_custom_stage_list(self, acme_invoice):
        result = run_validation(acme_invoice, "user-1", stages=AUDIT_STAGES[:1])
        assert [f.check for f in result.flags] == [FlagCheck.MISSING_PO]


# ============================================================================
# Input Errors
# ============================================================================

class TestInputErrors:
    """Malformed input is rejected before any stage runs."""

    def test_parse_invoice(self):
        invoice = parse_invoice({
            "vendor": " Acme Corp ",
            "date": "2024-01-10",
            "total": 1000,
        })
        assert invoice.vendor == "Acme Corp"
        assert invoice.invoice_number is None
        assert invoice.due_date is None
        assert invoice.items == []

    def test_parse_invoice_missing_fields(self):
        with pytest.raises(InputError):
            parse_invoice({"vendor": "Acme Corp"})

    def test_parse_invoice_negative_total(self):
        with pytest.raises(InputError):
            parse_invoice({"vendor": "Acme Corp", "date": "2024-01-10", "total": -5})

    def test_parse_purchase_order(self):
        po = parse_purchase_order({"po_number": "PO-1", "vendor": "Acme Corp", "total_amount": 10})
        assert po.items is None

    def test_parse_purchase_order_invalid(self):
        with pytest.raises(InputError):
            parse_purchase_order({"po_number": "PO-1"})

    def test_negative_total_after_mutation(self, acme_invoice):
        acme_invoice.total = -100.00
        with pytest.raises(InputError):
            run_validation(acme_invoice, "user-1")

    def test_negative_item_total(self, itemized_invoice):
        itemized_invoice.items[0].total = -1.00
        with pytest.raises(InputError):
            check_input(itemized_invoice, "user-1")

    def test_blank_vendor(self):
        invoice = ExtractedInvoice(vendor="   ", date=date(2024, 1, 10), total=10.00)
        with pytest.raises(InputError):
            run_validation(invoice, "user-1")

    def test_blank_caller(self, acme_invoice):
        with pytest.raises(InputError):
            run_validation(acme_invoice, "")

    def test_negative_po_total(self, acme_invoice, acme_po):
        acme_po.total_amount = -1.00
        with pytest.raises(InputError):
            run_validation(acme_invoice, "user-1", acme_po)

    def test_no_stage_runs_on_bad_input(self, acme_invoice):
        calls = []
        spy = AuditStage(name="spy", description="records calls", run=lambda s: calls.append(s) or [])
        acme_invoice.total = float("nan")

        with pytest.raises(InputError):
            run_validation(acme_invoice, "user-1", stages=[spy])
        assert calls == []


# ============================================================================
# Logic Errors
# ============================================================================

class TestLogicErrors:
    """Invariant violations abort the audit without a result."""

    def test_stage_returning_non_flag(self, acme_invoice):
        bad = AuditStage(name="bad", description="returns junk", run=lambda s: ["not a flag"])
        with pytest.raises(LogicError):
            run_validation(acme_invoice, "user-1", stages=[bad])

    def test_stage_raising_logic_error(self, acme_invoice):
        def broken(state):
            raise LogicError("broken invariant")

        stages = [AUDIT_STAGES[0], AuditStage(name="broken", description="fails", run=broken)]
        with pytest.raises(LogicError, match="broken invariant"):
            run_validation(acme_invoice, "user-1", stages=stages)

    def test_negative_similarity_aborts(self, acme_invoice, acme_po, monkeypatch):
        monkeypatch.setattr("invoice_audit.stages.string_similarity", lambda a, b: -0.1)
        acme_po.vendor = "Globex Inc"
        with pytest.raises(LogicError):
            run_validation(acme_invoice, "user-1", acme_po)


# ============================================================================
# History Collaborator
# ============================================================================

class TestHistoryDegradation:
    """A slow or failing history store never fails the audit."""

    def test_timeout_skips_duplicate_detection(self, acme_invoice, acme_po, caplog):
        release = threading.Event()

        class SlowHistory:
            def find_completed_invoices(self, *args):
                release.wait(5)
                return []

        try:
            result = run_validation(acme_invoice, "user-1", acme_po, history=SlowHistory(), timeout=0.05)
        finally:
            release.set()

        assert result.validation_results.checks.no_duplicate is True
        assert result.confidence == 97
        assert "timed out" in caplog.text

    def test_failing_history(self, acme_invoice, acme_po):
        class BrokenHistory:
            def find_completed_invoices(self, *args):
                raise ConnectionError("database unavailable")

        result = run_validation(acme_invoice, "user-1", acme_po, history=BrokenHistory())

        assert [f.check for f in result.flags] == [FlagCheck.ROUND_AMOUNT]


# ============================================================================
# Reporting
# ============================================================================

class TestFormatResultText:
    """Tests for audit result text formatting."""

    def test_format_with_flags(self, acme_invoice):
        result = run_validation(acme_invoice, "user-1")

        text = format_result_text(result)

        assert "Confidence:  89" in text
        assert "PASSED" in text
        assert "No purchase order found for validation" in text
        assert "Suspicious round number amount" in text

    def test_format_without_flags(self, itemized_invoice):
        po = PurchaseOrder(po_number="PO-1", vendor="Acme Corp", total_amount=1087.50)
        result = run_validation(itemized_invoice, "user-1", po)

        text = format_result_text(result)

        assert "Confidence:  100 (very_high)" in text
        assert "No flags raised." in text

    def test_format_failed_audit(self):
        invoice = ExtractedInvoice(
            vendor="Acme Corp",
            date=date.today() + timedelta(days=30),
            total=5000.00,
            items=[LineItem(description="Widget", quantity=1, unit_price=10.00, total=10.00)],
        )
        po = PurchaseOrder(po_number="PO-1", vendor="Initech", total_amount=100.00)

        text = format_result_text(run_validation(invoice, "user-1", po))

        assert "FAILED" in text
        assert "[X ] vendor_match" in text
