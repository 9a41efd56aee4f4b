from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import product

import pytest

from facturation.errors import IneligibleQuotation, InvalidTransition, ValidationFailed
from facturation.models.invoice import INVOICE_STATUSES, VALID_TRANSITIONS
from facturation.services.invoice_service import InvoiceService

ALLOWED = {
    ("draft", "sent"), ("draft", "cancelled"),
    ("sent", "paid"), ("sent", "overdue"), ("sent", "cancelled"),
    ("overdue", "paid"), ("overdue", "cancelled"),
}
FORBIDDEN = sorted(set(product(INVOICE_STATUSES, INVOICE_STATUSES)) - ALLOWED)


@pytest.fixture
def draft_invoice(client_info, make_quotation):
    q = make_quotation()
    return InvoiceService().generate_invoice_from_quotation(q, datetime.now() + timedelta(days=30), "FAC-202601-000001")


def test_transition_table():
    allowed = {(src, dst) for src, targets in VALID_TRANSITIONS.items() for dst in targets}
    assert allowed == ALLOWED
    assert len(FORBIDDEN) == 18


@pytest.mark.parametrize("src,dst", sorted(ALLOWED))
def test_allowed_transitions(draft_invoice, src, dst):
    inv = draft_invoice.model_copy(update={"status": src})
    assert inv.with_status(dst).status == dst
    assert InvoiceService.validate_status_transition(src, dst)


@pytest.mark.parametrize("src,dst", FORBIDDEN)
def test_forbidden_transitions(draft_invoice, src, dst):
    inv = draft_invoice.model_copy(update={"status": src})
    with pytest.raises(InvalidTransition) as exc:
        inv.with_status(dst)
    assert exc.value.message == f"Invalid status transition from {src} to {dst}"
    assert exc.value.from_status == src and exc.value.to_status == dst
    assert not InvoiceService.validate_status_transition(src, dst)


def test_unknown_status_is_rejected(draft_invoice):
    with pytest.raises(InvalidTransition):
        draft_invoice.with_status("archived")


def test_paid_date_is_due_date(draft_invoice):
    at = datetime(2026, 1, 10, 12, 0)
    paid = draft_invoice.mark_as_sent().mark_as_paid(at=at)
    assert paid.status == "paid"
    assert paid.paid_date == draft_invoice.due_date
    assert paid.updated_at == at
    assert paid.is_paid


def test_transitions_return_new_values(draft_invoice):
    sent = draft_invoice.mark_as_sent()
    assert draft_invoice.status == "draft"
    assert sent.status == "sent"
    assert sent.paid_date is None
    assert sent.can_be_paid


def test_cancel_paid_invoice_fails(draft_invoice):
    paid = draft_invoice.mark_as_sent().mark_as_paid()
    with pytest.raises(InvalidTransition):
        paid.cancel()
    assert draft_invoice.cancel().status == "cancelled"


def test_generated_invoice_copies_quotation(make_quotation):
    q = make_quotation()
    inv = InvoiceService().generate_invoice_from_quotation(q, datetime.now() + timedelta(days=10), "FAC-202601-000007")
    assert inv.status == "draft"
    assert inv.quotation_id == q.id
    assert inv.quotation.id == q.id
    assert inv.quotation.date == q.date
    assert inv.client == q.client
    assert [ln.total_price for ln in inv.lines] == [Decimal("2500"), Decimal("600")]
    assert inv.total_excluding_tax == Decimal("3100")
    assert inv.total_including_tax == Decimal("3720.00")
    assert inv.tax_amount == Decimal("620")
    assert inv.total_including_tax == inv.total_excluding_tax + inv.tax_amount
    assert inv.paid_date is None


@pytest.mark.parametrize("status", ["draft", "sent", "rejected"])
def test_generation_requires_accepted(make_quotation, status):
    q = make_quotation(status=status)
    with pytest.raises(IneligibleQuotation, match="Only accepted quotations"):
        InvoiceService().generate_invoice_from_quotation(q, datetime.now() + timedelta(days=1), "X")


def test_generation_requires_lines(make_quotation):
    q = make_quotation(lines=[])
    with pytest.raises(IneligibleQuotation, match="Quotation is invalid"):
        InvoiceService().generate_invoice_from_quotation(q, datetime.now() + timedelta(days=1), "X")


def test_generation_requires_future_due_date(make_quotation):
    with pytest.raises(ValidationFailed):
        InvoiceService().generate_invoice_from_quotation(make_quotation(), datetime.now() - timedelta(days=1), "X")


def test_overdue_and_days_until_due(draft_invoice):
    late = draft_invoice.model_copy(update={"due_date": datetime.now() - timedelta(days=2)})
    assert late.is_overdue
    assert InvoiceService.is_invoice_overdue(late)
    assert not draft_invoice.is_overdue

    paid_late = late.model_copy(update={"status": "paid"})
    assert not paid_late.is_overdue

    ref = datetime(2026, 1, 1)
    inv = draft_invoice.model_copy(update={"due_date": ref + timedelta(days=3, hours=1)})
    assert inv.days_until_due(ref) == 4
    assert InvoiceService.get_days_until_due_date(inv, ref) == 4


def test_due_date_and_tax_helpers():
    d = datetime(2026, 1, 31)
    assert InvoiceService.calculate_due_date(d) == datetime(2026, 3, 2)
    assert InvoiceService.calculate_due_date(d, 15) == datetime(2026, 2, 15)
    assert InvoiceService.calculate_tax_amount(3100, 20) == Decimal("620")
    assert InvoiceService.calculate_total_with_taxes(3100, 20) == Decimal("3720")


def test_timezone_aware_dates_are_stored_as_local_time(make_quotation):
    due = datetime.now(timezone.utc) + timedelta(days=10)
    inv = InvoiceService().generate_invoice_from_quotation(make_quotation(), due, "FAC-202601-000008")
    assert inv.due_date.tzinfo is None
    assert inv.due_date == due.astimezone().replace(tzinfo=None)


def test_overdue_helpers_accept_timezone_aware_reference(draft_invoice):
    late = draft_invoice.model_copy(update={"due_date": datetime.now() - timedelta(days=2)})
    utc_now = datetime.now(timezone.utc)
    assert InvoiceService.is_invoice_overdue(late, utc_now)
    assert not InvoiceService.is_invoice_overdue(draft_invoice, utc_now)
    assert late.days_until_due(utc_now) in (-2, -1)
