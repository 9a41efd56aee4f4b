from datetime import datetime, timedelta

import pytest

from facturation.config import Settings
from facturation.errors import ErrorKind
from facturation.services.actions import InvoiceActions, QuotationActions, build_facturation
from facturation.services.auth import StaticIdentityProvider
from facturation.services.mail_service import MailService
from facturation.services.quotation_service import QuotationService

from .conftest import RecordingMailer


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def invoice_actions(guard, invoices, quotations, mailer):
    return InvoiceActions(guard, invoices, quotations, MailService(mailer))


@pytest.fixture
def quotation_actions(guard, quotations, clients, mailer):
    return QuotationActions(guard, QuotationService(quotations, clients), MailService(mailer))


# ----- garde ----- #

def test_unauthenticated_is_rejected(identity, invoice_actions, make_quotation, invoices):
    q = make_quotation()
    identity.logout()

    result = invoice_actions.create_invoice_as_draft(q.id)
    assert result.error == ErrorKind.UNAUTHENTICATED
    assert result.message == "User not authenticated"
    assert result.error.http_status == 401
    assert invoices.find_all() == []


def test_foreign_quotation_is_denied(invoice_actions, make_quotation, invoices):
    foreign = make_quotation(user_id="u2")
    result = invoice_actions.generate_invoice_from_quotation(foreign.id, datetime.now() + timedelta(days=5))

    assert result.error == ErrorKind.UNAUTHORIZED
    assert result.error.http_status == 404
    assert invoices.find_all() == []


def test_foreign_invoice_is_denied(identity, other_user, invoice_actions, make_quotation, make_invoice):
    inv = make_invoice(make_quotation())
    identity.login(other_user)

    assert invoice_actions.get_invoice_by_id(inv.id).error == ErrorKind.UNAUTHORIZED
    assert invoice_actions.update_invoice_status(inv.id, "sent").error == ErrorKind.UNAUTHORIZED
    assert invoice_actions.get_invoice_by_id("missing").error == ErrorKind.NOT_FOUND


# ----- factures ----- #

def test_create_invoice_as_draft_uses_payment_term(invoice_actions, make_quotation):
    q = make_quotation()
    result = invoice_actions.create_invoice_as_draft(q.id)

    assert result.success
    delta = result.invoice.due_date - result.invoice.date
    assert timedelta(days=29, hours=23) < delta <= timedelta(days=30, seconds=1)


def test_generate_with_blank_number_is_auto(invoice_actions, make_quotation):
    result = invoice_actions.generate_invoice_from_quotation(
        make_quotation().id, datetime.now() + timedelta(days=10), ""
    )
    assert result.success
    assert result.invoice.invoice_number.startswith("FAC-")


def test_status_update_to_sent_notifies_client(invoice_actions, mailer, make_quotation, make_invoice):
    inv = make_invoice(make_quotation())
    result = invoice_actions.update_invoice_status(inv.id, "sent")

    assert result.success
    assert len(mailer.sent) == 1
    msg = mailer.sent[0]
    assert msg.to == "alice@dupont.fr"
    assert msg.subject == "Confirmation de réception de votre facture"
    assert inv.id in msg.html
    assert "Jeanne MARTIN" in msg.html


def test_other_transitions_do_not_notify(invoice_actions, mailer, make_quotation, make_invoice):
    inv = make_invoice(make_quotation())
    assert invoice_actions.update_invoice_status(inv.id, "cancelled").success
    assert mailer.sent == []


def test_notification_failure_keeps_status(guard, invoices, quotations, make_quotation, make_invoice):
    actions = InvoiceActions(guard, invoices, quotations, MailService(RecordingMailer(fail=True)))
    inv = make_invoice(make_quotation())

    result = actions.update_invoice_status(inv.id, "sent")
    assert result.success
    assert invoices.find_by_id(inv.id).status == "sent"


def test_send_invoice(invoice_actions, invoices, mailer, make_quotation, make_invoice):
    inv = make_invoice(make_quotation())

    first = invoice_actions.send_invoice(inv.id)
    assert first.success
    assert invoices.find_by_id(inv.id).status == "sent"

    again = invoice_actions.send_invoice(inv.id)
    assert again.success
    assert again.message == "Email sent."
    assert len(mailer.sent) == 2


def test_send_invoice_mail_failure(guard, invoices, quotations, make_quotation, make_invoice):
    actions = InvoiceActions(guard, invoices, quotations, MailService(RecordingMailer(fail=True)))
    inv = make_invoice(make_quotation())

    result = actions.send_invoice(inv.id)
    assert result.error == ErrorKind.UNEXPECTED
    assert invoices.find_by_id(inv.id).status == "draft"


def test_accepted_quotations_for_acting_user(invoice_actions, make_quotation, make_invoice):
    converted = make_quotation()
    make_quotation()
    make_quotation(user_id="u2")
    make_invoice(converted)

    result = invoice_actions.get_accepted_quotations()
    assert len(result.quotations) == 2
    assert sorted(item.has_invoice for item in result.quotations) == [False, True]


def test_my_and_overdue_invoices(invoice_actions, make_quotation, make_invoice):
    late = make_invoice(make_quotation(), status="sent", due_in_days=-1)
    make_invoice(make_quotation(user_id="u2"), status="sent", due_in_days=-1)
    ontime = make_invoice(make_quotation())

    assert {i.id for i in invoice_actions.get_my_invoices().invoices} == {late.id, ontime.id}
    assert [i.id for i in invoice_actions.get_overdue_invoices().invoices] == [late.id]


def test_export_invoice_pdf(guard, invoices, quotations, make_quotation, make_invoice):
    class FakeExporter:
        def export_invoice_pdf(self, invoice):
            return f"/tmp/{invoice.invoice_number}.pdf"

    actions = InvoiceActions(guard, invoices, quotations, exporter=FakeExporter())
    inv = make_invoice(make_quotation())
    result = actions.export_invoice_pdf(inv.id)
    assert result.success
    assert result.path == f"/tmp/{inv.invoice_number}.pdf"


# ----- devis ----- #

def test_quotation_flow(quotation_actions, invoice_actions, mailer):
    created = quotation_actions.create_quotation(
        "c1", [{"product_id": "p1", "product_name": "Logo", "quantity": 1, "unit_price": 800}], 20
    )
    assert created.success
    qid = created.quotation.id

    sent = quotation_actions.send_quotation(qid)
    assert sent.quotation.status == "sent"
    assert mailer.sent[0].subject == "Confirmation de réception de votre devis"

    assert quotation_actions.update_quotation_status(qid, "accepted").success
    assert invoice_actions.create_invoice_as_draft(qid).success
    assert [q.id for q in quotation_actions.get_my_quotations().quotations] == [qid]
    assert quotation_actions.get_quotation_by_id(qid).quotation.status == "accepted"


def test_quotation_actions_are_guarded(identity, other_user, quotation_actions, make_quotation):
    q = make_quotation()
    identity.login(other_user)
    assert quotation_actions.update_quotation_status(q.id, "accepted").error == ErrorKind.UNAUTHORIZED
    assert quotation_actions.get_quotation_by_id(q.id).error == ErrorKind.UNAUTHORIZED
    assert quotation_actions.send_quotation(q.id).error == ErrorKind.UNAUTHORIZED

    identity.logout()
    assert quotation_actions.get_my_quotations().error == ErrorKind.UNAUTHENTICATED


def test_build_facturation(tmp_path, user):
    mailer = RecordingMailer()
    app = build_facturation(
        StaticIdentityProvider(user),
        settings=Settings(data_dir=tmp_path / "data", exports_dir=tmp_path / "exports"),
        mailer=mailer,
    )
    assert (tmp_path / "data" / "invoices.json").exists()
    assert app.invoice_actions.get_accepted_quotations().quotations == []
    assert app.invoice_actions.payment_term_days == 30
