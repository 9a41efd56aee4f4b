from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from facturation.models.client import ClientInfo
from facturation.models.quotation import Quotation, QuotationLine
from facturation.models.user import CurrentUser
from facturation.services.auth import AuthorizationGuard, StaticIdentityProvider
from facturation.services.invoice_service import InvoiceService
from facturation.storage.client_store import JsonClientStore
from facturation.storage.invoice_store import JsonInvoiceStore
from facturation.storage.quotation_store import JsonQuotationStore


class RecordingMailer:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send(self, message) -> None:
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(message)


@pytest.fixture
def user():
    return CurrentUser(id="u1", email="owner@acme.fr", first_name="Jeanne", last_name="Martin")


@pytest.fixture
def other_user():
    return CurrentUser(id="u2", email="other@acme.fr", first_name="Paul", last_name="Durand")


@pytest.fixture
def client_info():
    return ClientInfo(
        id="c1",
        firstname="Alice",
        lastname="Dupont",
        activity_name="Boulangerie Dupont",
        address="1 rue de la Paix, Paris",
        phone="0102030405",
        email="alice@dupont.fr",
        legal_status="SARL",
        user_id="u1",
    )


@pytest.fixture
def clients(tmp_path, client_info):
    store = JsonClientStore(tmp_path / "clients.json")
    store.save(client_info)
    return store


@pytest.fixture
def quotations(tmp_path):
    return JsonQuotationStore(tmp_path / "quotations.json")


@pytest.fixture
def invoices(tmp_path, quotations):
    return JsonInvoiceStore(tmp_path / "invoices.json", quotations=quotations)


@pytest.fixture
def identity(user):
    return StaticIdentityProvider(user)


@pytest.fixture
def guard(identity, quotations, invoices):
    return AuthorizationGuard(identity, quotations, invoices)


@pytest.fixture
def make_quotation(quotations, client_info):
    """Crée et enregistre un devis ; lignes par défaut = scénario 2500 + 2 x 300."""

    def _make(status="accepted", user_id="u1", lines=None, tax_rate=20, quotation_id=None):
        if lines is None:
            lines = [
                QuotationLine.create("p1", "Site vitrine", 1, 2500),
                QuotationLine.create("p2", "Hébergement", 2, 300),
            ]
        kwargs = {"id": quotation_id} if quotation_id else {}
        q = Quotation(
            lines=lines,
            status=status,
            client=client_info,
            tax_rate=Decimal(str(tax_rate)),
            user_id=user_id,
            **kwargs,
        )
        return quotations.save(q)

    return _make


@pytest.fixture
def make_invoice(invoices):
    def _make(quotation, status="draft", due_in_days=30):
        inv = InvoiceService().generate_invoice_from_quotation(
            quotation,
            datetime.now() + timedelta(days=30),
            invoices.generate_unique_invoice_number(),
        )
        # échéance passée ou statut arbitraire : on force l'état pour le test
        update = {"due_date": datetime.now() + timedelta(days=due_in_days)}
        if status != "draft":
            update["status"] = status
        inv = inv.model_copy(update=update)
        return invoices.save(inv)

    return _make
