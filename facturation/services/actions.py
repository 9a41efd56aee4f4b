"""
Couche d'actions : ce que la couche externe (HTTP, CLI) appelle.
Chaque action reçoit l'utilisateur déjà authentifié via @acting_user et
vérifie la propriété du devis / de la facture avant d'appeler le use case.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from facturation.config import Settings, load_settings
from facturation.models.common import now
from facturation.models.invoice import Invoice
from facturation.models.results import (
    AcceptedQuotationsResponse,
    DocumentResponse,
    InvoiceListResponse,
    InvoiceResponse,
    QuotationListResponse,
    QuotationResponse,
)
from facturation.models.user import CurrentUser
from facturation.storage.client_store import JsonClientStore
from facturation.storage.invoice_store import JsonInvoiceStore
from facturation.storage.quotation_store import JsonQuotationStore
from .auth import AuthorizationGuard, CurrentIdentityProvider, acting_user
from .export_service import DocumentExporter
from .invoice_service import InvoiceService
from .invoice_use_cases import (
    GenerateInvoiceFromQuotation,
    GetAcceptedQuotations,
    GetInvoiceById,
    GetOverdueInvoices,
    UpdateInvoiceStatus,
)
from .mail_service import MailService, Mailer, build_mailer
from .quotation_service import QuotationService

logger = logging.getLogger(__name__)


class InvoiceActions:
    def __init__(
        self,
        guard: AuthorizationGuard,
        invoices,
        quotations,
        mail_service: Optional[MailService] = None,
        exporter: Optional[DocumentExporter] = None,
        payment_term_days: int = 30,
    ):
        self.guard = guard
        self.invoices = invoices
        self.quotations = quotations
        self.mail_service = mail_service
        self.exporter = exporter
        self.payment_term_days = payment_term_days

        self.invoice_service = InvoiceService()
        self.generate_use_case = GenerateInvoiceFromQuotation(invoices, quotations, self.invoice_service)
        self.update_status_use_case = UpdateInvoiceStatus(invoices, self.invoice_service)
        self.get_by_id_use_case = GetInvoiceById(invoices)
        self.accepted_use_case = GetAcceptedQuotations(quotations, invoices)
        self.overdue_use_case = GetOverdueInvoices(invoices)

    # ----------- génération ----------- #

    @acting_user(InvoiceResponse)
    def create_invoice_as_draft(self, user: CurrentUser, quotation_id: str) -> InvoiceResponse:
        self.guard.authorize_quotation(user, quotation_id)
        due_date = self.invoice_service.calculate_due_date(now(), self.payment_term_days)
        return self.generate_use_case.execute(quotation_id, due_date, None)

    @acting_user(InvoiceResponse)
    def generate_invoice_from_quotation(
        self,
        user: CurrentUser,
        quotation_id: str,
        due_date: Optional[datetime],
        invoice_number: Optional[str] = None,
    ) -> InvoiceResponse:
        self.guard.authorize_quotation(user, quotation_id)
        # champ de formulaire vide = numéro automatique
        return self.generate_use_case.execute(quotation_id, due_date, invoice_number or None)

    # ----------- statut ----------- #

    @acting_user(InvoiceResponse)
    def update_invoice_status(self, user: CurrentUser, invoice_id: str, new_status: str) -> InvoiceResponse:
        self.guard.authorize_invoice(user, invoice_id)
        response = self.update_status_use_case.execute(invoice_id, new_status)
        if response.success and response.invoice.status == "sent":
            try:
                self._notify(user, response.invoice)
            except Exception:
                # le statut est déjà enregistré, on ne le remet pas en cause
                logger.exception("Avis d'envoi non transmis pour la facture %s", invoice_id)
        return response

    @acting_user(InvoiceResponse)
    def send_invoice(self, user: CurrentUser, invoice_id: str) -> InvoiceResponse:
        """Envoie l'avis au client ; une facture brouillon passe à "sent"."""
        invoice = self.guard.authorize_invoice(user, invoice_id)
        try:
            self._notify(user, invoice)
        except Exception as e:
            logger.exception("Échec d'envoi de la facture %s", invoice_id)
            return InvoiceResponse.unexpected(e, "Failed to send invoice")

        if invoice.status == "draft":
            return self.update_status_use_case.execute(invoice_id, "sent")
        return InvoiceResponse(success=True, invoice=invoice, message="Email sent.")

    def _notify(self, user: CurrentUser, invoice: Invoice) -> None:
        if self.mail_service is None or not invoice.client.email:
            logger.info("Pas d'avis pour la facture %s (mail ou adresse absent)", invoice.id)
            return
        self.mail_service.send_confirmation(
            to=str(invoice.client.email),
            document_id=invoice.id,
            client_first_name=invoice.client.firstname,
            sender_fullname=user.display_name,
            invoice=True,
        )

    # ----------- lectures ----------- #

    @acting_user(AcceptedQuotationsResponse)
    def get_accepted_quotations(self, user: CurrentUser) -> AcceptedQuotationsResponse:
        return self.accepted_use_case.execute(user.id)

    @acting_user(InvoiceResponse)
    def get_invoice_by_id(self, user: CurrentUser, invoice_id: str) -> InvoiceResponse:
        self.guard.authorize_invoice(user, invoice_id)
        return self.get_by_id_use_case.execute(invoice_id)

    @acting_user(InvoiceListResponse)
    def get_my_invoices(self, user: CurrentUser) -> InvoiceListResponse:
        try:
            mine = self.invoices.find_by_user(user.id)
        except Exception as e:
            logger.exception("Échec de lecture des factures de %s", user.id)
            return InvoiceListResponse.unexpected(e, "Failed to retrieve invoices")
        return InvoiceListResponse(success=True, invoices=mine, message="Invoices retrieved successfully")

    @acting_user(InvoiceListResponse)
    def get_overdue_invoices(self, user: CurrentUser) -> InvoiceListResponse:
        return self.overdue_use_case.execute(user.id)

    @acting_user(DocumentResponse)
    def export_invoice_pdf(self, user: CurrentUser, invoice_id: str) -> DocumentResponse:
        invoice = self.guard.authorize_invoice(user, invoice_id)
        try:
            path = self.exporter.export_invoice_pdf(invoice)
        except Exception as e:
            logger.exception("Échec d'export PDF de la facture %s", invoice_id)
            return DocumentResponse.unexpected(e, "PDF export failed")
        return DocumentResponse(success=True, path=path, message="Invoice exported")


class QuotationActions:
    def __init__(
        self,
        guard: AuthorizationGuard,
        quotation_service: QuotationService,
        mail_service: Optional[MailService] = None,
        exporter: Optional[DocumentExporter] = None,
    ):
        self.guard = guard
        self.service = quotation_service
        self.mail_service = mail_service
        self.exporter = exporter

    @acting_user(QuotationResponse)
    def create_quotation(
        self,
        user: CurrentUser,
        client_id: str,
        lines: List[Dict[str, Any]],
        tax_rate: Any,
    ) -> QuotationResponse:
        return self.service.create_quotation(user.id, client_id, lines, tax_rate)

    @acting_user(QuotationListResponse)
    def get_my_quotations(self, user: CurrentUser) -> QuotationListResponse:
        return self.service.get_quotations_by_user(user.id)

    @acting_user(QuotationResponse)
    def get_quotation_by_id(self, user: CurrentUser, quotation_id: str) -> QuotationResponse:
        self.guard.authorize_quotation(user, quotation_id)
        return self.service.get_quotation_by_id(quotation_id)

    @acting_user(QuotationResponse)
    def update_quotation_status(self, user: CurrentUser, quotation_id: str, status: str) -> QuotationResponse:
        self.guard.authorize_quotation(user, quotation_id)
        return self.service.update_quotation_status(quotation_id, status)

    @acting_user(QuotationResponse)
    def send_quotation(self, user: CurrentUser, quotation_id: str) -> QuotationResponse:
        quotation = self.guard.authorize_quotation(user, quotation_id)
        if self.mail_service is not None and quotation.client.email:
            try:
                self.mail_service.send_confirmation(
                    to=str(quotation.client.email),
                    document_id=quotation.id,
                    client_first_name=quotation.client.firstname,
                    sender_fullname=user.display_name,
                    invoice=False,
                )
            except Exception as e:
                logger.exception("Échec d'envoi du devis %s", quotation_id)
                return QuotationResponse.unexpected(e, "Failed to send quotation")

        if quotation.status == "draft":
            return self.service.update_quotation_status(quotation_id, "sent")
        return QuotationResponse(success=True, quotation=quotation, message="Email sent.")

    @acting_user(DocumentResponse)
    def export_quotation_pdf(self, user: CurrentUser, quotation_id: str) -> DocumentResponse:
        quotation = self.guard.authorize_quotation(user, quotation_id)
        try:
            path = self.exporter.export_quotation_pdf(quotation)
        except Exception as e:
            logger.exception("Échec d'export PDF du devis %s", quotation_id)
            return DocumentResponse.unexpected(e, "PDF export failed")
        return DocumentResponse(success=True, path=path, message="Quotation exported")


class Facturation(BaseModel):
    """Assemblage prêt à l'emploi des stores, du garde et des actions."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: Settings
    clients: JsonClientStore
    quotations: JsonQuotationStore
    invoices: JsonInvoiceStore
    guard: AuthorizationGuard
    invoice_actions: InvoiceActions
    quotation_actions: QuotationActions


def build_facturation(
    identity: CurrentIdentityProvider,
    settings: Optional[Settings] = None,
    mailer: Optional[Mailer] = None,
) -> Facturation:
    settings = settings or load_settings()
    data_dir = settings.data_dir
    clients = JsonClientStore(data_dir / "clients.json")
    quotations = JsonQuotationStore(data_dir / "quotations.json")
    invoices = JsonInvoiceStore(data_dir / "invoices.json", quotations=quotations, prefix=settings.invoice_prefix)

    guard = AuthorizationGuard(identity, quotations, invoices)
    mail_service = MailService(mailer or build_mailer(settings.smtp), base_url=settings.public_base_url)
    exporter = DocumentExporter(settings)

    return Facturation(
        settings=settings,
        clients=clients,
        quotations=quotations,
        invoices=invoices,
        guard=guard,
        invoice_actions=InvoiceActions(
            guard, invoices, quotations, mail_service, exporter, settings.payment_term_days
        ),
        quotation_actions=QuotationActions(
            guard, QuotationService(quotations, clients), mail_service, exporter
        ),
    )
