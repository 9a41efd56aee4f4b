from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from facturation.errors import (
    DuplicateInvoice,
    DuplicateInvoiceNumber,
    FacturationError,
    NotFound,
    UniqueConstraintError,
    ValidationFailed,
)
from facturation.models.common import local_naive, now
from facturation.models.invoice import INVOICE_STATUSES, Invoice
from facturation.models.results import (
    AcceptedQuotationsResponse,
    AcceptedQuotationWithInvoice,
    InvoiceListResponse,
    InvoiceResponse,
)
from .invoice_service import InvoiceService

logger = logging.getLogger(__name__)


def _blank(value: Optional[str]) -> bool:
    return not value or not str(value).strip()


class GenerateInvoiceFromQuotation:
    """
    Conversion devis accepté -> facture brouillon.
    Contrôles dans l'ordre : saisie, devis existant, éligibilité,
    facture déjà émise pour ce devis, numéro déjà pris.
    Un numéro attribué automatiquement est réattribué en cas de collision.
    """

    NUMBER_ATTEMPTS = 3

    def __init__(self, invoices, quotations, invoice_service: Optional[InvoiceService] = None):
        self.invoices = invoices
        self.quotations = quotations
        self.invoice_service = invoice_service or InvoiceService()

    def execute(
        self,
        quotation_id: str,
        due_date: Optional[datetime],
        invoice_number: Optional[str] = None,
    ) -> InvoiceResponse:
        try:
            errors = self.validate_request(quotation_id, due_date, invoice_number)
            if errors:
                raise ValidationFailed(errors)

            quotation = self.quotations.find_by_id(quotation_id)
            if quotation is None:
                raise NotFound("Quotation not found")

            self.invoice_service.ensure_eligible(quotation)

            if self.invoices.find_by_quotation_id(quotation_id) is not None:
                raise DuplicateInvoice()

            if invoice_number is not None and self.invoices.find_by_invoice_number(invoice_number):
                raise DuplicateInvoiceNumber()

            number = invoice_number or self.invoices.generate_unique_invoice_number()
            invoice = self.invoice_service.generate_invoice_from_quotation(quotation, due_date, number)
            saved = self._save(invoice, auto_number=invoice_number is None)

            logger.info("Facture %s générée depuis le devis %s", saved.invoice_number, quotation_id)
            return InvoiceResponse(success=True, invoice=saved, message="Invoice generated successfully")

        except FacturationError as e:
            return InvoiceResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de génération de facture pour le devis %s", quotation_id)
            return InvoiceResponse.unexpected(e, "Invoice generation failed")

    def _save(self, invoice: Invoice, auto_number: bool) -> Invoice:
        # une requête concurrente peut passer entre la vérification et l'écriture
        for attempt in range(1, self.NUMBER_ATTEMPTS + 1):
            try:
                return self.invoices.save(invoice)
            except UniqueConstraintError as e:
                if e.field == "quotation_id":
                    raise DuplicateInvoice() from e
                if e.field != "invoice_number":
                    raise
                if not auto_number or attempt == self.NUMBER_ATTEMPTS:
                    raise DuplicateInvoiceNumber() from e
                number = self.invoices.generate_unique_invoice_number()
                logger.info("Numéro %s déjà attribué, nouvel essai avec %s", invoice.invoice_number, number)
                invoice = invoice.model_copy(update={"invoice_number": number})

    @staticmethod
    def validate_request(
        quotation_id: Optional[str],
        due_date: Optional[datetime],
        invoice_number: Optional[str],
    ) -> List[str]:
        errors: List[str] = []
        if _blank(quotation_id):
            errors.append("Quotation ID is required")
        if due_date is None:
            errors.append("Due date is required")
        elif local_naive(due_date) <= now():
            errors.append("Due date must be in the future")
        if invoice_number is not None and _blank(invoice_number):
            errors.append("Invoice number cannot be empty")
        return errors


class UpdateInvoiceStatus:
    def __init__(self, invoices, invoice_service: Optional[InvoiceService] = None):
        self.invoices = invoices
        self.invoice_service = invoice_service or InvoiceService()

    def execute(self, invoice_id: str, new_status: Optional[str]) -> InvoiceResponse:
        try:
            errors = self.validate_request(invoice_id, new_status)
            if errors:
                raise ValidationFailed(errors)

            invoice = self.invoices.find_by_id(invoice_id)
            if invoice is None:
                raise NotFound("Invoice not found")

            # lève InvalidTransition hors table
            updated = invoice.with_status(new_status)
            saved = self.invoices.save(updated)

            logger.info("Facture %s : %s -> %s", saved.invoice_number, invoice.status, new_status)
            return InvoiceResponse(
                success=True,
                invoice=saved,
                message=f"Invoice status updated to {new_status}",
            )
        except FacturationError as e:
            return InvoiceResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de mise à jour du statut de la facture %s", invoice_id)
            return InvoiceResponse.unexpected(e, "Status update failed")

    @staticmethod
    def validate_request(invoice_id: Optional[str], new_status: Optional[str]) -> List[str]:
        errors: List[str] = []
        if _blank(invoice_id):
            errors.append("Invoice ID is required")
        if not new_status:
            errors.append("New status is required")
        elif new_status not in INVOICE_STATUSES:
            errors.append("Invalid status value")
        return errors


class GetInvoiceById:
    def __init__(self, invoices):
        self.invoices = invoices

    def execute(self, invoice_id: str) -> InvoiceResponse:
        try:
            if _blank(invoice_id):
                raise ValidationFailed(["Invoice ID is required"])
            invoice = self.invoices.find_by_id(invoice_id)
            if invoice is None:
                raise NotFound("Invoice not found")
            return InvoiceResponse(success=True, invoice=invoice, message="Invoice retrieved successfully")
        except FacturationError as e:
            return InvoiceResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de lecture de la facture %s", invoice_id)
            return InvoiceResponse.unexpected(e, "Failed to retrieve invoice")


class GetAcceptedQuotations:
    """Devis acceptés d'un utilisateur, chacun joint à sa facture éventuelle."""

    def __init__(self, quotations, invoices):
        self.quotations = quotations
        self.invoices = invoices

    def execute(self, user_id: str) -> AcceptedQuotationsResponse:
        try:
            accepted = [q for q in self.quotations.find_by_user(user_id) or [] if q.status == "accepted"]
            items: List[AcceptedQuotationWithInvoice] = []
            for q in accepted:
                inv = self.invoices.find_by_quotation_id(q.id)
                items.append(AcceptedQuotationWithInvoice(
                    quotation=q,
                    has_invoice=inv is not None,
                    invoice_id=inv.id if inv else None,
                    invoice=inv,
                ))
            return AcceptedQuotationsResponse(
                success=True,
                quotations=items,
                message="Accepted quotations retrieved successfully",
            )
        except Exception as e:
            logger.exception("Échec de lecture des devis acceptés de %s", user_id)
            return AcceptedQuotationsResponse.unexpected(e, "Failed to retrieve quotations")


class GetOverdueInvoices:
    def __init__(self, invoices):
        self.invoices = invoices

    def execute(self, user_id: Optional[str] = None) -> InvoiceListResponse:
        try:
            overdue = self.invoices.find_overdue_invoices()
            if user_id is not None:
                mine = {inv.id for inv in self.invoices.find_by_user(user_id)}
                overdue = [inv for inv in overdue if inv.id in mine]
            return InvoiceListResponse(success=True, invoices=overdue, message="Overdue invoices retrieved successfully")
        except Exception as e:
            logger.exception("Échec de lecture des factures en retard")
            return InvoiceListResponse.unexpected(e, "Failed to retrieve overdue invoices")
