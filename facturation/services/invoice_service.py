# facturation/services/invoice_service.py
from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from facturation.errors import IneligibleQuotation, ValidationFailed
from facturation.models.common import gen_id, local_naive, now, to_decimal
from facturation.models.invoice import Invoice, InvoiceLine, QuotationSnapshot, can_transition
from facturation.models.quotation import Quotation


class InvoiceService:
    """Règles métier pures autour des factures (aucun accès au stockage)."""

    @staticmethod
    def ensure_eligible(quotation: Quotation) -> None:
        if quotation.status != "accepted":
            raise IneligibleQuotation("Only accepted quotations can generate invoices")
        if quotation.client is None or not quotation.is_valid():
            raise IneligibleQuotation("Quotation is invalid")

    def generate_invoice_from_quotation(
        self,
        quotation: Quotation,
        due_date: datetime,
        invoice_number: str,
        at: Optional[datetime] = None,
    ) -> Invoice:
        self.ensure_eligible(quotation)

        created = local_naive(at) or now()
        due_date = local_naive(due_date)
        if due_date <= created:
            raise ValidationFailed(["Due date must be in the future"])

        lines = [InvoiceLine.model_validate(ln.model_dump()) for ln in quotation.lines]
        return Invoice(
            id=gen_id(),
            invoice_number=invoice_number,
            status="draft",
            date=created,
            due_date=due_date,
            quotation_id=quotation.id,
            quotation=QuotationSnapshot(
                id=quotation.id,
                lines=lines,
                tax_rate=quotation.tax_rate,
                date=quotation.date,
            ),
            client=quotation.client,
            total_excluding_tax=quotation.total_without_taxes,
            total_including_tax=quotation.total_with_taxes,
            tax_rate=quotation.tax_rate,
            created_at=created,
            updated_at=created,
        )

    @staticmethod
    def validate_status_transition(current_status: str, new_status: str) -> bool:
        return can_transition(current_status, new_status)

    @staticmethod
    def calculate_due_date(invoice_date: datetime, payment_term_days: int = 30) -> datetime:
        return invoice_date + timedelta(days=payment_term_days)

    @staticmethod
    def is_invoice_overdue(invoice: Invoice, at: Optional[datetime] = None) -> bool:
        return invoice.status != "paid" and invoice.due_date < (local_naive(at) or now())

    @staticmethod
    def get_days_until_due_date(invoice: Invoice, at: Optional[datetime] = None) -> int:
        return invoice.days_until_due(at)

    @staticmethod
    def calculate_total_with_taxes(total_excluding_tax, tax_rate) -> Decimal:
        return to_decimal(total_excluding_tax) * (1 + to_decimal(tax_rate) / 100)

    @staticmethod
    def calculate_tax_amount(total_excluding_tax, tax_rate) -> Decimal:
        return to_decimal(total_excluding_tax) * (to_decimal(tax_rate) / 100)
