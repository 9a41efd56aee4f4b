from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Dict, FrozenSet, List, Literal, Optional, Tuple, get_args

from pydantic import Field

from facturation.errors import InvalidTransition
from .client import ClientInfo
from .common import FrozenModel, LocalDateTime, gen_id, local_naive, now
from .quotation import QuotationLine

InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]
INVOICE_STATUSES: Tuple[str, ...] = get_args(InvoiceStatus)

VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "draft": frozenset({"sent", "cancelled"}),
    "sent": frozenset({"paid", "overdue", "cancelled"}),
    "overdue": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    return new in VALID_TRANSITIONS.get(current, frozenset())


class InvoiceLine(QuotationLine):
    """Ligne figée au moment de la génération de la facture."""


class QuotationSnapshot(FrozenModel):
    id: str
    lines: List[InvoiceLine] = Field(default_factory=list)
    tax_rate: Decimal = Decimal("0")
    date: LocalDateTime


class Invoice(FrozenModel):
    id: str = Field(default_factory=gen_id)
    invoice_number: str
    status: InvoiceStatus = "draft"
    date: LocalDateTime = Field(default_factory=now)
    due_date: LocalDateTime
    quotation_id: str
    quotation: QuotationSnapshot
    client: ClientInfo
    total_excluding_tax: Decimal
    total_including_tax: Decimal
    tax_rate: Decimal
    paid_date: Optional[LocalDateTime] = None
    created_at: LocalDateTime = Field(default_factory=now)
    updated_at: LocalDateTime = Field(default_factory=now)

    # ----- dérivés ----- #

    @property
    def lines(self) -> List[InvoiceLine]:
        return self.quotation.lines

    @property
    def tax_amount(self) -> Decimal:
        return self.total_excluding_tax * (self.tax_rate / 100)

    @property
    def is_paid(self) -> bool:
        return self.status == "paid"

    @property
    def is_overdue(self) -> bool:
        return self.status != "paid" and self.due_date < now()

    @property
    def can_be_paid(self) -> bool:
        return self.status in ("sent", "overdue")

    def days_until_due(self, at: Optional[datetime] = None) -> int:
        delta = self.due_date - (local_naive(at) or now())
        return ceil(delta.total_seconds() / 86400)

    # ----- transitions (retournent une nouvelle facture) ----- #

    def with_status(self, new_status: str, at: Optional[datetime] = None) -> "Invoice":
        if not can_transition(self.status, new_status):
            raise InvalidTransition(self.status, new_status)
        update = {"status": new_status, "updated_at": local_naive(at) or now()}
        if new_status == "paid":
            # date de paiement = date d'échéance (comportement historique)
            update["paid_date"] = self.due_date
        return self.model_copy(update=update)

    def mark_as_sent(self, at: Optional[datetime] = None) -> "Invoice":
        return self.with_status("sent", at)

    def mark_as_paid(self, at: Optional[datetime] = None) -> "Invoice":
        return self.with_status("paid", at)

    def cancel(self, at: Optional[datetime] = None) -> "Invoice":
        return self.with_status("cancelled", at)
