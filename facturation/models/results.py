from __future__ import annotations
from typing import List, Optional

from pydantic import BaseModel, Field

from facturation.errors import ErrorKind, FacturationError
from .invoice import Invoice
from .quotation import Quotation


class ServiceResponse(BaseModel):
    """Réponse structurée commune : les échecs attendus ne lèvent jamais."""

    success: bool
    message: str
    errors: List[str] = Field(default_factory=list)
    error: Optional[ErrorKind] = None

    @classmethod
    def failure(cls, exc: FacturationError, **payload):
        return cls(success=False, message=exc.message, errors=exc.errors, error=exc.kind, **payload)

    @classmethod
    def unexpected(cls, exc: Exception, fallback: str, **payload):
        msg = str(exc) or fallback
        return cls(success=False, message=msg, errors=[msg], error=ErrorKind.UNEXPECTED, **payload)


class InvoiceResponse(ServiceResponse):
    invoice: Optional[Invoice] = None


class InvoiceListResponse(ServiceResponse):
    invoices: List[Invoice] = Field(default_factory=list)


class QuotationResponse(ServiceResponse):
    quotation: Optional[Quotation] = None


class QuotationListResponse(ServiceResponse):
    quotations: List[Quotation] = Field(default_factory=list)


class AcceptedQuotationWithInvoice(BaseModel):
    quotation: Quotation
    has_invoice: bool = False
    invoice_id: Optional[str] = None
    invoice: Optional[Invoice] = None


class AcceptedQuotationsResponse(ServiceResponse):
    quotations: List[AcceptedQuotationWithInvoice] = Field(default_factory=list)


class DocumentResponse(ServiceResponse):
    path: Optional[str] = None
