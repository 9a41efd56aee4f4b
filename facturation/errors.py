from __future__ import annotations
from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    INELIGIBLE_QUOTATION = "ineligible_quotation"
    DUPLICATE_INVOICE = "duplicate_invoice"
    DUPLICATE_INVOICE_NUMBER = "duplicate_invoice_number"
    INVALID_TRANSITION = "invalid_transition"
    UNAUTHORIZED = "unauthorized"
    UNAUTHENTICATED = "unauthenticated"
    UNEXPECTED = "unexpected"

    @property
    def http_status(self) -> int:
        # "pas à toi" et "introuvable" répondent pareil : on ne révèle pas l'existence
        if self in (ErrorKind.NOT_FOUND, ErrorKind.UNAUTHORIZED):
            return 404
        if self is ErrorKind.UNAUTHENTICATED:
            return 401
        if self is ErrorKind.UNEXPECTED:
            return 500
        return 400


class FacturationError(Exception):
    """Erreur métier attendue, repliée en réponse structurée par les use cases."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors) if errors else [message]


class ValidationFailed(FacturationError):
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        super().__init__(message, errors)


class NotFound(FacturationError):
    kind = ErrorKind.NOT_FOUND


class IneligibleQuotation(FacturationError):
    kind = ErrorKind.INELIGIBLE_QUOTATION


class DuplicateInvoice(FacturationError):
    kind = ErrorKind.DUPLICATE_INVOICE

    def __init__(self, message: str = "Invoice already exists for this quotation"):
        super().__init__(message)


class DuplicateInvoiceNumber(FacturationError):
    kind = ErrorKind.DUPLICATE_INVOICE_NUMBER

    def __init__(self, message: str = "Invoice number already exists"):
        super().__init__(message)


class InvalidTransition(FacturationError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status}",
            [f"Cannot change status from {from_status} to {to_status}"],
        )
        self.from_status = from_status
        self.to_status = to_status


class Unauthenticated(FacturationError):
    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class Unauthorized(FacturationError):
    kind = ErrorKind.UNAUTHORIZED


class UniqueConstraintError(ValueError):
    """Levée par le stockage quand un index unique serait violé."""

    def __init__(self, entity_name: str, field: str, value):
        super().__init__(f"{entity_name} with {field}={value} already exists")
        self.entity_name = entity_name
        self.field = field
        self.value = value
