from __future__ import annotations
import functools
import logging
from typing import Callable, Optional, Protocol, Type

from facturation.errors import FacturationError, NotFound, Unauthenticated, Unauthorized
from facturation.models.invoice import Invoice
from facturation.models.quotation import Quotation
from facturation.models.results import ServiceResponse
from facturation.models.user import CurrentUser

logger = logging.getLogger(__name__)


class CurrentIdentityProvider(Protocol):
    def get_current_user(self) -> Optional[CurrentUser]:
        ...


class StaticIdentityProvider:
    """Identité fixée par la couche externe (session, CLI, tests)."""

    def __init__(self, user: Optional[CurrentUser] = None):
        self.user = user

    def login(self, user: CurrentUser) -> None:
        self.user = user

    def logout(self) -> None:
        self.user = None

    def get_current_user(self) -> Optional[CurrentUser]:
        return self.user


class AuthorizationGuard:
    """
    Point unique de contrôle d'accès : résout l'identité une fois par appel
    et vérifie la propriété du devis (directement ou via la facture).
    """

    def __init__(self, identity: CurrentIdentityProvider, quotations, invoices):
        self.identity = identity
        self.quotations = quotations
        self.invoices = invoices

    def current_user(self) -> CurrentUser:
        user = self.identity.get_current_user()
        if user is None or not user.id:
            raise Unauthenticated()
        return user

    def authorize_quotation(self, user: CurrentUser, quotation_id: str) -> Quotation:
        quotation = self.quotations.find_by_id(quotation_id) if quotation_id else None
        if quotation is None:
            raise NotFound("Quotation not found")
        if not quotation.owned_by(user.id):
            logger.warning("Accès refusé : devis %s demandé par %s", quotation_id, user.id)
            raise Unauthorized("Access denied: Quotation does not belong to current user")
        return quotation

    def authorize_invoice(self, user: CurrentUser, invoice_id: str) -> Invoice:
        invoice = self.invoices.find_by_id(invoice_id) if invoice_id else None
        if invoice is None:
            raise NotFound("Invoice not found")
        quotation = self.quotations.find_by_id(invoice.quotation_id)
        if quotation is None or not quotation.owned_by(user.id):
            logger.warning("Accès refusé : facture %s demandée par %s", invoice_id, user.id)
            raise Unauthorized("Access denied: Invoice does not belong to current user")
        return invoice


def acting_user(response_cls: Type[ServiceResponse] = ServiceResponse) -> Callable:
    """
    Décorateur des actions : injecte `user` (identité déjà vérifiée) en premier
    argument ; les refus d'accès sont repliés dans `response_cls`.
    La méthode décorée doit appartenir à un objet exposant `self.guard`.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                user = self.guard.current_user()
                return func(self, user, *args, **kwargs)
            except FacturationError as e:
                return response_cls.failure(e)
            except Exception as e:
                logger.exception("Erreur inattendue dans %s", func.__name__)
                return response_cls.unexpected(e, "Unexpected error")
        return wrapper

    return decorator
