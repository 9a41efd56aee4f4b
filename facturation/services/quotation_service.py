from __future__ import annotations
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from facturation.errors import FacturationError, NotFound, ValidationFailed
from facturation.models.common import gen_id, now, to_decimal
from facturation.models.quotation import QUOTATION_STATUSES, Quotation, QuotationLine, validate_line_input
from facturation.models.results import QuotationListResponse, QuotationResponse

logger = logging.getLogger(__name__)


class QuotationService:
    """Création, changement de statut et lectures des devis."""

    def __init__(self, quotations, clients):
        self.quotations = quotations
        self.clients = clients

    # ----- Création ----- #

    def create_quotation(
        self,
        user_id: str,
        client_id: str,
        lines: List[Dict[str, Any]],
        tax_rate: Any,
        quotation_id: Optional[str] = None,
        version: int = 1,
    ) -> QuotationResponse:
        try:
            client = self.clients.find_by_id(client_id) if client_id else None
            if client is None:
                raise NotFound("Client not found")

            if not lines:
                raise ValidationFailed(["Quotation must have at least one line."])
            errors: List[str] = []
            for idx, raw in enumerate(lines, start=1):
                errors.extend(f"Line {idx}: {msg}" for msg in validate_line_input(raw))
            try:
                rate = to_decimal(tax_rate)
            except ArithmeticError:
                rate = None
            if rate is None or rate < 0:
                errors.append("Tax rate must be a non-negative number")
            if errors:
                raise ValidationFailed(errors)

            quotation = Quotation(
                id=quotation_id or gen_id(),
                version=version,
                lines=[
                    QuotationLine.create(
                        product_id=raw["product_id"],
                        product_name=raw["product_name"],
                        product_description=raw.get("product_description") or "",
                        quantity=raw["quantity"],
                        unit_price=raw["unit_price"],
                    )
                    for raw in lines
                ],
                status="draft",
                client=client,
                date=now(),
                tax_rate=rate,
                user_id=user_id,
            )
            saved = self.quotations.save(quotation)
            logger.info("Devis %s créé pour %s", saved.id, client.full_name)
            return QuotationResponse(success=True, quotation=saved, message="Quotation created successfully")

        except ValidationError as e:
            return QuotationResponse.failure(
                ValidationFailed([err["msg"] for err in e.errors()])
            )
        except FacturationError as e:
            return QuotationResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de création de devis")
            return QuotationResponse.unexpected(e, "Quotation creation failed")

    # ----- Statut ----- #

    def update_quotation_status(self, quotation_id: str, status: Optional[str]) -> QuotationResponse:
        try:
            if status not in QUOTATION_STATUSES:
                raise ValidationFailed(["Invalid status value"])
            quotation = self.quotations.find_by_id(quotation_id)
            if quotation is None:
                raise NotFound("Quotation not found")

            updated = self.quotations.update(quotation.with_status(status))
            logger.info("Devis %s : %s -> %s", quotation_id, quotation.status, status)
            return QuotationResponse(success=True, quotation=updated, message="Quotation status updated")
        except FacturationError as e:
            return QuotationResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de mise à jour du devis %s", quotation_id)
            return QuotationResponse.unexpected(e, "Quotation status update failed")

    # ----- Lectures ----- #

    def get_quotation_by_id(self, quotation_id: str) -> QuotationResponse:
        """Recharge le client depuis le référentiel (instantané rafraîchi à la lecture)."""
        try:
            quotation = self.quotations.find_by_id(quotation_id) if quotation_id else None
            if quotation is None:
                raise NotFound("Quotation not found")
            client = self.clients.find_by_id(quotation.client.id)
            if client is None:
                raise NotFound("Client not found")
            hydrated = quotation.model_copy(update={"client": client})
            return QuotationResponse(success=True, quotation=hydrated, message="Quotation retrieved successfully")
        except FacturationError as e:
            return QuotationResponse.failure(e)
        except Exception as e:
            logger.exception("Échec de lecture du devis %s", quotation_id)
            return QuotationResponse.unexpected(e, "Failed to retrieve quotation")

    def get_quotations_by_user(self, user_id: str) -> QuotationListResponse:
        try:
            found = self.quotations.find_by_user(user_id) or []
            return QuotationListResponse(success=True, quotations=found, message="Quotations retrieved successfully")
        except Exception as e:
            logger.exception("Échec de lecture des devis de %s", user_id)
            return QuotationListResponse.unexpected(e, "Failed to retrieve quotations")

    def get_all_quotations(self) -> QuotationListResponse:
        try:
            return QuotationListResponse(
                success=True,
                quotations=self.quotations.find_all(),
                message="Quotations retrieved successfully",
            )
        except Exception as e:
            logger.exception("Échec de lecture des devis")
            return QuotationListResponse.unexpected(e, "Failed to retrieve quotations")

    @staticmethod
    def calculate_totals(quotation: Quotation) -> Dict[str, Decimal]:
        return {
            "total_without_taxes": quotation.total_without_taxes,
            "total_with_taxes": quotation.total_with_taxes,
        }
