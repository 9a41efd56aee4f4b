from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Tuple, get_args

from pydantic import Field

from .client import ClientInfo
from .common import FrozenModel, LocalDateTime, gen_id, now, to_decimal

QuotationStatus = Literal["draft", "sent", "accepted", "rejected"]
QUOTATION_STATUSES: Tuple[str, ...] = get_args(QuotationStatus)


class QuotationLine(FrozenModel):
    product_id: str
    product_name: str
    product_description: str = ""
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    total_price: Decimal = Decimal("0")  # instantané, jamais recalculé

    @classmethod
    def create(
        cls,
        product_id: str,
        product_name: str,
        quantity: int,
        unit_price: Any,
        product_description: str = "",
    ) -> "QuotationLine":
        price = to_decimal(unit_price)
        return cls(
            product_id=product_id,
            product_name=product_name,
            product_description=product_description,
            quantity=quantity,
            unit_price=price,
            total_price=price * quantity,
        )


def validate_line_input(line: Dict[str, Any]) -> List[str]:
    """Contrôles d'une ligne brute avant construction (messages lisibles)."""
    errors: List[str] = []
    if not line.get("product_id"):
        errors.append("Product ID is required")
    if not line.get("product_name"):
        errors.append("Product name is required")

    quantity = line.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        errors.append("Quantity must be greater than 0")

    try:
        if to_decimal(line.get("unit_price")) < 0:
            errors.append("Unit price cannot be negative")
    except ArithmeticError:
        errors.append("Unit price must be a number")
    return errors


def lines_total(lines: List[QuotationLine]) -> Decimal:
    return sum((ln.total_price for ln in lines), Decimal("0"))


class Quotation(FrozenModel):
    id: str = Field(default_factory=gen_id)
    version: int = 1
    lines: List[QuotationLine] = Field(default_factory=list)
    status: QuotationStatus = "draft"
    client: ClientInfo
    date: LocalDateTime = Field(default_factory=now)
    tax_rate: Decimal = Decimal("0")
    user_id: str

    @property
    def total_without_taxes(self) -> Decimal:
        return lines_total(self.lines)

    @property
    def total_with_taxes(self) -> Decimal:
        return self.total_without_taxes * (1 + self.tax_rate / 100)

    def is_valid(self) -> bool:
        return len(self.lines) > 0

    def with_status(self, status: QuotationStatus) -> "Quotation":
        # pas de table de transitions côté devis : toute valeur connue est acceptée
        return self.model_copy(update={"status": status})

    def owned_by(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and self.user_id == user_id
