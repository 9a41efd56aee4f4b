from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional
import uuid

from pydantic import AfterValidator, BaseModel, ConfigDict


def gen_id() -> str:
    return str(uuid.uuid4())


def now() -> datetime:
    return datetime.now()


def local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Dates avec fuseau ramenées à l'heure locale sans fuseau (convention du stockage)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


LocalDateTime = Annotated[datetime, AfterValidator(local_naive)]


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


class FrozenModel(BaseModel):
    """Base des valeurs immuables : toute modification passe par model_copy."""

    model_config = ConfigDict(frozen=True, extra="ignore")
