from __future__ import annotations
from typing import Optional

from pydantic import EmailStr, Field

from .common import FrozenModel, gen_id


class ClientInfo(FrozenModel):
    """Instantané du client, copié par valeur dans devis et factures."""

    id: str = Field(default_factory=gen_id)
    firstname: str
    lastname: str
    activity_name: str = ""
    address: str = ""
    phone: str = ""
    email: Optional[EmailStr] = None
    legal_status: str = ""
    user_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()
