from __future__ import annotations

from .common import FrozenModel


class CurrentUser(FrozenModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        # "Prénom NOM" comme dans les mails de confirmation
        return f"{self.first_name} {self.last_name.upper()}".strip()
