from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from facturation.models.quotation import Quotation
from .repo import JsonRepository

logger = logging.getLogger(__name__)


class JsonQuotationStore:
    """Devis complets (client figé + lignes) stockés dans quotations.json."""

    def __init__(self, path: os.PathLike | str):
        self.repo = JsonRepository(Path(path), entity_name="quotation", key="id")

    def _hydrate(self, d) -> Optional[Quotation]:
        try:
            return Quotation.model_validate(d)
        except ValidationError:
            logger.warning("Devis ignoré (données invalides): %s", d.get("id"))
            return None

    def _hydrate_all(self, rows) -> List[Quotation]:
        return [q for q in (self._hydrate(d) for d in rows) if q is not None]

    def save(self, quotation: Quotation) -> Quotation:
        self.repo.add(quotation)
        return quotation

    def update(self, quotation: Quotation) -> Quotation:
        self.repo.update(quotation)
        return quotation

    def find_by_id(self, quotation_id: str) -> Optional[Quotation]:
        d = self.repo.get_by_id(quotation_id)
        return self._hydrate(d) if d else None

    def find_all(self) -> List[Quotation]:
        return self._hydrate_all(self.repo.list_all())

    def find_by_user(self, user_id: Optional[str]) -> List[Quotation]:
        if not user_id:
            return []
        return self._hydrate_all(self.repo.find(lambda d: d.get("user_id") == user_id))
