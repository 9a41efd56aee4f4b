from __future__ import annotations
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from facturation.models.common import local_naive, now
from facturation.models.invoice import Invoice
from .quotation_store import JsonQuotationStore
from .repo import JsonRepository

logger = logging.getLogger(__name__)


class JsonInvoiceStore:
    """
    Factures dans invoices.json.
    quotation_id et invoice_number sont des index uniques : le stockage est
    l'arbitre final, une violation lève UniqueConstraintError.
    """

    def __init__(
        self,
        path: os.PathLike | str,
        quotations: JsonQuotationStore,
        prefix: str = "FAC",
    ):
        self.repo = JsonRepository(
            Path(path),
            entity_name="invoice",
            key="id",
            unique_fields=("quotation_id", "invoice_number"),
        )
        self.quotations = quotations
        self.prefix = prefix

    # ----------- hydratation ----------- #

    def _hydrate(self, d) -> Optional[Invoice]:
        try:
            return Invoice.model_validate(d)
        except ValidationError:
            logger.warning("Facture ignorée (données invalides): %s", d.get("id"))
            return None

    def _hydrate_all(self, rows) -> List[Invoice]:
        return [inv for inv in (self._hydrate(d) for d in rows) if inv is not None]

    # ----------- écriture ----------- #

    def save(self, invoice: Invoice) -> Invoice:
        """Création ou mise à jour (upsert sur l'id)."""
        saved = self.repo.upsert(invoice)
        return Invoice.model_validate(saved)

    def delete(self, invoice_id: str) -> bool:
        return self.repo.delete(invoice_id)

    # ----------- lecture ----------- #

    def find_by_id(self, invoice_id: str) -> Optional[Invoice]:
        d = self.repo.get_by_id(invoice_id)
        return self._hydrate(d) if d else None

    def exists(self, invoice_id: str) -> bool:
        return self.repo.get_by_id(invoice_id) is not None

    def find_by_quotation_id(self, quotation_id: str) -> Optional[Invoice]:
        d = self.repo.find_one(lambda x: x.get("quotation_id") == quotation_id)
        return self._hydrate(d) if d else None

    def find_by_invoice_number(self, invoice_number: str) -> Optional[Invoice]:
        d = self.repo.find_one(lambda x: x.get("invoice_number") == invoice_number)
        return self._hydrate(d) if d else None

    def find_all(self) -> List[Invoice]:
        return self._hydrate_all(self.repo.list_all())

    def find_by_client_id(self, client_id: str) -> List[Invoice]:
        return self._hydrate_all(
            self.repo.find(lambda x: (x.get("client") or {}).get("id") == client_id)
        )

    def find_by_user(self, user_id: str) -> List[Invoice]:
        # le propriétaire d'une facture est celui du devis d'origine
        owned = {q.id for q in self.quotations.find_by_user(user_id)}
        return [inv for inv in self.find_all() if inv.quotation_id in owned]

    def find_overdue_invoices(self, at: Optional[datetime] = None) -> List[Invoice]:
        ref = local_naive(at) or now()
        overdue = [inv for inv in self.find_all() if inv.status != "paid" and inv.due_date < ref]
        return sorted(overdue, key=lambda inv: inv.due_date)

    # ----------- numérotation ----------- #

    def generate_unique_invoice_number(self, at: Optional[datetime] = None) -> str:
        """FAC-YYYYMM-NNNNNN, séquence par mois calendaire (max existant + 1)."""
        ref = local_naive(at) or now()
        month_prefix = f"{self.prefix}-{ref.year}{ref.month:02d}-"
        max_n = 0
        for d in self.repo.list_all():
            num = d.get("invoice_number") or ""
            if not isinstance(num, str) or not num.startswith(month_prefix):
                continue
            try:
                max_n = max(max_n, int(num[len(month_prefix):]))
            except ValueError:
                continue
        return f"{month_prefix}{max_n + 1:06d}"
