# facturation/services/export_service.py
from __future__ import annotations
import logging
import os
import re
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from shutil import which
from typing import Any, Dict, Optional

import pdfkit
from jinja2 import Environment, FileSystemLoader, select_autoescape

from facturation.config import Settings
from facturation.models.invoice import Invoice
from facturation.models.quotation import Quotation

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "draft": "Brouillon",
    "sent": "Envoyé",
    "accepted": "Accepté",
    "rejected": "Refusé",
    "paid": "Payée",
    "overdue": "En retard",
    "cancelled": "Annulée",
}


# ---------- Formats ----------
def format_eur(amount: Any) -> str:
    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{value:.2f} €"


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Client"


# ---------- PDF helpers ----------
def _clean_path(p: str) -> str:
    """Corrige 'C\\:\\Program Files\\...' -> 'C:\\Program Files\\...' et normalise."""
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    p = p.replace("\\:", ":")
    return os.path.normpath(p)


def find_wkhtmltopdf(configured: Optional[str] = None) -> Optional[str]:
    """Chemin configuré, chemins Windows connus, puis PATH."""
    if configured:
        path = _clean_path(configured)
        if Path(path).is_file():
            return path

    for c in (
        r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
        r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
    ):
        if Path(c).is_file():
            return c

    found = which("wkhtmltopdf")
    return _clean_path(found) if found else None


def _render_pdf_with_weasyprint(html: str, out_path: Path, templates_dir: Path) -> None:
    """Fallback WeasyPrint (si wkhtmltopdf absent ou en échec)."""
    from weasyprint import CSS, HTML

    css_file = templates_dir / "stylesheet.css"
    styles = [CSS(filename=str(css_file))] if css_file.exists() else None
    HTML(string=html, base_url=str(templates_dir.resolve())).write_pdf(str(out_path), stylesheets=styles)


# ---------- Exporter ----------
class DocumentExporter:
    """Produit le HTML (Jinja2) puis le PDF d'un devis ou d'une facture."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.env = Environment(
            loader=FileSystemLoader(str(settings.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.env.filters["eur"] = format_eur
        self.env.filters["status_label"] = lambda s: STATUS_LABELS.get(s, s)

    def _company(self) -> Dict[str, str]:
        return self.settings.company.model_dump()

    def render_quotation_html(self, quotation: Quotation) -> str:
        tpl = self.env.get_template("quotation.html")
        return tpl.render(
            quotation=quotation,
            client=quotation.client,
            lines=quotation.lines,
            total_without_taxes=quotation.total_without_taxes,
            total_with_taxes=quotation.total_with_taxes,
            tax_amount=quotation.total_with_taxes - quotation.total_without_taxes,
            company=self._company(),
        )

    def render_invoice_html(self, invoice: Invoice) -> str:
        tpl = self.env.get_template("invoice.html")
        return tpl.render(
            invoice=invoice,
            client=invoice.client,
            lines=invoice.lines,
            company=self._company(),
        )

    def export_quotation_pdf(self, quotation: Quotation, out_dir: Optional[str] = None) -> str:
        html = self.render_quotation_html(quotation)
        filename = f"DEVIS-{quotation.id[:8]} ({_slug(quotation.client.full_name)}).pdf"
        return self._write_pdf(html, Path(out_dir) if out_dir else self.settings.exports_dir / "devis", filename)

    def export_invoice_pdf(self, invoice: Invoice, out_dir: Optional[str] = None) -> str:
        html = self.render_invoice_html(invoice)
        filename = f"{invoice.invoice_number} ({_slug(invoice.client.full_name)}).pdf"
        return self._write_pdf(html, Path(out_dir) if out_dir else self.settings.exports_dir / "factures", filename)

    def _write_pdf(self, html: str, exports_dir: Path, filename: str) -> str:
        """wkhtmltopdf (pdfkit) en priorité, sinon WeasyPrint."""
        exports_dir.mkdir(parents=True, exist_ok=True)
        out_path = exports_dir / filename
        templates_dir = Path(self.settings.templates_dir)

        wkhtml = find_wkhtmltopdf(self.settings.wkhtmltopdf_path)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"enable-local-file-access": None, "quiet": "", "encoding": "UTF-8"}
                css_path = templates_dir / "stylesheet.css"
                pdfkit.from_string(
                    html,
                    str(out_path),
                    options=options,
                    configuration=config,
                    css=str(css_path.resolve()) if css_path.exists() else None,
                )
                return str(out_path)
            except OSError as e:
                logger.warning("Échec wkhtmltopdf (%s). Fallback WeasyPrint...", e)

        _render_pdf_with_weasyprint(html, out_path, templates_dir)
        return str(out_path)
