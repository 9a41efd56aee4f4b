"""Configuration : data/settings.json + variables d'environnement (.env accepté)."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates" / "pdf"

load_dotenv()


class CompanySettings(BaseModel):
    name: str = "Ma Société"
    email: str = ""
    address: str = ""
    siret: str = ""


class SmtpSettings(BaseModel):
    host: str = "smtp.gmail.com"
    port: int = 587
    email: str = ""
    password: str = ""
    use_tls: bool = True

    @property
    def configured(self) -> bool:
        return bool(self.email and self.password)


class Settings(BaseModel):
    data_dir: Path = ROOT_DIR / "data"
    exports_dir: Path = ROOT_DIR / "exports"
    templates_dir: Path = TEMPLATES_DIR
    invoice_prefix: str = "FAC"
    payment_term_days: int = 30
    wkhtmltopdf_path: Optional[str] = None
    public_base_url: str = "http://localhost:3000"
    company: CompanySettings = Field(default_factory=CompanySettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("settings.json illisible (%s), valeurs par défaut utilisées", path)
        return {}
    return data if isinstance(data, dict) else {}


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if os.environ.get("FACTURATION_DATA_DIR"):
        out["data_dir"] = os.environ["FACTURATION_DATA_DIR"]
    if os.environ.get("FACTURATION_EXPORTS_DIR"):
        out["exports_dir"] = os.environ["FACTURATION_EXPORTS_DIR"]
    for env_key in ("WKHTMLTOPDF", "WKHTMLTOPDF_CMD"):
        if os.environ.get(env_key):
            out["wkhtmltopdf_path"] = os.environ[env_key].strip().strip('"').strip("'")
            break

    smtp: Dict[str, Any] = {}
    for field, env_key in (("host", "SMTP_HOST"), ("port", "SMTP_PORT"),
                           ("email", "SMTP_EMAIL"), ("password", "SMTP_PASSWORD")):
        if os.environ.get(env_key):
            smtp[field] = os.environ[env_key].strip()
    if smtp:
        out["smtp"] = smtp
    return out


def load_settings(path: Optional[os.PathLike | str] = None) -> Settings:
    """
    Ordre de priorité : environnement > settings.json > valeurs par défaut.
    Le fichier est cherché dans FACTURATION_DATA_DIR/settings.json sinon data/settings.json.
    """
    env = _env_overrides()
    if path is None:
        data_dir = Path(env.get("data_dir") or ROOT_DIR / "data")
        path = data_dir / "settings.json"

    raw = _load_json(Path(path))
    # le bloc "numbering" historique porte le préfixe de facture
    numbering = raw.pop("numbering", None)
    if isinstance(numbering, dict) and numbering.get("invoice_prefix"):
        raw.setdefault("invoice_prefix", str(numbering["invoice_prefix"]).rstrip("-"))
    pdf_conf = raw.pop("pdf", None)
    if isinstance(pdf_conf, dict) and pdf_conf.get("wkhtmltopdf_path"):
        raw.setdefault("wkhtmltopdf_path", pdf_conf["wkhtmltopdf_path"])

    smtp = {**(raw.get("smtp") or {}), **env.pop("smtp", {})}
    merged = {**raw, **env}
    if smtp:
        merged["smtp"] = smtp
    return Settings.model_validate(merged)
