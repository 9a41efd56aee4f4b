"""Notifications client : envoi des avis de confirmation (devis / facture)."""
from __future__ import annotations
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Protocol

from pydantic import BaseModel

from facturation.config import SmtpSettings

logger = logging.getLogger(__name__)


class MailMessage(BaseModel):
    to: str
    subject: str
    html: str


class Mailer(Protocol):
    def send(self, message: MailMessage) -> None:
        ...


class SmtpMailer:
    def __init__(self, settings: SmtpSettings):
        self.settings = settings

    def send(self, message: MailMessage) -> None:
        if not self.settings.configured:
            raise RuntimeError("SMTP not configured (SMTP_EMAIL / SMTP_PASSWORD)")

        msg = MIMEMultipart()
        msg["From"] = self.settings.email
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.attach(MIMEText(message.html, "html", "utf-8"))

        with smtplib.SMTP(self.settings.host, self.settings.port) as server:
            if self.settings.use_tls:
                server.starttls()
            server.login(self.settings.email, self.settings.password)
            server.send_message(msg)
        logger.info("Mail '%s' envoyé à %s", message.subject, message.to)


class MailService:
    def __init__(self, mailer: Mailer, base_url: str = "http://localhost:3000"):
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")

    def send_simple_message(self, to: str, subject: str, html: str) -> None:
        self.mailer.send(MailMessage(to=to, subject=subject, html=html))

    def send_confirmation(
        self,
        to: str,
        document_id: str,
        client_first_name: str,
        sender_fullname: str,
        invoice: bool = False,
    ) -> None:
        kind = "facture" if invoice else "devis"
        article = "la" if invoice else "le"
        suffix = "e" if invoice else ""
        route = "invoice" if invoice else "quotation"
        link = f"{self.base_url}/{route}/api/{escape(document_id)}/download"

        html = (
            f"<p>Bonjour {escape(client_first_name or '')},</p>"
            f"<p>Votre {kind} a bien été enregistré{suffix}.</p>"
            f"<p>Vous pouvez {article} consulter ici : "
            f"<a href=\"{link}\">Voir {article} {kind}</a></p>"
            f"<p>Cordialement,</p><p>{escape(sender_fullname or '')}.</p>"
        )
        self.send_simple_message(to, f"Confirmation de réception de votre {kind}", html)


class NullMailer:
    """Mailer inerte : journalise seulement (SMTP absent)."""

    def __init__(self) -> None:
        self.sent: list[MailMessage] = []

    def send(self, message: MailMessage) -> None:
        logger.warning("SMTP non configuré, mail non envoyé à %s", message.to)
        self.sent.append(message)


def build_mailer(settings: SmtpSettings) -> Mailer:
    return SmtpMailer(settings) if settings.configured else NullMailer()


