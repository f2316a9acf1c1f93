from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

from flask import current_app, render_template

from .models import Profile

logger = logging.getLogger(__name__)

INVITE_SUBJECT = "Você foi convidado para o AssetDesk"


class MailDeliveryError(RuntimeError):
    pass


@dataclass
class Mailer:
    """SMTP sender built from the MAIL_* settings of the running app."""

    sender: str
    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    use_ssl: bool = False
    timeout: int = 20
    console_fallback: bool = False

    @classmethod
    def from_app(cls, app) -> "Mailer":
        cfg = app.config
        return cls(
            sender=cfg.get("MAIL_SENDER") or "no-reply@assetdesk.local",
            host=cfg.get("MAIL_SMTP_HOST"),
            port=cfg.get("MAIL_SMTP_PORT", 587),
            username=cfg.get("MAIL_SMTP_USERNAME"),
            password=cfg.get("MAIL_SMTP_PASSWORD"),
            use_tls=cfg.get("MAIL_USE_TLS", True),
            use_ssl=cfg.get("MAIL_USE_SSL", False),
            timeout=cfg.get("MAIL_TIMEOUT", 20),
            console_fallback=bool(cfg.get("MAIL_CONSOLE_FALLBACK")),
        )

    def compose(self, subject: str, recipient: str, html: str, text: str | None) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = recipient
        message.set_content(text or "Abra este e-mail em um cliente com suporte a HTML.")
        message.add_alternative(html, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        if self.use_tls:
            server.starttls(context=context)
        return server

    def deliver(self, message: EmailMessage) -> None:
        if not self.host:
            if self.console_fallback:
                logger.warning(
                    "No SMTP host configured, logging mail to %s instead.\nSubject: %s\n%s",
                    message["To"],
                    message["Subject"],
                    message.get_body(("plain",)).get_content(),
                )
                return
            raise MailDeliveryError("MAIL_SMTP_HOST is not configured")

        try:
            with self._connect() as server:
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("Could not deliver mail to %s", message["To"])
            raise MailDeliveryError(str(exc)) from exc


def send_email(subject: str, recipient: str, *, html: str, text: str | None = None) -> None:
    mailer = Mailer.from_app(current_app)
    mailer.deliver(mailer.compose(subject, recipient, html, text))


def send_invite_email(profile: Profile, invite_link: str, *, expires_in_hours: int) -> None:
    context = {"profile": profile, "invite_link": invite_link, "expires_in_hours": expires_in_hours}
    send_email(
        INVITE_SUBJECT,
        profile.email,
        html=render_template("emails/invite.html", **context),
        text=f"Defina sua senha em {invite_link}. O link expira em {expires_in_hours} horas.",
    )
