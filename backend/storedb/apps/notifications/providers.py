from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage
from typing import Dict, Tuple


TEMPLATES: Dict[str, str] = {
    "temp_password": (
        "Your temporary password for {store_name} is {temp_password}.\n"
        "It expires at {expires_at} (UTC) and can be used once."
    ),
    "stock_alert": (
        "Stock alert: {low_stock_count} low stock and {out_of_stock_count} out of stock items.\n"
        "{items}"
    ),
    "expiry_alert": (
        "Expiry alert: {expiring_count} batches expire within {days_ahead} days, "
        "{expired_count} already expired.\n{items}"
    ),
    "transfer_update": (
        "Transfer #{transfer_id} ({summary}) was {decision}.\n"
        "{note}"
    ),
    "password_reset": "Use this token to reset your password: {token}\nIt expires in 24 hours.",
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_body(template_key: str, context: dict) -> str:
    if context.get("body"):
        return str(context["body"])
    template = TEMPLATES.get(template_key)
    if template is None:
        return "\n".join(f"{k}: {v}" for k, v in sorted(context.items()))
    return template.format_map(_SafeDict(context))


class EmailProvider:
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        return None


class SmtpProvider(EmailProvider):
    """
    Plain SMTP delivery with STARTTLS.

    Env expected:
      SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM
    """

    def __init__(self, host: str, port: int, sender: str, user: str | None = None, password: str | None = None) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password

    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        context: dict,
        correlation_id: str | None,
    ) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject
        if correlation_id:
            msg["X-Correlation-ID"] = correlation_id
        msg.set_content(render_body(template_key, context))

        with smtplib.SMTP(self.host, self.port) as s:
            s.starttls()
            if self.user and self.password:
                s.login(self.user, self.password)
            s.send_message(msg)


def get_email_provider() -> Tuple[EmailProvider, bool]:
    provider_name = (os.getenv("EMAIL_PROVIDER") or "").strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name == "smtp":
        host = os.getenv("SMTP_HOST")
        port = os.getenv("SMTP_PORT")
        sender = os.getenv("SMTP_FROM")
        if not (host and port and sender):
            return NoopProvider(), False
        return (
            SmtpProvider(
                host,
                int(port),
                sender,
                user=os.getenv("SMTP_USER"),
                password=os.getenv("SMTP_PASS"),
            ),
            True,
        )
    raise ValueError(f"Unsupported email provider: {provider_name}")
