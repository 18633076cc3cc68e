"""Email service using Resend for transactional emails.

Email is never on the payment-critical path: every method logs failures
and returns a result dict instead of raising.
"""

import html
import logging
from typing import Any

import resend

from src.core.config import get_settings

logger = logging.getLogger(__name__)


def _layout(title: str, body_html: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #0e7c66; padding: 24px; border-radius: 10px 10px 0 0; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 22px;">{title}</h1>
    </div>
    <div style="background: #f9fafb; padding: 28px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
        {body_html}
    </div>
</body>
</html>
"""


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url.rstrip("/")
        self.admin_email = settings.admin_email

    async def send(self, to: str, subject: str, html_content: str, text_content: str | None = None) -> dict[str, Any]:
        """Send a single email.

        Args:
            to: Recipient email address.
            subject: Subject line.
            html_content: HTML body.
            text_content: Optional plain-text body.

        Returns:
            dict: ``{"success": True, "email_id": ...}`` or ``{"success": False, "error": ...}``.
        """
        if not to:
            return {"success": False, "error": "missing recipient"}

        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [to],
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content

        try:
            response = resend.Emails.send(params)
            logger.info("Email '%s' sent to %s, id: %s", subject, to, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send email '%s' to %s: %s", subject, to, str(e))
            return {"success": False, "error": str(e)}

    async def send_offer_paid_email(
        self,
        to_email: str,
        pro_name: str | None,
        service_title: str | None,
        conversation_id: str | None = None,
        address: str | None = None,
    ) -> dict[str, Any]:
        """Tell a professional their offer was paid and the job is scheduled."""
        safe_name = html.escape(pro_name or "Profesional")
        safe_title = html.escape(service_title or "Servicio")
        links = [
            f'<li><a href="{self.frontend_url}/pro">Ir a tu dashboard</a></li>',
            f'<li><a href="{self.frontend_url}/pro/calendar">Ver calendario</a></li>',
        ]
        if conversation_id:
            links.append(f'<li><a href="{self.frontend_url}/mensajes/{conversation_id}">Abrir chat</a></li>')
        address_html = f"<p><strong>Dirección:</strong> {html.escape(address)}</p>" if address else ""

        body = f"""
        <p>Hola {safe_name},</p>
        <p>Tu oferta de contratación (<strong>{safe_title}</strong>) ha sido pagada.</p>
        <p>El servicio se ha agendado y ya aparece en tu cuenta.</p>
        {address_html}
        <ul>{"".join(links)}</ul>
"""
        return await self.send(to_email, "Handi - Tu oferta fue pagada", _layout("Oferta pagada", body))

    async def send_offer_accepted_email(
        self,
        to_email: str,
        client_name: str | None,
        offer_title: str | None,
        conversation_id: str,
    ) -> dict[str, Any]:
        """Tell a client the professional accepted their offer and payment is next."""
        safe_name = html.escape(client_name or "Cliente")
        safe_title = html.escape(offer_title or "tu oferta")
        chat_url = f"{self.frontend_url}/mensajes/{conversation_id}"
        body = f"""
        <p>Hola {safe_name},</p>
        <p>El profesional aceptó <strong>{safe_title}</strong>.</p>
        <p>Completa el pago desde el chat para agendar el servicio.</p>
        <p style="text-align: center; margin: 24px 0;">
            <a href="{chat_url}" style="background: #0e7c66; color: white; padding: 12px 28px; text-decoration: none; border-radius: 6px; font-weight: 600;">Ir al chat</a>
        </p>
"""
        return await self.send(to_email, "Handi - Tu oferta fue aceptada", _layout("Oferta aceptada", body))
