"""Email service using Resend for transactional emails."""

import logging
from html import escape
from typing import Any

import resend

from src.core.config import Settings, get_settings
from src.models.order import Order

logger = logging.getLogger(__name__)

ORDER_EMAIL_SUBJECTS = {
    "confirmation": "Order Confirmed - {order_number} | Linkist",
    "receipt": "Receipt for Order {order_number} | Linkist",
    "production": "Your Card is in Production - {order_number} | Linkist",
    "shipped": "Package Shipped - {order_number} | Linkist",
    "delivered": "Your Linkist Card Has Arrived! - {order_number}",
}

ORDER_EMAIL_HEADLINES = {
    "confirmation": "Thanks for your order!",
    "receipt": "Your payment receipt",
    "production": "Your card is being made",
    "shipped": "Your card is on its way",
    "delivered": "Your card has arrived",
}

_LAYOUT = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: linear-gradient(135deg, #dc2626 0%, #991b1b 100%); padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
        <h1 style="color: white; margin: 0; font-size: 28px;">Linkist NFC</h1>
    </div>
    <div style="background: #f9fafb; padding: 30px; border-radius: 0 0 10px 10px;">
        {body}
        <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 30px 0;">
        <p style="font-size: 12px; color: #9ca3af; text-align: center; margin: 0;">
            Professional NFC business cards for modern networking.
        </p>
    </div>
</body>
</html>
"""


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize email service with Resend API key."""
        self.settings = settings or get_settings()
        resend.api_key = self.settings.resend_api_key
        self.from_email = self.settings.email_from_address
        self.reply_to = self.settings.email_reply_to
        self.frontend_url = self.settings.frontend_url

    @property
    def is_configured(self) -> bool:
        return self.settings.is_email_configured

    async def deliver(
        self,
        to_email: str,
        subject: str,
        html: str,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Hand one email to Resend.

        Args:
            to_email: Recipient email address.
            subject: Subject line.
            html: HTML body.
            tags: Optional Resend tags (name -> value).

        Returns:
            str: Provider message ID.

        Raises:
            resend.exceptions.ResendError: If Resend rejects the request.
            OSError: On network failures from the HTTP client.
        """
        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if self.reply_to:
            params["reply_to"] = self.reply_to
        if tags:
            params["tags"] = [{"name": name, "value": value} for name, value in tags.items()]

        response = resend.Emails.send(params)
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("Email '%s' sent to %s, id: %s", subject, to_email, message_id)
        return message_id

    async def send(
        self,
        to_email: str,
        subject: str,
        html: str,
        tags: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send one email without raising.

        Returns:
            dict: ``success``, ``message_id`` and ``error``.
        """
        try:
            message_id = await self.deliver(to_email, subject, html, tags)
            return {"success": True, "message_id": message_id, "error": None}
        except Exception as e:
            logger.error("Failed to send email to %s: %s", to_email, str(e))
            return {"success": False, "message_id": None, "error": str(e)}

    def render_code_email(self, code: str, expires_in_minutes: int) -> tuple[str, str]:
        """Build subject and HTML for a verification code email."""
        body = f"""
        <h2 style="color: #111827; margin-top: 0;">Verify Your Email</h2>
        <p style="font-size: 16px; color: #4b5563;">Use this verification code to continue:</p>
        <div style="background: white; border: 2px solid #dc2626; border-radius: 8px; padding: 20px; text-align: center; margin: 30px 0;">
            <div style="font-size: 36px; font-weight: bold; color: #dc2626; letter-spacing: 8px;">{escape(code)}</div>
        </div>
        <p style="font-size: 14px; color: #6b7280;">This code will expire in <strong>{expires_in_minutes} minutes</strong>.</p>
        <p style="font-size: 14px; color: #6b7280;">If you didn't request this code, please ignore this email.</p>
        """
        return "Your Linkist Verification Code", _LAYOUT.format(title="Email Verification Code", body=body)

    async def send_code_email(self, to_email: str, code: str, expires_in_minutes: int) -> dict[str, Any]:
        """Send a verification code email."""
        subject, html = self.render_code_email(code, expires_in_minutes)
        return await self.send(to_email, subject, html, tags={"email_type": "verification"})

    def render_order_email(self, email_type: str, order: Order) -> tuple[str, str]:
        """Build subject and HTML for a lifecycle email.

        Args:
            email_type: One of confirmation, receipt, production, shipped, delivered.
            order: The order the email is about.

        Returns:
            tuple: (subject, html).
        """
        if email_type not in ORDER_EMAIL_SUBJECTS:
            raise ValueError(f"Unknown email type: {email_type}")

        # Every order field below is customer or admin input and is escaped
        order_number = order["order_number"]
        pricing = order.get("pricing") or {}
        first_name = escape((order.get("customer_name") or "there").split(" ")[0])
        rows = [
            f"<p><strong>Order number:</strong> {escape(order_number)}</p>",
            f"<p><strong>Status:</strong> {escape(order.get('status', '').capitalize())}</p>",
        ]

        if email_type in ("confirmation", "receipt"):
            rows.append(
                "<table style=\"width: 100%; font-size: 14px;\">"
                f"<tr><td>Subtotal</td><td align=\"right\">${pricing.get('subtotal', 0):.2f}</td></tr>"
                f"<tr><td>Shipping</td><td align=\"right\">${pricing.get('shipping', 0):.2f}</td></tr>"
                f"<tr><td>Tax</td><td align=\"right\">${pricing.get('tax', 0):.2f}</td></tr>"
                f"<tr><td>Discount</td><td align=\"right\">-${pricing.get('discount', 0):.2f}</td></tr>"
                f"<tr><td><strong>Total</strong></td><td align=\"right\"><strong>${pricing.get('total', 0):.2f}</strong></td></tr>"
                "</table>"
            )
        if email_type in ("confirmation", "production") and order.get("estimated_delivery"):
            rows.append(f"<p><strong>Estimated delivery:</strong> {escape(order['estimated_delivery'])}</p>")
        if email_type == "shipped" and order.get("tracking_number"):
            tracking = escape(order["tracking_number"])
            tracking_url = order.get("tracking_url") or ""
            if tracking_url.startswith(("https://", "http://")):
                tracking = f"<a href=\"{escape(tracking_url, quote=True)}\" style=\"color: #dc2626;\">{tracking}</a>"
            rows.append(f"<p><strong>Tracking number:</strong> {tracking}</p>")

        body = (
            f"<h2 style=\"color: #111827; margin-top: 0;\">{ORDER_EMAIL_HEADLINES[email_type]}</h2>"
            f"<p style=\"font-size: 16px; color: #4b5563;\">Hi {first_name},</p>"
            + "".join(rows)
            + f"<p style=\"font-size: 14px;\"><a href=\"{self.frontend_url}/account\" style=\"color: #dc2626;\">View your order</a></p>"
        )
        subject = ORDER_EMAIL_SUBJECTS[email_type].format(order_number=order_number)
        return subject, _LAYOUT.format(title=subject, body=body)
