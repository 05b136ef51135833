"""OTP delivery over email (SMTP) and SMS (MSG91)."""
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import re
import smtplib

import httpx

from hzsite.config import Settings
from hzsite.errors import ProviderNotConfigured, UpstreamProviderUnavailable

logger = logging.getLogger(__name__)


def normalize_indian_mobile(phone: str) -> tuple[str, str]:
    """Return ``(e164, national)`` for a 10-digit Indian mobile number.

    Accepts ``9876543210``, ``919876543210`` and ``+91 98765-43210``.
    """
    digits = re.sub(r"[\s-]", "", phone).lstrip("+")
    if re.fullmatch(r"\d{10}", digits):
        return f"+91{digits}", digits
    if re.fullmatch(r"91\d{10}", digits):
        return f"+{digits}", digits[2:]
    raise ValueError("Invalid Indian mobile number")


def generate_otp_email(code: str, expires_in_seconds: int) -> tuple[str, str]:
    """Build (plain, html) bodies for an OTP email."""
    minutes = max(expires_in_seconds // 60, 1)
    plain = (
        f"Your sign-in code is {code}.\n\n"
        f"It expires in {minutes} minutes. If you did not request it, ignore this email."
    )
    html = f"""
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 480px; margin: 0 auto; padding: 20px;">
        <p>Your sign-in code is</p>
        <p style="font-size: 28px; letter-spacing: 6px; font-weight: bold;">{code}</p>
        <p style="color: #6b7280;">It expires in {minutes} minutes. If you did not request it, ignore this email.</p>
    </body>
    </html>
    """
    return plain, html


class OtpNotifier:
    """Sends one-time codes through the configured providers."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self.settings = settings
        self._http_client = http_client

    def send(self, channel: str, destination: str, code: str, expires_in_seconds: int) -> None:
        if channel == "email":
            self.send_email(destination, code, expires_in_seconds)
        elif channel == "sms":
            self.send_sms(destination, code)
        else:
            raise ValueError(f"Unknown OTP channel {channel!r}")

    def send_email(self, to_email: str, code: str, expires_in_seconds: int) -> None:
        """Send an OTP email over SMTP with STARTTLS."""
        settings = self.settings
        if not settings.smtp_host:
            raise ProviderNotConfigured("SMTP_HOST is not set")

        plain_text, html_content = generate_otp_email(code, expires_in_seconds)
        msg = MIMEMultipart("alternative")
        msg["Subject"] = "Your sign-in code"
        msg["From"] = settings.mail_from
        msg["To"] = to_email
        msg.attach(MIMEText(plain_text, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.http_timeout_seconds) as server:
                server.starttls()
                if settings.smtp_user and settings.smtp_password:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send OTP email to {to_email}: {exc}")
            raise UpstreamProviderUnavailable(f"SMTP delivery failed: {exc}") from exc

        logger.info(f"OTP email sent to {to_email}")

    def send_sms(self, phone: str, code: str) -> None:
        """Send an OTP through the MSG91 OTP API."""
        settings = self.settings
        if not settings.msg91_auth_key:
            raise ProviderNotConfigured("MSG91_AUTH_KEY is not set")

        _, national = normalize_indian_mobile(phone)
        body = {
            "mobile": f"91{national}",
            "otp": code,
            "template_id": settings.msg91_template_id,
            "sender": settings.msg91_sender_id,
        }
        headers = {"authkey": settings.msg91_auth_key, "Content-Type": "application/json"}

        try:
            if self._http_client is not None:
                response = self._http_client.post(settings.msg91_url, json=body, headers=headers)
            else:
                with httpx.Client(timeout=settings.http_timeout_seconds) as client:
                    response = client.post(settings.msg91_url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"MSG91 request failed for {national[-4:]}: {exc}")
            raise UpstreamProviderUnavailable(f"MSG91 request failed: {exc}") from exc

        # MSG91 can answer 200 with an error payload.
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            result_type = str(payload.get("type", "success")).lower()
            if result_type != "success" or payload.get("error"):
                message = payload.get("message") or payload.get("error")
                logger.error(f"MSG91 rejected OTP for {national[-4:]}: {message}")
                raise UpstreamProviderUnavailable(f"MSG91 error: {message}")

        logger.info(f"OTP SMS sent to ******{national[-4:]}")
