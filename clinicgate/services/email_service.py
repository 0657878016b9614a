# clinicgate/services/email_service.py
import html
import logging
from urllib.parse import urlencode

import sendgrid
from sendgrid.helpers.mail import Mail

from ..config import get_settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, html_content: str, settings=None) -> bool:
    """Sends a transactional email using SendGrid."""
    settings = settings or get_settings()
    if not settings.email_enabled:
        logger.warning(f"SendGrid API key not set. Skipping email '{subject}' to {to_email}.")
        logger.debug(f"Mock email to {to_email}:\n{html_content}")
        return False

    sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    message = Mail(
        from_email=settings.email_from,
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
    )
    try:
        response = sg.send(message)
        logger.info(f"Email sent to {to_email}. Status: {response.status_code}")
        return True
    except Exception as e:
        # SendGrid raises its own HTTP error hierarchy; delivery is best-effort
        logger.error(f"Error sending email to {to_email}: {e}")
        return False


def send_verification_email(email: str, name: str, token: str, settings=None) -> bool:
    settings = settings or get_settings()
    link = f"{settings.public_base_url.rstrip('/')}/api/auth/verify-email?{urlencode({'token': token})}"
    html_content = f"""
    <h2>Verify your email address</h2>
    <p>Hello {html.escape(name)},</p>
    <p>Please confirm your email address to activate your account:</p>
    <p><a href="{link}">{link}</a></p>
    <p>This link expires in {settings.email_verification_expire_hours} hours.</p>
    """
    return send_email(email, "Verify your email address", html_content, settings)
