import logging
import os
import smtplib
import ssl
from email.message import EmailMessage

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, html: str, text: str | None = None) -> bool:
    """Send a message over SMTP; log it instead when SMTP is not configured."""

    host = os.getenv("SMTP_HOST")
    port = int(os.getenv("SMTP_PORT", "587"))
    user = os.getenv("SMTP_USER")
    password = os.getenv("SMTP_PASSWORD")
    sender = os.getenv("SMTP_FROM", user or "DevEvent <no-reply@example.com>")

    if not (host and user and password):
        logger.warning("SMTP not configured; skipping actual send. Would send to %s", to_email)
        logger.info("Subject: %s\nBody (text): %s", subject, text)
        return False

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(text or "Open in an HTML-capable client.")
    if html:
        msg.add_alternative(html, subtype="html")

    context = ssl.create_default_context()
    try:
        with smtplib.SMTP(host, port) as s:
            s.starttls(context=context)
            s.login(user, password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError):
        # runs as a background task after the response was sent
        logger.exception("Sending email to %s failed", to_email)
        return False

    return True
