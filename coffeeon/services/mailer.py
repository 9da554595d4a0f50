import logging
import smtplib
from email.mime.text import MIMEText
from coffeeon.core.config import settings

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, html: str):
    msg = MIMEText(html, "html", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as s:
        if settings.SMTP_USER:
            s.starttls()
            s.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        s.sendmail(settings.FROM_EMAIL, [to], msg.as_string())
    logger.info("email sent to %s: %s", to, subject)
