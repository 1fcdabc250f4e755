from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .settings import settings


def send_email(subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - PREDIP_ENABLE_EMAIL=true
      - PREDIP_SMTP_HOST / PREDIP_SMTP_PORT
      - PREDIP_SMTP_USER / PREDIP_SMTP_PASSWORD
      - PREDIP_EMAIL_FROM / PREDIP_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError):
        return False


def pool_exhausted_alert(pool: str, member: str, detail: str) -> bool:
    subject = f"Predictable IP pool exhausted: {pool}"
    body = f"Pool: {pool}\nMember: {member}\nDetail: {detail}\n\nThe member stays unannotated until addresses are released or the pool is widened."
    return send_email(subject, body)
