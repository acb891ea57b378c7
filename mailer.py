import smtplib
from email.message import EmailMessage

from flask import current_app


def send_mail(receiver_email: str, subject: str, body: str) -> bool:
    """Send a plain text mail, or log it when no SMTP server is configured.

    Returns False instead of raising when delivery fails so a warning or
    token is never lost because the mail server is down.
    """
    cfg = current_app.config
    server = cfg.get("MAIL_SERVER")
    if not server:
        current_app.logger.info("mail to %s (not sent, MAIL_SERVER unset): %s\n%s", receiver_email, subject, body)
        return True

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = cfg.get("MAIL_SENDER")
    msg["To"] = receiver_email
    msg.set_content(body)

    smtp_cls = smtplib.SMTP_SSL if cfg.get("MAIL_USE_SSL") else smtplib.SMTP
    try:
        with smtp_cls(server, cfg.get("MAIL_PORT")) as smtp:
            if cfg.get("MAIL_USERNAME"):
                smtp.login(cfg["MAIL_USERNAME"], cfg.get("MAIL_PASSWORD") or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        current_app.logger.exception("mail to %s failed: %s", receiver_email, exc)
        return False
    return True
