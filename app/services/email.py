import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from app.config import Settings, settings

logger = logging.getLogger(__name__)


def get_smtp_config(config: Settings | None = None) -> dict:
    config = config or settings
    return {
        "host": config.smtp_host,
        "port": config.smtp_port,
        "username": config.smtp_username,
        "password": config.smtp_password,
        "use_tls": config.smtp_use_tls,
        "use_ssl": config.smtp_use_ssl,
        "from_email": config.smtp_from_email,
        "from_name": config.smtp_from_name,
    }


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: int | None = None):
    if use_ssl:
        if timeout is None:
            return smtplib.SMTP_SSL(host, port)
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    if timeout is None:
        return smtplib.SMTP(host, port)
    return smtplib.SMTP(host, port, timeout=timeout)


def text_to_html(body_text: str) -> str:
    paragraphs = [escape(line) for line in body_text.splitlines() if line.strip()]
    return "".join(f"<p>{line}</p>" for line in paragraphs)


def send_email(
    to_email: str,
    subject: str,
    body_html: str,
    body_text: str | None = None,
    config: dict | None = None,
) -> bool:
    """
    Send an email via SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject
        body_html: HTML body content
        body_text: Plain text body (optional)
        config: SMTP settings, defaults to the application settings

    Returns:
        True if email was sent successfully, False otherwise
    """
    config = config or get_smtp_config()
    if not config.get("host"):
        logger.info("SMTP host not configured; skipping email to %s", to_email)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{config['from_name']} <{config['from_email']}>"
    msg["To"] = to_email

    if body_text:
        msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))

    try:
        server = _create_smtp_client(
            config["host"],
            int(config["port"]),
            bool(config["use_ssl"]),
        )

        if config["use_tls"] and not config["use_ssl"]:
            server.starttls()

        if config["username"] and config["password"]:
            server.login(config["username"], config["password"])

        server.sendmail(config["from_email"], to_email, msg.as_string())
        server.quit()
        logger.info("Email sent successfully to %s", to_email)
        return True

    except smtplib.SMTPAuthenticationError as exc:
        logger.error("SMTP authentication failed for %s: %s", to_email, exc)
        return False
    except Exception as e:
        logger.error("Failed to send email to %s: %s", to_email, e)
        return False
