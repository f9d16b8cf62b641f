"""
Digest delivery via SMTP.

Uses smtplib with STARTTLS so it works with any SMTP provider (Gmail App
Passwords, SendGrid, Mailgun, ...). Sending is blocking; async callers run
it in a worker thread.
"""

from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.schemas.schemas import CachedDigest

logger = get_logger(__name__)


def render_digest_html(digest: CachedDigest) -> str:
    paragraphs = "".join(
        f"<p>{escape(p)}</p>" for p in digest.content.split("\n") if p.strip()
    )
    references = "".join(
        f'<li><a href="{escape(r.url)}">{escape(r.title)}</a>'
        f"{' (' + escape(r.source) + ')' if r.source else ''}"
        f"<br><small>{escape(r.reason)}</small></li>"
        for r in digest.references
    )
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, sans-serif;
                max-width: 600px; margin: 0 auto;">
        <h2>{escape(digest.title)}</h2>
        {paragraphs}
        <ul>{references}</ul>
    </div>
    """


class EmailService:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _send(self, msg: MIMEMultipart, recipients: list[str]) -> None:
        """Open SMTP connection, send, close. Raises on failure."""
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as smtp:
            smtp.ehlo()
            smtp.starttls()
            smtp.ehlo()
            if s.smtp_user and s.smtp_password:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.sendmail(s.email_sender, recipients, msg.as_string())

    def send_digest(self, digest: CachedDigest) -> None:
        recipients = self._settings.email_recipients
        msg = MIMEMultipart("alternative")
        msg["Subject"] = digest.title
        msg["From"] = self._settings.email_sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(digest.content, "plain", "utf-8"))
        msg.attach(MIMEText(render_digest_html(digest), "html", "utf-8"))

        try:
            self._send(msg, recipients)
            logger.info("digest_email_sent", digest_id=digest.id, recipients=len(recipients))
        except Exception as e:
            logger.error("digest_email_error", digest_id=digest.id, error=str(e))
            raise
