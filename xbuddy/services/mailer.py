from __future__ import annotations

import smtplib
from email.message import EmailMessage

from flask import render_template

from ..logging_config import get_logger, mask_email
from .notifications import OutboundEmail

logger = get_logger(__name__)


class SmtpMailer:
    """Sends OutboundEmail through an SMTP relay. Raises on any transport error."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        sender: str | None = None,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender or username
        self.timeout = timeout

    def build_message(self, message: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        if self.sender:
            msg["From"] = self.sender
        msg["To"] = message.to
        msg.set_content(message.text or "")
        msg.add_alternative(message.html, subtype="html")
        return msg

    def send(self, message: OutboundEmail) -> None:
        msg = self.build_message(message)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)


class LogMailer:
    """Development transport: logs instead of sending."""

    def send(self, message: OutboundEmail) -> None:
        logger.info("Mail (not sent, SMTP not configured): to=%s, subject=%s", mask_email(message.to), message.subject)


def participant_url(frontend_url: str, participant) -> str:
    return f"{frontend_url.rstrip('/')}/participant/{participant.access_token}"


def render_assignment_email(giver, receiver, group, link: str) -> OutboundEmail:
    """Render the draw-result e-mail for ``giver``. Needs an app context."""
    context = {
        "giver": giver,
        "receiver": receiver,
        "group": group,
        "participant_url": link,
    }
    return OutboundEmail(
        to=giver.email,
        subject=f"Draw results for {group.name}",
        html=render_template("email/assignment.html", **context),
        text=render_template("email/assignment.txt", **context),
    )
