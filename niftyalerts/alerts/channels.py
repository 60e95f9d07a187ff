"""Alert delivery channels.

Each channel sends one formatted message to one destination and raises
on failure; ``AlertDispatcher`` isolates failures per channel.
"""

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

import httpx

from niftyalerts.alerts.messages import email_html, email_subject
from niftyalerts.strategy.models import TradeSignal

logger = logging.getLogger("niftyalerts.alerts")

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


class AlertChannel(Protocol):
    async def send(self, destination: str, message: str, signal: TradeSignal) -> None: ...


class EmailSender(Protocol):
    async def send_email(self, to: str, subject: str, text: str, html: str) -> None: ...


# ── Chat bot ─────────────────────────────────────────────────────────────


class TelegramChannel:
    """Telegram Bot API ``sendMessage``."""

    def __init__(self, bot_token: str, api_url: str = "https://api.telegram.org") -> None:
        self._url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"

    async def send(self, destination: str, message: str, signal: TradeSignal) -> None:
        payload = {
            "chat_id": destination,
            "text": html.escape(message, quote=False),
            "parse_mode": "HTML",
        }
        async with httpx.AsyncClient() as client:
            resp = await client.post(self._url, json=payload, timeout=30.0)
        resp.raise_for_status()
        logger.info("Telegram alert sent for signal %s to %s", signal.id, destination)


# ── SMS / WhatsApp ───────────────────────────────────────────────────────


class TwilioMessagingChannel:
    """Twilio Messages API, form-encoded with HTTP Basic auth.

    With ``whatsapp=True`` both numbers are sent as ``whatsapp:<number>``.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        whatsapp: bool = True,
        api_url: str = TWILIO_API_URL,
    ) -> None:
        self._url = f"{api_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._auth = (account_sid, auth_token)
        self._from_number = from_number
        self._whatsapp = whatsapp

    def _address(self, number: str) -> str:
        return f"whatsapp:{number}" if self._whatsapp else number

    async def send(self, destination: str, message: str, signal: TradeSignal) -> None:
        form = {
            "To": self._address(destination),
            "From": self._address(self._from_number),
            "Body": message,
        }
        async with httpx.AsyncClient() as client:
            resp = await client.post(self._url, data=form, auth=self._auth, timeout=30.0)
        resp.raise_for_status()
        logger.info("Messaging alert sent for signal %s to %s", signal.id, destination)


# ── Email ────────────────────────────────────────────────────────────────


class SmtpEmailSender:
    """Blocking ``smtplib`` delivery run in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        use_tls: bool = True,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_address = from_address or username
        self._use_tls = use_tls

    async def send_email(self, to: str, subject: str, text: str, html: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        await asyncio.to_thread(self._deliver, msg)

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=30) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)


class EmailChannel:
    """Adapts an ``EmailSender`` to the channel interface."""

    def __init__(self, sender: EmailSender) -> None:
        self._sender = sender

    async def send(self, destination: str, message: str, signal: TradeSignal) -> None:
        await self._sender.send_email(
            to=destination,
            subject=email_subject(signal),
            text=message,
            html=email_html(message),
        )
        logger.info("Email alert sent for signal %s to %s", signal.id, destination)
