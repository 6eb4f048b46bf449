"""
Outbound mail

A Mailer wraps one transport (SMTP, HTTP relay or log-only) and retries
transient failures. One Mailer is used per dispatch run so the SMTP
connection is reused across items and closed once at the end.
"""

import base64
import html
import logging
import smtplib
import ssl
import time
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, List, Optional

import httpx

from ..config import (
    MAIL_TRANSPORT, MAIL_FROM_EMAIL, MAIL_FROM_NAME, MAIL_TIMEOUT_SEC,
    MAIL_RETRIES, MAIL_RETRY_BACKOFF_SEC,
    SMTP_HOST, SMTP_PORT, SMTP_AUTH, SMTP_USER, SMTP_PASSWORD, SMTP_SECURE,
    MAIL_RELAY_URL, MAIL_RELAY_TOKEN, MAIL_RELAY_VERIFY_TLS,
)
from ..errors import SendRejected, TransientSendFailure

logger = logging.getLogger("sigbatch.mailer")


@dataclass
class Attachment:
    filename: str
    content: str
    content_type: str = "text/html"


@dataclass
class OutgoingMessage:
    recipient: str
    subject: str
    html_body: str
    attachments: List[Attachment] = field(default_factory=list)
    from_email: str = MAIL_FROM_EMAIL
    from_name: str = MAIL_FROM_NAME


@dataclass
class SendResult:
    success: bool
    message: str
    attempts: int = 1


def build_email_body(person_name: str, attachment_name: str, rendered_html: str) -> str:
    """HTML body telling the recipient how to install the attached signature"""
    return (
        f"<p>Hello {html.escape(person_name or '')},</p>"
        f"<p>Your new signature is attached as <strong>{html.escape(attachment_name)}</strong>.</p>"
        "<p>Please open the attachment in your browser, copy everything (Ctrl+A, Ctrl+C), "
        "and paste it into your email signature settings.</p>"
        "<p>Best regards,</p>"
        "<hr><h4>Preview:</h4>"
        f"<div style='border:1px dashed #ccc; padding:10px;'>{rendered_html}</div>"
    )


def compose_message(message: OutgoingMessage) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = message.subject
    msg["From"] = formataddr((message.from_name, message.from_email))
    msg["To"] = message.recipient
    msg.set_content("This message contains HTML. Please use an HTML capable mail client.")
    msg.add_alternative(message.html_body, subtype="html")
    for att in message.attachments:
        maintype, _, subtype = att.content_type.partition("/")
        msg.add_attachment(
            att.content.encode("utf-8"),
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=att.filename,
        )
    return msg


class SmtpTransport:
    """SMTP with a lazily opened connection kept for the lifetime of the transport"""

    name = "smtp"

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        secure: str = SMTP_SECURE,
        auth: bool = SMTP_AUTH,
        user: str = SMTP_USER,
        password: str = SMTP_PASSWORD,
        timeout: int = MAIL_TIMEOUT_SEC,
    ):
        self.host = host
        self.port = port
        self.secure = secure
        self.auth = auth
        self.user = user
        self.password = password
        self.timeout = timeout
        self._conn: Optional[smtplib.SMTP] = None

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure == "ssl":
            conn = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            conn = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            if self.secure == "tls":
                conn.starttls(context=context)
        if self.auth and self.user:
            conn.login(self.user, self.password)
        logger.info("SMTP connection opened", extra={
            "component": "mailer",
            "host": self.host,
            "port": self.port,
            "secure": self.secure,
        })
        return conn

    def _drop(self):
        if self._conn is not None:
            try:
                self._conn.close()
            except OSError:
                pass
            self._conn = None

    def send(self, message: OutgoingMessage) -> None:
        try:
            if self._conn is None:
                self._conn = self._connect()
            self._conn.send_message(compose_message(message))
        except smtplib.SMTPRecipientsRefused as e:
            raise SendRejected(f"recipient refused: {', '.join(e.recipients)}") from e
        except smtplib.SMTPResponseException as e:
            self._drop()
            if 400 <= e.smtp_code < 500:
                raise TransientSendFailure(f"smtp_{e.smtp_code}") from e
            raise SendRejected(f"smtp_{e.smtp_code}") from e
        except smtplib.SMTPServerDisconnected as e:
            self._drop()
            raise TransientSendFailure("disconnected") from e
        except (smtplib.SMTPException, OSError) as e:
            # socket errors, timeouts, refused connections
            self._drop()
            raise TransientSendFailure(str(e) or e.__class__.__name__) from e

    def close(self):
        if self._conn is None:
            return
        try:
            self._conn.quit()
        except (smtplib.SMTPException, OSError):
            pass
        finally:
            self._drop()


class HttpRelayTransport:
    """POSTs each message as JSON to a mail relay endpoint"""

    name = "http"

    def __init__(
        self,
        url: str = MAIL_RELAY_URL,
        token: str = MAIL_RELAY_TOKEN,
        verify_tls: bool = MAIL_RELAY_VERIFY_TLS,
        timeout: int = MAIL_TIMEOUT_SEC,
        client: Optional[httpx.Client] = None,
    ):
        if not url:
            raise ValueError("MAIL_RELAY_URL is required for the http transport")
        self.url = url.rstrip("/")
        self.token = token
        self._client = client or httpx.Client(timeout=timeout, verify=verify_tls)

    def _payload(self, message: OutgoingMessage) -> dict:
        return {
            "from": {"email": message.from_email, "name": message.from_name},
            "to": [message.recipient],
            "subject": message.subject,
            "html": message.html_body,
            "attachments": [
                {
                    "filename": att.filename,
                    "content_type": att.content_type,
                    "content_base64": base64.b64encode(att.content.encode("utf-8")).decode("ascii"),
                }
                for att in message.attachments
            ],
        }

    def send(self, message: OutgoingMessage) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            r = self._client.post(self.url, json=self._payload(message), headers=headers)
            r.raise_for_status()
        except httpx.ConnectError as e:
            raise TransientSendFailure("conn_refused") from e
        except httpx.TimeoutException as e:
            raise TransientSendFailure("timeout") from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 429 or code >= 500:
                raise TransientSendFailure(f"http_{code}") from e
            if code == 401:
                raise SendRejected("unauthorized") from e
            if code == 403:
                raise SendRejected("forbidden") from e
            raise SendRejected(f"http_{code}") from e
        except httpx.HTTPError as e:
            raise TransientSendFailure(str(e) or e.__class__.__name__) from e

    def close(self):
        self._client.close()


class LogTransport:
    """Logs messages instead of sending them; keeps them in an outbox"""

    name = "log"

    def __init__(self):
        self.outbox: List[OutgoingMessage] = []

    def send(self, message: OutgoingMessage) -> None:
        self.outbox.append(message)
        logger.info("Mail logged instead of sent", extra={
            "component": "mailer",
            "recipient": message.recipient,
            "subject": message.subject,
            "attachments": [a.filename for a in message.attachments],
        })

    def close(self):
        pass


class Mailer:
    """
    Sends messages through a transport with bounded retries.

    send() never raises for delivery problems: the outcome is returned as a
    SendResult so a caller can log it and move on to the next item.
    """

    def __init__(
        self,
        transport,
        retries: int = MAIL_RETRIES,
        backoff_sec: float = MAIL_RETRY_BACKOFF_SEC,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.retries = max(0, retries)
        self.backoff_sec = backoff_sec
        self._sleep = sleep

    def send(self, message: OutgoingMessage) -> SendResult:
        attempts = 0
        while True:
            attempts += 1
            try:
                self.transport.send(message)
                return SendResult(True, "Sent successfully", attempts)
            except SendRejected as e:
                return SendResult(False, f"Mailer Error: {e.message}", attempts)
            except TransientSendFailure as e:
                if attempts > self.retries:
                    return SendResult(False, f"Mailer Error: {e.message}", attempts)
                logger.warning("Transient send failure, retrying", extra={
                    "component": "mailer",
                    "recipient": message.recipient,
                    "attempt": attempts,
                    "error": e.message,
                })
                self._sleep(self.backoff_sec * attempts)

    def close(self):
        try:
            self.transport.close()
        except Exception as e:
            logger.warning(f"Failed to close mail transport: {e}", extra={"component": "mailer"})


def get_mailer(transport: str = MAIL_TRANSPORT) -> Mailer:
    """Build a Mailer for the configured transport (smtp|http|log)"""
    if transport == "smtp":
        return Mailer(SmtpTransport())
    if transport == "http":
        return Mailer(HttpRelayTransport())
    if transport == "log":
        return Mailer(LogTransport())
    raise ValueError(f"Unknown MAIL_TRANSPORT: {transport}")
