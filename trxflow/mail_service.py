"""The mail service: e-mails a notification for every successful transaction."""

from __future__ import annotations

import argparse
import logging
import os
import smtplib
import ssl
import threading
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Callable, Mapping, Sequence

from .publisher import EXCHANGE_TYPE, MailMessage, connect_amqp

log = logging.getLogger(__name__)

DEFAULT_TAG = "worker-1"
NOTIFICATION_SUBJECT = "Transaction Notification"
HEADER_SUBJECT = "Hello!"
SMTPS_PORT = 465
SMTP_TIMEOUT = 30.0


def _open_smtp(host: str, port: int) -> Any:
    if port == SMTPS_PORT:
        return smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT)
    return smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT)


@dataclass
class Mailer:
    """One notification e-mail waiting to be sent."""

    to: str = ""
    subject: str = ""
    body: str = ""
    transport: Callable[[str, int], Any] | None = field(
        default=None, repr=False, compare=False
    )

    def _compose(self, sender: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = sender
        message["To"] = self.to
        message["Subject"] = HEADER_SUBJECT
        message.set_content(self.body)
        return message

    def send_email_notification(self, env: Mapping[str, str] | None = None) -> None:
        """Send the e-mail through the SMTP server named in ``env``.

        Reads SMTP_HOST, SMTP_PORT, EMAIL_ADDRESS, SMTP_USERNAME and
        SMTP_PASSWORD. Raises ValueError for a bad port and the SMTP error
        when sending fails.
        """
        env = os.environ if env is None else env
        host = env.get("SMTP_HOST", "")
        try:
            port = int(env.get("SMTP_PORT", ""))
        except ValueError as exc:
            log.error("Failed to convert port: %s", exc)
            raise

        log.info("Sending email to %s ....", self.to)
        message = self._compose(env.get("EMAIL_ADDRESS", ""))
        opener = self.transport or _open_smtp

        try:
            smtp = opener(host, port)
            try:
                if port != SMTPS_PORT:
                    smtp.ehlo()
                    if smtp.has_extn("starttls"):
                        smtp.starttls(context=ssl.create_default_context())
                        smtp.ehlo()
                username = env.get("SMTP_USERNAME", "")
                if username:
                    smtp.login(username, env.get("SMTP_PASSWORD", ""))
                smtp.send_message(message)
            finally:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError):
                    pass
        except Exception as exc:
            log.error("Failed to send email: %s", exc)
            raise

        log.info("Email sent to %s", self.to)


def build_mailer(message: MailMessage) -> Mailer:
    """The notification e-mail for one transaction message."""
    return Mailer(
        to=message.recipient,
        subject=NOTIFICATION_SUBJECT,
        body=(
            f"Transaction success to {message.credit_account} "
            f"with amount {message.amount}"
        ),
    )


def _spawn_thread(func: Callable[[], None]) -> None:
    threading.Thread(target=func, daemon=True).start()


class MailConsumer:
    """Consumes mail messages and sends each e-mail in the background."""

    def __init__(
        self,
        connection: Any,
        queue: str,
        exchange: str,
        routing_key: str,
        tag: str = DEFAULT_TAG,
        env: Mapping[str, str] | None = None,
        transport: Callable[[str, int], Any] | None = None,
        spawn: Callable[[Callable[[], None]], Any] | None = None,
    ) -> None:
        self.connection = connection
        self.queue = queue
        self.exchange = exchange
        self.routing_key = routing_key
        self.tag = tag
        self.env = env
        self.transport = transport
        self.spawn = spawn or _spawn_thread

    def handle_message(self, body: bytes | str) -> Mailer:
        """Decode one message and start sending its e-mail; return the mailer.

        Raises ValueError if the body is not a valid mail message.
        """
        message = MailMessage.from_json(body)
        mailer = build_mailer(message)
        mailer.transport = self.transport
        self.spawn(self._sender(mailer))
        return mailer

    def _sender(self, mailer: Mailer) -> Callable[[], None]:
        def send() -> None:
            try:
                mailer.send_email_notification(self.env)
            except Exception as exc:
                log.error("Sending notification to %s failed: %s", mailer.to, exc)

        return send

    def listen(self) -> None:
        """Declare the exchange and queue, then consume until stopped.

        Consumption stops at the first message that cannot be decoded.
        """
        log.info("Start listening to queue %s ....", self.queue)
        channel = self.connection.channel()
        channel.exchange_declare(
            exchange=self.exchange,
            exchange_type=EXCHANGE_TYPE,
            durable=True,
            auto_delete=False,
            internal=False,
        )
        channel.queue_declare(
            queue=self.queue, durable=False, exclusive=False, auto_delete=False
        )
        channel.queue_bind(
            queue=self.queue, exchange=self.exchange, routing_key=self.routing_key
        )
        channel.basic_consume(
            queue=self.queue,
            on_message_callback=self._on_message,
            auto_ack=True,
            exclusive=False,
            consumer_tag=self.tag,
        )
        channel.start_consuming()

    def _on_message(self, channel: Any, method: Any, properties: Any, body: bytes) -> None:
        try:
            self.handle_message(body)
        except ValueError as exc:
            log.error("Failed to unmarshal message: %s", exc)
            channel.stop_consuming()


def main(argv: Sequence[str] | None = None) -> None:
    """Run the mail service; configured through the environment."""
    argparse.ArgumentParser(
        description=(
            "Mail service. Reads AMQP_URL, QUEUE_NAME, EXCHANGE_NAME, ROUTING_KEY, "
            "SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD and EMAIL_ADDRESS "
            "from the environment."
        )
    ).parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    connection = connect_amqp(os.environ.get("AMQP_URL", ""), 5, 3.0)
    consumer = MailConsumer(
        connection,
        os.environ.get("QUEUE_NAME", ""),
        os.environ.get("EXCHANGE_NAME", ""),
        os.environ.get("ROUTING_KEY", ""),
    )
    try:
        consumer.listen()
    finally:
        connection.close()


if __name__ == "__main__":
    main()