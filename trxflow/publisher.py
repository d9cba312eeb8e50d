"""Publishing of log and mail notifications to an AMQP exchange."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any

import pika

from .retry import retry

log = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"
EXCHANGE_TYPE = "direct"


def _encode(data: dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


@dataclass
class LogMessage:
    name: str = ""
    data: str = ""

    def to_json(self) -> bytes:
        return _encode(asdict(self))


@dataclass
class MailMessage:
    recipient: str = ""
    debit_account: str = ""
    credit_account: str = ""
    amount: int = 0

    def to_json(self) -> bytes:
        return _encode(asdict(self))

    @classmethod
    def from_json(cls, body: bytes | str) -> "MailMessage":
        """Decode a message body; missing fields keep their zero value."""
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("mail message must be a JSON object")
        values: dict[str, Any] = {}
        for key in ("recipient", "debit_account", "credit_account"):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"field {key!r} must be a string")
            values[key] = value
        amount = data.get("amount")
        if amount is not None:
            if not isinstance(amount, int) or isinstance(amount, bool):
                raise ValueError("field 'amount' must be an integer")
            values["amount"] = amount
        return cls(**values)


class Publisher:
    """Sends JSON messages to a direct exchange over one AMQP connection."""

    def __init__(
        self,
        connection: Any,
        exchange: str,
        log_routing_key: str = "",
        mail_routing_key: str = "",
    ) -> None:
        self.connection = connection
        self.exchange = exchange
        self.log_routing_key = log_routing_key
        self.mail_routing_key = mail_routing_key
        self._lock = threading.Lock()

    def publish_mail_message(self, message: MailMessage) -> None:
        self._publish(self.mail_routing_key, message.to_json())

    def publish_log_message(self, message: LogMessage) -> None:
        self._publish(self.log_routing_key, message.to_json())

    def _publish(self, routing_key: str, body: bytes) -> None:
        with self._lock:
            try:
                channel = self.connection.channel()
            except Exception as exc:
                log.error("Failed to open channel: %s", exc)
                raise
            try:
                channel.exchange_declare(
                    exchange=self.exchange,
                    exchange_type=EXCHANGE_TYPE,
                    durable=True,
                    auto_delete=False,
                    internal=False,
                )
                channel.basic_publish(
                    exchange=self.exchange,
                    routing_key=routing_key,
                    body=body,
                    properties=pika.BasicProperties(content_type=CONTENT_TYPE),
                )
            except Exception as exc:
                log.error("Failed to publish message: %s", exc)
                raise
            finally:
                try:
                    channel.close()
                except Exception:  # noqa: BLE001 - closing is best effort
                    pass


def connect_amqp(url: str, attempts: int = 4, delay: float = 2.0) -> Any:
    """Open a blocking AMQP connection, retrying while the broker starts."""
    return retry(
        lambda: pika.BlockingConnection(pika.URLParameters(url)),
        attempts,
        delay,
        "AMQP",
    )