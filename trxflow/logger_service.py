"""The logger service: stores log messages received from the message broker."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import pymongo

from .publisher import EXCHANGE_TYPE, connect_amqp

log = logging.getLogger(__name__)

DATABASE_NAME = "mongo-trx"
COLLECTION_NAME = "logs"
USERNAME = "admin"
PASSWORD = "password"
TIMEOUT_MS = 20_000
DEFAULT_TAG = "worker-1"


@dataclass
class LogEntry:
    name: str = ""
    data: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: Any = None

    def to_document(self) -> dict[str, Any]:
        """Document form; an empty id, name or data is left out."""
        document: dict[str, Any] = {}
        if self.id:
            document["_id"] = self.id
        if self.name:
            document["name"] = self.name
        if self.data:
            document["data"] = self.data
        document["created_at"] = self.created_at
        document["updated_at"] = self.updated_at
        return document


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogStore:
    """Log entries kept in a MongoDB collection."""

    def __init__(self, collection: Any, clock: Callable[[], datetime] | None = None) -> None:
        self.collection = collection
        self.clock = clock or _utcnow

    @classmethod
    def from_client(cls, client: Any, clock: Callable[[], datetime] | None = None) -> "LogStore":
        return cls(client[DATABASE_NAME][COLLECTION_NAME], clock)

    def insert_one(self, entry: LogEntry) -> LogEntry:
        """Stamp ``entry`` with the current time, store it and return it."""
        now = self.clock()
        stamped = replace(entry, created_at=now, updated_at=now)
        try:
            self.collection.insert_one(stamped.to_document())
        except Exception as exc:
            log.error("Failed to insert log: %s", exc)
            raise
        return stamped


def _parse_log(body: bytes | str) -> LogEntry:
    payload = json.loads(body)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError("log message must be a JSON object")
    values: dict[str, str] = {}
    for key in ("name", "data"):
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"field {key!r} must be a string")
        values[key] = value
    return LogEntry(**values)


class LogConsumer:
    """Consumes log messages from a queue bound to a direct exchange."""

    def __init__(
        self,
        store: LogStore,
        connection: Any,
        queue: str,
        exchange: str,
        routing_key: str,
        tag: str = DEFAULT_TAG,
    ) -> None:
        self.store = store
        self.connection = connection
        self.queue = queue
        self.exchange = exchange
        self.routing_key = routing_key
        self.tag = tag

    def handle_message(self, body: bytes | str) -> LogEntry:
        """Decode one message body and store it; raise ValueError if malformed."""
        return self._write(_parse_log(body))

    def _write(self, entry: LogEntry) -> LogEntry:
        log.info("message received: %s", entry)
        return self.store.insert_one(entry)

    def listen(self) -> None:
        """Declare the exchange and queue, then consume until stopped."""
        log.info("Start listening to queue: %s....", self.queue)
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
            auto_ack=False,
            exclusive=False,
            consumer_tag=self.tag,
        )
        channel.start_consuming()

    def _on_message(self, channel: Any, method: Any, properties: Any, body: bytes) -> None:
        try:
            entry = _parse_log(body)
        except ValueError as exc:
            log.warning("Invalid message body format: %s", exc)
            channel.basic_nack(delivery_tag=method.delivery_tag, multiple=False, requeue=False)
            return
        try:
            self._write(entry)
        except Exception as exc:
            log.error("Failed to write log: %s", exc)
            channel.basic_nack(delivery_tag=method.delivery_tag, multiple=False, requeue=False)
            return
        channel.basic_ack(delivery_tag=method.delivery_tag, multiple=False)


def connect_mongo(dsn: str, username: str = USERNAME, password: str = PASSWORD) -> Any:
    """Create a MongoDB client for ``dsn`` with the given credentials."""
    log.info("Starting MongoDB Connection ...")
    client = pymongo.MongoClient(
        dsn, username=username, password=password, timeoutMS=TIMEOUT_MS
    )
    log.info("MongoDB connected!")
    return client


def main(argv: Sequence[str] | None = None) -> None:
    """Run the logger service; configured through the environment."""
    argparse.ArgumentParser(
        description=(
            "Logger service. Reads MONGO_DSN, MONGO_USERNAME, MONGO_PASSWORD, "
            "AMQP_URL, QUEUE_NAME, EXCHANGE_NAME and ROUTING_KEY from the environment."
        )
    ).parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    client = connect_mongo(
        os.environ.get("MONGO_DSN", ""),
        os.environ.get("MONGO_USERNAME", USERNAME),
        os.environ.get("MONGO_PASSWORD", PASSWORD),
    )
    store = LogStore.from_client(client)
    connection = connect_amqp(os.environ.get("AMQP_URL", ""), 6, 3.0)
    consumer = LogConsumer(
        store,
        connection,
        os.environ.get("QUEUE_NAME", ""),
        os.environ.get("EXCHANGE_NAME", ""),
        os.environ.get("ROUTING_KEY", ""),
    )
    try:
        consumer.listen()
    finally:
        connection.close()
        client.close()


if __name__ == "__main__":
    main()