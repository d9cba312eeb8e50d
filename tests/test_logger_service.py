import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from trxflow.logger_service import LogConsumer, LogEntry, LogStore

FIXED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeCollection:
    def __init__(self, error=None):
        self.documents = []
        self.error = error

    def insert_one(self, document):
        if self.error is not None:
            raise self.error
        self.documents.append(document)


class FakeChannel:
    def __init__(self, deliveries):
        self.deliveries = deliveries
        self.calls = []
        self.acked = []
        self.nacked = []
        self.callback = None

    def exchange_declare(self, **kwargs):
        self.calls.append(("exchange_declare", kwargs))

    def queue_declare(self, **kwargs):
        self.calls.append(("queue_declare", kwargs))

    def queue_bind(self, **kwargs):
        self.calls.append(("queue_bind", kwargs))

    def basic_consume(self, **kwargs):
        self.callback = kwargs.pop("on_message_callback")
        self.calls.append(("basic_consume", kwargs))

    def start_consuming(self):
        for tag, body in enumerate(self.deliveries, start=1):
            self.callback(self, SimpleNamespace(delivery_tag=tag), None, body)

    def basic_ack(self, delivery_tag, multiple=False):
        self.acked.append(delivery_tag)

    def basic_nack(self, delivery_tag, multiple=False, requeue=True):
        self.nacked.append((delivery_tag, requeue))


class FakeConnection:
    def __init__(self, channel):
        self._channel = channel

    def channel(self):
        return self._channel


def _store(collection):
    return LogStore(collection, clock=lambda: FIXED)


def test_insert_one_stamps_times():
    collection = FakeCollection()
    entry = _store(collection).insert_one(LogEntry(name="transaction", data="hello"))
    assert entry.created_at == FIXED
    assert entry.updated_at == FIXED
    assert collection.documents == [
        {"name": "transaction", "data": "hello", "created_at": FIXED, "updated_at": FIXED}
    ]


def test_document_leaves_out_empty_fields():
    document = LogEntry(created_at=FIXED, updated_at=FIXED).to_document()
    assert document == {"created_at": FIXED, "updated_at": FIXED}


def test_from_client_uses_logs_collection():
    collection = FakeCollection()
    store = LogStore.from_client({"mongo-trx": {"logs": collection}}, clock=lambda: FIXED)
    store.insert_one(LogEntry(name="n"))
    assert collection.documents[0]["name"] == "n"


def test_handle_message_round_trip():
    collection = FakeCollection()
    consumer = LogConsumer(_store(collection), None, "logs", "trx", "log")
    body = json.dumps({"name": "transaction", "data": "done", "extra": 1}).encode()
    entry = consumer.handle_message(body)
    assert (entry.name, entry.data) == ("transaction", "done")
    assert collection.documents[0]["data"] == "done"


@pytest.mark.parametrize("body", [b"not json", b"[1]", b'{"name": 3}'])
def test_handle_message_rejects_bad_bodies(body):
    collection = FakeCollection()
    consumer = LogConsumer(_store(collection), None, "logs", "trx", "log")
    with pytest.raises(ValueError):
        consumer.handle_message(body)
    assert collection.documents == []


def test_handle_message_propagates_store_errors():
    consumer = LogConsumer(_store(FakeCollection(RuntimeError("down"))), None, "q", "x", "k")
    with pytest.raises(RuntimeError, match="down"):
        consumer.handle_message(b'{"name": "a"}')


def test_listen_acks_good_and_nacks_bad_messages():
    collection = FakeCollection()
    channel = FakeChannel([b'{"name": "a", "data": "b"}', b"garbage"])
    consumer = LogConsumer(_store(collection), FakeConnection(channel), "logs", "trx", "log")
    consumer.listen()

    assert channel.acked == [1]
    assert channel.nacked == [(2, False)]
    assert len(collection.documents) == 1
    assert [name for name, _ in channel.calls] == [
        "exchange_declare",
        "queue_declare",
        "queue_bind",
        "basic_consume",
    ]
    assert channel.calls[0][1]["exchange_type"] == "direct"
    assert channel.calls[0][1]["durable"] is True
    assert channel.calls[2][1] == {"queue": "logs", "exchange": "trx", "routing_key": "log"}
    assert channel.calls[3][1]["consumer_tag"] == "worker-1"
    assert channel.calls[3][1]["auto_ack"] is False


def test_listen_nacks_when_store_fails():
    channel = FakeChannel([b'{"name": "a"}'])
    store = _store(FakeCollection(RuntimeError("down")))
    LogConsumer(store, FakeConnection(channel), "logs", "trx", "log").listen()
    assert channel.acked == []
    assert channel.nacked == [(1, False)]