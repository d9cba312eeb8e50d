"""The transaction service: runs approved transfers and announces them."""

from __future__ import annotations

import argparse
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import create_engine

from .publisher import LogMessage, MailMessage, Publisher, connect_amqp
from .retry import retry
from .rpc import RPCServer
from .transactions import (
    Transaction,
    TransactionFailed,
    TransactionStore,
    execute_transaction,
)

log = logging.getLogger(__name__)

DEFAULT_RECIPIENT = "notify@example.com"
RPC_SERVICE_NAME = "TransactionRPCServer"
GRPC_SERVICE_NAME = "TransactionService"


@dataclass
class TransactionResponse:
    error: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class PublishError(Exception):
    """One or more notifications could not be published."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        joined = " ".join(str(error) for error in self.errors)
        super().__init__(f"Publish message failed: [{joined}]")


def _transaction_from(payload: Mapping[str, Any] | None) -> Transaction:
    payload = payload or {}
    return Transaction(
        task_id=int(payload.get("task_id") or 0),
        debit_account=str(payload.get("debit_account") or ""),
        credit_account=str(payload.get("credit_account") or ""),
        amount=int(payload.get("amount") or 0),
    )


def _log_message(transaction: Transaction) -> LogMessage:
    return LogMessage(
        name="transaction",
        data=(
            f"Transaction success to {transaction.credit_account} "
            f"with amount {transaction.amount}"
        ),
    )


def _mail_message(transaction: Transaction, recipient: str) -> MailMessage:
    return MailMessage(
        recipient=recipient,
        debit_account=transaction.debit_account,
        credit_account=transaction.credit_account,
        amount=transaction.amount,
    )


class TransactionRPCHandler:
    """Records every transaction and reports publishing failures to the caller."""

    def __init__(
        self,
        store: TransactionStore,
        publisher: Publisher,
        rng: Any = None,
        recipient: str = DEFAULT_RECIPIENT,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.rng = rng
        self.recipient = recipient

    def create_transaction(self, payload: Mapping[str, Any] | None) -> TransactionResponse:
        transaction = _transaction_from(payload)
        log.info("Transaction (task: %d) is on process....", transaction.task_id)

        try:
            execute_transaction(transaction, self.rng)
            succeeded = True
        except TransactionFailed:
            succeeded = False

        self.store.create(transaction)

        if succeeded:
            errors: list[BaseException] = []
            for publish in (
                lambda: self.publisher.publish_log_message(_log_message(transaction)),
                lambda: self.publisher.publish_mail_message(
                    _mail_message(transaction, self.recipient)
                ),
            ):
                try:
                    publish()
                except Exception as exc:
                    errors.append(exc)
            if errors:
                log.error("error publish message: %s", errors)
                raise PublishError(errors)

        return TransactionResponse(error=False, message="Transaction Created!")


def _spawn_thread(func: Callable[[], None]) -> None:
    threading.Thread(target=func, daemon=True).start()


class TransactionGRPCHandler:
    """Stores only successful transactions and notifies in the background."""

    def __init__(
        self,
        store: TransactionStore,
        publisher: Publisher,
        rng: Any = None,
        recipient: str = DEFAULT_RECIPIENT,
        spawn: Callable[[Callable[[], None]], Any] | None = None,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.rng = rng
        self.recipient = recipient
        self.spawn = spawn or _spawn_thread

    def create_transaction(self, request: Mapping[str, Any] | None) -> TransactionResponse:
        transaction = _transaction_from(request)
        log.info("Transaction (TaskID: %d) is on process", transaction.task_id)

        try:
            execute_transaction(transaction, self.rng)
        except TransactionFailed as exc:
            return TransactionResponse(error=False, message=str(exc))

        self.store.create(transaction)

        self.spawn(
            self._quietly(
                lambda: self.publisher.publish_log_message(_log_message(transaction))
            )
        )
        self.spawn(
            self._quietly(
                lambda: self.publisher.publish_mail_message(
                    _mail_message(transaction, self.recipient)
                )
            )
        )
        return TransactionResponse(error=False, message="transaction successfully")

    @staticmethod
    def _quietly(func: Callable[[], None]) -> Callable[[], None]:
        def run() -> None:
            try:
                func()
            except Exception as exc:
                log.error("Failed to publish message: %s", exc)

        return run


def _connect_store(dsn: str) -> TransactionStore:
    def attempt() -> TransactionStore:
        engine = create_engine(dsn)
        with engine.connect():
            pass
        return TransactionStore(engine)

    return retry(attempt, 5, 3.0, "Database")


def main(argv: Sequence[str] | None = None) -> None:
    """Run the transaction service; configured through the environment."""
    argparse.ArgumentParser(
        description=(
            "Transaction service. Reads DSN, AMQP_URL, EXCHANGE_NAME, "
            "LOG_ROUTING_KEY, MAIL_ROUTING_KEY, MAIL_RECIPIENT, RPC_HOST, "
            "RPC_PORT and GRPC_PORT from the environment."
        )
    ).parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    log.info("Starting Database Connection ...")
    store = _connect_store(os.environ.get("DSN", ""))
    store.create_schema()

    connection = connect_amqp(os.environ.get("AMQP_URL", ""))
    publisher = Publisher(
        connection,
        os.environ.get("EXCHANGE_NAME", ""),
        log_routing_key=os.environ.get("LOG_ROUTING_KEY", ""),
        mail_routing_key=os.environ.get("MAIL_ROUTING_KEY", ""),
    )
    recipient = os.environ.get("MAIL_RECIPIENT", DEFAULT_RECIPIENT)

    rpc_server = RPCServer(
        os.environ.get("RPC_HOST", ""), int(os.environ.get("RPC_PORT", "0"))
    )
    rpc_server.register(
        RPC_SERVICE_NAME, TransactionRPCHandler(store, publisher, recipient=recipient)
    )

    grpc_port = int(os.environ.get("GRPC_PORT", "0"))
    grpc_server = retry(lambda: RPCServer("", grpc_port), 4, 2.0, "gRPC listener")
    grpc_server.register(
        GRPC_SERVICE_NAME, TransactionGRPCHandler(store, publisher, recipient=recipient)
    )

    threading.Thread(target=grpc_server.serve_forever, daemon=True).start()
    try:
        rpc_server.serve_forever()
    finally:
        rpc_server.shutdown()
        grpc_server.shutdown()
        connection.close()


if __name__ == "__main__":
    main()