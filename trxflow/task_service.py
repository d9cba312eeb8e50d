"""The task service: keeps transfer requests until they are approved or rejected."""

from __future__ import annotations

import argparse
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from flask import Flask, Response
from sqlalchemy import create_engine

from .httputil import configure_app, error_response, write_response
from .retry import retry
from .rpc import RPCServer, connect
from .tasks import APPROVAL_STEP, Task, TaskStatus, TaskStore, TransactionData
from .transaction_service import GRPC_SERVICE_NAME as TRANSACTION_GRPC_SERVICE
from .transaction_service import RPC_SERVICE_NAME as TRANSACTION_RPC_SERVICE

log = logging.getLogger(__name__)

TASK_TYPE_TRANSACTION = "transaction"
RPC_SERVICE_NAME = "RPCServer"
GRPC_SERVICE_NAME = "TaskService"
ALREADY_DECIDED = "task has been rejected"


class _Caller(Protocol):
    def call(self, method: str, params: Any = None) -> Any: ...


@dataclass
class TaskResponse:
    error: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class InvalidArgument(ValueError):
    """The request names something the service does not handle."""


def _int(value: Any) -> int:
    return int(value or 0)


def _str(value: Any) -> str:
    return str(value or "")


def _transaction_payload(task: Task) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "debit_account": task.data.debit_account,
        "credit_account": task.data.credit_account,
        "amount": task.data.amount,
    }


def _awaiting_approval(task: Task) -> bool:
    return task.status == TaskStatus.PENDING and task.step == APPROVAL_STEP


class TaskRPCHandler:
    """Task operations for RPC callers; failures are raised to the caller."""

    def __init__(self, store: TaskStore, transactions: _Caller) -> None:
        self.store = store
        self.transactions = transactions

    def create_task(self, payload: Mapping[str, Any] | None) -> TaskResponse:
        payload = payload or {}
        task = Task(
            type=TASK_TYPE_TRANSACTION,
            data=TransactionData(
                amount=_int(payload.get("amount")),
                debit_account=_str(payload.get("debit_account")),
                credit_account=_str(payload.get("credit_account")),
            ),
        )
        try:
            self.store.create_task(task)
        except Exception as exc:
            log.error("Failed to make task: %s", exc)
            raise
        return TaskResponse(error=False, message="task created!")

    def reject_task(self, payload: Mapping[str, Any] | None) -> TaskResponse:
        task_id = _int((payload or {}).get("id"))
        task = self.store.get_task_by_id(task_id)
        if task.status == TaskStatus.APPROVED:
            log.warning("Failed to reject transaction, task has been approved")
            raise ValueError(ALREADY_DECIDED)
        self.store.reject_task(task.task_id)
        return TaskResponse(error=False, message="Task rejected!")

    def approve_task(self, payload: Mapping[str, Any] | None) -> TaskResponse:
        task_id = _int((payload or {}).get("id"))
        task = self.store.get_task_by_id(task_id)
        if not _awaiting_approval(task):
            log.warning("Failed to approve task %s, task has been rejected", task.task_id)
            raise ValueError(ALREADY_DECIDED)
        self.store.approve_task(task.task_id)
        try:
            self.transactions.call(
                f"{TRANSACTION_RPC_SERVICE}.CreateTransaction", _transaction_payload(task)
            )
        except Exception as exc:
            log.error("Failed to start transaction: %s", exc)
            raise
        return TaskResponse(error=False, message="Task approved!")


class TaskGRPCHandler:
    """Task operations for gRPC-style callers; failures come back in the response."""

    def __init__(self, store: TaskStore, transactions: _Caller) -> None:
        self.store = store
        self.transactions = transactions

    def create_task(self, request: Mapping[str, Any] | None) -> TaskResponse:
        request = request or {}
        task_type = _str(request.get("type"))
        if task_type != TASK_TYPE_TRANSACTION:
            raise InvalidArgument(f"type '{task_type}' is not available")

        content = (request.get("data") or {}).get("transaction") or {}
        task = Task(
            type=task_type,
            data=TransactionData(
                amount=_int(content.get("amount")),
                debit_account=_str(content.get("debit_account")),
                credit_account=_str(content.get("credit_account")),
            ),
        )
        try:
            self.store.create_task(task)
        except Exception as exc:
            log.error("Failed to add new task to database: %s", exc)
            return TaskResponse(True, f"Failed to add task to database: {exc}")
        log.info("Task created: %s", task)
        return TaskResponse(False, "task created!")

    def approve_task(self, request: Mapping[str, Any] | None) -> TaskResponse:
        task_id = _int((request or {}).get("task_id"))
        try:
            task = self.store.get_task_by_id(task_id)
        except Exception:
            return TaskResponse(True, "Task Not Found!")

        if not _awaiting_approval(task):
            log.warning("Failed to approve task %s, task has been rejected", task.task_id)
            return TaskResponse(True, ALREADY_DECIDED)

        try:
            self.store.approve_task(task.task_id)
        except Exception as exc:
            log.error("Failed to approve task: %s", exc)
            return TaskResponse(True, str(exc))

        try:
            result = self.transactions.call(
                f"{TRANSACTION_GRPC_SERVICE}.CreateTransaction", _transaction_payload(task)
            )
        except Exception as exc:
            log.error("gRPC | Failed to call method CreateTransaction: %s", exc)
            return TaskResponse(True, str(exc))
        log.info("CreateTransaction Response: %s", result)
        return TaskResponse(False, "task approved!")

    def reject_task(self, request: Mapping[str, Any] | None) -> TaskResponse:
        task_id = _int((request or {}).get("task_id"))
        try:
            task = self.store.get_task_by_id(task_id)
        except Exception as exc:
            log.warning("Failed get task: %s", exc)
            return TaskResponse(True, f"Task not found: {exc}")

        if task.status == TaskStatus.APPROVED:
            log.warning("Failed to reject transaction, task has been approved")
            return TaskResponse(True, ALREADY_DECIDED)

        try:
            self.store.reject_task(task.task_id)
        except Exception as exc:
            log.error("Failed to reject task: %s", exc)
            return TaskResponse(True, f"failed to reject task: {exc}")
        return TaskResponse(False, "task rejected!")


def create_app(store: TaskStore) -> Flask:
    """HTTP API listing every task."""
    app = configure_app(Flask(__name__))

    @app.get("/all")
    def get_all_tasks() -> Response:
        try:
            tasks = store.get_all()
        except Exception as exc:
            log.error("Failed to get tasks: %s", exc)
            return error_response("failed to get tasks", 500)
        return write_response(
            {
                "error": False,
                "message": "Get all task successful",
                "data": [task.to_dict() for task in tasks] or None,
            },
            202,
        )

    return app


def _connect_store(dsn: str) -> TaskStore:
    def attempt() -> TaskStore:
        engine = create_engine(dsn)
        with engine.connect():
            pass
        return TaskStore(engine)

    return retry(attempt, 5, 3.0, "Postgre")


def main(argv: Sequence[str] | None = None) -> None:
    """Run the task service; configured through the environment."""
    argparse.ArgumentParser(
        description=(
            "Task service. Reads POSTGRE_DSN, TRANSACTION_RPC_ADDRESS, "
            "TRANSACTION_GRPC_ADDRESS, RPC_PORT, GRPC_PORT and HTTP_PORT "
            "from the environment."
        )
    ).parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    store = _connect_store(os.environ.get("POSTGRE_DSN", ""))
    store.create_schema()

    rpc_transactions = connect(os.environ.get("TRANSACTION_RPC_ADDRESS", ""), 5, 3.0)
    grpc_transactions = connect(os.environ.get("TRANSACTION_GRPC_ADDRESS", ""), 5, 2.0)

    rpc_server = RPCServer("", int(os.environ.get("RPC_PORT", "0")))
    rpc_server.register(RPC_SERVICE_NAME, TaskRPCHandler(store, rpc_transactions))

    grpc_port = int(os.environ.get("GRPC_PORT", "0"))
    grpc_server = retry(lambda: RPCServer("", grpc_port), 4, 2.0, "gRPC listener")
    grpc_server.register(GRPC_SERVICE_NAME, TaskGRPCHandler(store, grpc_transactions))

    threading.Thread(target=rpc_server.serve_forever, daemon=True).start()
    threading.Thread(target=grpc_server.serve_forever, daemon=True).start()

    port = int(os.environ.get("HTTP_PORT", "0"))
    log.info("Starting HTTP on port %s....", port)
    try:
        create_app(store).run(host="0.0.0.0", port=port)
    finally:
        rpc_server.shutdown()
        grpc_server.shutdown()
        rpc_transactions.close()
        grpc_transactions.close()


if __name__ == "__main__":
    main()