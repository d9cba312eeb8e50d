"""The broker service: one HTTP entry point that forwards to the task service."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence

from flask import Flask, Response, request

from .httputil import configure_app, error_response, write_response
from .rpc import connect
from .task_service import GRPC_SERVICE_NAME as TASK_GRPC_SERVICE
from .task_service import RPC_SERVICE_NAME as TASK_RPC_SERVICE
from .task_service import TASK_TYPE_TRANSACTION, TaskResponse
from .tasks import TransactionData

log = logging.getLogger(__name__)


class _Caller(Protocol):
    def call(self, method: str, params: Any = None) -> Any: ...


class TaskGRPCClient:
    """Typed access to the task service's gRPC-style endpoint."""

    def __init__(self, caller: _Caller) -> None:
        self.caller = caller

    def _call(self, method: str, request_payload: Mapping[str, Any]) -> TaskResponse:
        result = self.caller.call(f"{TASK_GRPC_SERVICE}.{method}", dict(request_payload))
        result = result or {}
        return TaskResponse(
            error=bool(result.get("error")), message=str(result.get("message") or "")
        )

    def create_task(self, request: Mapping[str, Any]) -> TaskResponse:
        return self._call("CreateTask", request)

    def approve_task(self, request: Mapping[str, Any]) -> TaskResponse:
        return self._call("ApproveTask", request)

    def reject_task(self, request: Mapping[str, Any]) -> TaskResponse:
        return self._call("RejectTask", request)


@dataclass
class _Submission:
    action: str
    task_id: int
    data: TransactionData


def _parse_submission(raw: bytes) -> _Submission:
    payload = json.loads(raw)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")

    action = payload.get("action")
    if action is None:
        action = ""
    if not isinstance(action, str):
        raise ValueError("field 'action' must be a string")

    task = payload.get("task")
    if task is None:
        task = {}
    if not isinstance(task, dict):
        raise ValueError("field 'task' must be an object")

    task_id = task.get("task_id")
    if task_id is None:
        task_id = 0
    if not isinstance(task_id, int) or isinstance(task_id, bool):
        raise ValueError("field 'task_id' must be an integer")

    data = task.get("data")
    if data is not None and not isinstance(data, dict):
        raise ValueError("field 'data' must be an object")

    return _Submission(action, task_id, TransactionData.from_dict(data))


def _success(message: str, status_code: int) -> Response:
    return write_response({"error": False, "message": message}, status_code)


def create_app(rpc_client: _Caller, grpc_client: TaskGRPCClient) -> Flask:
    """HTTP API that dispatches submitted actions to the task service."""
    app = configure_app(Flask(__name__))

    def rpc_call(method: str, params: Mapping[str, Any]) -> Any:
        full_name = f"{TASK_RPC_SERVICE}.{method}"
        try:
            return rpc_client.call(full_name, dict(params)) or {}
        except Exception as exc:
            log.error("error while call %s: %s", full_name, exc)
            raise

    def rpc_create(sub: _Submission) -> Response:
        result = rpc_call(
            "CreateTask",
            {
                "amount": sub.data.amount,
                "debit_account": sub.data.debit_account,
                "credit_account": sub.data.credit_account,
            },
        )
        return _success(str(result.get("message") or ""), 201)

    def grpc_create(sub: _Submission) -> Response:
        response = grpc_client.create_task(
            {
                "type": TASK_TYPE_TRANSACTION,
                "data": {
                    "transaction": {
                        "amount": sub.data.amount,
                        "debit_account": sub.data.debit_account,
                        "credit_account": sub.data.credit_account,
                    }
                },
            }
        )
        return _success(response.message, 201)

    def rpc_approve(sub: _Submission) -> Response:
        rpc_call("ApproveTask", {"id": sub.task_id})
        return _success("approve task successful", 200)

    def grpc_approve(sub: _Submission) -> Response:
        response = grpc_client.approve_task({"task_id": sub.task_id})
        return _success(response.message, 200)

    def rpc_reject(sub: _Submission) -> Response:
        rpc_call("RejectTask", {"id": sub.task_id})
        return _success("task Rejected!", 200)

    def grpc_reject(sub: _Submission) -> Response:
        response = grpc_client.reject_task({"task_id": sub.task_id})
        return _success(response.message, 200)

    actions: dict[str, Callable[[_Submission], Response]] = {
        "rpc-task-create": rpc_create,
        "grpc-task-create": grpc_create,
        "rpc-task-approve": rpc_approve,
        "grpc-task-approve": grpc_approve,
        "rpc-task-reject": rpc_reject,
        "grpc-task-reject": grpc_reject,
    }

    @app.post("/handle")
    def handle_submission() -> Response:
        try:
            submission = _parse_submission(request.get_data())
        except ValueError as exc:
            log.warning("Failed to read body request: %s", exc)
            return error_response("invalid body request", 400)

        handler = actions.get(submission.action)
        if handler is None:
            log.warning("invalid handle action")
            return error_response("invalid action", 400)

        try:
            return handler(submission)
        except Exception as exc:
            log.error("%s failed: %s", submission.action, exc)
            return error_response(exc, 500)

    return app


def main(argv: Sequence[str] | None = None) -> None:
    """Run the broker service; configured through the environment."""
    argparse.ArgumentParser(
        description=(
            "Broker service. Reads TASK_RPC_ADDRESS, TASK_GRPC_ADDRESS and "
            "HTTP_PORT from the environment."
        )
    ).parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    rpc_client = connect(os.environ.get("TASK_RPC_ADDRESS", ""), 10, 2.0)
    grpc_caller = connect(os.environ.get("TASK_GRPC_ADDRESS", ""), 5, 2.0)

    port = int(os.environ.get("HTTP_PORT", "0"))
    log.info("Starting HTTP on port %s....", port)
    try:
        create_app(rpc_client, TaskGRPCClient(grpc_caller)).run(host="0.0.0.0", port=port)
    finally:
        rpc_client.close()
        grpc_caller.close()


if __name__ == "__main__":
    main()