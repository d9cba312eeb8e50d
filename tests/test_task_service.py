import threading

import pytest

from trxflow.rpc import RPCClient, RPCServer
from trxflow.task_service import (
    InvalidArgument,
    TaskGRPCHandler,
    TaskResponse,
    TaskRPCHandler,
    create_app,
)
from trxflow.tasks import Task, TaskNotFound, TaskStatus, TaskStore, TransactionData


class FakeTransactions:
    def __init__(self, fail=None):
        self.calls = []
        self.fail = fail

    def call(self, method, params=None):
        self.calls.append((method, params))
        if self.fail is not None:
            raise self.fail
        return {"error": False, "message": "ok"}


@pytest.fixture
def store(tmp_path):
    task_store = TaskStore(f"sqlite:///{tmp_path / 'tasks.db'}")
    task_store.create_schema()
    return task_store


def _new_task(store):
    return store.create_task(
        Task(
            type="transaction",
            data=TransactionData(amount=500, debit_account="A-1", credit_account="B-2"),
        )
    )


def test_rpc_create_task_stores_pending_task(store):
    handler = TaskRPCHandler(store, FakeTransactions())
    response = handler.create_task(
        {"amount": 250, "debit_account": "A-1", "credit_account": "B-2"}
    )
    assert response == TaskResponse(error=False, message="task created!")
    [task] = store.get_all()
    assert task.type == "transaction"
    assert task.status == TaskStatus.PENDING
    assert task.step == 2
    assert task.data == TransactionData(amount=250, debit_account="A-1", credit_account="B-2")


def test_rpc_approve_task_starts_transaction(store):
    task_id = _new_task(store)
    transactions = FakeTransactions()
    response = TaskRPCHandler(store, transactions).approve_task({"id": task_id})
    assert response.message == "Task approved!"
    assert store.get_task_by_id(task_id).status == TaskStatus.APPROVED
    assert transactions.calls == [
        (
            "TransactionRPCServer.CreateTransaction",
            {"task_id": task_id, "debit_account": "A-1", "credit_account": "B-2", "amount": 500},
        )
    ]


def test_rpc_approve_rejected_task_fails(store):
    task_id = _new_task(store)
    store.reject_task(task_id)
    transactions = FakeTransactions()
    with pytest.raises(ValueError, match="task has been rejected"):
        TaskRPCHandler(store, transactions).approve_task({"id": task_id})
    assert transactions.calls == []


def test_rpc_approve_missing_task(store):
    with pytest.raises(TaskNotFound):
        TaskRPCHandler(store, FakeTransactions()).approve_task({"id": 99})


def test_rpc_approve_transaction_failure_raises(store):
    task_id = _new_task(store)
    handler = TaskRPCHandler(store, FakeTransactions(fail=ConnectionError("down")))
    with pytest.raises(ConnectionError):
        handler.approve_task({"id": task_id})
    assert store.get_task_by_id(task_id).status == TaskStatus.APPROVED


def test_rpc_reject_task(store):
    task_id = _new_task(store)
    response = TaskRPCHandler(store, FakeTransactions()).reject_task({"id": task_id})
    assert response.message == "Task rejected!"
    assert store.get_task_by_id(task_id).status == TaskStatus.REJECTED


def test_rpc_reject_approved_task_fails(store):
    task_id = _new_task(store)
    store.approve_task(task_id)
    with pytest.raises(ValueError, match="task has been rejected"):
        TaskRPCHandler(store, FakeTransactions()).reject_task({"id": task_id})
    assert store.get_task_by_id(task_id).status == TaskStatus.APPROVED


def test_grpc_create_task(store):
    handler = TaskGRPCHandler(store, FakeTransactions())
    response = handler.create_task(
        {
            "type": "transaction",
            "data": {"transaction": {"amount": 75, "debit_account": "A-1", "credit_account": "B-2"}},
        }
    )
    assert response == TaskResponse(False, "task created!")
    [task] = store.get_all()
    assert task.data.amount == 75


def test_grpc_create_unknown_type(store):
    with pytest.raises(InvalidArgument, match="type 'loan' is not available"):
        TaskGRPCHandler(store, FakeTransactions()).create_task({"type": "loan"})
    assert store.get_all() == []


def test_grpc_create_database_failure(tmp_path):
    broken = TaskStore(f"sqlite:///{tmp_path / 'empty.db'}")
    response = TaskGRPCHandler(broken, FakeTransactions()).create_task({"type": "transaction"})
    assert response.error is True
    assert response.message.startswith("Failed to add task to database: ")


def test_grpc_approve_task(store):
    task_id = _new_task(store)
    transactions = FakeTransactions()
    response = TaskGRPCHandler(store, transactions).approve_task({"task_id": task_id})
    assert response == TaskResponse(False, "task approved!")
    assert transactions.calls[0][0] == "TransactionService.CreateTransaction"
    assert store.get_task_by_id(task_id).status == TaskStatus.APPROVED


def test_grpc_approve_missing_task(store):
    response = TaskGRPCHandler(store, FakeTransactions()).approve_task({"task_id": 7})
    assert response == TaskResponse(True, "Task Not Found!")


def test_grpc_approve_twice(store):
    task_id = _new_task(store)
    handler = TaskGRPCHandler(store, FakeTransactions())
    handler.approve_task({"task_id": task_id})
    assert handler.approve_task({"task_id": task_id}) == TaskResponse(True, "task has been rejected")


def test_grpc_approve_transaction_failure(store):
    task_id = _new_task(store)
    handler = TaskGRPCHandler(store, FakeTransactions(fail=ConnectionError("down")))
    assert handler.approve_task({"task_id": task_id}) == TaskResponse(True, "down")


def test_grpc_reject_task(store):
    task_id = _new_task(store)
    response = TaskGRPCHandler(store, FakeTransactions()).reject_task({"task_id": task_id})
    assert response == TaskResponse(False, "task rejected!")
    assert store.get_task_by_id(task_id).status == TaskStatus.REJECTED


def test_grpc_reject_missing_task(store):
    response = TaskGRPCHandler(store, FakeTransactions()).reject_task({"task_id": 3})
    assert response.error is True
    assert response.message.startswith("Task not found: ")


def test_grpc_reject_approved_task(store):
    task_id = _new_task(store)
    store.approve_task(task_id)
    response = TaskGRPCHandler(store, FakeTransactions()).reject_task({"task_id": task_id})
    assert response == TaskResponse(True, "task has been rejected")


def test_http_get_all(store):
    task_id = _new_task(store)
    client = create_app(store).test_client()
    response = client.get("/all")
    assert response.status_code == 202
    body = response.get_json()
    assert body["error"] is False
    assert body["message"] == "Get all task successful"
    assert body["data"] == [store.get_task_by_id(task_id).to_dict()]


def test_http_get_all_empty(store):
    body = create_app(store).test_client().get("/all").get_json()
    assert body["data"] is None


def test_http_get_all_failure(tmp_path):
    broken = TaskStore(f"sqlite:///{tmp_path / 'empty.db'}")
    response = create_app(broken).test_client().get("/all")
    assert response.status_code == 500
    assert response.get_json() == {"error": True, "message": "failed to get tasks"}


def test_http_ping(store):
    response = create_app(store).test_client().get("/ping")
    assert response.status_code == 200
    assert response.data == b"."


def test_rpc_handler_over_the_wire(store):
    server = RPCServer("127.0.0.1", 0)
    server.register("RPCServer", TaskRPCHandler(store, FakeTransactions()))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        with RPCClient(server.address, timeout=5) as client:
            result = client.call(
                "RPCServer.CreateTask",
                {"amount": 10, "debit_account": "A-1", "credit_account": "B-2"},
            )
    finally:
        server.shutdown()
    assert result == {"error": False, "message": "task created!"}
    assert len(store.get_all()) == 1