"""Approval tasks and their storage."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

APPROVAL_STEP = 2


class TaskStatus(enum.IntEnum):
    PENDING = 0
    APPROVED = 1
    REJECTED = 2


def _typed(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"field {key!r} must be of type {kind.__name__}")
    return value


@dataclass
class TransactionData:
    """The transfer a task asks to approve."""

    amount: int = 0
    status: int = 0
    debit_account: str = ""
    credit_account: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON form; zero values are left out."""
        fields = (
            ("amount", self.amount),
            ("status", self.status),
            ("debit_account", self.debit_account),
            ("credit_account", self.credit_account),
        )
        return {key: value for key, value in fields if value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "TransactionData":
        data = data or {}
        return cls(
            amount=_typed(data, "amount", int, 0),
            status=_typed(data, "status", int, 0),
            debit_account=_typed(data, "debit_account", str, ""),
            credit_account=_typed(data, "credit_account", str, ""),
        )


@dataclass
class Task:
    task_id: int = 0
    type: str = ""
    data: TransactionData = field(default_factory=TransactionData)
    status: int = TaskStatus.PENDING
    step: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "type": self.type,
            "data": self.data.to_dict(),
            "status": int(self.status),
            "step": self.step,
        }


class TaskNotFound(LookupError):
    """No task has the requested id."""


_metadata = MetaData()

tasks_table = Table(
    "tasks",
    _metadata,
    Column("task_id", Integer, primary_key=True, autoincrement=True),
    Column("type", String(64), nullable=False),
    Column("data", Text, nullable=False),
    Column("status", Integer, nullable=False, default=0),
    Column("step", Integer, nullable=False, default=0),
)


def _decode_data(raw: Any) -> TransactionData:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        raw = bytes(raw).decode("utf-8")
    if isinstance(raw, str):
        raw = json.loads(raw)
    return TransactionData.from_dict(raw)


class TaskStore:
    """Tasks kept in the ``tasks`` table of a SQL database."""

    def __init__(self, engine: Engine | str) -> None:
        self._engine = create_engine(engine) if isinstance(engine, str) else engine

    def create_schema(self) -> None:
        _metadata.create_all(self._engine)

    def create_task(self, task: Task) -> int:
        """Insert ``task`` as pending at the approval step; return its id."""
        payload = json.dumps(task.data.to_dict(), separators=(",", ":"))
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(tasks_table).values(
                    type=task.type,
                    data=payload,
                    status=int(TaskStatus.PENDING),
                    step=APPROVAL_STEP,
                )
            )
        task_id = int(result.inserted_primary_key[0])
        log.info("Data inserted | task id: %d", task_id)
        return task_id

    def _set_state(self, task_id: int, **values: int) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(tasks_table).where(tasks_table.c.task_id == task_id).values(**values)
            )
        log.info("Task updated | rows affected: %d", result.rowcount)
        return result.rowcount

    def approve_task(self, task_id: int) -> int:
        """Mark the task approved; return the number of rows changed."""
        return self._set_state(task_id, status=int(TaskStatus.APPROVED), step=APPROVAL_STEP)

    def reject_task(self, task_id: int) -> int:
        """Mark the task rejected; return the number of rows changed."""
        return self._set_state(task_id, status=int(TaskStatus.REJECTED))

    @staticmethod
    def _row_to_task(row: Any) -> Task:
        return Task(
            task_id=row.task_id,
            type=row.type,
            data=_decode_data(row.data),
            status=row.status,
            step=row.step,
        )

    def get_task_by_id(self, task_id: int) -> Task:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(tasks_table).where(tasks_table.c.task_id == task_id)
            ).first()
        if row is None:
            raise TaskNotFound(f"no task with id {task_id}")
        return self._row_to_task(row)

    def get_all(self) -> list[Task]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(tasks_table).order_by(tasks_table.c.task_id)).all()
        return [self._row_to_task(row) for row in rows]