"""Transactions, their simulated execution and their storage."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    insert,
    select,
)
from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


@dataclass
class Transaction:
    task_id: int = 0
    debit_account: str = ""
    credit_account: str = ""
    amount: int = 0
    status: int = 0
    transaction_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.transaction_id:
            result["transaction_id"] = self.transaction_id
        result.update(
            task_id=self.task_id,
            debit_account=self.debit_account,
            credit_account=self.credit_account,
            amount=self.amount,
        )
        if self.status:
            result["status"] = self.status
        return result


class TransactionFailed(Exception):
    """The transaction could not be executed."""

    def __init__(self, message: str = "transaction failed: unsufficient balance"):
        super().__init__(message)


class _RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


def execute_transaction(transaction: Transaction, rng: _RandomSource | None = None) -> None:
    """Simulate running ``transaction``: set a random status, raise on failure."""
    source = rng if rng is not None else random
    transaction.status = source.randrange(2)
    if transaction.status == 0:
        raise TransactionFailed()


_metadata = MetaData()

transactions_table = Table(
    "transactions",
    _metadata,
    Column("transaction_id", Integer, primary_key=True, autoincrement=True),
    Column("task_id", Integer, nullable=False),
    Column("debit_account", String(64), nullable=False),
    Column("credit_account", String(64), nullable=False),
    Column("amount", BigInteger, nullable=False),
    Column("status", Integer, nullable=False),
)


class TransactionStore:
    """Transactions kept in the ``transactions`` table of a SQL database."""

    def __init__(self, engine: Engine | str) -> None:
        self._engine = create_engine(engine) if isinstance(engine, str) else engine

    def create_schema(self) -> None:
        _metadata.create_all(self._engine)

    def create(self, transaction: Transaction) -> int:
        """Insert ``transaction`` and return its new id."""
        with self._engine.begin() as conn:
            result = conn.execute(
                insert(transactions_table).values(
                    task_id=transaction.task_id,
                    debit_account=transaction.debit_account,
                    credit_account=transaction.credit_account,
                    amount=transaction.amount,
                    status=transaction.status,
                )
            )
        transaction_id = int(result.inserted_primary_key[0])
        log.info("Insert new transaction successful | id: %d", transaction_id)
        return transaction_id

    def list_transactions(self) -> list[Transaction]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(transactions_table).order_by(transactions_table.c.transaction_id)
            ).all()
        return [
            Transaction(
                transaction_id=row.transaction_id,
                task_id=row.task_id,
                debit_account=row.debit_account,
                credit_account=row.credit_account,
                amount=row.amount,
                status=row.status,
            )
            for row in rows
        ]