# trxflow

trxflow is a small set of cooperating services that take a money transfer
through an approval workflow:

1. A client posts a request to the **broker** (`trxflow.broker`).
2. The broker forwards it to the **task service** (`trxflow.task_service`),
   which stores a pending task in a SQL database.
3. When the task is approved, the task service asks the **transaction
   service** (`trxflow.transaction_service`) to run the transfer. On success a
   log message and a mail message are published to a direct AMQP exchange.
4. The **logger service** (`trxflow.logger_service`) consumes log messages and
   writes them to MongoDB.
5. The **mail service** (`trxflow.mail_service`) consumes mail messages and
   sends an e-mail notification over SMTP.

The services talk to each other through `trxflow.rpc`, a line-delimited JSON
RPC protocol over TCP. The task and transaction services each listen on two
ports with two sets of handlers that differ in how they report failures: the
"RPC" handlers raise errors to the caller, the "gRPC-style" handlers mostly
report them inside the response (see below). Both ports speak the same JSON
RPC protocol.

## Installation

```
pip install trxflow
```

For the test suite:

```
pip install "trxflow[test]"
pytest
```

## Running the services

Each service is a separate command, configured through environment variables.

```
trxflow-transaction
trxflow-task
trxflow-broker
trxflow-logger
trxflow-mail
```

Start them roughly in that order. Each command retries its connections a few
times (see `trxflow.retry.retry`) before giving up, but the task service needs
the transaction service and the broker needs the task service. The task and
transaction services create their tables on start-up.

### trxflow-transaction

| Variable | Meaning |
|---|---|
| `DSN` | SQLAlchemy database URL for the `transactions` table |
| `AMQP_URL` | AMQP broker URL |
| `EXCHANGE_NAME` | direct exchange to publish to |
| `LOG_ROUTING_KEY` | routing key for log messages |
| `MAIL_ROUTING_KEY` | routing key for mail messages |
| `MAIL_RECIPIENT` | recipient put in mail messages (default `notify@example.com`) |
| `RPC_HOST`, `RPC_PORT` | address of the RPC listener (service `TransactionRPCServer`) |
| `GRPC_PORT` | port of the gRPC-style listener (service `TransactionService`) |

### trxflow-task

| Variable | Meaning |
|---|---|
| `POSTGRE_DSN` | SQLAlchemy database URL for the `tasks` table |
| `TRANSACTION_RPC_ADDRESS` | `host:port` of the transaction service RPC listener |
| `TRANSACTION_GRPC_ADDRESS` | `host:port` of the transaction service gRPC-style listener |
| `RPC_PORT` | port of the task RPC listener (service `RPCServer`) |
| `GRPC_PORT` | port of the task gRPC-style listener (service `TaskService`) |
| `HTTP_PORT` | port of the HTTP API |

The HTTP API has `GET /all`, which answers with status 202 and
`{"error": false, "message": "Get all task successful", "data": [...]}`
(`data` is `null` when there are no tasks), and `GET /ping`.

### trxflow-broker

| Variable | Meaning |
|---|---|
| `TASK_RPC_ADDRESS` | `host:port` of the task service RPC listener |
| `TASK_GRPC_ADDRESS` | `host:port` of the task service gRPC-style listener |
| `HTTP_PORT` | port of the HTTP API |

### trxflow-logger

| Variable | Meaning |
|---|---|
| `MONGO_DSN` | MongoDB connection string |
| `MONGO_USERNAME`, `MONGO_PASSWORD` | MongoDB credentials (defaults `admin` / `password`) |
| `AMQP_URL` | AMQP broker URL |
| `QUEUE_NAME`, `EXCHANGE_NAME`, `ROUTING_KEY` | where to consume log messages from |

Entries go to the `logs` collection of the `mongo-trx` database, stamped with
`created_at` and `updated_at`. Messages that are not valid JSON, or that fail
to be stored, are rejected without being requeued.

### trxflow-mail

| Variable | Meaning |
|---|---|
| `AMQP_URL` | AMQP broker URL |
| `QUEUE_NAME`, `EXCHANGE_NAME`, `ROUTING_KEY` | where to consume mail messages from |
| `SMTP_HOST`, `SMTP_PORT` | SMTP server; port 465 uses SSL, other ports use STARTTLS when offered |
| `SMTP_USERNAME`, `SMTP_PASSWORD` | SMTP login; no login is attempted without a username |
| `EMAIL_ADDRESS` | sender address, for example `notify@example.com` |

Each e-mail is sent in a background thread with the subject `Hello!` and the
body `Transaction success to <credit account> with amount <amount>`. The
consumer stops at the first message it cannot decode.

## The broker API

All requests go to `POST /handle` with a JSON body:

```json
{
  "action": "rpc-task-create",
  "task": {
    "task_id": 1,
    "data": {
      "amount": 2500,
      "debit_account": "ACC-TEST-001",
      "credit_account": "ACC-TEST-002"
    }
  }
}
```

| Action | Effect |
|---|---|
| `rpc-task-create`, `grpc-task-create` | create a pending transaction task from `task.data` (status 201) |
| `rpc-task-approve`, `grpc-task-approve` | approve task `task.task_id` and run its transaction (status 200) |
| `rpc-task-reject`, `grpc-task-reject` | reject task `task.task_id` (status 200) |

Responses are JSON of the form `{"error": false, "message": "..."}`. An
unreadable body gives status 400 with `invalid body request`; an unknown action
gives 400 with `invalid action`. A failed call to the task service gives
status 500 with the error message. The RPC actions raise on every failure
(missing task, task already decided, transaction or publishing failure), so
they end in 500; the gRPC-style actions get most failures back as a message,
and the broker passes that message on with a success status.

`GET /ping` answers `.` on every service with an HTTP API. Both HTTP APIs
also answer CORS requests from `http://` and `https://` origins.

A task can be approved only while it is still pending; an approved task
cannot be rejected. A transaction succeeds or fails at random, standing in for
a balance check. The RPC transaction handler stores every transaction and
publishes notifications for successful ones; the gRPC-style handler stores
and announces only successful ones.

## Using the pieces directly

The stores and handlers are ordinary Python objects:

```python
from trxflow.tasks import Task, TaskStatus, TaskStore, TransactionData

store = TaskStore("sqlite:///tasks.db")
store.create_schema()
task_id = store.create_task(
    Task(
        type="transaction",
        data=TransactionData(
            amount=2500, debit_account="ACC-TEST-001", credit_account="ACC-TEST-002"
        ),
    )
)
store.approve_task(task_id)
assert store.get_task_by_id(task_id).status == TaskStatus.APPROVED
```

- `trxflow.tasks.TaskStore` and `trxflow.transactions.TransactionStore` wrap
  a SQLAlchemy engine or URL; `trxflow.transactions.execute_transaction`
  runs the simulated transfer.
- `trxflow.task_service.create_app(store)` and
  `trxflow.broker.create_app(rpc_client, grpc_client)` build Flask
  applications; `trxflow.httputil` holds their shared JSON and CORS helpers.
- `trxflow.rpc.RPCServer`, `trxflow.rpc.RPCClient` and `trxflow.rpc.connect`
  are the RPC channel. A call such as `client.call("RPCServer.CreateTask",
  {...})` runs the `create_task` method of the object registered as
  `RPCServer`; remote errors arrive as `trxflow.rpc.RemoteError`.
- `trxflow.publisher.Publisher` publishes `LogMessage` and `MailMessage`
  objects over a pika connection.

## What it does not do

- There is no gRPC or protobuf transport. The endpoints called "gRPC-style"
  above use the same JSON RPC protocol as the others, only with their own
  handlers and port.
- The transaction outcome is random; no account balances are kept or checked.
- Nothing here builds or runs containers; the databases, the AMQP broker and
  the SMTP server must be provided separately.