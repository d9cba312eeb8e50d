"""Task approval and transaction processing services over JSON RPC, HTTP and AMQP."""

__version__ = "0.1.0"