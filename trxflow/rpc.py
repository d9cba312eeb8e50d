"""A small line-delimited JSON RPC protocol over TCP.

Requests look like ``{"id": 1, "method": "Service.Method", "params": ...}``
and responses like ``{"id": 1, "result": ..., "error": null}``. Method names
are given in CamelCase and dispatched to the snake_case method of the object
registered under the service name.
"""

from __future__ import annotations

import dataclasses
import itertools
import json
import logging
import re
import socket
import socketserver
import threading
from typing import Any

from .retry import retry

log = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class RemoteError(Exception):
    """An error reported by the remote side of a call."""


def _method_name(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def _split_address(address: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(address, tuple):
        return address
    host, _, port = address.rpartition(":")
    return host or "localhost", int(port)


class _ThreadingServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True
    rpc: "RPCServer"


class _ConnectionHandler(socketserver.StreamRequestHandler):
    server: _ThreadingServer

    def handle(self) -> None:
        for line in self.rfile:
            line = line.strip()
            if not line:
                continue
            response = self.server.rpc._dispatch(line)
            self.wfile.write(json.dumps(response).encode("utf-8") + b"\n")
            self.wfile.flush()


class RPCServer:
    """Serves registered objects to RPC clients, one thread per connection."""

    def __init__(self, host: str = "", port: int = 0) -> None:
        self._services: dict[str, Any] = {}
        self._server = _ThreadingServer((host, port), _ConnectionHandler)
        self._server.rpc = self
        self._started = False

    @property
    def address(self) -> tuple[str, int]:
        host, port = self._server.server_address[:2]
        return host, port

    def register(self, name: str, obj: Any) -> None:
        """Publish the public methods of ``obj`` under the service ``name``."""
        if name in self._services:
            raise ValueError(f"rpc: service already defined: {name}")
        self._services[name] = obj

    def _dispatch(self, raw: bytes) -> dict[str, Any]:
        try:
            request = json.loads(raw)
            request_id = request.get("id")
            full_name = request["method"]
        except (ValueError, TypeError, KeyError, AttributeError):
            return {"id": None, "result": None, "error": "rpc: invalid request"}

        service_name, dot, method = str(full_name).rpartition(".")
        if not dot:
            return self._error(
                request_id, f"rpc: service/method request ill-formed: {full_name}"
            )
        service = self._services.get(service_name)
        if service is None:
            return self._error(request_id, f"rpc: can't find service {full_name}")
        func = None
        if not method.startswith("_"):
            func = getattr(service, _method_name(method), None)
        if not callable(func):
            return self._error(request_id, f"rpc: can't find method {full_name}")

        try:
            result = func(request.get("params"))
        except Exception as exc:
            log.info("RPC | %s failed: %s", full_name, exc)
            return self._error(request_id, str(exc) or type(exc).__name__)
        return {"id": request_id, "result": _jsonable(result), "error": None}

    @staticmethod
    def _error(request_id: Any, message: str) -> dict[str, Any]:
        return {"id": request_id, "result": None, "error": message}

    def serve_forever(self) -> None:
        """Accept connections until :meth:`shutdown` is called."""
        self._started = True
        log.info("Starting RPC on %s:%s ....", *self.address)
        self._server.serve_forever()

    def shutdown(self) -> None:
        """Stop serving and close the listening socket."""
        if self._started:
            self._server.shutdown()
        self._server.server_close()


class RPCClient:
    """A connection to an :class:`RPCServer`; safe to share between threads."""

    def __init__(self, address: str | tuple[str, int], timeout: float | None = None):
        self._sock = socket.create_connection(_split_address(address), timeout=timeout)
        self._file = self._sock.makefile("rwb")
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._closed = False

    def call(self, method: str, params: Any = None) -> Any:
        """Call ``Service.Method`` with ``params`` and return its result."""
        request = {"id": next(self._ids), "method": method, "params": _jsonable(params)}
        with self._lock:
            if self._closed:
                raise ConnectionError("connection is shut down")
            self._file.write(json.dumps(request).encode("utf-8") + b"\n")
            self._file.flush()
            line = self._file.readline()
        if not line:
            raise ConnectionError("connection is shut down")
        response = json.loads(line)
        if response.get("error"):
            raise RemoteError(response["error"])
        return response.get("result")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._file.close()
            self._sock.close()

    def __enter__(self) -> "RPCClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def connect(
    address: str | tuple[str, int], attempts: int = 10, delay: float = 2.0
) -> RPCClient:
    """Connect to an RPC server, retrying while it is not yet reachable."""
    return retry(lambda: RPCClient(address), attempts, delay, f"RPC {address}")