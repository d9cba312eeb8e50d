"""JSON responses, CORS handling and a heartbeat endpoint for Flask apps."""

from __future__ import annotations

import dataclasses
import json
from typing import Any

from flask import Flask, Response, g, request

ALLOWED_ORIGINS = ("https://*", "http://*")
ALLOWED_METHODS = ("GET", "POST", "DELETE", "PUT", "OPTIONS")
ALLOWED_HEADERS = ("Accept", "Authorization", "Content-Type", "X-CSRF-Token", "Origin")
EXPOSED_HEADERS = ("Link",)
MAX_AGE = 300
HEARTBEAT_PATH = "/ping"


def _jsonable(payload: Any) -> Any:
    to_dict = getattr(payload, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        return dataclasses.asdict(payload)
    return payload


def write_response(payload: Any, status_code: int = 200) -> Response:
    """Build a JSON response with the given status."""
    body = json.dumps(_jsonable(payload), separators=(",", ":"))
    return Response(body, status=status_code, content_type="application/json")


def error_response(message: Any, status_code: int = 400) -> Response:
    """Build the standard ``{"error": true, "message": ...}`` response."""
    return write_response({"error": True, "message": str(message)}, status_code)


def _origin_allowed(origin: str) -> bool:
    origin = origin.lower()
    for pattern in ALLOWED_ORIGINS:
        prefix, star, suffix = pattern.partition("*")
        if not star:
            if origin == pattern:
                return True
        elif (
            len(origin) >= len(prefix) + len(suffix)
            and origin.startswith(prefix)
            and origin.endswith(suffix)
        ):
            return True
    return False


def _headers_allowed(requested: list[str]) -> bool:
    allowed = {header.lower() for header in ALLOWED_HEADERS}
    return all(header.lower() in allowed for header in requested)


def _preflight() -> Response:
    response = Response(status=200)
    response.headers.add("Vary", "Origin")
    response.headers.add("Vary", "Access-Control-Request-Method")
    response.headers.add("Vary", "Access-Control-Request-Headers")

    origin = request.headers.get("Origin", "")
    method = request.headers.get("Access-Control-Request-Method", "").upper()
    requested = [
        header.strip()
        for header in request.headers.get("Access-Control-Request-Headers", "").split(",")
        if header.strip()
    ]
    if (
        not origin
        or not _origin_allowed(origin)
        or method not in ALLOWED_METHODS
        or not _headers_allowed(requested)
    ):
        return response

    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = method
    if requested:
        response.headers["Access-Control-Allow-Headers"] = ", ".join(requested)
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers["Access-Control-Max-Age"] = str(MAX_AGE)
    return response


def configure_app(app: Flask) -> Flask:
    """Install CORS handling and the ``/ping`` heartbeat on ``app``."""

    @app.before_request
    def _cors_preflight_and_heartbeat() -> Response | None:
        if request.method == "OPTIONS" and request.headers.get(
            "Access-Control-Request-Method"
        ):
            g.cors_preflight = True
            return _preflight()
        if request.method in ("GET", "HEAD") and request.path.lower() == HEARTBEAT_PATH:
            return Response(".", status=200, content_type="text/plain")
        return None

    @app.after_request
    def _cors_headers(response: Response) -> Response:
        if g.get("cors_preflight"):
            return response
        response.headers.add("Vary", "Origin")
        origin = request.headers.get("Origin", "")
        if origin and _origin_allowed(origin) and request.method in ALLOWED_METHODS:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Expose-Headers"] = ", ".join(EXPOSED_HEADERS)
        return response

    return app