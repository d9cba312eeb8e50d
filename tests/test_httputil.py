import dataclasses
import json

import pytest
from flask import Flask

from trxflow.httputil import configure_app, error_response, write_response


@dataclasses.dataclass
class Reply:
    error: bool
    message: str


@pytest.fixture
def client():
    app = Flask(__name__)

    @app.post("/handle")
    def handle():
        return write_response({"error": False, "message": "handled"}, 201)

    configure_app(app)
    return app.test_client()


def test_write_response_dict():
    response = write_response({"error": False, "message": "ok"}, 202)
    assert response.status_code == 202
    assert response.content_type == "application/json"
    assert json.loads(response.get_data()) == {"error": False, "message": "ok"}


def test_write_response_dataclass():
    response = write_response(Reply(False, "done"), 200)
    assert json.loads(response.get_data()) == {"error": False, "message": "done"}


def test_error_response_shape():
    response = error_response("invalid action", 400)
    assert response.status_code == 400
    assert json.loads(response.get_data()) == {"error": True, "message": "invalid action"}


def test_error_response_accepts_exception():
    response = error_response(ValueError("invalid body request"), 500)
    assert response.status_code == 500
    assert json.loads(response.get_data())["message"] == "invalid body request"


def test_heartbeat(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "."
    assert response.mimetype == "text/plain"


def test_heartbeat_only_for_get_and_head(client):
    assert client.post("/ping").status_code == 404


def test_route_still_served(client):
    response = client.post("/handle")
    assert response.status_code == 201
    assert json.loads(response.get_data())["message"] == "handled"


def test_cors_headers_for_allowed_origin(client):
    response = client.post("/handle", headers={"Origin": "http://example.com"})
    assert response.headers["Access-Control-Allow-Origin"] == "http://example.com"
    assert response.headers["Access-Control-Allow-Credentials"] == "true"
    assert response.headers["Access-Control-Expose-Headers"] == "Link"


def test_cors_headers_absent_for_other_scheme(client):
    response = client.post("/handle", headers={"Origin": "ftp://example.com"})
    assert "Access-Control-Allow-Origin" not in response.headers
    assert response.status_code == 201


def test_preflight_allowed(client):
    response = client.options(
        "/handle",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "https://example.com"
    assert response.headers["Access-Control-Allow-Methods"] == "POST"
    assert response.headers["Access-Control-Allow-Headers"] == "Content-Type"
    assert response.headers["Access-Control-Max-Age"] == "300"


def test_preflight_disallowed_method(client):
    response = client.options(
        "/handle",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "PATCH",
        },
    )
    assert response.status_code == 200
    assert "Access-Control-Allow-Origin" not in response.headers


def test_preflight_disallowed_header(client):
    response = client.options(
        "/handle",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "X-Custom",
        },
    )
    assert "Access-Control-Allow-Origin" not in response.headers