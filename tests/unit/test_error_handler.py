"""
Unit tests for exception-to-HTTP mapping.

WHAT: Test status codes and error body shape
WHY: Clients branch on status (401 means re-authenticate)
HOW: Minimal FastAPI app raising each engine exception
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from swapchat.middleware.error_handler import register_exception_handlers, status_for
from swapchat.utils.exceptions import (
    Conflict,
    Forbidden,
    NetworkFailure,
    NetworkTimeout,
    NotFound,
    Unauthorized,
    ValidationError,
)


@pytest.mark.unit
@pytest.mark.parametrize("exc, expected", [
    (NotFound("proposal", "3"), 404),
    (Unauthorized(), 401),
    (Forbidden("respond", "not the seller"), 403),
    (Conflict("already accepted"), 409),
    (ValidationError("bad"), 400),
    (NetworkTimeout("send message", 10), 504),
    (NetworkFailure("down", 503), 502),
])
def test_status_for(exc, expected):
    assert status_for(exc) == expected


@pytest.mark.unit
def test_error_body_shape():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/boom")
    async def boom():
        raise NotFound("exchange", "9")

    response = TestClient(app).get("/boom")

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "EXCHANGE_NOT_FOUND"
    assert body["message"] == "Exchange not found: 9"
    assert body["details"] == {"exchange_id": "9"}
    assert "timestamp" in body


@pytest.mark.unit
def test_unauthorized_tells_client_to_reauthenticate():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/private")
    async def private():
        raise Unauthorized()

    response = TestClient(app).get("/private")

    assert response.status_code == 401
    assert response.json()["details"] == {"action": "REAUTHENTICATE"}
