from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.domain.service import AuthService
import app.main as main_module
from app.main import app as service_app, build_notifier, build_service
from app.notifications import LoggingNotifier, SmtpNotifier
from app.security.tokens import decode_access_token

from conftest import ISSUER, SECRET, FakeRepository

SIGN_UP = {"email": "u@x.com", "password": "p1", "sourceId": "S1", "userType": "PRIMARY"}


def test_sign_up_returns_created_token(api_client):
    client, _ = api_client
    response = client.post("/v1/signup", json={**SIGN_UP, "firstName": "Una"})

    assert response.status_code == 201
    claims = decode_access_token(
        response.json()["token"], secret=SECRET, issuer=ISSUER, audience="S1"
    )
    assert claims["email"] == "u@x.com"
    assert claims["name"] == "Una"


def test_error_kinds_map_to_stable_statuses(api_client):
    client, _ = api_client
    assert client.post("/v1/signup", json=SIGN_UP).status_code == 201

    conflict = client.post("/v1/signup", json=SIGN_UP)
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["error"] == "ResourceConflict"

    wrong = client.post("/v1/signin", json={"email": "u@x.com", "password": "wrong"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"]["message"] == "Incorrect password"

    missing = client.post("/v1/signin", json={"email": "ghost@x.com", "password": "p1"})
    assert missing.status_code == 404

    invalid = client.post("/v1/signin", json={"email": "u@x.com"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["error"] == "InvalidInput"

    ok = client.post("/v1/signin", json={"email": "u@x.com", "password": "p1"})
    assert ok.status_code == 200
    assert ok.json()["token"]


def test_snake_case_fields_are_accepted(api_client):
    client, _ = api_client
    response = client.post(
        "/v1/signup",
        json={"email": "s@x.com", "password": "p1", "source_id": "S9", "user_type": "ADMIN"},
    )
    assert response.status_code == 201


def test_password_reset_over_http(api_client, notifier):
    client, _ = api_client
    client.post("/v1/signup", json=SIGN_UP)

    started = client.post("/v1/otp", json={"email": "u@x.com", "triggerAction": "RESET_PASSWORD"})
    assert started.status_code == 201
    assert started.json() == {"isSuccess": True}

    blocked = client.post("/v1/signin", json={"email": "u@x.com", "password": "p1"})
    assert blocked.status_code == 401
    assert blocked.json()["detail"]["message"] == "Password update initiated"

    payload = {"email": "u@x.com", "otp": notifier.last_code, "newPassword": "p2"}
    done = client.post("/v1/password", json=payload)
    assert done.status_code == 200
    assert done.json() == {"isSuccess": True}

    replay = client.post("/v1/password", json=payload)
    assert replay.status_code == 400
    assert replay.json()["detail"]["message"] == "Invalid or expired code"

    assert client.post("/v1/signin", json={"email": "u@x.com", "password": "p2"}).status_code == 200


def test_otp_for_unknown_email_hides_existence(api_client):
    client, _ = api_client
    response = client.post(
        "/v1/otp", json={"email": "ghost@x.com", "triggerAction": "RESET_PASSWORD"}
    )
    assert response.status_code == 500
    assert response.json()["detail"] == {
        "error": "InternalError",
        "message": "Error while generating OTP",
        "details": {},
    }


def test_healthz_and_metrics_endpoints():
    client = TestClient(service_app)
    assert client.get("/healthz").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "auth_flow_events_total" in metrics.text


def test_build_service_selects_notifier_backend():
    assert isinstance(build_notifier(Settings(notification_backend="log")), LoggingNotifier)
    assert isinstance(build_notifier(Settings(notification_backend="smtp")), SmtpNotifier)

    service = build_service(Settings(jwt_secret=SECRET, jwt_issuer=ISSUER), FakeRepository())
    token = service.sign_up(
        email="b@x.com", password="p1", source_id="S1", user_type="PRIMARY"
    ).token
    assert decode_access_token(token, secret=SECRET, issuer=ISSUER, audience="S1")["email"] == "b@x.com"


def test_numeric_otp_with_leading_zero_is_accepted(api_client, otp_manager, monkeypatch):
    client, _ = api_client
    client.post("/v1/signup", json=SIGN_UP)
    monkeypatch.setattr(otp_manager, "generate_code", lambda: "012345")
    client.post("/v1/otp", json={"email": "u@x.com", "triggerAction": "UPDATE_PASSWORD"})

    done = client.post("/v1/password", json={"email": "u@x.com", "otp": 12345, "newPassword": "p2"})
    assert done.status_code == 200
    assert done.json() == {"isSuccess": True}


@pytest.mark.parametrize(
    "path, body",
    [
        ("/v1/signin", {"email": "u@x.com", "password": 12345}),
        ("/v1/signup", {**SIGN_UP, "email": None}),
        ("/v1/otp", {"email": ["u@x.com"], "triggerAction": "RESET_PASSWORD"}),
    ],
)
def test_mistyped_bodies_are_invalid_input(api_client, path, body):
    client, _ = api_client
    response = client.post(path, json=body)
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "InvalidInput"
    assert detail["message"] == "Invalid input data"
    assert detail["details"]["fields"]


def test_undecodable_body_is_invalid_input(api_client):
    client, _ = api_client
    response = client.post(
        "/v1/signin", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "InvalidInput"


def test_lifespan_opens_and_closes_the_pool(monkeypatch):
    events = []

    class RecordingPool:
        def __init__(self, conninfo, open):
            events.append(("init", open))

        def open(self):
            events.append("open")

        def close(self):
            events.append("close")

    monkeypatch.setattr(main_module, "ConnectionPool", RecordingPool)
    with TestClient(service_app) as client:
        assert client.get("/healthz").status_code == 200
        assert isinstance(service_app.state.auth_service, AuthService)
    assert events == [("init", False), "open", "close"]
