import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from auth import DEV_JWT_SECRET, JWT_ALGORITHM, JWT_SECRET, load_jwt_secret, require_medical_personnel
from conftest import auth_headers, token_for
from main import app
from mongo import get_db


class BrokenSocket:
    async def send_json(self, data):
        raise RuntimeError("socket closed")


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/medical/dashboard")

        assert response.status_code == 401
        assert response.json() == {"message": "Not authenticated"}

    def test_invalid_token(self, client):
        response = client.get("/api/medical/dashboard", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert response.json() == {"message": "Invalid token"}

    def test_expired_token(self, client, personnel):
        token = jwt.encode(
            {"id": str(personnel["_id"]), "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            JWT_SECRET,
            algorithm=JWT_ALGORITHM,
        )

        response = client.get("/api/medical/dashboard", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"message": "Token expired"}

    def test_token_for_unknown_user(self, client):
        token = jwt.encode({"id": str(ObjectId())}, JWT_SECRET, algorithm=JWT_ALGORITHM)

        response = client.get("/api/medical/dashboard", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_sub_claim_is_accepted(self, client, personnel):
        token = jwt.encode({"sub": str(personnel["_id"])}, JWT_SECRET, algorithm=JWT_ALGORITHM)

        response = client.get("/api/medical/dashboard", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200


class TestInternalErrors:
    @pytest.fixture
    def broken_client(self, personnel):
        db = MagicMock()
        db.__getitem__.side_effect = RuntimeError("connection refused by 10.0.0.5")
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[require_medical_personnel] = lambda: personnel
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()

    @pytest.mark.parametrize("method, path, body, message", [
        ("get", "/api/medical/dashboard", None, "Failed to load dashboard data"),
        ("get", "/api/medical/patients", None, "Failed to get patients"),
        ("get", "/api/medical/analytics", None, "Failed to get analytics"),
        ("post", f"/api/medical/patients/{ObjectId()}/notes", {"content": "x"}, "Failed to add notes"),
    ])
    def test_store_failures_become_generic_500(self, broken_client, method, path, body, message):
        kwargs = {"json": body} if body is not None else {}
        response = getattr(broken_client, method)(path, **kwargs)

        assert response.status_code == 500
        assert response.json() == {"message": message}


class TestNotificationSocket:
    @pytest.fixture
    def live_client(self, db):
        # Real hub from app.state, only the store is swapped
        app.dependency_overrides[get_db] = lambda: db
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()

    def test_rejects_invalid_token(self, live_client):
        with pytest.raises(WebSocketDisconnect):
            with live_client.websocket_connect("/ws?token=garbage") as websocket:
                websocket.receive_json()

    def test_mother_receives_new_appointment(self, live_client, personnel, mother):
        with live_client.websocket_connect(f"/ws?token={token_for(mother)}") as websocket:
            response = live_client.post(
                "/api/medical/appointments",
                json={
                    "motherId": str(mother["_id"]),
                    "appointmentDate": "2030-05-01T10:00:00",
                    "appointmentTime": "10:00",
                    "type": "ultrasound",
                },
                headers=auth_headers(personnel),
            )
            message = websocket.receive_json()

        assert response.status_code == 201
        assert message == {"event": "new-appointment", "data": response.json()["data"]}

    def test_failed_delivery_does_not_fail_the_request(self, live_client, db, personnel, mother):
        channels = app.state.notifier.channels
        channel = str(mother["_id"])

        channels[channel].add(BrokenSocket())
        created = live_client.post(
            "/api/medical/appointments",
            json={
                "motherId": channel,
                "appointmentDate": "2030-05-01T10:00:00",
                "appointmentTime": "10:00",
                "type": "ultrasound",
            },
            headers=auth_headers(personnel),
        )

        assert created.status_code == 201
        assert channel not in channels

        channels[channel].add(BrokenSocket())
        updated = live_client.patch(
            f"/api/medical/appointments/{created.json()['data']['_id']}",
            json={"status": "confirmed"},
            headers=auth_headers(personnel),
        )

        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "confirmed"
        assert channel not in channels


class TestJwtSecret:
    def test_missing_secret_warns_and_uses_development_secret(self, monkeypatch, caplog):
        monkeypatch.delenv("JWT_SECRET", raising=False)

        with caplog.at_level(logging.WARNING):
            secret = load_jwt_secret()

        assert secret == DEV_JWT_SECRET
        assert "JWT_SECRET is not set" in caplog.text

    def test_configured_secret_is_used_silently(self, monkeypatch, caplog):
        monkeypatch.setenv("JWT_SECRET", "a-configured-secret-of-sufficient-length")

        with caplog.at_level(logging.WARNING):
            secret = load_jwt_secret()

        assert secret == "a-configured-secret-of-sufficient-length"
        assert caplog.text == ""
