"""
Shared fixtures: an in-memory MongoDB (mongomock), a recording notification
hub, signed tokens and small document factories.
"""

from datetime import datetime

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import JWT_ALGORITHM, JWT_SECRET, MEDICAL_PERSONNEL, MOTHER
from main import app
from mongo import APPOINTMENTS, PREGNANCY_RECORDS, USERS, get_db
from notifications import NotificationHub, get_notifier


class RecordingHub(NotificationHub):
    def __init__(self):
        super().__init__()
        self.events = []

    async def emit(self, channel, event, data):
        self.events.append((channel, event, data))


@pytest.fixture
def db():
    return mongomock.MongoClient()["MaternalCareTest"]


@pytest.fixture
def notifier():
    return RecordingHub()


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def token_for(user):
    return jwt.encode({"id": str(user["_id"])}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


def create_user(db, role, **fields):
    user = {
        "firstName": "Test",
        "lastName": role.title(),
        "email": f"{role}-{datetime.now().timestamp()}@example.com",
        "phone": "+15550100",
        "password": "$2b$10$hashedsecret",
        "role": role,
        **fields,
    }
    user["_id"] = db[USERS].insert_one(user).inserted_id
    return user


@pytest.fixture
def personnel(db):
    return create_user(db, MEDICAL_PERSONNEL, firstName="Ada", lastName="Okafor", specialization="Obstetrics")


@pytest.fixture
def other_personnel(db):
    return create_user(db, MEDICAL_PERSONNEL, firstName="Ben", lastName="Mensah", specialization="Midwifery")


@pytest.fixture
def mother(db):
    return create_user(
        db,
        MOTHER,
        firstName="Grace",
        lastName="Adeyemi",
        profileImage="grace.png",
        dueDate=datetime(2027, 1, 15),
        pregnancyStage="second_trimester",
    )


def create_appointment(db, mother, personnel, appointment_date, **fields):
    appointment = {
        "motherId": mother["_id"],
        "medicalPersonnelId": personnel["_id"],
        "appointmentDate": appointment_date,
        "appointmentTime": appointment_date.strftime("%H:%M"),
        "type": "checkup",
        "status": "scheduled",
        "createdAt": datetime.now(),
        **fields,
    }
    appointment["_id"] = db[APPOINTMENTS].insert_one(appointment).inserted_id
    return appointment


def create_pregnancy_record(db, mother, **fields):
    record = {"motherId": mother["_id"], "notes": [], "medications": [], **fields}
    record["_id"] = db[PREGNANCY_RECORDS].insert_one(record).inserted_id
    return record
