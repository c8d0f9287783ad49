"""
Test configuration for the doctor registration service.
"""
import os
import json
import asyncio

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from datetime import timedelta
from typing import Dict, List, Set, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from doctor_registration.config import Settings
from doctor_registration.core.scheduler import DebounceScheduler
from doctor_registration.database import Base
from doctor_registration.main import app
from doctor_registration.registration.client import RegistrationApiClient
from doctor_registration.registration.persistence import InMemoryDraftStore
from doctor_registration.registration.schemas import RegistrationDraft, utcnow
from doctor_registration.registration.service import RegistrationSessionManager, get_session_manager

BACKEND_URL = "http://registry.test/api"

# In-memory database shared by every connection of the test engine
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

REGISTRY_RECORD = {
    "isValid": True,
    "isVerified": True,
    "doctorName": "JUAN PEREZ",
    "specialty": "CARDIOLOGIA",
    "licenseStatus": "active",
    "verificationSource": "SACS",
}


class FakeRegistrationApi:
    """
    Stand-in for the registration backend, served through httpx.MockTransport.

    Attributes:
        taken: Values reported as already registered, per field
        registry: Registry records by document number
        failures: Endpoint suffix -> HTTP status to return, 0 for a connection error
        calls: (endpoint suffix, JSON body) of every request received
        gates: Endpoint suffix -> event the request waits for before it is answered
        responses: Endpoint suffix -> JSON body returned with status 200 instead of the normal answer
    """
    def __init__(self):
        self.taken: Dict[str, Set[str]] = {"email": set(), "phone": set()}
        self.registry: Dict[str, dict] = {"V-12345678": dict(REGISTRY_RECORD)}
        self.failures: Dict[str, int] = {}
        self.calls: List[Tuple[str, dict]] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.responses: Dict[str, dict] = {}

    def calls_to(self, suffix: str) -> List[dict]:
        return [body for path, body in self.calls if path == suffix]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        suffix = request.url.path[len("/api"):]
        body = json.loads(request.content) if request.content else {}
        self.calls.append((suffix, body))

        gate = self.gates.get(suffix)
        if gate is not None:
            await gate.wait()

        failure = self.failures.get(suffix)
        if failure == 0:
            raise httpx.ConnectError("connection refused", request=request)
        if failure:
            return httpx.Response(failure, json={"error": "service failure"})
        if suffix in self.responses:
            return httpx.Response(200, json=self.responses[suffix])

        if suffix == "/check-availability":
            return httpx.Response(200, json={"available": body["value"] not in self.taken[body["field"]]})
        if suffix == "/license-verification":
            record = self.registry.get(body["documentNumber"])
            if record is None:
                return httpx.Response(200, json={
                    "success": False,
                    "result": {"isValid": False, "isVerified": False},
                    "error": "document not found",
                })
            return httpx.Response(200, json={"success": True, "result": record})
        if suffix == "/register/finalize":
            return httpx.Response(201, json={
                "userId": "user-1",
                "profileId": "profile-1",
                "needsEmailVerification": True,
            })
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def fake_api():
    return FakeRegistrationApi()


@pytest.fixture
def api_client(fake_api):
    return RegistrationApiClient(base_url=BACKEND_URL, transport=httpx.MockTransport(fake_api))


@pytest.fixture
def scheduler():
    return DebounceScheduler()


@pytest.fixture
def store():
    return InMemoryDraftStore()


@pytest.fixture
def fast_settings():
    """Settings with short quiet periods so debounced work fires quickly."""
    return Settings(
        availability_debounce_ms=10,
        verification_debounce_ms=10,
        autosave_debounce_ms=10,
    )


@pytest.fixture(scope="function")
def db_session_factory():
    """
    Create fresh tables for each test and return the session factory.
    """
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def valid_draft():
    """A draft that passes every step."""
    return RegistrationDraft.model_validate({
        "firstName": "JUAN",
        "lastName": "PEREZ",
        "email": "juan.perez@gmail.com",
        "phone": "584141234567",
        "password": "Medico2024!",
        "confirmPassword": "Medico2024!",
        "documentType": "cedula_identidad",
        "documentNumber": "V-12345678",
        "university": "UNIVERSIDAD CENTRAL DE VENEZUELA",
        "graduationYear": 2010,
        "yearsOfExperience": 10,
        "specialty": "CARDIOLOGIA",
        "subSpecialties": ["ECOCARDIOGRAFIA"],
        "workingHours": {
            "monday": {"isWorkingDay": True, "startTime": "08:00", "endTime": "16:00"},
            "tuesday": {"isWorkingDay": False},
        },
        "selectedFeatures": ["appointments", "patients"],
        "verificationResult": {
            "isValid": True,
            "isVerified": True,
            "doctorName": "JUAN PEREZ",
            "specialty": "CARDIOLOGIA",
            "nameMatch": {"matches": True, "confidence": 1.0},
        },
        "identityVerification": {
            "verificationId": "idv-1",
            "status": "verified",
            "verifiedAt": (utcnow() - timedelta(days=1)).isoformat(),
        },
    })


@pytest.fixture
def session_manager(api_client, store, fast_settings):
    return RegistrationSessionManager(api_client, store, settings=fast_settings)


@pytest.fixture(scope="function")
def client(session_manager):
    """
    Create a test client backed by the fake registration backend.
    """
    app.dependency_overrides[get_session_manager] = lambda: session_manager

    with TestClient(app) as client:
        yield client

    app.dependency_overrides = {}
