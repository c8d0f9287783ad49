"""
Tests for the registration session endpoints.
"""
import time

import pytest

from doctor_registration.registration.steps import STEP_ORDER

PREFIX = "/api/v1/registration"


def wait_for(client, session_id, predicate, timeout=2.0):
    """Poll the session state until predicate holds."""
    deadline = time.monotonic() + timeout
    while True:
        state = client.get(f"{PREFIX}/sessions/{session_id}").json()
        if predicate(state) or time.monotonic() > deadline:
            return state
        time.sleep(0.02)


@pytest.fixture
def session_id(client):
    response = client.post(f"{PREFIX}/sessions")
    assert response.status_code == 201
    return response.json()["sessionId"]


def load_draft(session_manager, session_id, draft, step="final_review"):
    coordinator = session_manager.get_session(session_id)
    coordinator.draft = draft
    for completed in STEP_ORDER[:STEP_ORDER.index(step)]:
        coordinator.state_machine.mark_completed(completed)
    coordinator.state_machine.restore(coordinator.progress.model_copy(update={"current_step": step}))
    return coordinator


def test_create_session(client):
    response = client.post(f"{PREFIX}/sessions")
    assert response.status_code == 201
    data = response.json()
    assert data["progress"]["currentStep"] == "personal_info"
    assert data["progress"]["totalSteps"] == 7
    assert data["route"] == "/auth/register/doctor"
    assert data["gate"]["canSubmit"] is False
    assert data["verification"]["status"] == "idle"


def test_unknown_session_returns_404(client):
    response = client.get(f"{PREFIX}/sessions/{'0' * 32}")
    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


def test_update_data_hides_passwords(client, session_id):
    response = client.patch(f"{PREFIX}/sessions/{session_id}/data", json={
        "firstName": "juan",
        "password": "Medico2024!",
        "confirmPassword": "Medico2024!",
    })
    assert response.status_code == 200
    draft = response.json()["draft"]
    assert draft["firstName"] == "JUAN"
    assert draft["password"] == ""
    assert draft["confirmPassword"] == ""


def test_invalid_update_is_rejected(client, session_id):
    response = client.patch(f"{PREFIX}/sessions/{session_id}/data", json={"graduationYear": "soon"})
    assert response.status_code == 422
    assert response.json()["detail"] == "Validation error"


def test_taken_phone_is_reported(client, session_id, fake_api):
    fake_api.taken["phone"].add("584141234567")
    client.patch(f"{PREFIX}/sessions/{session_id}/data", json={"phone": "04141234567"})

    state = wait_for(client, session_id, lambda s: s["availability"]["phone"]["isAvailable"] is False)

    assert state["availability"]["phone"]["lastCheckedValue"] == "584141234567"
    messages = [error["message"] for error in state["gate"]["errors"]]
    assert "this phone number is already registered." in messages


def test_license_is_verified_in_background(client, session_id):
    client.patch(f"{PREFIX}/sessions/{session_id}/data", json={
        "firstName": "Juan",
        "lastName": "Pérez",
        "documentType": "cedula_identidad",
        "documentNumber": "V-12345678",
    })

    state = wait_for(client, session_id, lambda s: s["verification"]["status"] == "verified")

    assert state["verification"]["result"]["nameMatch"]["matches"] is True
    assert state["draft"]["dashboardAccess"]["primaryDashboard"] == "cardiologia"


def test_next_is_blocked_by_validation(client, session_id):
    response = client.post(f"{PREFIX}/sessions/{session_id}/next")
    assert response.status_code == 200
    data = response.json()
    assert data["result"]["success"] is False
    fields = {error["field"] for error in data["result"]["errors"]}
    assert {"first_name", "email", "phone", "password"} <= fields
    assert data["state"]["progress"]["currentStep"] == "personal_info"


def test_goto_inaccessible_step_conflicts(client, session_id):
    response = client.post(f"{PREFIX}/sessions/{session_id}/goto/license_verification")
    assert response.status_code == 409


def test_navigation_flow(client, session_id, session_manager, valid_draft):
    load_draft(session_manager, session_id, valid_draft, step="specialty_selection")

    response = client.post(f"{PREFIX}/sessions/{session_id}/steps/specialty_selection/complete")
    assert response.json()["result"]["currentStep"] == "license_verification"

    response = client.post(f"{PREFIX}/sessions/{session_id}/previous")
    assert response.json()["state"]["route"] == "/auth/register/doctor?step=specialty"

    response = client.post(f"{PREFIX}/sessions/{session_id}/goto/personal_info")
    assert response.json()["result"]["success"] is True
    assert response.json()["state"]["progress"]["currentStep"] == "personal_info"


def test_submit_completes_registration(client, session_id, session_manager, store, valid_draft, fake_api):
    load_draft(session_manager, session_id, valid_draft)

    response = client.post(f"{PREFIX}/sessions/{session_id}/submit")

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["success"] is True
    assert data["result"]["data"]["userId"] == "user-1"
    assert data["state"]["progress"]["currentStep"] == "completed"
    assert data["state"]["progress"]["isComplete"] is True
    assert data["state"]["route"] == "/auth/register/doctor/success"
    assert store.records == {}
    assert session_id not in session_manager._sessions

    again = client.post(f"{PREFIX}/sessions/{session_id}/submit")
    assert again.status_code == 404
    assert client.patch(f"{PREFIX}/sessions/{session_id}/data", json={"bio": "x"}).status_code == 404
    assert len(fake_api.calls_to("/register/finalize")) == 1


def test_reset_discards_session(client, session_id, store):
    response = client.delete(f"{PREFIX}/sessions/{session_id}")
    assert response.status_code == 204
    assert store.records == {}
    assert client.get(f"{PREFIX}/sessions/{session_id}").status_code == 404


def test_session_is_resumed_from_store(client, session_id, session_manager, valid_draft):
    coordinator = load_draft(session_manager, session_id, valid_draft, step="identity_verification")
    coordinator.persistence.save_now(coordinator.draft, coordinator.progress)
    session_manager._sessions.clear()

    state = client.get(f"{PREFIX}/sessions/{session_id}").json()

    assert state["progress"]["currentStep"] == "identity_verification"
    assert state["draft"]["firstName"] == "JUAN"
    assert state["verification"]["status"] == "verified"


def test_null_for_required_field_is_rejected(client, session_id):
    response = client.patch(f"{PREFIX}/sessions/{session_id}/data", json={"documentType": None})
    assert response.status_code == 422
    assert response.json()["errors"][0]["loc"] == ["body", "documentType"]

    response = client.patch(f"{PREFIX}/sessions/{session_id}/data", json={"bio": None})
    assert response.status_code == 200


def test_failed_submission_keeps_session(client, session_id, session_manager, fake_api, valid_draft):
    load_draft(session_manager, session_id, valid_draft)
    fake_api.responses["/register/finalize"] = {"ok": True}

    response = client.post(f"{PREFIX}/sessions/{session_id}/submit")

    assert response.status_code == 200
    assert response.json()["result"]["success"] is False
    assert session_id in session_manager._sessions


def test_idle_sessions_are_evicted(client, session_id, session_manager):
    session_manager._last_seen[session_id] -= session_manager.settings.draft_expiration_hours * 3600 + 1

    client.post(f"{PREFIX}/sessions")

    assert session_id not in session_manager._sessions
    assert session_id not in session_manager._notifications
