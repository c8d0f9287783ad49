"""
Tests for the registration coordinator.
"""
import asyncio

import pytest

from doctor_registration.registration.coordinator import RegistrationCoordinator, SUBMISSION_IN_PROGRESS
from doctor_registration.registration.exceptions import InvalidDraftUpdateException
from doctor_registration.registration.notifications import NotificationCollector
from doctor_registration.registration.persistence import PersistenceManager
from doctor_registration.registration.schemas import RegistrationProgress, Severity, Step
from doctor_registration.registration.steps import STEP_ORDER

STORAGE_KEY = "doctor_registration:session-1"


@pytest.fixture
def notifications():
    return NotificationCollector()


@pytest.fixture
def make_coordinator(api_client, store, scheduler, notifications):
    def factory():
        persistence = PersistenceManager(store, scheduler, STORAGE_KEY, "session-1", delay_seconds=0.01)
        return RegistrationCoordinator(
            api_client,
            persistence,
            scheduler,
            "session-1",
            availability_delay=0.01,
            verification_delay=0.01,
            notifier=notifications
        )
    return factory


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()


def at_final_review(coordinator, draft):
    """Put a complete draft on the review step."""
    coordinator.draft = draft
    for step in STEP_ORDER[:-1]:
        coordinator.state_machine.mark_completed(step)
    coordinator.state_machine.restore(
        coordinator.progress.model_copy(update={"current_step": Step.FINAL_REVIEW})
    )


@pytest.mark.asyncio
async def test_update_data_sanitizes_and_saves(coordinator, scheduler, store):
    coordinator.update_data({"first_name": "  juan  ", "email": " Juan@Gmail.com", "phone": "0414-1234567"})
    await scheduler.drain()

    assert coordinator.draft.first_name == "JUAN"
    assert coordinator.draft.email == "juan@gmail.com"
    assert coordinator.draft.phone == "584141234567"
    assert store.read(STORAGE_KEY) is not None


@pytest.mark.asyncio
async def test_update_data_ignores_read_only_fields(coordinator):
    coordinator.update_data({"verification_result": {"isValid": True, "isVerified": True}, "unknown": 1})
    assert coordinator.draft.verification_result is None
    coordinator.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_listeners_are_notified(coordinator):
    calls = []
    remove = coordinator.add_listener(lambda: calls.append(1))
    coordinator.update_data({"bio": "Cardiologist"})
    remove()
    coordinator.update_data({"bio": "Cardiologist and internist"})
    assert calls == [1]
    coordinator.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_taken_phone_blocks_personal_info(coordinator, scheduler, fake_api, valid_draft):
    fake_api.taken["phone"].add("584141234567")
    coordinator.draft = valid_draft.model_copy(update={"phone": ""})

    coordinator.update_data({"phone": "04141234567"})
    await scheduler.drain()

    gate = coordinator.can_submit(Step.PERSONAL_INFO)
    assert not gate.can_submit
    assert gate.errors[0].message == "this phone number is already registered."

    result = await coordinator.go_to_next_step()
    assert not result.success
    assert coordinator.current_step == Step.PERSONAL_INFO


@pytest.mark.asyncio
async def test_availability_outage_does_not_block(coordinator, scheduler, fake_api, valid_draft):
    fake_api.failures["/check-availability"] = 503
    coordinator.draft = valid_draft.model_copy(update={"email": ""})

    coordinator.update_data({"email": "juan.perez@gmail.com"})
    await scheduler.drain()

    assert coordinator.can_submit(Step.PERSONAL_INFO).can_submit
    result = await coordinator.go_to_next_step()
    assert result.success
    assert coordinator.current_step == Step.PROFESSIONAL_INFO


@pytest.mark.asyncio
async def test_check_in_flight_blocks_personal_info(coordinator, fake_api, valid_draft):
    gate = asyncio.Event()
    fake_api.gates["/check-availability"] = gate
    coordinator.draft = valid_draft

    task = asyncio.create_task(coordinator.availability.check_now("email", "juan.perez@gmail.com"))
    await asyncio.sleep(0.01)
    assert not coordinator.can_submit(Step.PERSONAL_INFO).can_submit

    gate.set()
    await task
    assert coordinator.can_submit(Step.PERSONAL_INFO).can_submit


@pytest.mark.asyncio
async def test_license_verification_result_is_attached_to_draft(coordinator, scheduler, valid_draft, notifications):
    coordinator.draft = valid_draft.model_copy(update={"verification_result": None, "document_number": ""})

    coordinator.update_data({"document_number": "v-12345678"})
    await scheduler.drain()

    result = coordinator.draft.verification_result
    assert result.is_verified
    assert result.name_match.matches is True
    assert coordinator.draft.dashboard_access.primary_dashboard == "cardiologia"
    assert coordinator.can_submit(Step.LICENSE_VERIFICATION).can_submit
    assert any(n.title == "License verified" for n in notifications.pending)


@pytest.mark.asyncio
async def test_document_edit_invalidates_verification(coordinator, valid_draft):
    coordinator.draft = valid_draft

    coordinator.update_data({"document_number": "V-87654321"})

    assert coordinator.draft.verification_result is None
    assert coordinator.draft.dashboard_access is None
    assert not coordinator.can_submit(Step.LICENSE_VERIFICATION).can_submit
    coordinator.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_complete_step_requires_current_step(coordinator):
    result = await coordinator.complete_step_and_continue(Step.SPECIALTY_SELECTION)
    assert not result.success
    assert coordinator.current_step == Step.PERSONAL_INFO


@pytest.mark.asyncio
async def test_blocked_step_notifies(coordinator, notifications):
    result = await coordinator.complete_step_and_continue(Step.PERSONAL_INFO)
    assert not result.success
    assert notifications.pending[-1].severity == Severity.WARNING


@pytest.mark.asyncio
async def test_completing_review_submits(coordinator, fake_api, store, valid_draft):
    at_final_review(coordinator, valid_draft)
    coordinator.persistence.save_now(coordinator.draft, coordinator.progress)

    result = await coordinator.go_to_next_step()

    assert result.success
    assert result.submission.success
    assert result.submission.data.user_id == "user-1"
    assert result.current_step == Step.COMPLETED
    assert coordinator.progress.is_complete
    assert store.read(STORAGE_KEY) is None
    assert len(fake_api.calls_to("/register/finalize")) == 1


@pytest.mark.asyncio
async def test_concurrent_submissions_finalize_once(coordinator, fake_api, valid_draft):
    at_final_review(coordinator, valid_draft)
    gate = asyncio.Event()
    fake_api.gates["/register/finalize"] = gate

    first = asyncio.create_task(coordinator.submit_registration())
    await asyncio.sleep(0.01)
    assert coordinator.is_submitting

    second = await coordinator.submit_registration()
    gate.set()
    first_result = await first

    assert second.success is False
    assert second.error == SUBMISSION_IN_PROGRESS
    assert first_result.success
    assert len(fake_api.calls_to("/register/finalize")) == 1
    assert not coordinator.is_submitting


@pytest.mark.asyncio
async def test_failed_submission_keeps_draft(coordinator, fake_api, store, valid_draft, notifications):
    at_final_review(coordinator, valid_draft)
    coordinator.persistence.save_now(coordinator.draft, coordinator.progress)
    fake_api.failures["/register/finalize"] = 500

    result = await coordinator.submit_registration()

    assert not result.success
    assert result.error == "service failure"
    assert coordinator.current_step == Step.FINAL_REVIEW
    assert coordinator.draft == valid_draft
    assert store.read(STORAGE_KEY) is not None
    assert notifications.pending[-1].severity == Severity.ERROR


@pytest.mark.asyncio
async def test_submission_validates_whole_draft(coordinator, fake_api, valid_draft):
    at_final_review(coordinator, valid_draft.model_copy(update={"selected_features": []}))

    result = await coordinator.submit_registration()

    assert not result.success
    assert result.errors[0].field == "selected_features"
    assert fake_api.calls_to("/register/finalize") == []


@pytest.mark.asyncio
async def test_completed_registration_ignores_updates(coordinator, valid_draft):
    at_final_review(coordinator, valid_draft)
    await coordinator.submit_registration()

    coordinator.update_data({"first_name": "PEDRO"})
    assert coordinator.draft.first_name == "JUAN"
    again = await coordinator.submit_registration()
    assert again.error == "registration_completed"


@pytest.mark.asyncio
async def test_resume_restores_draft_and_progress(make_coordinator, scheduler, valid_draft):
    first = make_coordinator()
    at_final_review(first, valid_draft)
    first.persistence.save_now(first.draft, first.progress)

    resumed = make_coordinator()
    resumed.resume()

    assert resumed.draft == valid_draft
    assert resumed.current_step == Step.FINAL_REVIEW
    assert resumed.verification.result == valid_draft.verification_result
    assert resumed.can_submit(Step.LICENSE_VERIFICATION).can_submit
    scheduler.cancel_all()


@pytest.mark.asyncio
async def test_reset_restores_defaults(coordinator, store, valid_draft):
    at_final_review(coordinator, valid_draft)
    coordinator.persistence.save_now(coordinator.draft, coordinator.progress)

    coordinator.reset()

    assert coordinator.draft.first_name == ""
    assert coordinator.progress == RegistrationProgress(last_updated=coordinator.progress.last_updated)
    assert store.read(STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_name_edit_after_verification_blocks_submission(coordinator, fake_api, valid_draft):
    at_final_review(coordinator, valid_draft)
    coordinator.verification.restore(
        valid_draft.verification_result, "cedula_identidad", "V-12345678", "JUAN", "PEREZ"
    )

    coordinator.update_data({"first_name": "PEDRO", "last_name": "GOMEZ"})

    assert coordinator.draft.verification_result is None
    assert coordinator.verification.is_scheduled
    gate = coordinator.can_submit(Step.LICENSE_VERIFICATION)
    assert not gate.can_submit

    result = await coordinator.submit_registration()
    assert not result.success
    assert fake_api.calls_to("/register/finalize") == []

    await coordinator.scheduler.drain()
    result = await coordinator.submit_registration()
    assert not result.success
    assert coordinator.draft.verification_result.name_match.matches is False
    assert fake_api.calls_to("/register/finalize") == []


@pytest.mark.asyncio
async def test_malformed_finalize_response_fails_submission(coordinator, fake_api, valid_draft, notifications):
    at_final_review(coordinator, valid_draft)
    fake_api.responses["/register/finalize"] = {"ok": True}

    result = await coordinator.submit_registration()

    assert not result.success
    assert result.error == "invalid response from the registration service"
    assert coordinator.current_step == Step.FINAL_REVIEW
    assert not coordinator.is_submitting
    assert notifications.pending[-1].severity == Severity.ERROR


@pytest.mark.asyncio
async def test_null_clears_only_optional_fields(coordinator, valid_draft):
    coordinator.draft = valid_draft.model_copy(update={"bio": "Cardiologist"})

    coordinator.update_data({"document_type": None, "selected_features": None, "bio": None})

    assert coordinator.draft.document_type == valid_draft.document_type
    assert coordinator.draft.selected_features == valid_draft.selected_features
    assert coordinator.draft.bio is None
    coordinator.scheduler.cancel_all()


def test_unmergeable_update_is_rejected(coordinator):
    with pytest.raises(InvalidDraftUpdateException) as exc_info:
        coordinator.update_data({"graduation_year": "soon"})
    assert exc_info.value.status_code == 422
    assert exc_info.value.fields == ["graduation_year"]
    assert coordinator.draft.graduation_year is None
