"""
Registration Router - API endpoints for the doctor registration wizard.

This module exposes the registration sessions to the front end: draft
updates, step navigation, submission and reset.
"""
from fastapi import APIRouter, Depends, Response, status

from .coordinator import SUBMISSION_IN_PROGRESS
from .exceptions import (
    RegistrationCompletedException,
    StepNotAccessibleException,
    SubmissionInProgressException,
)
from .schemas import (
    DraftUpdate,
    NavigationResponse,
    RegistrationStateResponse,
    Step,
    SubmissionResponse,
)
from .service import RegistrationSessionManager, get_session_manager

router = APIRouter()

@router.post("/sessions", response_model=RegistrationStateResponse, status_code=status.HTTP_201_CREATED)
async def create_session(manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Start a new doctor registration

    Returns the session id used by every other endpoint.
    """
    coordinator = manager.create_session()
    return manager.state(coordinator)

@router.get("/sessions/{session_id}", response_model=RegistrationStateResponse)
async def get_session_state(session_id: str, manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Get the state of a registration

    Includes the draft (without passwords), progress, availability and
    verification status and whether the current step can be completed.
    """
    return manager.state(manager.get_session(session_id))

@router.patch("/sessions/{session_id}/data", response_model=RegistrationStateResponse)
async def update_draft(
    session_id: str,
    update: DraftUpdate,
    manager: RegistrationSessionManager = Depends(get_session_manager)
):
    """
    Update registration data

    Only the fields present in the request body are changed. Availability
    checks and license verification are scheduled in the background.
    """
    coordinator = manager.get_session(session_id)
    if coordinator.is_completed:
        raise RegistrationCompletedException()
    coordinator.update_data(update.model_dump(exclude_unset=True))
    return manager.state(coordinator)

@router.post("/sessions/{session_id}/steps/{step}/complete", response_model=NavigationResponse)
async def complete_step(session_id: str, step: Step, manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Complete a step and continue

    Completing the review step submits the registration.
    """
    coordinator = manager.get_session(session_id)
    if not coordinator.state_machine.can_access(step):
        raise StepNotAccessibleException(step.value)
    _check_submittable(coordinator)
    result = await coordinator.complete_step_and_continue(step)
    response = NavigationResponse(result=result, state=manager.state(coordinator))
    await manager.release_if_completed(coordinator)
    return response

@router.post("/sessions/{session_id}/next", response_model=NavigationResponse)
async def next_step(session_id: str, manager: RegistrationSessionManager = Depends(get_session_manager)):
    coordinator = manager.get_session(session_id)
    _check_submittable(coordinator)
    result = await coordinator.go_to_next_step()
    response = NavigationResponse(result=result, state=manager.state(coordinator))
    await manager.release_if_completed(coordinator)
    return response

@router.post("/sessions/{session_id}/previous", response_model=NavigationResponse)
async def previous_step(session_id: str, manager: RegistrationSessionManager = Depends(get_session_manager)):
    coordinator = manager.get_session(session_id)
    result = coordinator.go_to_previous_step()
    return NavigationResponse(result=result, state=manager.state(coordinator))

@router.post("/sessions/{session_id}/goto/{step}", response_model=NavigationResponse)
async def go_to_step(session_id: str, step: Step, manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Jump to a step

    The step must be accessible: the first step or one whose previous step
    has been completed.
    """
    coordinator = manager.get_session(session_id)
    if step == Step.COMPLETED or not coordinator.state_machine.can_access(step):
        raise StepNotAccessibleException(step.value)
    result = coordinator.go_to_step(step)
    return NavigationResponse(result=result, state=manager.state(coordinator))

@router.post("/sessions/{session_id}/submit", response_model=SubmissionResponse)
async def submit_registration(session_id: str, manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Submit the registration

    The draft is validated as a whole and sent to the registration backend.
    Only one submission per session may run at a time. A submitted
    registration is closed and its session id is no longer valid.
    """
    coordinator = manager.get_session(session_id)
    _check_submittable(coordinator)
    result = await coordinator.submit_registration()
    if result.error == SUBMISSION_IN_PROGRESS:
        raise SubmissionInProgressException()
    response = SubmissionResponse(result=result, state=manager.state(coordinator))
    await manager.release_if_completed(coordinator)
    return response

@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_registration(session_id: str, manager: RegistrationSessionManager = Depends(get_session_manager)):
    """
    Discard a registration

    The persisted draft is deleted and the session is closed.
    """
    await manager.discard_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _check_submittable(coordinator):
    if coordinator.is_completed:
        raise RegistrationCompletedException()
    if coordinator.is_submitting:
        raise SubmissionInProgressException()
