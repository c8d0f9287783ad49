"""
Wizard step ordering and navigation rules.
"""
import logging
from typing import Callable, List, Optional

from .schemas import (
    FieldError,
    NavigationResult,
    RegistrationProgress,
    Step,
    ValidationResult,
    utcnow,
)

# Set up logging
logger = logging.getLogger(__name__)

# Data steps counted by the progress percentage
STEP_ORDER: List[Step] = [
    Step.PERSONAL_INFO,
    Step.PROFESSIONAL_INFO,
    Step.SPECIALTY_SELECTION,
    Step.LICENSE_VERIFICATION,
    Step.IDENTITY_VERIFICATION,
    Step.DASHBOARD_CONFIGURATION,
    Step.FINAL_REVIEW,
]
FULL_ORDER: List[Step] = STEP_ORDER + [Step.COMPLETED]

REGISTRATION_ROUTE = "/auth/register/doctor"
STEP_ROUTES = {
    Step.PERSONAL_INFO: REGISTRATION_ROUTE,
    Step.PROFESSIONAL_INFO: f"{REGISTRATION_ROUTE}?step=professional",
    Step.SPECIALTY_SELECTION: f"{REGISTRATION_ROUTE}?step=specialty",
    Step.LICENSE_VERIFICATION: f"{REGISTRATION_ROUTE}?step=license",
    Step.IDENTITY_VERIFICATION: f"{REGISTRATION_ROUTE}?step=identity",
    Step.DASHBOARD_CONFIGURATION: f"{REGISTRATION_ROUTE}?step=dashboard",
    Step.FINAL_REVIEW: f"{REGISTRATION_ROUTE}?step=review",
    Step.COMPLETED: f"{REGISTRATION_ROUTE}/success",
}

StepValidator = Callable[[Step], ValidationResult]


def route_for(step: Step) -> str:
    """Front-end route that displays the given step."""
    return STEP_ROUTES[Step(step)]


def next_step(step: Step) -> Optional[Step]:
    index = FULL_ORDER.index(step)
    return FULL_ORDER[index + 1] if index + 1 < len(FULL_ORDER) else None


def previous_step(step: Step) -> Optional[Step]:
    index = FULL_ORDER.index(step)
    return FULL_ORDER[index - 1] if index > 0 else None


def _blocked(step: Step, message: str, errors: Optional[List[FieldError]] = None) -> NavigationResult:
    return NavigationResult(
        success=False,
        current_step=step,
        errors=errors if errors is not None else [FieldError(field="step", message=message)]
    )


class StepStateMachine:
    """
    Tracks the current step and completed steps of one registration.

    Step validation is delegated to the injected validator, which receives
    the step to validate and returns its ValidationResult.
    """
    def __init__(self, validator: StepValidator, progress: Optional[RegistrationProgress] = None):
        self.validator = validator
        self.progress = progress or RegistrationProgress(total_steps=len(STEP_ORDER))

    @property
    def current_step(self) -> Step:
        return self.progress.current_step

    @property
    def is_completed(self) -> bool:
        return self.progress.current_step == Step.COMPLETED

    def can_access(self, step: Step) -> bool:
        """A step is accessible when it is the first one or its predecessor is completed."""
        step = Step(step)
        previous = previous_step(step)
        return previous is None or previous in self.progress.completed_steps

    def mark_completed(self, step: Step) -> None:
        step = Step(step)
        if step == Step.COMPLETED or step in self.progress.completed_steps:
            return
        completed = set(self.progress.completed_steps) | {step}
        self._set_completed([s for s in STEP_ORDER if s in completed])

    def withdraw(self, step: Step) -> None:
        """Remove a step from the completed steps."""
        if step in self.progress.completed_steps:
            self._set_completed([s for s in self.progress.completed_steps if s != step])

    def mark_submitted(self) -> None:
        """Complete the review step and enter the terminal state."""
        self.mark_completed(Step.FINAL_REVIEW)
        self._move_to(Step.COMPLETED)
        logger.info("Registration wizard completed")

    def restore(self, progress: RegistrationProgress) -> None:
        self.progress = progress

    def go_to_next_step(self) -> NavigationResult:
        """
        Validate the current step and advance.

        On the review step the wizard does not move; the result asks the
        caller to submit the registration instead.
        """
        current = self.current_step
        if current == Step.COMPLETED:
            return _blocked(current, "the registration has already been completed")

        validation = self.validator(current)
        if not validation.is_valid:
            logger.debug(f"Step {current.value} blocked: {len(validation.errors)} validation errors")
            return _blocked(current, "", validation.errors)

        if current == Step.FINAL_REVIEW:
            return NavigationResult(success=True, current_step=current, submit_requested=True)

        self.mark_completed(current)
        target = next_step(current)
        self._move_to(target)
        return NavigationResult(success=True, current_step=target)

    def go_to_previous_step(self) -> NavigationResult:
        current = self.current_step
        if current == Step.COMPLETED:
            return _blocked(current, "the registration has already been completed")
        target = previous_step(current)
        if target is None:
            return _blocked(current, "already at the first step")
        self._move_to(target)
        return NavigationResult(success=True, current_step=target)

    def go_to_step(self, target: Step) -> NavigationResult:
        """
        Jump to an accessible step.

        The step being left is validated: valid steps are marked completed,
        invalid steps block forward jumps and lose their completion on
        backward jumps.
        """
        target = Step(target)
        current = self.current_step
        if current == Step.COMPLETED:
            return _blocked(current, "the registration has already been completed")
        if target == Step.COMPLETED:
            return _blocked(current, "the registration can only be completed by submitting it")
        if not self.can_access(target):
            return _blocked(current, f"step '{target.value}' is not accessible yet")
        if target == current:
            return NavigationResult(success=True, current_step=current)

        validation = self.validator(current)
        moving_forward = FULL_ORDER.index(target) > FULL_ORDER.index(current)
        if validation.is_valid:
            self.mark_completed(current)
        elif moving_forward:
            return _blocked(current, "", validation.errors)
        else:
            self.withdraw(current)

        self._move_to(target)
        return NavigationResult(success=True, current_step=target)

    def _move_to(self, step: Step) -> None:
        logger.debug(f"Moving from {self.progress.current_step.value} to {step.value}")
        self.progress = self.progress.model_copy(update={"current_step": step, "last_updated": utcnow()})

    def _set_completed(self, completed: List[Step]) -> None:
        total = self.progress.total_steps or len(STEP_ORDER)
        percentage = round(len(completed) / total * 100)
        self.progress = self.progress.model_copy(update={
            "completed_steps": completed,
            "percentage": percentage,
            "is_complete": percentage == 100,
            "last_updated": utcnow(),
        })
