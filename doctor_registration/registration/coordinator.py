"""
Registration coordinator.

Owns the draft of one registration and wires the step state machine, the
validation rules, the availability checker, the license verification and the
draft persistence together. All collaborators share one DebounceScheduler and
run on the same event loop.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..core.audit_service import AuditTrail
from ..core.scheduler import DebounceScheduler
from .availability import AsyncAvailabilityChecker
from .client import RegistrationApiClient
from .exceptions import InvalidDraftUpdateException, RegistrationApiError
from .license import VERIFICATION_KEY, LicenseVerificationService
from .name_matching import NameMatcher
from .notifications import LoggingNotifier
from .persistence import PersistenceManager
from .schemas import (
    FieldError,
    NavigationResult,
    Notification,
    RegistrationDraft,
    RegistrationProgress,
    Severity,
    Step,
    StepGate,
    SubmissionResult,
    ValidationResult,
    VerificationResult,
)
from .steps import StepStateMachine
from .validation import (
    ValidationOrchestrator,
    normalize_phone,
    sanitize_document_number,
    sanitize_email,
    sanitize_name,
)

# Set up logging
logger = logging.getLogger(__name__)

NAME_FIELDS = {"first_name", "last_name"}
DOCUMENT_FIELDS = {"document_type", "document_number"}
AVAILABILITY_FIELDS = {"email", "phone"}
# Verification results are attached by the registry only
EDITABLE_FIELDS = set(RegistrationDraft.model_fields) - {"verification_result", "dashboard_access"}
NULLABLE_FIELDS = {name for name, field in RegistrationDraft.model_fields.items() if field.default is None}

SUBMISSION_IN_PROGRESS = "submission_in_progress"
REGISTRATION_COMPLETED = "registration_completed"
VALIDATION_FAILED = "validation_failed"

Listener = Callable[[], None]
Notifier = Callable[[Notification], None]


def _sanitize(changes: Dict[str, Any]) -> Dict[str, Any]:
    sanitized = dict(changes)
    for field in NAME_FIELDS & sanitized.keys():
        sanitized[field] = sanitize_name(sanitized[field] or "")
    if "email" in sanitized:
        sanitized["email"] = sanitize_email(sanitized["email"])
    if "phone" in sanitized:
        sanitized["phone"] = normalize_phone(sanitized["phone"])
    if "document_number" in sanitized:
        sanitized["document_number"] = sanitize_document_number(sanitized["document_number"])
    return sanitized


class RegistrationCoordinator:
    """
    Facade over one doctor registration.

    Args:
        client: Registration backend client
        persistence: Autosave manager for this registration
        scheduler: Scheduler shared by the debounced collaborators
        session_id: Registration session id
        availability_delay: Quiet period before availability checks, in seconds
        verification_delay: Quiet period before license verification, in seconds
        audit: Audit sink
        notifier: Receives user-facing notifications
    """
    def __init__(
        self,
        client: RegistrationApiClient,
        persistence: PersistenceManager,
        scheduler: DebounceScheduler,
        session_id: str,
        availability_delay: float = 1.0,
        verification_delay: float = 2.0,
        audit: Optional[AuditTrail] = None,
        notifier: Optional[Notifier] = None,
        validator: Optional[ValidationOrchestrator] = None,
        name_matcher: Optional[NameMatcher] = None
    ):
        self.client = client
        self.persistence = persistence
        self.scheduler = scheduler
        self.session_id = session_id
        self.audit = audit or AuditTrail(session_id=session_id)
        self.notifier = notifier or LoggingNotifier()
        self.validator = validator or ValidationOrchestrator()

        self.draft = RegistrationDraft()
        self.is_submitting = False
        self._listeners: List[Listener] = []

        self.state_machine = StepStateMachine(self._validate_step)
        self.availability = AsyncAvailabilityChecker(
            client, scheduler, availability_delay, audit=self.audit, on_change=self._notify_listeners
        )
        self.verification = LicenseVerificationService(
            client, scheduler, name_matcher, verification_delay, audit=self.audit, on_result=self._apply_verification
        )

    @property
    def progress(self) -> RegistrationProgress:
        return self.state_machine.progress

    @property
    def current_step(self) -> Step:
        return self.state_machine.current_step

    @property
    def is_completed(self) -> bool:
        return self.state_machine.is_completed

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a state change listener. Returns a function that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def resume(self) -> None:
        """Load the persisted draft and restore every collaborator from it."""
        snapshot = self.persistence.load()
        self.draft = snapshot.data
        self.state_machine.restore(snapshot.progress)
        self.verification.restore(
            self.draft.verification_result,
            self.draft.document_type,
            self.draft.document_number,
            self.draft.first_name,
            self.draft.last_name
        )
        for field in AVAILABILITY_FIELDS:
            value = getattr(self.draft, field)
            if value:
                self.availability.on_value_changed(field, value)
        logger.info(f"Resumed registration {self.session_id} at step {self.current_step.value}")

    def update_data(self, patch: Dict[str, Any]) -> RegistrationDraft:
        """
        Merge a partial update into the draft.

        Unknown and read-only fields are ignored, and so is None for fields
        that cannot be empty. Updates are ignored once the registration has
        been submitted.
        """
        if self.is_completed:
            logger.warning(f"Ignoring update to completed registration {self.session_id}")
            return self.draft

        changes = _sanitize({
            key: value for key, value in patch.items()
            if key in EDITABLE_FIELDS and (value is not None or key in NULLABLE_FIELDS)
        })
        if not changes:
            return self.draft

        previous = self.draft
        try:
            self.draft = RegistrationDraft.model_validate({**previous.model_dump(), **changes})
        except ValidationError as e:
            fields = sorted({str(error["loc"][0]) for error in e.errors() if error["loc"]})
            raise InvalidDraftUpdateException(fields) from e
        changed = {field for field in changes if getattr(previous, field) != getattr(self.draft, field)}

        if changed & (DOCUMENT_FIELDS | NAME_FIELDS) and previous.verification_result is not None:
            self.draft = self.draft.model_copy(update={"verification_result": None, "dashboard_access": None})
        for field in changed & AVAILABILITY_FIELDS:
            self.availability.on_value_changed(field, getattr(self.draft, field))
        if changed & (DOCUMENT_FIELDS | NAME_FIELDS):
            self.verification.on_input_changed(
                self.draft.document_type,
                self.draft.document_number,
                self.draft.first_name,
                self.draft.last_name
            )

        self.persistence.save(self.draft, self.progress)
        self._notify_listeners()
        return self.draft

    def can_submit(self, step: Optional[Step] = None) -> StepGate:
        """Whether a step (the current one by default) can be completed now."""
        step = Step(step or self.current_step)
        validation = self._validate_step(step)
        return StepGate(step=step, can_submit=validation.is_valid, errors=validation.errors)

    async def complete_step_and_continue(self, step: Step) -> NavigationResult:
        """Complete the given step, which must be the current one, and move on."""
        step = Step(step)
        if step != self.current_step:
            return NavigationResult(
                success=False,
                current_step=self.current_step,
                errors=[FieldError(field="step", message=f"step '{step.value}' is not the current step")]
            )
        return await self.go_to_next_step()

    async def go_to_next_step(self) -> NavigationResult:
        """Advance to the next step, submitting the registration from the review step."""
        step = self.current_step
        result = self.state_machine.go_to_next_step()
        if not result.success:
            self._step_blocked(step, result.errors)
            return result

        if result.submit_requested:
            submission = await self.submit_registration()
            return result.model_copy(update={
                "success": submission.success,
                "current_step": self.current_step,
                "errors": submission.errors,
                "submission": submission,
            })

        self.audit.record("step_completed", f"Step {step.value} completed", {"step": step.value})
        self._progress_changed()
        return result

    def go_to_previous_step(self) -> NavigationResult:
        result = self.state_machine.go_to_previous_step()
        if result.success:
            self._progress_changed()
        return result

    def go_to_step(self, step: Step) -> NavigationResult:
        origin = self.current_step
        result = self.state_machine.go_to_step(step)
        if not result.success:
            self._step_blocked(origin, result.errors)
            return result
        self._progress_changed()
        return result

    async def submit_registration(self) -> SubmissionResult:
        """
        Finalize the registration with the backend.

        Only one submission runs at a time; concurrent calls are rejected.
        The persisted draft is cleared only after the backend confirms the
        account was created.
        """
        if self.is_submitting:
            logger.warning(f"Rejected concurrent submission for {self.session_id}")
            return SubmissionResult(success=False, error=SUBMISSION_IN_PROGRESS)
        if self.is_completed:
            return SubmissionResult(success=False, error=REGISTRATION_COMPLETED)

        self.is_submitting = True
        self._notify_listeners()
        try:
            validation = self._validate_step(Step.FINAL_REVIEW)
            if not validation.is_valid:
                self._notify(
                    "Registration incomplete",
                    validation.errors[0].message,
                    Severity.ERROR
                )
                return SubmissionResult(success=False, error=VALIDATION_FAILED, errors=validation.errors)

            try:
                response = await self.client.finalize_registration(self.draft)
            except RegistrationApiError as e:
                logger.error(f"Registration {self.session_id} could not be finalized: {e.message}")
                self.audit.record(
                    "registration_submission_failed",
                    "Registration could not be finalized",
                    {"status_code": e.status_code, "error": e.message}
                )
                self._notify("Registration failed", e.message, Severity.ERROR)
                return SubmissionResult(success=False, error=e.message)

            self.availability.reset()
            self.scheduler.cancel(VERIFICATION_KEY)
            self.state_machine.mark_submitted()
            self.persistence.clear()
            self.audit.record(
                "registration_submitted",
                "Registration finalized",
                {"user_id": response.user_id, "email": self.draft.email}
            )
            self._notify(
                "Registration completed",
                "Check your email to verify your account." if response.needs_email_verification
                else "Your account is ready.",
                Severity.SUCCESS
            )
            return SubmissionResult(success=True, data=response)
        finally:
            self.is_submitting = False
            self._notify_listeners()

    def reset(self) -> None:
        """Discard the draft, its snapshot and every pending check."""
        self.availability.reset()
        self.verification.reset()
        self.persistence.clear()
        self.draft = RegistrationDraft()
        self.state_machine.restore(RegistrationProgress())
        self.audit.record("registration_reset", "Registration draft discarded")
        self._notify_listeners()

    async def aclose(self) -> None:
        """Write any pending save and stop the debounce timers."""
        self.persistence.flush()
        self.scheduler.cancel_all()
        await self.scheduler.drain()

    def _validate_step(self, step: Step) -> ValidationResult:
        result = self.validator.validate(step, self.draft)
        errors = list(result.errors)
        if step in (Step.PERSONAL_INFO, Step.FINAL_REVIEW):
            errors.extend(self.availability.gate_errors())
        if step in (Step.LICENSE_VERIFICATION, Step.FINAL_REVIEW) and (
            self.verification.is_verifying or self.verification.is_scheduled
        ):
            errors.append(FieldError(field="verification_result", message="the medical license is being verified"))
        return ValidationResult.from_errors(errors)

    def _apply_verification(self, result: Optional[VerificationResult]) -> None:
        update: Dict[str, Any] = {
            "verification_result": result,
            "dashboard_access": result.dashboard_access if result else None,
        }
        if result is not None and result.is_verified and not self.draft.specialty:
            update["specialty"] = result.specialty
        self.draft = self.draft.model_copy(update=update)
        if not self.is_completed:
            self.persistence.save(self.draft, self.progress)

        if result is not None:
            if self.verification.error_kind is None:
                self._notify("License verified", f"Registered as {result.doctor_name or 'medical professional'}", Severity.SUCCESS)
            else:
                self._notify("License verification", self.verification.message, Severity.ERROR)
        self._notify_listeners()

    def _step_blocked(self, step: Step, errors: List[FieldError]) -> None:
        self.audit.record(
            "step_blocked",
            f"Step {step.value} could not be completed",
            {"step": step.value, "fields": sorted({error.field for error in errors})}
        )
        if errors:
            self._notify("Check the form", errors[0].message, Severity.WARNING)

    def _progress_changed(self) -> None:
        self.persistence.save(self.draft, self.progress)
        self._notify_listeners()

    def _notify(self, title: str, description: str, severity: Severity) -> None:
        self.notifier(Notification(title=title, description=description, severity=severity))

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            listener()
