"""
Debounced email/phone availability checks.

Checks fail open: when the registration backend cannot answer, the value is
treated as available so an outage does not block sign-ups. The backend
enforces uniqueness again when the registration is finalized.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..core.audit_service import AuditTrail
from ..core.scheduler import DebounceScheduler
from .client import RegistrationApiClient
from .exceptions import RegistrationApiError
from .schemas import FieldError, FieldValidationState
from .validation import is_valid_email, is_valid_phone, normalize_phone, sanitize_email

# Set up logging
logger = logging.getLogger(__name__)

AVAILABILITY_FIELDS = ("email", "phone")

TAKEN_MESSAGES = {
    "email": "this email is already registered.",
    "phone": "this phone number is already registered.",
}
CHECKING_MESSAGES = {
    "email": "email availability is being checked",
    "phone": "phone availability is being checked",
}


def _normalize(field: str, raw: str) -> str:
    return sanitize_email(raw) if field == "email" else normalize_phone(raw)


def _is_locally_valid(field: str, value: str) -> bool:
    return is_valid_email(value) if field == "email" else is_valid_phone(value)


class AsyncAvailabilityChecker:
    """
    Tracks the availability state of the email and phone fields.

    Args:
        client: Registration backend client
        scheduler: Scheduler owning the debounce timers
        delay_seconds: Quiet period before a check is sent
        audit: Audit sink for failed checks
        on_change: Called whenever a field state changes
    """
    def __init__(
        self,
        client: RegistrationApiClient,
        scheduler: DebounceScheduler,
        delay_seconds: float = 1.0,
        audit: Optional[AuditTrail] = None,
        on_change: Optional[Callable[[], None]] = None
    ):
        self.client = client
        self.scheduler = scheduler
        self.delay_seconds = delay_seconds
        self.audit = audit or AuditTrail()
        self.on_change = on_change
        self._states: Dict[str, FieldValidationState] = {field: FieldValidationState() for field in AVAILABILITY_FIELDS}
        self._latest: Dict[str, Optional[str]] = {field: None for field in AVAILABILITY_FIELDS}
        # Last confirmed (value, available) pair per field
        self._confirmed: Dict[str, Tuple[str, bool]] = {}

    def state(self, field: str) -> FieldValidationState:
        return self._states[field]

    def states(self) -> Dict[str, FieldValidationState]:
        return dict(self._states)

    def on_value_changed(self, field: str, raw: str) -> None:
        """
        React to an edit of the email or phone field.

        The pending check for the field is cancelled and the state becomes
        unknown. Locally valid values are checked after the quiet period,
        except the last confirmed value whose result is restored at once.
        """
        value = _normalize(field, raw)
        if value == self._latest[field]:
            return
        self._latest[field] = value
        self.scheduler.cancel(self._key(field))

        confirmed = self._confirmed.get(field)
        if confirmed is not None and confirmed[0] == value:
            self._set_state(field, FieldValidationState(is_available=confirmed[1], is_checking=False, last_checked_value=value))
            return

        self._set_state(field, FieldValidationState(
            is_available=None,
            is_checking=False,
            last_checked_value=self._states[field].last_checked_value
        ))
        if value and _is_locally_valid(field, value):
            self.scheduler.schedule(self._key(field), self.delay_seconds, lambda: self.check_now(field, value))

    async def check_now(self, field: str, value: str) -> bool:
        """Ask the backend whether value is free. Returns the availability applied."""
        self._latest[field] = value
        self._set_state(field, FieldValidationState(
            is_available=None,
            is_checking=True,
            last_checked_value=self._states[field].last_checked_value
        ))

        confirmed = True
        try:
            available = await self.client.check_availability(field, value)
        except RegistrationApiError as e:
            logger.warning(f"{field} availability check failed, treating value as available: {e.message}")
            self.audit.record(
                "availability_check_failed",
                f"{field} availability could not be checked",
                {"field": field, "value": value, "status_code": e.status_code, "error": e.message}
            )
            available = True
            confirmed = False

        if self._latest[field] != value:
            logger.debug(f"Discarding stale {field} availability response")
            return available

        if confirmed:
            self._confirmed[field] = (value, available)
        self._set_state(field, FieldValidationState(is_available=available, is_checking=False, last_checked_value=value))
        return available

    def error_message(self, field: str) -> Optional[str]:
        state = self._states[field]
        if state.is_checking:
            return CHECKING_MESSAGES[field]
        if state.is_available is False:
            return TAKEN_MESSAGES[field]
        return None

    def gate_errors(self) -> List[FieldError]:
        """Errors that block the personal information step: checks in flight and taken values."""
        errors = []
        for field in AVAILABILITY_FIELDS:
            message = self.error_message(field)
            if message:
                errors.append(FieldError(field=field, message=message))
        return errors

    def reset(self) -> None:
        for field in AVAILABILITY_FIELDS:
            self.scheduler.cancel(self._key(field))
            self._states[field] = FieldValidationState()
            self._latest[field] = None
        self._confirmed.clear()

    def _set_state(self, field: str, state: FieldValidationState) -> None:
        self._states[field] = state
        if self.on_change is not None:
            self.on_change()

    @staticmethod
    def _key(field: str) -> str:
        return f"availability:{field}"
