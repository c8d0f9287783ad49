"""
Medical license verification against the professional registry.

Verification runs automatically once the document and the doctor's name are
filled in and stay unchanged for the quiet period. A successful result is
enriched with the name comparison and the dashboards that the registry
specialty grants access to.
"""
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..core.audit_service import AuditTrail
from ..core.scheduler import DebounceScheduler
from .client import INVALID_RESPONSE, RegistrationApiClient
from .exceptions import RegistrationApiError
from .name_matching import NameMatcher, normalize_name
from .schemas import DashboardAccess, DocumentType, FieldError, VerificationResult, VerificationState
from .validation import is_verifiable_document, sanitize_document_number, sanitize_name, verification_errors

# Set up logging
logger = logging.getLogger(__name__)

DEFAULT_SPECIALTY = "MEDICINA GENERAL"
DEFAULT_DASHBOARD = "medicina-general"
VERIFICATION_KEY = "license_verification"

# Checked in order, first keyword found in the specialty wins
SPECIALTY_DASHBOARDS: List[Tuple[Tuple[str, ...], str]] = [
    (("CARDIOLOG",), "cardiologia"),
    (("NEUROLOG",), "neurologia"),
    (("PEDIATR",), "pediatria"),
    (("CIRUGIA",), "cirugia-general"),
    (("DERMATOLOG",), "dermatologia"),
    (("PSIQUIATR",), "psiquiatria"),
    (("MEDICINA INTERNA",), "medicina-interna"),
    (("ORTOPED", "TRAUMATOLOG"), "ortopedia"),
    (("OFTALMOLOG",), "oftalmologia"),
    (("GINECOLOG", "OBSTETR"), "ginecologia"),
    (("ENDOCRINOLOG",), "endocrinologia"),
    (("RADIOLOG",), "radiologia"),
    (("EMERGENCI",), "medicina-emergencia"),
]

RELATED_DASHBOARDS: Dict[str, List[str]] = {
    "cardiologia": ["medicina-interna", "medicina-emergencia"],
    "neurologia": ["medicina-interna", "psiquiatria"],
    "pediatria": ["medicina-emergencia"],
    "cirugia-general": ["medicina-emergencia"],
    "medicina-interna": ["cardiologia", "endocrinologia"],
    "ortopedia": ["medicina-emergencia", "radiologia"],
    "ginecologia": ["endocrinologia"],
    "medicina-emergencia": ["medicina-interna"],
}


class VerificationStatus(str, Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    FAILED = "failed"
    ERROR = "error"


class VerificationErrorKind(str, Enum):
    SERVICE_UNAVAILABLE = "service_unavailable"
    NOT_FOUND = "not_found"
    NAME_MISMATCH = "name_mismatch"


ERROR_MESSAGES = {
    VerificationErrorKind.SERVICE_UNAVAILABLE: (
        "The verification service is temporarily unavailable. Try again in a few minutes."
    ),
    VerificationErrorKind.NOT_FOUND: (
        "The document was not found in the official registry of medical professionals. "
        "Check the document type and number."
    ),
    VerificationErrorKind.NAME_MISMATCH: (
        "The name does not match the official registry. Go back to personal information and correct it."
    ),
}


def resolve_dashboard(specialty: Optional[str]) -> str:
    """Primary dashboard for a registry specialty, medicina-general when no keyword matches."""
    normalized = normalize_name(specialty or "")
    for keywords, dashboard in SPECIALTY_DASHBOARDS:
        if any(keyword in normalized for keyword in keywords):
            return dashboard
    return DEFAULT_DASHBOARD


def dashboard_access_for(specialty: Optional[str]) -> DashboardAccess:
    primary = resolve_dashboard(specialty)
    allowed = [primary]
    for dashboard in RELATED_DASHBOARDS.get(primary, []) + [DEFAULT_DASHBOARD]:
        if dashboard not in allowed:
            allowed.append(dashboard)
    return DashboardAccess(
        primary_dashboard=primary,
        allowed_dashboards=allowed,
        reason=f"Access granted from the registry specialty {specialty or DEFAULT_SPECIALTY}"
    )


class LicenseVerificationService:
    """
    Verification state machine for one registration.

    on_result is called with every result that is applied (stale results
    are dropped before it).
    """
    def __init__(
        self,
        client: RegistrationApiClient,
        scheduler: DebounceScheduler,
        name_matcher: Optional[NameMatcher] = None,
        delay_seconds: float = 2.0,
        audit: Optional[AuditTrail] = None,
        on_result: Optional[Callable[[Optional[VerificationResult]], None]] = None
    ):
        self.client = client
        self.scheduler = scheduler
        self.name_matcher = name_matcher or NameMatcher()
        self.delay_seconds = delay_seconds
        self.audit = audit or AuditTrail()
        self.on_result = on_result

        self.status = VerificationStatus.IDLE
        self.result: Optional[VerificationResult] = None
        self.error_kind: Optional[VerificationErrorKind] = None
        self._document: Optional[Tuple[str, str]] = None
        self._latest_key: Optional[Tuple[str, str, str]] = None
        self._requested_key: Optional[Tuple[str, str, str]] = None
        self._in_flight_key: Optional[Tuple[str, str, str]] = None

    @property
    def is_verifying(self) -> bool:
        return self.status == VerificationStatus.VERIFYING

    @property
    def is_scheduled(self) -> bool:
        """True while a verification waits for the quiet period to end."""
        return self.scheduler.is_pending(VERIFICATION_KEY)

    @property
    def message(self) -> Optional[str]:
        return ERROR_MESSAGES[self.error_kind] if self.error_kind else None

    def snapshot(self) -> VerificationState:
        return VerificationState(
            status=self.status.value,
            result=self.result,
            error_kind=self.error_kind.value if self.error_kind else None,
            message=self.message
        )

    def on_input_changed(self, document_type: DocumentType, document_number: str, first_name: str, last_name: str) -> None:
        """
        React to an edit of the document or the name.

        A different document or name discards the current result. Verification is
        scheduled once the document is verifiable and the name is present;
        inputs that were already sent are not sent again unless the last
        attempt ended in a service error.
        """
        document_type = DocumentType(document_type).value
        number = sanitize_document_number(document_number)
        full_name = f"{first_name} {last_name}".strip()
        key = (document_type, number, sanitize_name(full_name))

        if self._document is not None and self._document != (document_type, number):
            self.reset()
        elif self.result is not None and key != self._latest_key:
            self.reset()
        self._document = (document_type, number)
        self._latest_key = key

        if key == self._requested_key and self.status != VerificationStatus.ERROR:
            return
        if not (is_verifiable_document(number) and full_name):
            self.scheduler.cancel(VERIFICATION_KEY)
            return

        self._requested_key = key
        self.scheduler.schedule(
            VERIFICATION_KEY,
            self.delay_seconds,
            lambda: self.verify(document_type, number, first_name, last_name)
        )

    async def verify(self, document_type: DocumentType, document_number: str, first_name: str, last_name: str) -> VerificationResult:
        """Query the registry now and apply the result unless the inputs changed meanwhile."""
        document_type = DocumentType(document_type).value
        number = sanitize_document_number(document_number)
        full_name = f"{first_name} {last_name}".strip()
        key = (document_type, number, sanitize_name(full_name))
        self._document = (document_type, number)
        self._latest_key = key
        self._requested_key = key
        self._in_flight_key = key

        self.status = VerificationStatus.VERIFYING
        self.error_kind = None
        logger.info(f"Verifying {document_type} document")

        try:
            raw = await self.client.verify_license(document_type, number, first_name, last_name)
            result = self._enrich(VerificationResult.model_validate(raw), full_name)
            status, error_kind = self._classify(result)
        except RegistrationApiError as e:
            if e.is_unreachable:
                result = VerificationResult(is_valid=False, is_verified=False, error=e.message)
                status, error_kind = VerificationStatus.ERROR, VerificationErrorKind.SERVICE_UNAVAILABLE
            else:
                result = VerificationResult(is_valid=False, is_verified=False, error=e.message)
                status, error_kind = VerificationStatus.FAILED, VerificationErrorKind.NOT_FOUND
            logger.warning(f"License verification failed ({error_kind.value}): {e.message}")
        except ValidationError as e:
            logger.error(f"Unexpected registry response: {e.error_count()} invalid fields")
            result = VerificationResult(is_valid=False, is_verified=False, error=INVALID_RESPONSE)
            status, error_kind = VerificationStatus.ERROR, VerificationErrorKind.SERVICE_UNAVAILABLE

        if self._latest_key != key:
            logger.debug("Discarding stale license verification result")
            if self._in_flight_key == key:
                self.status = VerificationStatus.IDLE
                self._in_flight_key = None
            return result

        self._in_flight_key = None
        self._apply(result, status, error_kind)
        self.audit.record(
            "license_verification",
            f"License verification finished with status {status.value}",
            {
                "document_number": number,
                "status": status.value,
                "error_kind": error_kind.value if error_kind else None,
                "name_match_confidence": result.name_match.confidence if result.name_match else None,
            }
        )
        return result

    def reset(self) -> None:
        """Cancel any scheduled verification and discard the current result."""
        self.scheduler.cancel(VERIFICATION_KEY)
        had_result = self.result is not None
        self.status = VerificationStatus.IDLE
        self.result = None
        self.error_kind = None
        self._document = None
        self._latest_key = None
        self._requested_key = None
        if had_result and self.on_result is not None:
            self.on_result(None)

    def restore(self, result: Optional[VerificationResult], document_type: DocumentType, document_number: str,
                first_name: str, last_name: str) -> None:
        """Restore a persisted result without querying the registry again."""
        if result is None:
            return
        document_type = DocumentType(document_type).value
        number = sanitize_document_number(document_number)
        key = (document_type, number, sanitize_name(f"{first_name} {last_name}"))
        self.result = result
        self.status, self.error_kind = self._classify(result)
        self._document = (document_type, number)
        self._latest_key = key
        self._requested_key = key

    def can_unblock(self, document_type: Optional[str], document_number: str, field_errors: List[FieldError]) -> bool:
        """Whether the license step may be completed with the current inputs and result."""
        if field_errors or self.is_verifying or self.is_scheduled:
            return False
        if not document_type or not document_number:
            return False
        return not verification_errors(self.result)

    def _enrich(self, result: VerificationResult, full_name: str) -> VerificationResult:
        if not (result.is_valid and result.is_verified):
            return result
        specialty = result.specialty or DEFAULT_SPECIALTY
        update = {
            "specialty": specialty,
            "dashboard_access": dashboard_access_for(specialty),
            "name_match": self.name_matcher.compare(full_name, result.doctor_name) if result.doctor_name else None,
        }
        return result.model_copy(update=update)

    @staticmethod
    def _classify(result: VerificationResult) -> Tuple[VerificationStatus, Optional[VerificationErrorKind]]:
        if not (result.is_valid and result.is_verified):
            return VerificationStatus.FAILED, VerificationErrorKind.NOT_FOUND
        if result.name_match is not None and result.name_match.matches is False:
            return VerificationStatus.VERIFIED, VerificationErrorKind.NAME_MISMATCH
        return VerificationStatus.VERIFIED, None

    def _apply(self, result: VerificationResult, status: VerificationStatus,
               error_kind: Optional[VerificationErrorKind]) -> None:
        self.result = result
        self.status = status
        self.error_kind = error_kind
        if self.on_result is not None:
            self.on_result(result)
