"""
Registration Schemas - Pydantic models for the doctor registration workflow.

Every model serializes with camelCase aliases (the wire format shared with the
front end and the registration backend) and accepts snake_case names in Python.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time used for progress and snapshot timestamps."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model with camelCase aliases"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Step(str, Enum):
    """Steps of the doctor registration wizard, in order."""
    PERSONAL_INFO = "personal_info"
    PROFESSIONAL_INFO = "professional_info"
    SPECIALTY_SELECTION = "specialty_selection"
    LICENSE_VERIFICATION = "license_verification"
    IDENTITY_VERIFICATION = "identity_verification"
    DASHBOARD_CONFIGURATION = "dashboard_configuration"
    FINAL_REVIEW = "final_review"
    COMPLETED = "completed"


class DocumentType(str, Enum):
    """Identity document accepted by the professional registry."""
    CEDULA_IDENTIDAD = "cedula_identidad"
    CEDULA_EXTRANJERA = "cedula_extranjera"


class IdentityVerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class WorkingDay(CamelModel):
    """
    Working hours of a single weekday

    Fields:
    - is_working_day: Whether the doctor attends on this day
    - start_time: Start of the shift (HH:MM)
    - end_time: End of the shift (HH:MM)
    """
    is_working_day: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class IdentityVerification(CamelModel):
    """Outcome of the identity verification performed by the identity provider."""
    verification_id: str = ""
    status: IdentityVerificationStatus = IdentityVerificationStatus.PENDING
    verified_at: Optional[datetime] = None


class NameMatch(CamelModel):
    """
    Comparison between the name typed by the doctor and the registry name

    Fields:
    - matches: Whether the names are considered the same person
    - confidence: Similarity score between 0 and 1
    - message: Human-readable explanation
    """
    matches: bool
    confidence: float
    message: str = ""


class DashboardAccess(CamelModel):
    """Dashboards assigned to the doctor from the verified specialty."""
    primary_dashboard: str
    allowed_dashboards: List[str] = Field(default_factory=list)
    reason: str = ""


class VerificationResult(CamelModel):
    """
    License/identity verification result returned by the professional registry

    Fields:
    - is_valid: The request was processed and the document is well formed
    - is_verified: The document belongs to a registered medical professional
    - doctor_name: Name on the registry record
    - specialty: Specialty on the registry record
    - name_match: Comparison between the typed name and doctor_name
    - dashboard_access: Dashboards derived from the specialty
    - error: Error message when the verification could not be completed
    """
    is_valid: bool = False
    is_verified: bool = False
    doctor_name: Optional[str] = None
    specialty: Optional[str] = None
    license_status: Optional[str] = None
    verification_source: Optional[str] = None
    verification_id: Optional[str] = None
    name_match: Optional[NameMatch] = None
    dashboard_access: Optional[DashboardAccess] = None
    error: Optional[str] = None


class RegistrationDraft(CamelModel):
    """
    In-progress registration data aggregate.

    Incomplete values are normal while the wizard is being filled in; the
    step rules live in the validation module.
    """
    # Identity
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    password: str = ""
    confirm_password: str = ""

    # Professional
    document_type: DocumentType = DocumentType.CEDULA_IDENTIDAD
    document_number: str = ""
    university: Optional[str] = None
    graduation_year: Optional[int] = None
    medical_board: Optional[str] = None
    years_of_experience: Optional[int] = None
    bio: Optional[str] = None

    # Downstream
    specialty: Optional[str] = None
    sub_specialties: List[str] = Field(default_factory=list)
    working_hours: Dict[str, WorkingDay] = Field(default_factory=dict)
    selected_features: List[str] = Field(default_factory=list)

    # Attached verification results
    verification_result: Optional[VerificationResult] = None
    dashboard_access: Optional[DashboardAccess] = None
    identity_verification: Optional[IdentityVerification] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DraftUpdate(CamelModel):
    """
    Partial draft update sent by the front end.

    Only the fields explicitly set in the request are merged into the draft.
    Fields that always hold a value in the draft cannot be set to null.
    Verification results are never accepted from the client.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None
    university: Optional[str] = None
    graduation_year: Optional[int] = None
    medical_board: Optional[str] = None
    years_of_experience: Optional[int] = None
    bio: Optional[str] = None
    specialty: Optional[str] = None
    sub_specialties: Optional[List[str]] = None
    working_hours: Optional[Dict[str, WorkingDay]] = None
    selected_features: Optional[List[str]] = None
    identity_verification: Optional[IdentityVerification] = None

    @field_validator(
        "first_name", "last_name", "email", "phone", "password", "confirm_password",
        "document_type", "document_number", "sub_specialties", "working_hours", "selected_features",
        mode="before"
    )
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v


class RegistrationProgress(CamelModel):
    """
    Wizard progress

    Fields:
    - current_step: Step being displayed
    - completed_steps: Completed steps, in wizard order, without duplicates
    - total_steps: Number of data steps
    - percentage: round(len(completed_steps) / total_steps * 100)
    - is_complete: True exactly when percentage is 100
    - last_updated: Time of the last progress change
    """
    current_step: Step = Step.PERSONAL_INFO
    completed_steps: List[Step] = Field(default_factory=list)
    total_steps: int = 7
    percentage: int = 0
    is_complete: bool = False
    last_updated: datetime = Field(default_factory=utcnow)


class FieldValidationState(CamelModel):
    """
    Availability state of an asynchronously checked field

    Fields:
    - is_available: True/False once checked, None while unknown
    - is_checking: A request for the current value is in flight
    - last_checked_value: Last value whose availability was received
    """
    is_available: Optional[bool] = None
    is_checking: bool = False
    last_checked_value: Optional[str] = None


class FieldError(CamelModel):
    field: str
    message: str


class ValidationResult(CamelModel):
    """Outcome of validating one step (or the whole draft)."""
    is_valid: bool
    errors: List[FieldError] = Field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def from_errors(cls, errors: List[FieldError]) -> "ValidationResult":
        return cls(is_valid=not errors, errors=errors)

    @property
    def field_errors(self) -> Dict[str, str]:
        """First error message for each failing field."""
        result: Dict[str, str] = {}
        for error in self.errors:
            result.setdefault(error.field, error.message)
        return result


class StepGate(CamelModel):
    """Whether a step may be completed right now, combining sync and async checks."""
    step: Step
    can_submit: bool
    errors: List[FieldError] = Field(default_factory=list)


class Notification(CamelModel):
    """Toast-style notification consumed by the UI layer."""
    title: str
    description: str = ""
    severity: Severity = Severity.INFO


class FinalizeResponse(CamelModel):
    """Successful response of the finalize registration endpoint."""
    user_id: str
    profile_id: str
    needs_email_verification: bool = False


class SubmissionResult(CamelModel):
    success: bool
    data: Optional[FinalizeResponse] = None
    error: Optional[str] = None
    errors: List[FieldError] = Field(default_factory=list)


class NavigationResult(CamelModel):
    """
    Outcome of a navigation request

    Fields:
    - success: Whether the wizard moved (or submitted) as requested
    - current_step: Step displayed after the request
    - errors: Validation errors that blocked the request
    - submit_requested: The last data step was completed and submission is due
    - submission: Submission outcome when the request triggered one
    """
    success: bool
    current_step: Step
    errors: List[FieldError] = Field(default_factory=list)
    submit_requested: bool = False
    submission: Optional[SubmissionResult] = None


class PersistedDraft(CamelModel):
    """Snapshot written to durable storage."""
    data: RegistrationDraft
    progress: RegistrationProgress
    timestamp: datetime
    session_id: str


class VerificationState(CamelModel):
    status: str
    result: Optional[VerificationResult] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None


class RegistrationStateResponse(CamelModel):
    """Session state returned by the registration API."""
    session_id: str
    draft: RegistrationDraft
    progress: RegistrationProgress
    route: str
    availability: Dict[str, FieldValidationState]
    verification: VerificationState
    gate: StepGate
    is_submitting: bool = False
    notifications: List[Notification] = Field(default_factory=list)


class NavigationResponse(CamelModel):
    """Navigation outcome together with the resulting session state."""
    result: NavigationResult
    state: RegistrationStateResponse


class SubmissionResponse(CamelModel):
    result: SubmissionResult
    state: RegistrationStateResponse
