"""
Step validation for the doctor registration wizard.

Each step is described declaratively by a pydantic rules model (field rules)
plus a list of cross-field rule functions. The orchestrator converts every
pydantic ValidationError into field-scoped FieldError entries; validation
never raises to its callers.
"""
import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Type

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ValidationError, ValidationInfo, field_validator

from .schemas import (
    DocumentType,
    FieldError,
    IdentityVerification,
    IdentityVerificationStatus,
    RegistrationDraft,
    Step,
    ValidationResult,
    VerificationResult,
    WorkingDay,
)
from .steps import STEP_ORDER

# Set up logging
logger = logging.getLogger(__name__)

# Field limits
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
EMAIL_MIN_LENGTH = 5
EMAIL_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128
TEXT_MIN_LENGTH = 2
TEXT_MAX_LENGTH = 100
BIO_MAX_LENGTH = 1000
MIN_GRADUATION_YEAR = 1950
MAX_YEARS_OF_EXPERIENCE = 60
MAX_SUB_SPECIALTIES = 3
MIN_FEATURES = 1
MAX_FEATURES = 10
MAX_SHIFT_HOURS = 12
IDENTITY_VERIFICATION_MAX_AGE_DAYS = 30
MIN_PASSWORD_SCORE = 75

# National numbering plan
COUNTRY_CODE = "58"
MOBILE_PREFIXES = ("412", "414", "416", "424", "426")
_MOBILE_PATTERN = re.compile(r"^58(412|414|416|424|426)\d{7}$")
_LANDLINE_PATTERN = re.compile(r"^582\d{9}$")

DOCUMENT_PREFIXES = {
    DocumentType.CEDULA_IDENTIDAD: "V-",
    DocumentType.CEDULA_EXTRANJERA: "E-",
}
_DOCUMENT_PATTERN = re.compile(r"^[VE]-\d{7,8}$")
_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")
_WHITESPACE = re.compile(r"\s+")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
COMMON_PASSWORD_PATTERNS = ("123456", "password", "admin", "qwerty", "123123")
PASSWORD_SPECIAL_CHARACTERS = re.compile(r"[@$!%*?&._-]")
CONTACT_TERMS = ("teléfono", "telefono", "dirección", "direccion", "email personal", "casa", "phone number", "home address")


# ---------------------------------------------------------------------------
# Sanitizers
# ---------------------------------------------------------------------------

def sanitize_name(value: str) -> str:
    """Upper-case, keep letters (including diacritics) and spaces, collapse whitespace."""
    if not value:
        return ""
    letters = "".join(ch for ch in value.upper() if ch.isalpha() or ch.isspace())
    return _WHITESPACE.sub(" ", letters).strip()


def sanitize_email(value: str) -> str:
    return (value or "").strip().lower()


def sanitize_document_number(value: str) -> str:
    return _WHITESPACE.sub("", (value or "").upper())


def normalize_phone(value: str) -> str:
    """
    Reduce a phone number to its digits with the country code.

    "0414-123.45.67", "414 1234567" and "+58 414 1234567" all become
    "584141234567". Numbers that fit none of those shapes are returned as
    bare digits and fail the numbering plan check.
    """
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 11 and digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if len(digits) == 10:
        return COUNTRY_CODE + digits
    return digits


def is_valid_phone(value: str) -> bool:
    normalized = normalize_phone(value)
    return bool(_MOBILE_PATTERN.match(normalized) or _LANDLINE_PATTERN.match(normalized))


def format_phone_display(value: str) -> str:
    """Display form of a valid number: +58 414 123 4567."""
    normalized = normalize_phone(value)
    if not is_valid_phone(normalized):
        return value
    local = normalized[2:]
    return f"+{COUNTRY_CODE} {local[:3]} {local[3:6]} {local[6:]}"


def is_verifiable_document(document_number: str) -> bool:
    """A document can be sent to the registry once it has a V-/E- prefix and at least 7 digits."""
    number = sanitize_document_number(document_number)
    return number[:2] in ("V-", "E-") and len(number) >= 9


def is_valid_email(value: str) -> bool:
    email = sanitize_email(value)
    if not EMAIL_MIN_LENGTH <= len(email) <= EMAIL_MAX_LENGTH:
        return False
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def is_valid_document(document_type: DocumentType, document_number: str) -> bool:
    number = sanitize_document_number(document_number)
    prefix = DOCUMENT_PREFIXES.get(DocumentType(document_type))
    return bool(_DOCUMENT_PATTERN.match(number)) and prefix is not None and number.startswith(prefix)


class PasswordStrength(NamedTuple):
    is_valid: bool
    errors: List[str]
    score: int


def check_password_strength(password: str) -> PasswordStrength:
    """
    Score a password from 0 to 100.

    Length, an upper-case letter, a lower-case letter and a digit are
    required (25 points each); special characters, length of 8 or more and
    8 or more distinct characters add 10 points each; common patterns are
    rejected and cost 20 points. Valid passwords have no errors and a score
    of at least 75.
    """
    errors: List[str] = []
    score = 0

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"password must have at least {PASSWORD_MIN_LENGTH} characters")
    else:
        score += 25
    if not re.search(r"[A-Z]", password):
        errors.append("password must contain an upper-case letter")
    else:
        score += 25
    if not re.search(r"[a-z]", password):
        errors.append("password must contain a lower-case letter")
    else:
        score += 25
    if not re.search(r"\d", password):
        errors.append("password must contain a number")
    else:
        score += 25

    if PASSWORD_SPECIAL_CHARACTERS.search(password):
        score += 10
    if any(pattern in password.lower() for pattern in COMMON_PASSWORD_PATTERNS):
        errors.append("password must not contain common patterns such as '123456' or 'password'")
        score -= 20
    if len(password) >= 8:
        score += 10
    if len(set(password.lower())) >= 8:
        score += 10

    score = min(100, max(0, score))
    return PasswordStrength(is_valid=not errors and score >= MIN_PASSWORD_SCORE, errors=errors, score=score)


def _parse_time(value: str) -> Optional[int]:
    """Minutes since midnight for HH:MM, None when malformed."""
    if not value or not _TIME_PATTERN.match(value):
        return None
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------

def _check_document_number(value: str) -> str:
    number = sanitize_document_number(value)
    if not number:
        raise ValueError("document number is required")
    if not _DOCUMENT_PATTERN.match(number):
        raise ValueError("document number must look like V-12345678 or E-12345678")
    return number


class PersonalInfoRules(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    password: str
    confirm_password: str

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def check_name(cls, value, info: ValidationInfo):
        label = "first name" if info.field_name == "first_name" else "last name"
        name = sanitize_name(value or "")
        if not name:
            raise ValueError(f"{label} is required")
        if len(name) < NAME_MIN_LENGTH:
            raise ValueError(f"{label} must have at least {NAME_MIN_LENGTH} characters")
        if len(name) > NAME_MAX_LENGTH:
            raise ValueError(f"{label} cannot exceed {NAME_MAX_LENGTH} characters")
        if re.search(r"(.)\1{3,}", name):
            raise ValueError(f"{label} format is invalid")
        return name

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, value):
        email = sanitize_email(value or "")
        if not email:
            raise ValueError("email is required")
        if len(email) < EMAIL_MIN_LENGTH:
            raise ValueError(f"email must have at least {EMAIL_MIN_LENGTH} characters")
        if len(email) > EMAIL_MAX_LENGTH:
            raise ValueError(f"email cannot exceed {EMAIL_MAX_LENGTH} characters")
        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError:
            raise ValueError("email format is invalid")
        return email

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, value):
        if not (value or "").strip():
            raise ValueError("phone number is required")
        phone = normalize_phone(value)
        if not is_valid_phone(phone):
            raise ValueError("phone must be a valid national mobile (0412/0414/0416/0424/0426) or landline number")
        return phone

    @field_validator("password", mode="before")
    @classmethod
    def check_password(cls, value):
        password = value or ""
        if not password:
            raise ValueError("password is required")
        if len(password) > PASSWORD_MAX_LENGTH:
            raise ValueError(f"password cannot exceed {PASSWORD_MAX_LENGTH} characters")
        strength = check_password_strength(password)
        if not strength.is_valid:
            raise ValueError(strength.errors[0] if strength.errors else "password is too weak")
        return password


class ProfessionalInfoRules(BaseModel):
    document_type: DocumentType
    document_number: str
    university: Optional[str] = None
    graduation_year: Optional[int] = None
    medical_board: Optional[str] = None
    years_of_experience: Optional[int] = None
    bio: Optional[str] = None

    @field_validator("document_number", mode="before")
    @classmethod
    def check_document_number(cls, value):
        return _check_document_number(value)

    @field_validator("university", "medical_board", mode="before")
    @classmethod
    def check_optional_text(cls, value, info: ValidationInfo):
        text = _optional_text(value)
        if text is None:
            return None
        label = info.field_name.replace("_", " ")
        if len(text) < TEXT_MIN_LENGTH:
            raise ValueError(f"{label} must have at least {TEXT_MIN_LENGTH} characters")
        if len(text) > TEXT_MAX_LENGTH:
            raise ValueError(f"{label} cannot exceed {TEXT_MAX_LENGTH} characters")
        return text

    @field_validator("graduation_year")
    @classmethod
    def check_graduation_year(cls, value):
        if value is None:
            return value
        current_year = datetime.now(timezone.utc).year
        if value < MIN_GRADUATION_YEAR:
            raise ValueError(f"graduation year cannot be earlier than {MIN_GRADUATION_YEAR}")
        if value > current_year:
            raise ValueError("graduation year cannot be in the future")
        return value

    @field_validator("years_of_experience")
    @classmethod
    def check_years_of_experience(cls, value):
        if value is None:
            raise ValueError("years of experience is required")
        if value < 0:
            raise ValueError("years of experience cannot be negative")
        if value > MAX_YEARS_OF_EXPERIENCE:
            raise ValueError(f"years of experience cannot exceed {MAX_YEARS_OF_EXPERIENCE}")
        return value

    @field_validator("bio", mode="before")
    @classmethod
    def check_bio(cls, value):
        bio = _optional_text(value)
        if bio is None:
            return None
        if len(bio) > BIO_MAX_LENGTH:
            raise ValueError(f"biography cannot exceed {BIO_MAX_LENGTH} characters")
        lowered = bio.lower()
        if any(term in lowered for term in CONTACT_TERMS):
            raise ValueError("biography must not include personal contact information")
        return bio


class SpecialtySelectionRules(BaseModel):
    specialty: Optional[str] = None
    sub_specialties: List[str] = []

    @field_validator("specialty", mode="before")
    @classmethod
    def check_specialty(cls, value):
        specialty = _optional_text(value)
        if specialty is None:
            raise ValueError("a medical specialty must be selected")
        return specialty

    @field_validator("sub_specialties")
    @classmethod
    def check_sub_specialties(cls, value):
        if len(value) > MAX_SUB_SPECIALTIES:
            raise ValueError(f"no more than {MAX_SUB_SPECIALTIES} sub-specialties can be selected")
        return value


class LicenseVerificationRules(BaseModel):
    document_type: DocumentType
    document_number: str

    @field_validator("document_number", mode="before")
    @classmethod
    def check_document_number(cls, value):
        return _check_document_number(value)


class IdentityVerificationRules(BaseModel):
    identity_verification: Optional[IdentityVerification] = None

    @field_validator("identity_verification")
    @classmethod
    def check_identity_verification(cls, value):
        if value is None or not value.verification_id:
            raise ValueError("identity verification has not been started")
        if value.status != IdentityVerificationStatus.VERIFIED:
            raise ValueError("identity verification must be completed")
        if value.verified_at is None:
            raise ValueError("identity verification date is missing")
        verified_at = value.verified_at
        if verified_at.tzinfo is None:
            verified_at = verified_at.replace(tzinfo=timezone.utc)
        now = datetime.now(timezone.utc)
        if verified_at > now or now - verified_at > timedelta(days=IDENTITY_VERIFICATION_MAX_AGE_DAYS):
            raise ValueError(f"identity verification must be recent (at most {IDENTITY_VERIFICATION_MAX_AGE_DAYS} days)")
        return value


class DashboardConfigurationRules(BaseModel):
    selected_features: List[str] = []
    working_hours: Dict[str, WorkingDay] = {}

    @field_validator("selected_features")
    @classmethod
    def check_features(cls, value):
        if len(value) < MIN_FEATURES:
            raise ValueError("at least one dashboard feature must be selected")
        if len(value) > MAX_FEATURES:
            raise ValueError(f"no more than {MAX_FEATURES} dashboard features can be selected")
        if len(set(value)) != len(value):
            raise ValueError("dashboard features must not be repeated")
        return value

    @field_validator("working_hours")
    @classmethod
    def check_working_hours(cls, value):
        unknown = [day for day in value if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekday: {unknown[0]}")
        working_days = {day: hours for day, hours in value.items() if hours.is_working_day}
        if not working_days:
            raise ValueError("at least one working day must be configured")
        for day, hours in working_days.items():
            start = _parse_time(hours.start_time) if hours.start_time else None
            end = _parse_time(hours.end_time) if hours.end_time else None
            if (hours.start_time and start is None) or (hours.end_time and end is None):
                raise ValueError(f"{day}: times must use the HH:MM format")
            if start is not None and end is not None:
                if start >= end:
                    raise ValueError(f"{day}: start time must be before end time")
                if end - start > MAX_SHIFT_HOURS * 60:
                    raise ValueError(f"{day}: a working day cannot exceed {MAX_SHIFT_HOURS} hours")
        return value


# ---------------------------------------------------------------------------
# Cross-field rules
# ---------------------------------------------------------------------------

CrossFieldRule = Callable[[RegistrationDraft], List[FieldError]]


def passwords_match(draft: RegistrationDraft) -> List[FieldError]:
    if not draft.confirm_password:
        return [FieldError(field="confirm_password", message="password confirmation is required")]
    if draft.password != draft.confirm_password:
        return [FieldError(field="confirm_password", message="passwords do not match")]
    return []


def document_prefix_matches_type(draft: RegistrationDraft) -> List[FieldError]:
    number = sanitize_document_number(draft.document_number)
    if not _DOCUMENT_PATTERN.match(number):
        return []  # reported by the field rule
    expected = DOCUMENT_PREFIXES[DocumentType(draft.document_type)]
    if not number.startswith(expected):
        return [FieldError(
            field="document_number",
            message=f"document number must start with {expected} for the selected document type"
        )]
    return []


def verification_errors(result: Optional[VerificationResult]) -> List[FieldError]:
    """
    Errors that keep a verification result from unblocking the wizard.

    A missing name match passes; only an explicit mismatch blocks.
    """
    if result is None:
        return [FieldError(field="verification_result", message="the medical license has not been verified yet")]
    if not (result.is_valid and result.is_verified):
        return [FieldError(
            field="verification_result",
            message=result.error or "the document was not found in the official medical registry"
        )]
    if result.name_match is not None and result.name_match.matches is False:
        return [FieldError(
            field="name_match",
            message="the name does not match the official registry; return to personal information to correct it"
        )]
    return []


def verification_is_sufficient(draft: RegistrationDraft) -> List[FieldError]:
    return verification_errors(draft.verification_result)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def _to_field_errors(exc: ValidationError) -> List[FieldError]:
    errors = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = str(loc[0]) if loc else "__root__"
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        errors.append(FieldError(field=field, message=message))
    return errors


class ValidationOrchestrator:
    """
    Validates wizard steps against their declarative rules.

    validate() and validate_all() always return a ValidationResult.
    """
    STEP_RULES: Dict[Step, Type[BaseModel]] = {
        Step.PERSONAL_INFO: PersonalInfoRules,
        Step.PROFESSIONAL_INFO: ProfessionalInfoRules,
        Step.SPECIALTY_SELECTION: SpecialtySelectionRules,
        Step.LICENSE_VERIFICATION: LicenseVerificationRules,
        Step.IDENTITY_VERIFICATION: IdentityVerificationRules,
        Step.DASHBOARD_CONFIGURATION: DashboardConfigurationRules,
    }

    CROSS_FIELD_RULES: Dict[Step, List[CrossFieldRule]] = {
        Step.PERSONAL_INFO: [passwords_match],
        Step.PROFESSIONAL_INFO: [document_prefix_matches_type],
        Step.LICENSE_VERIFICATION: [document_prefix_matches_type, verification_is_sufficient],
    }

    def validate(self, step: Step, draft: RegistrationDraft) -> ValidationResult:
        step = Step(step)
        if step == Step.FINAL_REVIEW:
            return self.validate_all(draft)
        if step == Step.COMPLETED:
            return ValidationResult.ok()

        errors = self._check_fields(step, draft)
        for rule in self.CROSS_FIELD_RULES.get(step, []):
            errors.extend(rule(draft))

        result = ValidationResult.from_errors(errors)
        if result.is_valid:
            logger.debug(f"Step {step.value} passed validation")
        else:
            logger.debug(f"Step {step.value} failed validation on fields: {sorted(result.field_errors)}")
        return result

    def validate_all(self, draft: RegistrationDraft) -> ValidationResult:
        """Validate every data step before the final review."""
        errors: List[FieldError] = []
        seen = set()
        for step in STEP_ORDER:
            if step == Step.FINAL_REVIEW:
                continue
            for error in self.validate(step, draft).errors:
                key = (error.field, error.message)
                if key not in seen:
                    seen.add(key)
                    errors.append(error)
        return ValidationResult.from_errors(errors)

    def validate_field(self, step: Step, field: str, draft: RegistrationDraft) -> Optional[str]:
        """First error message for a single field of a step, None when it is valid."""
        return self.validate(step, draft).field_errors.get(field)

    def _check_fields(self, step: Step, draft: RegistrationDraft) -> List[FieldError]:
        rules = self.STEP_RULES[step]
        values = {name: getattr(draft, name) for name in rules.model_fields}
        try:
            rules.model_validate(values)
        except ValidationError as exc:
            return _to_field_errors(exc)
        return []
