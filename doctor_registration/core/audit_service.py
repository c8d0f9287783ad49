"""
Audit trail for registration events.

Events are logged through the "doctor_registration.audit" logger and, when a
session factory is configured, stored in the audit_logs table. Personal data
is masked before an event leaves this module.
"""
import re
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit_models import AuditLog

# Set up logging
logger = logging.getLogger("doctor_registration.audit")

SENSITIVE_KEYS = {"password", "confirm_password", "confirmPassword", "api_key", "token"}
_EMAIL = re.compile(r"^([^@\s]+)@([^@\s]+)$")


def mask_value(value: Any) -> Any:
    """Mask digits with X and the local part of email addresses."""
    if isinstance(value, str):
        email = _EMAIL.match(value)
        if email:
            local = email.group(1)
            return f"{local[0]}***@{email.group(2)}"
        return re.sub(r"\d", "X", value)
    if isinstance(value, dict):
        return mask_personal_data(value)
    if isinstance(value, (list, tuple)):
        return [mask_value(item) for item in value]
    return value


def mask_personal_data(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Copy of context that is safe to log.

    Password-like keys are removed, emails keep only their first character
    and domain, and every digit is replaced by X.
    """
    if not context:
        return {}
    return {
        key: mask_value(value)
        for key, value in context.items()
        if key not in SENSITIVE_KEYS
    }


def create_audit_log(
    db: Session,
    category: str,
    message: str,
    session_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Creates an audit log entry.

    Args:
        db: The database session.
        category: Event category (e.g., 'availability_check_failed', 'registration_submitted').
        message: Human-readable description of the event.
        session_id: Registration session the event belongs to (if applicable).
        context: Additional event data, masked before it is stored.

    Returns:
        The created AuditLog object.
    """
    audit_entry = AuditLog(
        session_id=session_id,
        category=category,
        message=message,
        context=mask_personal_data(context)
    )
    db.add(audit_entry)
    db.commit()
    db.refresh(audit_entry)
    return audit_entry


class AuditTrail:
    """Audit sink shared by the registration services of one session."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None, session_id: Optional[str] = None):
        self.session_factory = session_factory
        self.session_id = session_id

    def record(self, category: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        masked = mask_personal_data(context)
        logger.info(f"[{category}] session={self.session_id} {message} {masked}")
        if self.session_factory is None:
            return
        db = self.session_factory()
        try:
            create_audit_log(db, category, message, session_id=self.session_id, context=masked)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to store audit event '{category}': {str(e)}")
        finally:
            db.close()

    def for_session(self, session_id: str) -> "AuditTrail":
        return AuditTrail(self.session_factory, session_id)
