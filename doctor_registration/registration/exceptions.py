"""
Registration-specific exceptions.
"""
from fastapi import HTTPException, status
from typing import List, Optional

from ..exceptions import AppException

class RegistrationException(HTTPException):
    """Base class for registration session exceptions."""
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

class SessionNotFoundException(RegistrationException):
    """Exception raised when a registration session does not exist."""
    def __init__(self, session_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Registration session '{session_id}' not found"
        )

class StepNotAccessibleException(RegistrationException):
    """Exception raised when a step is requested before its predecessor is completed."""
    def __init__(self, step: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Step '{step}' is not accessible yet. Complete the previous steps first"
        )

class SubmissionInProgressException(RegistrationException):
    """Exception raised when a submission is attempted while another one is in flight."""
    def __init__(self, detail: str = "A submission for this registration is already in progress"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class RegistrationCompletedException(RegistrationException):
    """Exception raised when a completed registration is modified."""
    def __init__(self, detail: str = "This registration has already been submitted"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class InvalidDraftUpdateException(AppException):
    """Exception raised when an update cannot be merged into the draft."""
    def __init__(self, fields: List[str]):
        self.fields = fields
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid values for: {', '.join(fields)}"
        )


class RegistrationApiError(Exception):
    """
    Raised by the registration backend client on transport errors and non-2xx responses.

    Attributes:
        status_code: HTTP status of the response, None when the request never completed
        message: Machine-readable error message from the backend or the transport
    """
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_unreachable(self) -> bool:
        """True when the service could not be reached or failed on its side."""
        return self.status_code is None or self.status_code >= 500
