"""
HTTP client for the registration backend.

Wraps the availability, license verification and finalize endpoints. Every
transport error, non-2xx response and malformed finalize response is raised
as RegistrationApiError.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import status
from pydantic import ValidationError

from ..config import settings
from .exceptions import RegistrationApiError
from .schemas import FinalizeResponse, RegistrationDraft

# Set up logging
logger = logging.getLogger(__name__)

INVALID_RESPONSE = "invalid response from the registration service"


class RegistrationApiClient:
    """
    Async client for the registration backend.

    Args:
        base_url: Backend base URL, defaults to settings.registration_api_base_url
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used to mock the backend)
    """
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_key: Optional[str] = None
    ):
        headers = {"Accept": "application/json"}
        api_key = api_key or settings.registration_api_key
        if api_key:
            headers["X-API-Key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.registration_api_base_url,
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            transport=transport,
            headers=headers
        )

    async def check_availability(self, field: str, value: str) -> bool:
        """Return True when no account uses the email or phone yet."""
        payload = await self._post(settings.availability_path, {"field": field, "value": value})
        return bool(payload.get("available", False))

    async def verify_license(
        self,
        document_type: str,
        document_number: str,
        first_name: str,
        last_name: str
    ) -> Dict[str, Any]:
        """
        Query the professional registry for a document.

        Returns the raw result, unwrapped from a {success, result, error}
        envelope when the backend uses one.
        """
        payload = await self._post(settings.license_verification_path, {
            "documentType": document_type,
            "documentNumber": document_number,
            "firstName": first_name,
            "lastName": last_name,
        })
        if isinstance(payload.get("result"), dict):
            result = dict(payload["result"])
            if payload.get("error") and not result.get("error"):
                result["error"] = payload["error"]
            return result
        return payload

    async def finalize_registration(self, draft: RegistrationDraft) -> FinalizeResponse:
        """Create the doctor account from the complete draft."""
        payload = await self._post(settings.finalize_path, draft.model_dump(mode="json", by_alias=True))
        try:
            return FinalizeResponse.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Unexpected finalize response: {e.error_count()} invalid fields")
            raise RegistrationApiError(INVALID_RESPONSE, status_code=status.HTTP_502_BAD_GATEWAY) from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Request to {path} failed: {str(e)}")
            raise RegistrationApiError(f"Registration service unreachable: {str(e)}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_error:
            message = payload.get("error") or payload.get("detail") or f"HTTP {response.status_code}"
            logger.warning(f"Request to {path} returned {response.status_code}: {message}")
            raise RegistrationApiError(str(message), status_code=response.status_code)
        return payload
