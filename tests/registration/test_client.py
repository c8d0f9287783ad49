"""
Tests for the registration backend HTTP client.
"""
import httpx
import pytest

from doctor_registration.registration.client import RegistrationApiClient
from doctor_registration.registration.exceptions import RegistrationApiError


def make_client(handler):
    return RegistrationApiClient(base_url="http://registry.test/api", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_check_availability(api_client, fake_api):
    fake_api.taken["email"].add("ana@gmail.com")
    assert await api_client.check_availability("email", "ana@gmail.com") is False
    assert await api_client.check_availability("email", "luis@gmail.com") is True


@pytest.mark.asyncio
async def test_verify_license_unwraps_envelope(api_client):
    result = await api_client.verify_license("cedula_identidad", "V-12345678", "JUAN", "PEREZ")
    assert result["doctorName"] == "JUAN PEREZ"
    assert "success" not in result


@pytest.mark.asyncio
async def test_verify_license_accepts_bare_result():
    client = make_client(lambda request: httpx.Response(200, json={"isValid": True, "isVerified": False}))
    result = await client.verify_license("cedula_identidad", "V-12345678", "JUAN", "PEREZ")
    assert result == {"isValid": True, "isVerified": False}


@pytest.mark.asyncio
async def test_finalize_sends_camel_case_draft(api_client, fake_api, valid_draft):
    response = await api_client.finalize_registration(valid_draft)

    assert response.user_id == "user-1"
    assert response.needs_email_verification is True
    body = fake_api.calls_to("/register/finalize")[0]
    assert body["firstName"] == "JUAN"
    assert body["documentNumber"] == "V-12345678"
    assert body["workingHours"]["monday"]["startTime"] == "08:00"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, message", [
    ({"error": "email already registered"}, "email already registered"),
    ({"detail": "invalid document"}, "invalid document"),
    ({}, "HTTP 400"),
])
async def test_error_responses_raise(payload, message):
    client = make_client(lambda request: httpx.Response(400, json=payload))
    with pytest.raises(RegistrationApiError) as exc_info:
        await client.check_availability("email", "ana@gmail.com")
    assert exc_info.value.message == message
    assert exc_info.value.status_code == 400
    assert not exc_info.value.is_unreachable


@pytest.mark.asyncio
async def test_transport_errors_raise(api_client, fake_api):
    fake_api.failures["/check-availability"] = 0
    with pytest.raises(RegistrationApiError) as exc_info:
        await api_client.check_availability("email", "ana@gmail.com")
    assert exc_info.value.status_code is None
    assert exc_info.value.is_unreachable


@pytest.mark.asyncio
async def test_malformed_finalize_response_raises(api_client, fake_api, valid_draft):
    fake_api.responses["/register/finalize"] = {"ok": True}
    with pytest.raises(RegistrationApiError) as exc_info:
        await api_client.finalize_registration(valid_draft)
    assert exc_info.value.message == "invalid response from the registration service"
    assert exc_info.value.status_code == 502
