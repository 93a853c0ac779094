"""Tests for the certificate API endpoints and per-device serialization."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from certvendor.api import operations as operations_api
from certvendor.api.auth import require_api_key
from certvendor.ca.certificate_generator import CertificateGenerationError
from certvendor.domain.errors import (
    AuthorizationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from certvendor.domain.models import AuthorityParameters, ResponseOutcome, SubjectInfo
from certvendor.domain.states import ErrorCode
from certvendor.services.device_locks import DeviceLocks
from main import app


@pytest.fixture
def service():
    """Lifecycle service double injected through the dependency."""
    mock_service = MagicMock()
    mock_service.activate = AsyncMock()
    mock_service.activate_with_csr = AsyncMock()
    mock_service.acknowledge = AsyncMock()

    app.dependency_overrides[operations_api.get_lifecycle_service] = lambda: mock_service
    app.dependency_overrides[require_api_key] = lambda: None
    yield mock_service
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


class TestEndpoints:
    """Tests for request mapping and response echo."""

    def test_activate_returns_location(self, service, client):
        """Test that the activation outcome is echoed to the caller."""
        service.activate.return_value = ResponseOutcome.success("dev-1", location="https://signed")

        response = client.post("/certificates/dev-1/activate")

        assert response.status_code == 200
        assert response.json() == {
            "device_id": "dev-1",
            "status": "SUCCESS",
            "message": None,
            "payload": {"location": "https://signed"},
        }
        service.activate.assert_awaited_once_with("dev-1")

    def test_csr_maps_camel_case_body(self, service, client):
        """Test that the wire body is converted to domain parameters."""
        service.activate_with_csr.return_value = ResponseOutcome.success(
            "dev-1", certificate="PEM", certificateId="abc"
        )

        response = client.post(
            "/certificates/dev-1/csr",
            json={
                "csr": "CSR-PEM",
                "previousCertificateId": "P1",
                "acmpcaParameters": {
                    "acmpcaCaAlias": "factory1",
                    "certInfo": {"commonName": "dev-1", "country": "US"},
                },
            },
        )

        assert response.status_code == 200
        assert response.json()["payload"] == {"certificate": "PEM", "certificateId": "abc"}
        service.activate_with_csr.assert_awaited_once_with(
            "dev-1",
            "CSR-PEM",
            previous_certificate_id="P1",
            authority_parameters=AuthorityParameters(
                managed_ca_alias="factory1",
                subject=SubjectInfo(country="US", common_name="dev-1"),
            ),
        )

    def test_csr_empty_body_rejected(self, service, client):
        """Test that an empty CSR never reaches the service."""
        response = client.post("/certificates/dev-1/csr", json={"csr": ""})

        assert response.status_code == 422
        service.activate_with_csr.assert_not_called()

    def test_ack_passes_certificate_ids(self, service, client):
        """Test that acknowledge receives current and previous certificate IDs."""
        service.acknowledge.return_value = ResponseOutcome.success("dev-1", message="OK")

        response = client.post(
            "/certificates/dev-1/ack",
            json={"certificateId": "P1", "previousCertificateId": "P2"},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "OK"
        service.acknowledge.assert_awaited_once_with("dev-1", "P1", previous_certificate_id="P2")

    def test_requires_api_key(self, client):
        """Test that endpoints are closed without an API key."""
        response = client.post("/certificates/dev-1/activate")

        assert response.status_code == 401


class TestErrorMapping:
    """Tests for lifecycle error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error, status_code, code",
        [
            (ValidationError("csr must be a non-empty string"), 400, "INVALID_REQUEST"),
            (AuthorizationError(ErrorCode.DEVICE_NOT_WHITELISTED), 403, "DEVICE_NOT_WHITELISTED"),
            (NotFoundError(ErrorCode.CERTIFICATE_NOT_FOUND), 404, "CERTIFICATE_NOT_FOUND"),
            (UpstreamError(ErrorCode.UNABLE_TO_ATTACH_POLICY, "ThrottlingException"), 502, "UNABLE_TO_ATTACH_POLICY"),
        ],
    )
    def test_error_status(self, service, client, error, status_code, code):
        """Test that each error kind maps to its status and carries its code."""
        service.activate.side_effect = error

        response = client.post("/certificates/dev-1/activate")

        assert response.status_code == status_code
        detail = response.json()["detail"]
        assert detail["code"] == code
        assert detail["error"] == type(error).__name__

    def test_signing_failure_is_bad_request(self, service, client):
        """Test that a CSR the CA cannot sign is reported as a bad request."""
        service.activate_with_csr.side_effect = CertificateGenerationError("Invalid CSR format")

        response = client.post("/certificates/dev-1/csr", json={"csr": "garbage"})

        assert response.status_code == 400
        assert response.json()["detail"] == {
            "error": "CertificateGenerationError",
            "code": "INVALID_REQUEST",
            "detail": "Invalid CSR format",
        }

    def test_uninitialized_service(self):
        """Test that using the API before startup wiring fails loudly."""
        operations_api.set_lifecycle_service(None)

        with pytest.raises(RuntimeError):
            operations_api.get_lifecycle_service()


class TestDeviceLocks:
    """Tests for per-device serialization."""

    @pytest.mark.asyncio
    async def test_same_device_is_serialized(self):
        """Test that a second operation on a device waits for the first."""
        locks = DeviceLocks()
        order: list[str] = []
        release = asyncio.Event()

        async def first():
            async with locks.hold("dev-1"):
                order.append("first-start")
                await release.wait()
                order.append("first-end")

        async def second():
            async with locks.hold("dev-1"):
                order.append("second")

        first_task = asyncio.create_task(first())
        await asyncio.sleep(0)
        second_task = asyncio.create_task(second())
        await asyncio.sleep(0)

        assert locks.is_locked("dev-1")
        assert order == ["first-start"]

        release.set()
        await asyncio.gather(first_task, second_task)

        assert order == ["first-start", "first-end", "second"]

    @pytest.mark.asyncio
    async def test_different_devices_do_not_contend(self):
        """Test that holding one device's lock leaves others free."""
        locks = DeviceLocks()

        async with locks.hold("dev-1"):
            assert not locks.is_locked("dev-2")
            async with locks.hold("dev-2"):
                assert locks.is_locked("dev-2")

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self):
        """Test that a failing operation does not leave its device locked."""
        locks = DeviceLocks()

        with pytest.raises(ValueError):
            async with locks.hold("dev-1"):
                raise ValueError("boom")

        assert not locks.is_locked("dev-1")
