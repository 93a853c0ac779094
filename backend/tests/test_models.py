"""Tests for domain value objects and the error taxonomy."""

import pytest

from certvendor.domain.errors import (
    AuthorizationError,
    CertificateVendorError,
    UpstreamError,
    ValidationError,
)
from certvendor.domain.models import IdentityHandle, ResponseOutcome, SubjectInfo
from certvendor.domain.states import ErrorCode, ResponseStatus


class TestIdentityHandle:
    """Tests for structured certificate ARNs."""

    def test_from_arn(self):
        """Test parsing a registry certificate ARN."""
        handle = IdentityHandle.from_arn("arn:aws:iot:us-east-1:123456789012:cert/abc123")

        assert handle.authority_namespace == "cert"
        assert handle.certificate_id == "abc123"

    def test_for_certificate_matches_parsed_form(self):
        """Test that a built handle equals the parsed one."""
        built = IdentityHandle.for_certificate("us-east-1", "123456789012", "abc123")
        assert built == IdentityHandle.from_arn(built.arn)

    @pytest.mark.parametrize(
        "arn",
        [
            "abc123",
            "arn:aws:iot:us-east-1:123456789012",
            "arn:aws:iot:us-east-1:123456789012:cert",
            "arn:aws:iot:us-east-1:123456789012:cert/",
            "urn:aws:iot:us-east-1:123456789012:cert/abc",
        ],
    )
    def test_from_arn_rejects_malformed(self, arn):
        """Test that ARNs without a namespace/id resource are rejected."""
        with pytest.raises(ValueError):
            IdentityHandle.from_arn(arn)


class TestResponseOutcome:
    """Tests for outcome wire form."""

    def test_success_without_message(self):
        """Test that a success with payload omits the message key."""
        outcome = ResponseOutcome.success("dev-1", location="https://signed")

        assert outcome.status == ResponseStatus.SUCCESS
        assert outcome.to_message() == {
            "deviceId": "dev-1",
            "status": "SUCCESS",
            "location": "https://signed",
        }

    def test_failed_carries_message(self):
        """Test that a failure carries its message and no payload."""
        outcome = ResponseOutcome.failed("dev-1", "UNABLE_TO_ATTACH_POLICY")

        assert outcome.payload == {}
        assert outcome.to_message()["message"] == "UNABLE_TO_ATTACH_POLICY"


class TestSubjectInfo:
    """Tests for managed CA subject rendering."""

    def test_to_api_subject_omits_empty_fields(self):
        """Test that only populated fields are passed through."""
        subject = SubjectInfo(
            country="US", organization="", organizational_unit="Fleet", state_name=None, common_name="dev-1"
        )

        assert subject.to_api_subject() == {
            "Country": "US",
            "OrganizationalUnit": "Fleet",
            "CommonName": "dev-1",
        }


class TestErrors:
    """Tests for the error taxonomy."""

    def test_message_is_code(self):
        """Test that a bare error renders as its stable code."""
        assert str(AuthorizationError(ErrorCode.DEVICE_NOT_WHITELISTED)) == "DEVICE_NOT_WHITELISTED"

    def test_message_with_detail(self):
        """Test that detail is appended after the code."""
        err = UpstreamError(ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE, "not issued within 60s")
        assert str(err) == "UNABLE_TO_ISSUE_CERTIFICATE: not issued within 60s"
        assert err.detail == "not issued within 60s"

    def test_validation_default_code(self):
        """Test that validation errors default to INVALID_REQUEST."""
        err = ValidationError("csr must be a non-empty string")

        assert isinstance(err, CertificateVendorError)
        assert err.code == ErrorCode.INVALID_REQUEST
        assert str(err) == "INVALID_REQUEST: csr must be a non-empty string"
