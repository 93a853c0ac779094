from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Certificate Vendor"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCOUNT_ID: str = ""
    AWS_MAX_ATTEMPTS: int = 3
    IOT_DATA_ENDPOINT: Optional[str] = None

    # Staged certificate artifacts (S3)
    CERTIFICATES_BUCKET: str = ""
    CERTIFICATES_PREFIX: str = "certificates/"
    CERTIFICATES_SUFFIX: str = "/certs.zip"
    PRESIGNED_URL_EXPIRES_IN_SECONDS: int = 300

    # Response topics, {deviceId} is substituted per request
    MQTT_GET_SUCCESS_TOPIC: str = "cdf/certificates/{deviceId}/get/accepted"
    MQTT_GET_FAILURE_TOPIC: str = "cdf/certificates/{deviceId}/get/rejected"
    MQTT_ACK_SUCCESS_TOPIC: str = "cdf/certificates/{deviceId}/ack/accepted"
    MQTT_ACK_FAILURE_TOPIC: str = "cdf/certificates/{deviceId}/ack/rejected"
    MQTT_QOS: int = 1

    # Registry
    ROTATE_CERTIFICATES_THING_GROUP: str = "cdfRotateCertificates"
    DEVICE_WHITELIST_ATTRIBUTE: Optional[str] = None
    DEVICE_WHITELIST_VALUE: str = "true"
    DEVICE_STATUS_ATTRIBUTE: str = "status"
    DEVICE_STATUS_VALUE: str = "active"

    # Certificate authority
    CA_CERTIFICATE_ID: str = ""
    CA_KEY_PARAMETER_TEMPLATE: str = "cdf-ca-key-{ca_certificate_id}"
    CERTIFICATE_EXPIRY_DAYS: int = 1095

    # Policies
    USE_DEFAULT_POLICY: bool = False
    ROTATED_CERTIFICATE_POLICY: str = ""

    # Features
    DELETE_PREVIOUS_CERTIFICATE: bool = False

    # Managed CA (ACM PCA)
    ACMPCA_ENABLED: bool = False
    ACMPCA_CA_ARN: str = ""
    ACMPCA_SIGNING_ALGORITHM: str = "SHA256WITHRSA"
    ACMPCA_POLL_INTERVAL_SECONDS: float = 1.0
    ACMPCA_POLL_MAX_INTERVAL_SECONDS: float = 8.0
    ACMPCA_POLL_BACKOFF: float = 2.0
    ACMPCA_ISSUE_TIMEOUT_SECONDS: float = 60.0

    # Security (Argon2id hash of the operator API key)
    API_KEY_HASH: Optional[str] = None


settings = Settings()
