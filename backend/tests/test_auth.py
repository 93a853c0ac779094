"""Tests for API key authentication."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from certvendor.api.auth import require_api_key
from shared.security import generate_api_key, hash_api_key


class TestApiKeyAuth:
    """Tests for require_api_key authentication."""

    @pytest.mark.asyncio
    async def test_missing_api_key_raises_401(self):
        """Test that missing API key raises 401."""
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(api_key=None)

        assert exc_info.value.status_code == 401
        assert "Missing API key" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_invalid_format_raises_401(self):
        """Test that invalid API key format raises 401."""
        with pytest.raises(HTTPException) as exc_info:
            await require_api_key(api_key="idp_wrong_prefix")

        assert exc_info.value.status_code == 401
        assert "Invalid API key format" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_no_configured_hash_raises_401(self):
        """Test that the API stays closed when no key hash is configured."""
        with patch("certvendor.api.auth.settings") as mock_settings:
            mock_settings.API_KEY_HASH = None

            with pytest.raises(HTTPException) as exc_info:
                await require_api_key(api_key="cv_anything")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid API key"

    @pytest.mark.asyncio
    async def test_wrong_api_key_raises_401(self):
        """Test that a key not matching the configured hash raises 401."""
        with patch("certvendor.api.auth.settings") as mock_settings, \
             patch("certvendor.api.auth.verify_api_key", return_value=False) as mock_verify:
            mock_settings.API_KEY_HASH = "$argon2id$test_hash"

            with pytest.raises(HTTPException) as exc_info:
                await require_api_key(api_key="cv_wrong_key")

        assert exc_info.value.status_code == 401
        mock_verify.assert_called_once_with("cv_wrong_key", "$argon2id$test_hash")

    @pytest.mark.asyncio
    async def test_valid_api_key_passes(self):
        """Test that the configured key authenticates."""
        api_key = generate_api_key()
        mock_settings = MagicMock()
        mock_settings.API_KEY_HASH = hash_api_key(api_key)

        with patch("certvendor.api.auth.settings", mock_settings):
            assert await require_api_key(api_key=api_key) is None
