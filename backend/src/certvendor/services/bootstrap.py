"""Bootstrap of the operator API key for first-run development setups."""

import logging

from shared.config import Settings
from shared.security import generate_api_key, hash_api_key

logger = logging.getLogger(__name__)

# Distinct banner for easy grep in logs
API_KEY_BANNER = "=" * 60


def _print_api_key(api_key: str) -> None:
    # print() for immediate visibility
    print(f"\n{API_KEY_BANNER}")
    print("BOOTSTRAP OPERATOR API KEY")
    print(f"{api_key}")
    print(f"{API_KEY_BANNER}\n")
    logger.info("bootstrap_api_key_generated")


def bootstrap_api_key_if_needed(settings: Settings) -> str | None:
    """
    Generate a process-lifetime operator API key when none is configured.

    Only runs with APP_ENV=development; elsewhere a missing API_KEY_HASH leaves
    the HTTP surface closed. The key is printed once with a banner and only its
    hash is kept on ``settings``.

    Returns:
        Generated API key, or None if skipped
    """
    if settings.API_KEY_HASH:
        logger.debug("bootstrap_skipped", extra={"reason": "hash_configured"})
        return None

    if settings.APP_ENV != "development":
        logger.warning("bootstrap_skipped", extra={"reason": "not_development"})
        return None

    api_key = generate_api_key()
    settings.API_KEY_HASH = hash_api_key(api_key)
    _print_api_key(api_key)
    return api_key
