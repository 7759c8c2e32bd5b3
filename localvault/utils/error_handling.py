"""Error handling utilities for secure API error responses.

This module maps vault errors onto HTTP responses without leaking details:
- Known VaultError subclasses map to fixed status codes and safe messages
- Unexpected errors are logged with stack traces server-side only
- Provider-supplied text is sanitized before it is logged

Security:
    - CWE-209: Generation of Error Message Containing Sensitive Information
"""

import logging

from fastapi import HTTPException

from localvault.exceptions import (
    DecryptionFailed,
    ImportAlreadyRunning,
    InvalidKeyMaterial,
    NoCategoriesSelected,
    NotAuthenticated,
    ProviderApiError,
    StateMismatch,
    VaultAlreadyInitialized,
    VaultError,
    VaultLocked,
    VaultNotInitialized,
)
from localvault.utils.security import sanitize_log_message

# Most specific classes first
VAULT_ERROR_STATUS: list[tuple[type[VaultError], int]] = [
    (VaultLocked, 423),
    (StateMismatch, 400),
    (NoCategoriesSelected, 422),
    (InvalidKeyMaterial, 422),
    (DecryptionFailed, 401),
    (NotAuthenticated, 401),
    (ImportAlreadyRunning, 409),
    (VaultNotInitialized, 404),
    (VaultAlreadyInitialized, 409),
    (ProviderApiError, 502),
]


def status_for(error: VaultError) -> int:
    """HTTP status code for a vault error (500 when unmapped)."""
    for error_type, status_code in VAULT_ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def safe_error_response(
    logger_instance: logging.Logger,
    error: Exception,
    user_message: str,
    status_code: int = 500,
    log_level: str = "error",
) -> None:
    """Log full error details server-side and raise generic HTTPException for user.

    Args:
        logger_instance: Logger instance to use for server-side logging
        error: The exception that was caught
        user_message: Generic message to show to the user
        status_code: HTTP status code for the response (default: 500)
        log_level: Logging level to use (error, warning, info) (default: error)

    Raises:
        HTTPException: With the user_message as detail
    """
    log_method = getattr(logger_instance, log_level, logger_instance.error)
    log_method(f"{user_message}: {type(error).__name__}", exc_info=True)
    raise HTTPException(status_code=status_code, detail=user_message)


def raise_for_vault_error(logger_instance: logging.Logger, error: VaultError) -> None:
    """Translate a VaultError into an HTTPException.

    Expected conditions (locked vault, wrong password, bad state) are
    logged at WARNING without a stack trace; the error's own message is
    safe to return because it never carries secrets.

    Raises:
        HTTPException: Always

    Examples:
        >>> try:
        ...     await vault.unlock(body.password)
        ... except VaultError as e:
        ...     raise_for_vault_error(logger, e)
    """
    status_code = status_for(error)
    if status_code == 500:
        safe_error_response(logger_instance, error, "Vault operation failed")

    message = str(error) or type(error).__name__
    logger_instance.warning(
        "%s (%d): %s", type(error).__name__, status_code, sanitize_log_message(message)
    )
    if isinstance(error, DecryptionFailed):
        message = "Invalid password"
    raise HTTPException(status_code=status_code, detail=message) from error
