"""Capture Agent - API credential resolution.

Lookup order:
1. Platform credential store (keyring)
2. Process environment (CREDENTIAL_ENV_VAR)

The credential is never written to the relational store.
"""

from __future__ import annotations

import logging
import os
from enum import StrEnum

import keyring
from keyring.errors import KeyringError, NoKeyringError, PasswordDeleteError

from app.config import CREDENTIAL_ENTRY_NAME, CREDENTIAL_ENV_VAR, CREDENTIAL_SERVICE_NAME

logger = logging.getLogger(__name__)


class CredentialSource(StrEnum):
    OS_KEYCHAIN = "os_keychain"
    ENVIRONMENT = "environment"
    MISSING = "missing"


class CredentialErrorCode(StrEnum):
    EMPTY_CREDENTIAL = "EMPTY_CREDENTIAL"
    CREDENTIAL_STORE_FAILED = "CREDENTIAL_STORE_FAILED"


class CredentialStoreError(Exception):
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


def _read_from_keychain() -> str | None:
    try:
        secret = keyring.get_password(CREDENTIAL_SERVICE_NAME, CREDENTIAL_ENTRY_NAME)
    except NoKeyringError:
        # Headless hosts have no backend; the environment is the only source there
        logger.debug("No keyring backend available")
        return None
    except KeyringError as e:
        raise CredentialStoreError(
            CredentialErrorCode.CREDENTIAL_STORE_FAILED,
            f"failed to read API key from credential store: {e}",
        ) from e

    if secret is None or not secret.strip():
        return None
    return secret.strip()


def _read_from_environment() -> str | None:
    value = os.environ.get(CREDENTIAL_ENV_VAR, "").strip()
    return value or None


def resolve_credential() -> str | None:
    """Resolve the summarizer API key.

    Returns:
        The key, or None if neither source has one.

    Raises:
        CredentialStoreError: If the credential store itself fails.
    """
    return _read_from_keychain() or _read_from_environment()


def credential_source() -> CredentialSource:
    """Report where resolve_credential() would find the key."""
    if _read_from_keychain() is not None:
        return CredentialSource.OS_KEYCHAIN
    if _read_from_environment() is not None:
        return CredentialSource.ENVIRONMENT
    return CredentialSource.MISSING


def save_credential(value: str) -> None:
    """Store the API key in the platform credential store.

    Raises:
        CredentialStoreError: If the value is blank or the store fails.
    """
    trimmed = value.strip()
    if not trimmed:
        raise CredentialStoreError(CredentialErrorCode.EMPTY_CREDENTIAL, "API key cannot be empty")
    try:
        keyring.set_password(CREDENTIAL_SERVICE_NAME, CREDENTIAL_ENTRY_NAME, trimmed)
    except KeyringError as e:
        raise CredentialStoreError(
            CredentialErrorCode.CREDENTIAL_STORE_FAILED,
            f"failed to save API key to credential store: {e}",
        ) from e


def clear_credential() -> None:
    """Remove the stored API key. Missing entries are not an error."""
    try:
        keyring.delete_password(CREDENTIAL_SERVICE_NAME, CREDENTIAL_ENTRY_NAME)
    except PasswordDeleteError:
        pass
    except KeyringError as e:
        raise CredentialStoreError(
            CredentialErrorCode.CREDENTIAL_STORE_FAILED,
            f"failed to clear API key from credential store: {e}",
        ) from e
