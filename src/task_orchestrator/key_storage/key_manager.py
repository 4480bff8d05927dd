"""API key retrieval for the default AI gateway."""

import logging
import os
from enum import Enum

import keyring
from keyring.errors import KeyringError

from task_orchestrator.utils.constants import APP_NAME

from .validation import APIKeyValidator


class StorageMethod(Enum):
    """Where a key was found, in priority order."""

    ENVIRONMENT = "environment"
    KEYCHAIN = "keychain"
    NOT_FOUND = "not_found"


class APIKeyManager:
    """Resolves the OpenAI API key.

    Priority order: environment variable → OS keychain
    """

    SERVICE_NAME = APP_NAME
    ACCOUNT_NAME = "openai-api-key"
    ENV_VAR_API_KEY = "OPENAI_API_KEY"

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.validator = APIKeyValidator()

    def get_api_key(self) -> tuple[str | None, StorageMethod]:
        """Retrieve API key using priority order: env → keychain.

        Returns:
            Tuple of (api_key, storage_method) where api_key is None if not found.
        """
        env_key = os.environ.get(self.ENV_VAR_API_KEY)
        if env_key:
            if self.validator.is_valid_format(env_key):
                self.logger.info("API key loaded from environment variable")
                return env_key, StorageMethod.ENVIRONMENT
            self.logger.warning("Invalid API key format found in environment variable")

        try:
            keychain_key = keyring.get_password(self.SERVICE_NAME, self.ACCOUNT_NAME)
            if keychain_key:
                if self.validator.is_valid_format(keychain_key):
                    self.logger.info("API key loaded from OS keychain")
                    return keychain_key, StorageMethod.KEYCHAIN
                self.logger.warning("Invalid API key format found in OS keychain")
        except KeyringError as e:
            self.logger.warning(f"Could not access OS keychain: {e}")

        self.logger.info("No valid API key found in any storage location")
        return None, StorageMethod.NOT_FOUND

    def store_api_key(self, api_key: str) -> tuple[bool, str | None]:
        """Store API key in the OS keychain.

        Returns:
            Tuple of (success, error_message)
        """
        if not self.validator.is_valid_format(api_key):
            return False, "Invalid API key format"
        try:
            keyring.set_password(self.SERVICE_NAME, self.ACCOUNT_NAME, api_key)
        except KeyringError as e:
            self.logger.error(f"Keychain storage failed: {e}")
            return False, f"Keyring error: {e}"
        self.logger.info(
            f"API key {self.validator.mask_api_key(api_key)} stored in OS keychain"
        )
        return True, None

    def delete_api_key(self) -> tuple[bool, str]:
        """Delete the API key from the OS keychain.

        Environment variables are managed externally and left alone.
        """
        try:
            keyring.delete_password(self.SERVICE_NAME, self.ACCOUNT_NAME)
        except KeyringError as e:
            if "not found" in str(e).lower():
                return False, "No API key found to delete"
            return False, f"Keychain deletion error: {e}"
        self.logger.info("API key deleted from OS keychain")
        return True, "Deleted from keychain"
