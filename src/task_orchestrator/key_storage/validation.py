"""OpenAI API key validation utilities."""

import re
from typing import Any


class APIKeyValidator:
    """Validates key formats. Only OpenAI keys are supported."""

    def __init__(self) -> None:
        self.pattern = re.compile(r"^sk-[a-zA-Z0-9_-]{20,}$")
        self.min_length = 23

    def is_valid_format(self, api_key: Any) -> bool:
        """Check if API key has a valid format.

        Args:
            api_key: The API key to validate

        Returns:
            True if the key format is valid, False otherwise
        """
        if not api_key or not isinstance(api_key, str):
            return False

        # Surrounding whitespace is an error, not something to strip
        if api_key != api_key.strip():
            return False

        if len(api_key) < self.min_length:
            return False

        return self.pattern.match(api_key) is not None

    def mask_api_key(self, api_key: str, show_chars: int = 4) -> str:
        """Mask API key for safe logging, keeping ``show_chars`` at each end."""
        if not api_key or len(api_key) <= show_chars * 2:
            return "***invalid***"
        middle_length = len(api_key) - (show_chars * 2)
        return f"{api_key[:show_chars]}{'*' * middle_length}{api_key[-show_chars:]}"
