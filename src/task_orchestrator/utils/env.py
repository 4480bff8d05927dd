"""Environment variable loading and platform paths for bundled and development environments."""

import logging
import os
import platform
import sys
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env() -> None:
    """Load environment variables from a .env file.

    Frozen (bundled) executables look next to the executable and in a sibling
    Resources directory; development runs use standard dotenv discovery.
    """
    if getattr(sys, "frozen", False):
        bundle_dir = Path(sys.executable).parent
        possible_env_paths = [
            bundle_dir / ".env",
            bundle_dir.parent / ".env",
            bundle_dir.parent / "Resources" / ".env",  # macOS app bundles
        ]
        for env_path in possible_env_paths:
            if env_path.exists():
                load_dotenv(env_path)
                logger.info(f"Loaded environment from: {env_path}")
                break
        else:
            logger.debug(
                f"No .env file found. Searched paths: {[str(p) for p in possible_env_paths]}"
            )
    else:
        load_dotenv()


def user_data_dir(app_name: str) -> Path:
    """Get platform-appropriate user data directory for ``app_name``."""
    system = platform.system()

    if system == "Darwin":
        base_dir = Path.home() / "Library" / "Application Support"
    elif system == "Windows":
        base_dir = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:  # Linux and others
        base_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

    return base_dir / app_name
