"""
Environment settings for the market feed.

Usage:
    from src.config.secrets import get_feed_base_url, get_feed_api_key

    # Will raise if the feed URL is missing
    base_url = get_feed_base_url()

CLI check:
    python -m src.config.secrets --check
"""

import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Find .env file - walk up from this file to repo root
_current = Path(__file__).resolve()
_repo_root = _current.parent.parent.parent  # src/config/secrets.py -> repo root
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    # Also try current working directory
    load_dotenv()


FEED_URL_VAR = "CONSENSUS_FEED_URL"
FEED_KEY_VAR = "CONSENSUS_FEED_API_KEY"


class MissingFeedConfigError(Exception):
    """Raised when the market feed is not configured."""
    pass


def get_feed_base_url() -> str:
    """
    Get the market feed base URL from environment.

    Returns:
        str: The base URL

    Raises:
        MissingFeedConfigError: If CONSENSUS_FEED_URL is not set
    """
    url = os.environ.get(FEED_URL_VAR, "").strip()
    if not url:
        raise MissingFeedConfigError(
            f"{FEED_URL_VAR} not found. "
            "Copy .env.example to .env and set the feed URL, or pass --snapshot."
        )
    return url


def get_feed_api_key() -> Optional[str]:
    """Feed API key, or None when the feed is unauthenticated."""
    key = os.environ.get(FEED_KEY_VAR, "").strip()
    return key or None


def check_settings() -> dict:
    """
    Check which feed settings are configured.

    Returns:
        dict: Status of each setting ("OK", "MISSING" or "UNSET")
    """
    return {
        FEED_URL_VAR: "OK" if os.environ.get(FEED_URL_VAR, "").strip() else "MISSING",
        FEED_KEY_VAR: "OK" if get_feed_api_key() else "UNSET (optional)",
    }


def _cli_check():
    """CLI entry point for --check flag."""
    status = check_settings()

    for name, value in status.items():
        print(f"{name}: {value}")

    if status[FEED_URL_VAR] == "MISSING":
        print("\nTo configure the feed:")
        print("  1. Copy .env.example to .env")
        print(f"  2. Set {FEED_URL_VAR} (and {FEED_KEY_VAR} if required)")
        sys.exit(1)
    else:
        print("\nFeed configured.")
        sys.exit(0)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Check market feed configuration"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check if feed settings are configured"
    )

    args = parser.parse_args()

    if args.check:
        _cli_check()
    else:
        parser.print_help()
