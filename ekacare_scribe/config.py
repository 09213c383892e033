"""Configuration constants, request defaults, and .env loading.

WHY: Centralizes every configurable value (API base URL, upload action tag,
polling bounds, transcription request defaults) so they are easy to find,
update, and override without touching the workflow code.

HOW: python-dotenv loads the .env file on import. Constants are defined as
module-level values read from the environment with documented defaults.
load_credentials() gives a clear error when the client id/secret are missing.

RULES:
- Credentials are loaded from .env via python-dotenv, never hardcoded
- Business logic never calls load_credentials() itself; the CLI and HTTP
  layer resolve credentials and pass them explicitly
- All defaults can be overridden via environment variables
"""

from __future__ import annotations

import os

from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from ekacare_scribe.api.models import Credentials

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# API configuration defaults
# ---------------------------------------------------------------------------

EKACARE_BASE_URL = os.getenv("EKACARE_BASE_URL", "https://api.eka.care")
EKACARE_UPLOAD_ACTION = os.getenv("EKACARE_UPLOAD_ACTION", "ekascribe-v2")
EKACARE_USER_AGENT = "EkaCare-Python-Scribe/0.1.0"

EKACARE_POLL_INTERVAL_S = float(os.getenv("EKACARE_POLL_INTERVAL_S", "5"))
EKACARE_POLL_TIMEOUT_S = float(os.getenv("EKACARE_POLL_TIMEOUT_S", "300"))

# ---------------------------------------------------------------------------
# Transcription request defaults
# ---------------------------------------------------------------------------

DEFAULT_MODE = os.getenv("EKACARE_DEFAULT_MODE", "dictation")
DEFAULT_TRANSFER = "non-vaded"
DEFAULT_MODEL_TYPE = os.getenv("EKACARE_DEFAULT_MODEL_TYPE", "pro")
DEFAULT_LANGUAGE = os.getenv("EKACARE_DEFAULT_LANGUAGE", "en-IN")
DEFAULT_TEMPLATE_ID = os.getenv("EKACARE_DEFAULT_TEMPLATE_ID", "transcript_template")

# ---------------------------------------------------------------------------
# Supported audio file extensions
# ---------------------------------------------------------------------------

SUPPORTED_AUDIO_FORMATS: set[str] = {
    ".aac", ".flac", ".m4a", ".mp3", ".mp4",
    ".ogg", ".opus", ".wav", ".webm",
}
"""Audio file extensions accepted for upload (lowercase, with dot)."""


def load_credentials() -> Credentials:
    """Load the EkaCare client credentials from the environment.

    WHY: The client id and secret are required to log in. Loading them
    from the environment (via .env) keeps them out of source code.

    HOW: Reads EKACARE_CLIENT_ID and EKACARE_CLIENT_SECRET from os.environ
    (populated by python-dotenv).

    RULES:
    - Raises ValueError if either value is missing or empty
    - Never returns a default/placeholder value
    """
    from ekacare_scribe.api.models import Credentials

    client_id = os.getenv("EKACARE_CLIENT_ID", "").strip()
    client_secret = os.getenv("EKACARE_CLIENT_SECRET", "").strip()
    if not client_id or not client_secret:
        raise ValueError(
            "EkaCare credentials not configured. "
            "Add EKACARE_CLIENT_ID and EKACARE_CLIENT_SECRET to the .env file."
        )
    return Credentials(client_id=client_id, client_secret=client_secret)
