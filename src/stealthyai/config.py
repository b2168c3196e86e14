"""Central configuration for paths and constants."""

import os
from pathlib import Path

# Data directory, override with STEALTHYAI_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("STEALTHYAI_DATA_DIR", str(Path.home() / ".stealthyai"))
)

# Persisted files
CONVERSATIONS_FILENAME = "conversations.json"
PROJECTS_FILENAME = "projects.json"
SECRET_FILENAME = "pairing.secret"

# Archive envelope
ARCHIVE_VERSION = 1
EXPORT_SUFFIX = ".stealthyai.json"

# Titles and tags
TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "…"
MAX_TAGS = 10
DEFAULT_CONVERSATION_TITLE = "New Conversation"
DEFAULT_PROJECT_ICON = "folder"

# Pairing
PAIRING_TTL_SECONDS = 90
PAIRING_REGENERATE_THROTTLE_SECONDS = 1
PAIRING_SCHEME = "stealthyai"
PAIRING_HOST = "pair"
PAIRING_LINK_VERSION = 1
SECRET_NUM_BYTES = 32

# Simulated assistant reply pacing (seconds)
REPLY_START_DELAY = 0.4
REPLY_CHAR_DELAY = 0.025
