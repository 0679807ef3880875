"""Central configuration for paths and constants."""

import os
from pathlib import Path

# Data directory, override with TRANSCRIPT_MINER_DATA_DIR env var
DATA_DIR = Path(
    os.environ.get("TRANSCRIPT_MINER_DATA_DIR", str(Path.home() / ".transcript-miner"))
)

# Database path
SQLITE_PATH = DATA_DIR / "transcripts.db"

# Source formats, dispatched on file suffix
EVENT_LOG_SUFFIXES = {".jsonl"}
PLAIN_TEXT_SUFFIXES = {".txt"}

# Event-log discriminants that carry a message
MESSAGE_EVENT_TYPES = {"user", "assistant", "tool_result"}

# Entry roles
ROLES = {"user", "assistant", "tool", "system"}

# Output tiering
MAX_OUTPUT_SIZE = 10240  # 10 KB, full payload kept at or below this
SUMMARY_LENGTH = 500
PROMPT_CONTEXT_LENGTH = 200

# Pagination
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500
