"""Central configuration for paths, endpoints and constants."""

import os
from pathlib import Path

# Data directory — override with LLMCHAT_DATA_DIR env var
DATA_DIR = Path(os.environ.get("LLMCHAT_DATA_DIR", str(Path.home() / ".llmchat")))

# Database path
SQLITE_PATH = DATA_DIR / "chats.db"

# Endpoints
ENGINE_URL = os.environ.get("LLMCHAT_ENGINE_URL", "http://localhost:11434")
RELAY_URL = os.environ.get("LLMCHAT_RELAY_URL", "http://localhost:3000")
ENDPOINT_MODE = os.environ.get("LLMCHAT_ENDPOINT_MODE", "local")

# Model used when none is selected
DEFAULT_MODEL = os.environ.get("LLMCHAT_MODEL", "deepseek-r1:14b")

# Relay server bind address
RELAY_HOST = os.environ.get("LLMCHAT_RELAY_HOST", "127.0.0.1")
RELAY_PORT = int(os.environ.get("LLMCHAT_RELAY_PORT", "3000"))

# Seconds to wait for connect/read; generation can be slow on first token
REQUEST_TIMEOUT = float(os.environ.get("LLMCHAT_TIMEOUT", "300"))

# Prefix of the bot message that replaces a failed generation
ERROR_PREFIX = "Error: "

NAME_PROMPT = (
    "Create a short rememberable name for this chat. "
    "Only respond with the name and nothing else. "
    "The context of the chat is: "
)
