"""llmchat: terminal chat client and relay for local LLM engines."""

__version__ = "0.1.0"
