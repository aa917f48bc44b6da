"""Context-aware subtitle translation through a chat-completion service."""

__version__ = "0.3.0"
