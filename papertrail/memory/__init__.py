"""Chat session persistence."""
from papertrail.memory.manager import ConversationManager, DEFAULT_TITLE

__all__ = ["ConversationManager", "DEFAULT_TITLE"]
