"""Conversation memory manager for research chat.

Handles session creation, exchange persistence, and conversation history
for multi-turn chat within a project.
"""
import uuid
from typing import List, Dict, Optional
import structlog

from papertrail import db
from papertrail.chat.parts import Part, TextPart, parts_text
from papertrail.models import ChatMessage, ChatSession

logger = structlog.get_logger()

DEFAULT_TITLE = "New Chat"


def title_from_message(first_message: str, max_length: int = 50) -> str:
    """Create a brief session title from the first user message."""
    first_message = " ".join(first_message.split())
    title = first_message[:max_length]
    if len(first_message) > max_length:
        title = title.rsplit(" ", 1)[0] + "..."
    return title or DEFAULT_TITLE


class ConversationManager:
    """Manages chat sessions and conversation history."""

    def __init__(self, context_window_size: int = 20):
        """Initialize the conversation manager.

        Args:
            context_window_size: Number of recent messages used as chat context
        """
        self.context_window_size = context_window_size

    def create_session(
        self, project_id: str, user_id: str, title: Optional[str] = None
    ) -> ChatSession:
        """Create a new chat session.

        Args:
            project_id: Project the session belongs to
            user_id: Owner of the session
            title: Optional title for the session

        Returns:
            The created session
        """
        session = db.create_session(ChatSession(
            id=str(uuid.uuid4()),
            project_id=project_id,
            user_id=user_id,
            title=title or DEFAULT_TITLE,
        ))
        logger.info("conversation_session_created", session_id=session.id, project_id=project_id)
        return session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[ChatSession]:
        return db.get_session(session_id, user_id)

    def list_sessions(self, project_id: str, user_id: str, limit: int = 50) -> List[ChatSession]:
        """List a project's sessions, most recently updated first."""
        return db.list_sessions(project_id, user_id, limit)

    def latest_session(self, project_id: str, user_id: str) -> Optional[ChatSession]:
        sessions = db.list_sessions(project_id, user_id, limit=1)
        return sessions[0] if sessions else None

    def delete_session(self, session_id: str, user_id: str) -> bool:
        """Delete a session and all its messages.

        Returns:
            True if deleted, False if not found
        """
        deleted = db.delete_session(session_id, user_id)
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        messages = db.get_messages(session_id)
        logger.info(
            "conversation_all_messages_retrieved",
            session_id=session_id,
            count=len(messages),
        )
        return messages

    def get_recent_messages(
        self, session_id: str, limit: Optional[int] = None
    ) -> List[ChatMessage]:
        """Get recent messages for a session.

        Args:
            session_id: The session ID to get messages for
            limit: Maximum number of messages (defaults to context_window_size)

        Returns:
            List of messages in chronological order
        """
        limit = limit or self.context_window_size
        messages = db.get_messages(session_id, limit=limit)
        logger.info(
            "conversation_messages_retrieved",
            session_id=session_id,
            count=len(messages),
        )
        return messages

    def format_chat_context(self, project_id: str, user_id: str) -> str:
        """Render the newest session's recent messages as a prompt block.

        Returns:
            A ``CHAT CONTEXT`` block, or an empty string without history
        """
        session = self.latest_session(project_id, user_id)
        if session is None:
            return ""

        messages = self.get_recent_messages(session.id)
        if not messages:
            return ""

        lines = [f"{msg.role.upper()}: {msg.content}" for msg in messages if msg.content]
        return "\n\n--- CHAT CONTEXT ---\n" + "\n\n".join(lines) + "\n"

    def save_exchange(
        self,
        session_id: str,
        project_id: str,
        user_id: str,
        user_message: str,
        assistant_parts: List[Part],
        sources_used: List[Dict[str, str]],
    ) -> None:
        """Persist one user/assistant exchange.

        The first exchange of a session also retitles it from the user message.

        Args:
            session_id: Session to append to
            project_id: Project scope
            user_id: Owner of the session
            user_message: The user's text
            assistant_parts: Every part the assistant produced
            sources_used: ``{id, title}`` entries of the retrieved sources

        Raises:
            StoreWriteError: If the session is missing or the write fails
        """
        is_first_exchange = not db.get_messages(session_id, limit=1)

        user_record = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            project_id=project_id,
            user_id=user_id,
            role="user",
            content=user_message,
            metadata={"parts": [TextPart(text=user_message).to_dict()]},
        )
        assistant_record = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            project_id=project_id,
            user_id=user_id,
            role="assistant",
            content=parts_text(assistant_parts),
            metadata={
                "parts": [part.to_dict() for part in assistant_parts],
                "sourcesUsed": sources_used,
            },
        )
        db.append_messages(session_id, [user_record, assistant_record])

        logger.info(
            "conversation_exchange_saved",
            session_id=session_id,
            part_count=len(assistant_parts),
            source_count=len(sources_used),
        )

        if is_first_exchange and user_message.strip():
            title = title_from_message(user_message)
            db.update_session_title(session_id, title)
            logger.info("session_title_updated", session_id=session_id, title=title)
