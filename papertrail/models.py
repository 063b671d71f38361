"""Domain records shared by the store, the pipeline and the chat loop."""
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional

SOURCE_TYPES = ("pdf", "text", "url", "youtube", "image")
SOURCE_STATUSES = ("pending", "processing", "ready", "error")
MESSAGE_ROLES = ("user", "assistant", "system")


@dataclass
class Source:
    """A unit of ingested research material."""

    id: str
    project_id: str
    user_id: str
    type: str
    title: str
    status: str = "pending"
    original_url: Optional[str] = None
    file_path: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Chunk:
    """A retrievable span of a source's extracted text."""

    id: str
    source_id: str
    project_id: str
    user_id: str
    content: str
    chunk_index: int
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedChunk:
    """A chunk matched by a similarity query. Never persisted."""

    id: str
    source_id: str
    content: str
    chunk_index: int
    similarity: float
    source_title: str = "Unknown Source"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatSession:
    """A conversation thread within a project."""

    id: str
    project_id: str
    user_id: str
    title: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    message_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatMessage:
    """One persisted turn. ``metadata`` holds the full part list for replay."""

    id: str
    session_id: str
    project_id: str
    user_id: str
    role: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
