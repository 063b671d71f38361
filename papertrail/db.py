"""Database initialization and helpers for Papertrail.

SQLite database for storing:
- Sources and their ingestion status
- Text chunks with optional embedding vectors
- Chat sessions and persisted messages
"""
import sqlite3
import json
from typing import Optional, List, Dict, Any, Sequence
from datetime import datetime, timezone
import numpy as np
import structlog

from papertrail import config
from papertrail.errors import StoreWriteError
from papertrail.models import (
    MESSAGE_ROLES,
    SOURCE_STATUSES,
    SOURCE_TYPES,
    Source,
    Chunk,
    ChatSession,
    ChatMessage,
)
from papertrail.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row and
        foreign keys enforced
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _one_of(values: Sequence[str]) -> str:
    """SQL value list for an ``IN (...)`` CHECK constraint."""
    return "(" + ", ".join(f"'{value}'" for value in values) + ")"


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - sources: ingested material and its status
    - chunks: text spans with embeddings, cascading from sources
    - chat_sessions / chat_messages: conversation threads
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS sources (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL
                    CHECK (type IN {_one_of(SOURCE_TYPES)}),
                title TEXT NOT NULL,
                original_url TEXT,
                file_path TEXT,
                content TEXT,
                metadata_json TEXT,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN {_one_of(SOURCE_STATUSES)}),
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
                project_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                embedding BLOB,
                metadata_json TEXT,
                created_at TEXT NOT NULL,
                UNIQUE(source_id, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL
                    REFERENCES chat_sessions(id) ON DELETE CASCADE,
                project_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN {_one_of(MESSAGE_ROLES)}),
                content TEXT NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sources_scope
            ON sources(project_id, user_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_scope
            ON chunks(project_id, user_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_session
            ON chat_messages(session_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _load_json(value: Optional[str]) -> Dict[str, Any]:
    return json.loads(value) if value else {}


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        type=row["type"],
        title=row["title"],
        status=row["status"],
        original_url=row["original_url"],
        file_path=row["file_path"],
        content=row["content"],
        metadata=_load_json(row["metadata_json"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _encode_embedding(embedding: Optional[Sequence[float]]) -> Optional[bytes]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _decode_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


def _insert_source_row(cursor: sqlite3.Cursor, source: Source) -> None:
    cursor.execute("""
        INSERT INTO sources (
            id, project_id, user_id, type, title, original_url, file_path,
            content, metadata_json, status, error_message, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        source.id,
        source.project_id,
        source.user_id,
        source.type,
        source.title,
        source.original_url,
        source.file_path,
        source.content,
        json.dumps(source.metadata) if source.metadata else None,
        source.status,
        source.error_message,
        source.created_at,
        source.updated_at,
    ))


def _insert_chunk_rows(cursor: sqlite3.Cursor, chunks: List[Chunk]) -> None:
    timestamp = now_iso()
    cursor.executemany("""
        INSERT INTO chunks (
            id, source_id, project_id, user_id, content, chunk_index,
            embedding, metadata_json, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [
        (
            chunk.id,
            chunk.source_id,
            chunk.project_id,
            chunk.user_id,
            chunk.content,
            chunk.chunk_index,
            _encode_embedding(chunk.embedding),
            json.dumps(chunk.metadata) if chunk.metadata else None,
            timestamp,
        )
        for chunk in chunks
    ])


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

def create_source(source: Source) -> Source:
    """Insert a new source record.

    Args:
        source: Source to insert (timestamps are filled in if missing)

    Returns:
        The stored source

    Raises:
        StoreWriteError: If the insert fails
    """
    source.created_at = source.created_at or now_iso()
    source.updated_at = source.updated_at or source.created_at

    conn = get_connection()
    try:
        _insert_source_row(conn.cursor(), source)
        conn.commit()
        logger.info(
            "source_created",
            source_id=source.id,
            source_type=source.type,
            status=source.status,
        )
        return source

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("source_insert_failed", error=str(e), source_id=source.id)
        raise StoreWriteError(f"Failed to create source: {e}") from e
    finally:
        conn.close()


def create_source_with_chunks(source: Source, chunks: List[Chunk]) -> Source:
    """Insert a source together with its chunks in one transaction.

    Either both the source row and every chunk are stored, or nothing is.

    Raises:
        StoreWriteError: If any insert fails
    """
    source.created_at = source.created_at or now_iso()
    source.updated_at = source.updated_at or source.created_at

    conn = get_connection()
    try:
        cursor = conn.cursor()
        _insert_source_row(cursor, source)
        _insert_chunk_rows(cursor, chunks)
        conn.commit()
        logger.info(
            "source_created_with_chunks",
            source_id=source.id,
            chunk_count=len(chunks),
        )
        return source

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("source_with_chunks_insert_failed", error=str(e), source_id=source.id)
        raise StoreWriteError(f"Failed to create source: {e}") from e
    finally:
        conn.close()


def get_source(source_id: str, user_id: Optional[str] = None) -> Optional[Source]:
    """Get a source by ID, optionally restricted to its owner.

    Returns:
        Source or None if not found
    """
    conn = get_connection()
    try:
        if user_id is None:
            row = conn.execute(
                "SELECT * FROM sources WHERE id = ?", (source_id,)
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT * FROM sources WHERE id = ? AND user_id = ?",
                (source_id, user_id),
            ).fetchone()
        return _row_to_source(row) if row else None

    except Exception as e:
        logger.error("source_retrieval_failed", error=str(e), source_id=source_id)
        raise
    finally:
        conn.close()


def list_sources(
    project_id: str, user_id: str, status: Optional[str] = None
) -> List[Source]:
    """List a project's sources, newest first."""
    conn = get_connection()
    try:
        query = "SELECT * FROM sources WHERE project_id = ? AND user_id = ?"
        params: List[Any] = [project_id, user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        return [_row_to_source(row) for row in conn.execute(query, params)]

    except Exception as e:
        logger.error("sources_list_failed", error=str(e), project_id=project_id)
        raise
    finally:
        conn.close()


def update_source(source_id: str, **fields: Any) -> None:
    """Update columns on a source row.

    Args:
        source_id: Source to update
        **fields: Column values; ``metadata`` is serialized to JSON

    Raises:
        StoreWriteError: If the update fails
    """
    if "metadata" in fields:
        fields["metadata_json"] = json.dumps(fields.pop("metadata") or {})
    fields["updated_at"] = now_iso()

    assignments = ", ".join(f"{column} = ?" for column in fields)

    conn = get_connection()
    try:
        conn.execute(
            f"UPDATE sources SET {assignments} WHERE id = ?",
            (*fields.values(), source_id),
        )
        conn.commit()

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("source_update_failed", error=str(e), source_id=source_id)
        raise StoreWriteError(f"Failed to update source: {e}") from e
    finally:
        conn.close()


def mark_source_processing(source_id: str) -> None:
    update_source(source_id, status="processing", error_message=None)
    logger.info("source_status_changed", source_id=source_id, status="processing")


def mark_source_error(source_id: str, message: str) -> None:
    update_source(source_id, status="error", error_message=message)
    logger.info("source_status_changed", source_id=source_id, status="error")


def complete_ingestion(
    source_id: str,
    chunks: List[Chunk],
    file_path: Optional[str],
    content: str,
    metadata: Dict[str, Any],
) -> None:
    """Replace a source's chunks and flip it to ``ready`` atomically.

    Old chunks are deleted in the same transaction so re-ingestion never
    accumulates duplicates, and readers never see ``ready`` without chunks.

    Raises:
        StoreWriteError: If the transaction fails
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        replaced = cursor.rowcount
        _insert_chunk_rows(cursor, chunks)
        cursor.execute("""
            UPDATE sources
            SET status = 'ready', error_message = NULL, file_path = ?,
                content = ?, metadata_json = ?, updated_at = ?
            WHERE id = ?
        """, (file_path, content, json.dumps(metadata), now_iso(), source_id))
        conn.commit()

        logger.info(
            "source_status_changed",
            source_id=source_id,
            status="ready",
            chunk_count=len(chunks),
            replaced_chunks=replaced,
        )

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("ingestion_commit_failed", error=str(e), source_id=source_id)
        raise StoreWriteError(f"Failed to store chunks: {e}") from e
    finally:
        conn.close()


def delete_source(source_id: str, user_id: str) -> Optional[Source]:
    """Delete a source (its chunks cascade).

    Returns:
        The deleted source, or None if it didn't exist
    """
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM sources WHERE id = ? AND user_id = ?",
            (source_id, user_id),
        ).fetchone()
        if not row:
            return None

        conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        conn.commit()
        logger.info("source_deleted", source_id=source_id)
        return _row_to_source(row)

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("source_delete_failed", error=str(e), source_id=source_id)
        raise StoreWriteError(f"Failed to delete source: {e}") from e
    finally:
        conn.close()


def get_source_titles(source_ids: Sequence[str]) -> Dict[str, str]:
    """Resolve titles for a set of sources in a single query.

    Args:
        source_ids: Source IDs to look up (duplicates are ignored)

    Returns:
        Mapping of source ID to title for the IDs that exist
    """
    unique_ids = list(dict.fromkeys(source_ids))
    if not unique_ids:
        return {}

    conn = get_connection()
    try:
        placeholders = ",".join("?" * len(unique_ids))
        rows = conn.execute(
            f"SELECT id, title FROM sources WHERE id IN ({placeholders})",
            unique_ids,
        ).fetchall()
        return {row["id"]: row["title"] for row in rows}

    except Exception as e:
        logger.error("source_titles_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------

def get_chunks(source_id: str) -> List[Chunk]:
    """Get a source's chunks in document order."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT * FROM chunks WHERE source_id = ? ORDER BY chunk_index
        """, (source_id,)).fetchall()

        return [
            Chunk(
                id=row["id"],
                source_id=row["source_id"],
                project_id=row["project_id"],
                user_id=row["user_id"],
                content=row["content"],
                chunk_index=row["chunk_index"],
                embedding=_decode_embedding(row["embedding"]),
                metadata=_load_json(row["metadata_json"]),
            )
            for row in rows
        ]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e), source_id=source_id)
        raise
    finally:
        conn.close()


def match_chunks(
    query_embedding: Sequence[float],
    project_id: str,
    user_id: str,
    match_count: int,
    match_threshold: float,
) -> List[Dict[str, Any]]:
    """Similarity search over a project's embedded chunks.

    Args:
        query_embedding: Query vector
        project_id: Project scope
        user_id: Owner scope
        match_count: Maximum number of rows to return
        match_threshold: Rows must have similarity strictly above this

    Returns:
        Chunk dictionaries with a ``similarity`` field, best first
    """
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT id, source_id, content, chunk_index, embedding, metadata_json
            FROM chunks
            WHERE project_id = ? AND user_id = ? AND embedding IS NOT NULL
            ORDER BY source_id, chunk_index
        """, (project_id, user_id)).fetchall()
    finally:
        conn.close()

    if not rows:
        return []

    dimension = len(query_embedding)
    candidates = []
    vectors = []
    for row in rows:
        vector = np.frombuffer(row["embedding"], dtype=np.float32)
        if vector.shape[0] != dimension:
            continue
        candidates.append(row)
        vectors.append(vector)

    if len(candidates) < len(rows):
        logger.warning(
            "chunks_dimension_mismatch_skipped",
            skipped=len(rows) - len(candidates),
            expected_dimension=dimension,
        )

    if not vectors:
        return []

    store = FAISSVectorStore(dimension)
    store.add(np.vstack(vectors))
    positions, similarities = store.search(query_embedding, top_k=match_count)

    matches = []
    for position, similarity in zip(positions, similarities):
        if similarity <= match_threshold:
            continue
        row = candidates[position]
        matches.append({
            "id": row["id"],
            "source_id": row["source_id"],
            "content": row["content"],
            "chunk_index": row["chunk_index"],
            "metadata": _load_json(row["metadata_json"]),
            "similarity": similarity,
        })

    logger.debug(
        "chunks_matched",
        project_id=project_id,
        candidates=len(candidates),
        matches=len(matches),
    )
    return matches


# ---------------------------------------------------------------------------
# Chat sessions and messages
# ---------------------------------------------------------------------------

def _row_to_session(row: sqlite3.Row) -> ChatSession:
    keys = row.keys()
    return ChatSession(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        message_count=row["message_count"] if "message_count" in keys else None,
    )


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        role=row["role"],
        content=row["content"],
        metadata=_load_json(row["metadata_json"]),
        created_at=row["created_at"],
    )


def create_session(session: ChatSession) -> ChatSession:
    session.created_at = session.created_at or now_iso()
    session.updated_at = session.updated_at or session.created_at

    conn = get_connection()
    try:
        conn.execute("""
            INSERT INTO chat_sessions (id, project_id, user_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            session.id,
            session.project_id,
            session.user_id,
            session.title,
            session.created_at,
            session.updated_at,
        ))
        conn.commit()
        return session

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("session_insert_failed", error=str(e), session_id=session.id)
        raise StoreWriteError(f"Failed to create chat session: {e}") from e
    finally:
        conn.close()


def get_session(session_id: str, user_id: Optional[str] = None) -> Optional[ChatSession]:
    conn = get_connection()
    try:
        if user_id is None:
            row = conn.execute(
                "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT * FROM chat_sessions WHERE id = ? AND user_id = ?",
                (session_id, user_id),
            ).fetchone()
        return _row_to_session(row) if row else None
    finally:
        conn.close()


def list_sessions(project_id: str, user_id: str, limit: int = 50) -> List[ChatSession]:
    """List a project's sessions, most recently updated first, with message counts."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT s.*, COUNT(m.id) AS message_count
            FROM chat_sessions s
            LEFT JOIN chat_messages m ON m.session_id = s.id
            WHERE s.project_id = ? AND s.user_id = ?
            GROUP BY s.id
            ORDER BY s.updated_at DESC
            LIMIT ?
        """, (project_id, user_id, limit)).fetchall()
        return [_row_to_session(row) for row in rows]
    finally:
        conn.close()


def delete_session(session_id: str, user_id: str) -> bool:
    """Delete a session and its messages.

    Returns:
        True if deleted, False if not found
    """
    conn = get_connection()
    try:
        cursor = conn.execute(
            "DELETE FROM chat_sessions WHERE id = ? AND user_id = ?",
            (session_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("session_delete_failed", error=str(e), session_id=session_id)
        raise StoreWriteError(f"Failed to delete chat session: {e}") from e
    finally:
        conn.close()


def update_session_title(session_id: str, title: str) -> None:
    conn = get_connection()
    try:
        conn.execute(
            "UPDATE chat_sessions SET title = ? WHERE id = ?", (title, session_id)
        )
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StoreWriteError(f"Failed to update session title: {e}") from e
    finally:
        conn.close()


def append_messages(session_id: str, messages: List[ChatMessage]) -> None:
    """Append messages to a session and bump its ``updated_at``.

    Raises:
        StoreWriteError: If the session doesn't exist or the insert fails
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()
        timestamp = now_iso()
        cursor.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
            (timestamp, session_id),
        )
        if cursor.rowcount == 0:
            raise StoreWriteError(f"Chat session not found: {session_id}")

        cursor.executemany("""
            INSERT INTO chat_messages (
                id, session_id, project_id, user_id, role, content,
                metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                message.id,
                session_id,
                message.project_id,
                message.user_id,
                message.role,
                message.content,
                json.dumps(message.metadata) if message.metadata else None,
                message.created_at or timestamp,
            )
            for message in messages
        ])
        conn.commit()

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("messages_insert_failed", error=str(e), session_id=session_id)
        raise StoreWriteError(f"Failed to save messages: {e}") from e
    except StoreWriteError:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_messages(session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
    """Get a session's messages in chronological order.

    Args:
        session_id: Session to read
        limit: If given, only the most recent ``limit`` messages

    Returns:
        List of messages, oldest first
    """
    conn = get_connection()
    try:
        if limit is None:
            rows = conn.execute("""
                SELECT * FROM chat_messages WHERE session_id = ?
                ORDER BY created_at ASC, rowid ASC
            """, (session_id,)).fetchall()
        else:
            rows = conn.execute("""
                SELECT * FROM (
                    SELECT *, rowid AS seq FROM chat_messages WHERE session_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                ) ORDER BY created_at ASC, seq ASC
            """, (session_id, limit)).fetchall()
        return [_row_to_message(row) for row in rows]
    finally:
        conn.close()
