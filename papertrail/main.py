"""Main Quart application for Papertrail."""
import asyncio
import json
import logging
import uuid
from functools import wraps
from pathlib import Path
from typing import Optional

from hypercorn.asyncio import serve as hypercorn_serve
from hypercorn.config import Config
from quart import Quart, Response, request, jsonify
import structlog

from papertrail import config, credentials, db
from papertrail.chat.loop import run_chat_turn
from papertrail.errors import PapertrailError, SourceNotFoundError, StoreWriteError
from papertrail.generate import DocumentGenerator
from papertrail.llm_client import get_model
from papertrail.memory import ConversationManager
from papertrail.models import SOURCE_TYPES, Source
from papertrail.rag.embeddings import EmbeddingClient
from papertrail.rag.ingest import IngestPipeline
from papertrail.rag.retriever import Retriever
from papertrail.storage import ObjectStorage, make_prefix, safe_title
from papertrail.tools import build_research_tools

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

app = Quart(__name__)

storage = ObjectStorage()
conversation_manager = ConversationManager(context_window_size=20)
embedding_client_factory = EmbeddingClient

# Outbound HTTP transport for pages, images and search (None = network)
http_transport = None

URL_SOURCE_TYPES = ("url", "youtube")


def require_user(handler):
    """Resolve the caller from the ``X-User-Id`` header set by the auth proxy."""

    @wraps(handler)
    async def wrapper(*args, **kwargs):
        user_id = request.headers.get("X-User-Id", "").strip()
        if not user_id:
            return jsonify({"error": "Unauthorized"}), 401
        return await handler(user_id, *args, **kwargs)

    return wrapper


def _pipeline() -> IngestPipeline:
    return IngestPipeline(
        storage=storage,
        embedding_client_factory=embedding_client_factory,
        transport=http_transport,
    )


def _retriever(user_id: str) -> Optional[Retriever]:
    """Retriever for the user, or None without an embedding key."""
    api_key = credentials.get_api_key(user_id, "openai")
    if not api_key:
        return None
    return Retriever(embedding_client_factory(api_key))


def _upload_source_type(filename: str, mimetype: str) -> str:
    if mimetype == "application/pdf" or filename.lower().endswith(".pdf"):
        return "pdf"
    if mimetype.startswith("image/"):
        return "image"
    return "text"


@app.before_serving
async def startup():
    db.init_database()
    logger.info("papertrail_started", data_dir=str(config.DATA_DIR))


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@app.route("/api/sources", methods=["POST"])
@require_user
async def create_source(user_id: str):
    """Create a pending source.

    Accepts either JSON ``{projectId, type, title, url}`` for url and youtube
    sources, or a multipart form with ``file``, ``projectId`` and optional
    ``title``/``type`` for uploads.

    Returns:
        201 with the created source
    """
    try:
        upload = None
        if request.mimetype == "multipart/form-data":
            upload = (await request.files).get("file")

        if upload is not None:
            form = await request.form
            project_id = form.get("projectId")
            filename = upload.filename or "upload"
            title = form.get("title") or Path(filename).stem or filename
            source_type = form.get("type") or _upload_source_type(filename, upload.mimetype or "")
            original_url = None
        else:
            data = await request.get_json(silent=True) or {}
            project_id = data.get("projectId")
            source_type = data.get("type")
            original_url = (data.get("url") or "").strip() or None
            title = data.get("title") or original_url

        if not project_id:
            return jsonify({"error": "Missing 'projectId'"}), 400
        if source_type not in SOURCE_TYPES:
            return jsonify({"error": f"Invalid source type: {source_type}"}), 400
        if upload is None and (source_type not in URL_SOURCE_TYPES or not original_url):
            return jsonify({"error": "A 'url' is required for url and youtube sources"}), 400

        file_path = None
        if upload is not None:
            stem = safe_title(Path(filename).stem) or "upload"
            file_path = storage.upload(
                f"{make_prefix(project_id, title)}/{stem}{Path(filename).suffix.lower()}",
                upload.read(),
                upload.mimetype or "application/octet-stream",
            )

        try:
            source = db.create_source(Source(
                id=str(uuid.uuid4()),
                project_id=project_id,
                user_id=user_id,
                type=source_type,
                title=title,
                original_url=original_url,
                file_path=file_path,
            ))
        except StoreWriteError:
            if file_path:
                storage.remove([file_path])
            raise

        return jsonify(source.to_dict()), 201

    except PapertrailError as e:
        logger.error("source_create_error", error=str(e))
        return jsonify({"error": str(e)}), 500


@app.route("/api/sources", methods=["GET"])
@require_user
async def list_sources(user_id: str):
    project_id = request.args.get("projectId")
    if not project_id:
        return jsonify({"error": "Missing 'projectId'"}), 400

    sources = db.list_sources(project_id, user_id)
    return jsonify({"sources": [source.to_dict() for source in sources]})


@app.route("/api/sources/<source_id>", methods=["DELETE"])
@require_user
async def delete_source(user_id: str, source_id: str):
    """Delete a source, its chunks and its stored files.

    Returns:
        204 No Content if successful
        404 Not Found if the source doesn't exist
    """
    try:
        source = db.delete_source(source_id, user_id)
        if source is None:
            return jsonify({"error": "Source not found"}), 404

        paths = [source.file_path] if source.file_path else []
        paths += source.metadata.get("derived_paths", [])
        paths += source.metadata.get("image_paths", [])
        removed = storage.remove(dict.fromkeys(paths))

        logger.info("source_deleted", source_id=source_id, removed_files=len(removed))
        return "", 204

    except PapertrailError as e:
        logger.error("source_delete_error", error=str(e), source_id=source_id)
        return jsonify({"error": "Failed to delete source"}), 500


@app.route("/api/ingest", methods=["POST"])
@require_user
async def ingest(user_id: str):
    """Run the ingestion pipeline for a source.

    Expects JSON body:
    {
        "sourceId": "uuid"
    }

    Returns JSON:
    {
        "success": true,
        "status": "ready",
        "chunks": 3,
        "advisory": "..."  // if stored without embeddings
    }
    """
    data = await request.get_json(silent=True) or {}
    source_id = data.get("sourceId")
    if not source_id:
        return jsonify({"error": "Missing 'sourceId' in request body"}), 400

    try:
        result = await _pipeline().ingest_source(source_id, user_id)
    except SourceNotFoundError:
        return jsonify({"error": "Source not found"}), 404
    except PapertrailError as e:
        return jsonify({"error": str(e)}), 500

    body = {
        "success": True,
        "status": result.status,
        "chunks": result.chunk_count,
        "reports": result.to_dict()["reports"],
    }
    if result.advisory:
        body["advisory"] = result.advisory
    return jsonify(body)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.route("/api/chat", methods=["POST"])
@require_user
async def chat(user_id: str):
    """Stream a research chat turn as NDJSON events.

    Expects JSON body:
    {
        "messages": [...],          // full history, newest last
        "projectId": "uuid",
        "provider": "openai",
        "model": "gpt-4o",
        "chatId": "optional-session-id"
    }
    """
    data = await request.get_json(silent=True) or {}
    messages = data.get("messages")
    project_id = data.get("projectId")
    provider = data.get("provider")
    model_name = data.get("model")
    chat_id = data.get("chatId")

    if not isinstance(messages, list) or not messages:
        return jsonify({"error": "Missing 'messages' in request body"}), 400
    if not project_id or not provider or not model_name:
        return jsonify({"error": "'projectId', 'provider' and 'model' are required"}), 400

    try:
        model = get_model(provider, model_name, credentials.get_api_key(user_id, provider))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    if chat_id and conversation_manager.get_session(chat_id, user_id) is None:
        return jsonify({"error": "Chat session not found"}), 404

    registry = build_research_tools(_pipeline(), project_id, user_id, transport=http_transport)
    events = run_chat_turn(
        messages,
        project_id,
        user_id,
        model,
        registry=registry,
        retriever=_retriever(user_id),
        manager=conversation_manager,
        session_id=chat_id,
    )

    logger.info(
        "chat_request_received",
        project_id=project_id,
        session_id=chat_id,
        provider=provider,
        model=model_name,
    )

    async def stream():
        async for event in events:
            yield (json.dumps(event) + "\n").encode("utf-8")

    return Response(stream(), mimetype="application/x-ndjson")


@app.route("/api/chat-sessions", methods=["GET"])
@require_user
async def chat_sessions(user_id: str):
    """List a project's sessions, or one session's messages with ``sessionId``."""
    session_id = request.args.get("sessionId")
    if session_id:
        session = conversation_manager.get_session(session_id, user_id)
        if session is None:
            return jsonify({"error": "Chat session not found"}), 404
        messages = conversation_manager.get_messages(session_id)
        return jsonify({"messages": [message.to_dict() for message in messages]})

    project_id = request.args.get("projectId")
    if not project_id:
        return jsonify({"error": "Missing 'projectId'"}), 400

    sessions = conversation_manager.list_sessions(project_id, user_id)
    return jsonify({"sessions": [session.to_dict() for session in sessions]})


@app.route("/api/chat-sessions", methods=["POST"])
@require_user
async def create_chat_session(user_id: str):
    data = await request.get_json(silent=True) or {}
    project_id = data.get("projectId")
    if not project_id:
        return jsonify({"error": "Missing 'projectId'"}), 400

    try:
        session = conversation_manager.create_session(project_id, user_id, data.get("title"))
    except PapertrailError as e:
        logger.error("session_create_error", error=str(e))
        return jsonify({"error": "Failed to create session"}), 500

    return jsonify(session.to_dict()), 201


@app.route("/api/chat-sessions", methods=["DELETE"])
@require_user
async def delete_chat_session(user_id: str):
    session_id = request.args.get("sessionId")
    if not session_id:
        return jsonify({"error": "Missing 'sessionId'"}), 400

    try:
        deleted = conversation_manager.delete_session(session_id, user_id)
    except PapertrailError as e:
        logger.error("session_delete_error", error=str(e), session_id=session_id)
        return jsonify({"error": "Failed to delete session"}), 500

    if deleted:
        return "", 204
    return jsonify({"error": "Chat session not found"}), 404


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@app.route("/api/generate", methods=["POST"])
@require_user
async def generate(user_id: str):
    """Generate a research document or slide deck.

    Expects JSON body:
    {
        "projectId": "uuid",
        "type": "document" | "slides",
        "prompt": "optional focus",
        "title": "optional title"
    }

    Returns JSON:
    {
        "html": "...",
        "title": "..."
    }
    """
    data = await request.get_json(silent=True) or {}
    project_id = data.get("projectId")
    if not project_id:
        return jsonify({"error": "Missing 'projectId'"}), 400

    generator = DocumentGenerator(
        storage=storage,
        retriever=_retriever(user_id),
        manager=conversation_manager,
    )

    try:
        document = await generator.generate(
            project_id,
            user_id,
            kind=data.get("type", "document"),
            prompt=data.get("prompt"),
            title=data.get("title"),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error("generate_endpoint_error", error=str(e), error_type=type(e).__name__)
        return jsonify({"error": "Failed to generate document. Please try again."}), 500

    return jsonify(document.to_dict())


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.route("/health/ready")
async def health_ready():
    """Readiness probe - check that the database answers."""
    checks = {"status": "healthy", "database": False}

    try:
        conn = db.get_connection()
        try:
            conn.execute("SELECT 1 FROM sources LIMIT 1")
        finally:
            conn.close()
        checks["database"] = True
        return jsonify(checks), 200

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    """Handle 500 errors."""
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


def serve() -> None:
    """Run the app under Hypercorn."""
    hypercorn_config = Config()
    hypercorn_config.bind = [config.BIND_ADDRESS]
    asyncio.run(hypercorn_serve(app, hypercorn_config))


if __name__ == "__main__":
    serve()
