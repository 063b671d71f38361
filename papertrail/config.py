"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("PAPERTRAIL_DATA_DIR", str(BASE_DIR / "data")))
STORAGE_DIR = DATA_DIR / "storage"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
STORAGE_DIR.mkdir(exist_ok=True)

# Database
DB_PATH = DATA_DIR / "papertrail.sqlite"

# Object storage (local bucket served under a public base URL)
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "sources")
STORAGE_PUBLIC_BASE_URL = os.getenv(
    "STORAGE_PUBLIC_BASE_URL", "http://localhost:5000/storage"
)

# Embeddings (OpenAI-compatible endpoint, one fixed model per index)
EMBEDDING_API_BASE = os.getenv("EMBEDDING_API_BASE", "https://api.openai.com/v1")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "60.0"))

# RAG parameters (character-based)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
CHUNK_LOOKAHEAD = int(os.getenv("CHUNK_LOOKAHEAD", "200"))
RETRIEVAL_MATCH_COUNT = int(os.getenv("RETRIEVAL_MATCH_COUNT", "10"))
RETRIEVAL_MATCH_THRESHOLD = float(os.getenv("RETRIEVAL_MATCH_THRESHOLD", "0.7"))
GENERATION_MATCH_COUNT = int(os.getenv("GENERATION_MATCH_COUNT", "20"))
GENERATION_MATCH_THRESHOLD = float(os.getenv("GENERATION_MATCH_THRESHOLD", "0.5"))

# Extraction
USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (compatible; Papertrail/1.0; +https://github.com/papertrail)",
)
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "15.0"))
IMAGE_FETCH_TIMEOUT = float(os.getenv("IMAGE_FETCH_TIMEOUT", "10.0"))
TRANSCRIPT_TIMEOUT = float(os.getenv("TRANSCRIPT_TIMEOUT", "15.0"))
STORED_TEXT_LIMIT = int(os.getenv("STORED_TEXT_LIMIT", "15000"))
AGENT_TEXT_LIMIT = int(os.getenv("AGENT_TEXT_LIMIT", "8000"))
MAX_FEATURED_IMAGES = 5
MAX_SAVED_IMAGES = 3
PREVIEW_CHARS = 500

# Vision models, tried in order (provider, model)
VISION_MODELS = [
    ("openai", os.getenv("OPENAI_VISION_MODEL", "gpt-4o-mini")),
    ("google", os.getenv("GOOGLE_VISION_MODEL", "gemini-2.0-flash")),
]

# Document generation models, tried in order (provider, model)
GENERATION_MODELS = [
    ("openai", "gpt-4o"),
    ("anthropic", "claude-sonnet-4-20250514"),
    ("google", "gemini-2.0-flash"),
]

# Chat tool loop
MAX_TOOL_STEPS = int(os.getenv("MAX_TOOL_STEPS", "5"))
TOOL_TIMEOUT = float(os.getenv("TOOL_TIMEOUT", "30.0"))

# Tool security
SEARCH_MAX_RESULTS = int(os.getenv("SEARCH_MAX_RESULTS", "8"))
SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "10.0"))
SEARCH_ALLOWED_DOMAINS = None  # None = all, or set to list
SEARCH_BLOCKED_DOMAINS = []    # Add spam/malicious domains

# Server
BIND_ADDRESS = os.getenv("BIND_ADDRESS", "0.0.0.0:5000")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
