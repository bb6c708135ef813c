"""Central configuration for the embedding store.

Configuration is organized into logical groups:
- Path configuration
- Embedding model configuration
- Store configuration
- Ingestion configuration
- Logging configuration
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# PATH CONFIGURATION
# =============================================================================
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"

# =============================================================================
# EMBEDDING MODEL CONFIGURATION
# =============================================================================
DEFAULT_EMBED_MODEL = os.getenv("EMBED_STORE_MODEL", "all-MiniLM-L6-v2")
EMBED_DEVICE = os.getenv("EMBED_STORE_DEVICE", "cpu")
HUGGINGFACE_API_TOKEN = os.getenv("HUGGINGFACE_API_TOKEN", "")
# Prefix that lets the model registry lazily resolve local sentence-transformers models
SENTENCE_TRANSFORMERS_PREFIX = "sentence-transformers/"

# =============================================================================
# STORE CONFIGURATION
# =============================================================================
DB_PATH = Path(os.getenv("EMBED_STORE_DB_PATH", str(DATA_DIR / "embeddings.db")))
DEFAULT_BATCH_SIZE = int(os.getenv("EMBED_STORE_BATCH_SIZE", "100"))
DEFAULT_TOP_K = int(os.getenv("EMBED_STORE_TOP_K", "10"))

# =============================================================================
# INGESTION CONFIGURATION
# =============================================================================
FILE_ENCODINGS = tuple(
    e.strip()
    for e in os.getenv("EMBED_STORE_ENCODINGS", "utf-8").split(",")
    if e.strip()
)
# Single-byte encoding tried last so text files never fail outright; set to an
# empty string to disable
FALLBACK_ENCODING = os.getenv("EMBED_STORE_FALLBACK_ENCODING", "latin-1") or None
DEFAULT_FILE_PATTERN = os.getenv("EMBED_STORE_FILE_PATTERN", "**/*")

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
LOG_LEVEL = os.getenv("EMBED_STORE_LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("EMBED_STORE_LOG_FORMAT", "plain")  # plain|json
LOG_FILE_PATH = os.getenv("EMBED_STORE_LOG_FILE", "")
LOG_REDACT_CONTENT = (
    os.getenv("EMBED_STORE_LOG_REDACT_CONTENT", "false").lower() == "true"
)
