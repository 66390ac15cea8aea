"""Shared environment configuration constants for the Question Bridge backend."""
import os

# --- API Keys ---
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./question_bridge.db")

# --- Question matching ---
QUESTION_MAX_LENGTH = 120
QUESTION_SIMILARITY_THRESHOLD = float(os.getenv("QUESTION_SIMILARITY_THRESHOLD", "0.3"))
RELATED_QUESTION_THRESHOLD = float(os.getenv("RELATED_QUESTION_THRESHOLD", "0.2"))

# --- AI pipeline ---
SCRIPTURE_FOLLOWUP_DELAY_SECONDS = float(os.getenv("SCRIPTURE_FOLLOWUP_DELAY_SECONDS", "0.5"))
SCRIPTURE_POOL_LIMIT = int(os.getenv("SCRIPTURE_POOL_LIMIT", "20"))
REFLECTION_PREVIEW_CHARS = 150

# --- Persistence ---
PERSIST_RETRIES = int(os.getenv("PERSIST_RETRIES", "3"))
PERSIST_BACKOFF_BASE = float(os.getenv("PERSIST_BACKOFF_BASE", "0.5"))

# --- HTTP ---
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:5174").split(",")
    if origin.strip()
]
