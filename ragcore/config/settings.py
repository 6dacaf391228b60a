"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources (in priority order):
#
#   1. **Environment variables**, e.g. OPENAI_API_KEY=sk-abc123
#   2. **.env file**: key=value lines in the project root .env file
#
# Field name `chunk_size` maps to env var `CHUNK_SIZE`.  Defaults below are
# used when neither an env var nor a .env entry exists.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ragcore application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Storage ===
    # Documents, processing log and chunks share one SQLite file so the
    # chunks -> documents foreign key can cascade deletes.
    database_path: str = "data/ragcore.db"

    # === Embedding ===
    embedding_provider: str = "openai"  # "openai" or "nomic"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_embedding_model: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"
    # Fixed per deployment; the chunk store rejects vectors of any other length.
    embedding_dimension: int = 1536
    embedding_concurrency: int = 4

    # === Chunking ===
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunk_preserve_paragraphs: bool = True
    chunk_strategy: str = "grouped"  # "grouped" or "paragraph"

    # === Retry policy (1 attempt = no automatic retry) ===
    retry_max_attempts: int = 1
    retry_backoff_seconds: float = 0.5
    retry_backoff_max_seconds: float = 8.0

    # === Search ===
    search_default_limit: int = 10
    search_default_threshold: float = 0.7
    keyword_bonus_cap: float = 0.05
    recency_bonus_cap: float = 0.02
    recency_half_life_days: float = 30.0

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have enough configuration to run."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("nomic")
        return providers
