"""
config.py — All relay settings loaded from environment variables.

Using pydantic-settings means:
- Every setting is type-validated at startup (fail fast, not at runtime)
- Defaults are documented alongside the setting
- Pointing the relay at a different Ollama host or model = change env vars, zero code
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── Ollama ────────────────────────────────────────────────────────────────
    ollama_base_url: str = "http://localhost:11434"
    ollama_llm_model: str = "llama3.3:70b"
    ollama_summary_model: str | None = None   # falls back to ollama_llm_model

    # ── LLM generation ────────────────────────────────────────────────────────
    llm_max_tokens: int = 1024
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 180.0

    # ── Session memory ────────────────────────────────────────────────────────
    history_max_turns: int = 80       # FIFO cap applied on every append
    compaction_threshold: int = 60    # compact when history is longer than this
    compaction_keep_recent: int = 40  # turns left out of the summarized slice
    summary_word_limit: int = 150
    session_store_dir: str | None = None  # None = in-process store

    # ── Prompt ────────────────────────────────────────────────────────────────
    max_message_chars: int = 4000
    default_system_prompt: str = "You are a concise, helpful assistant."
    compact_on_stream: bool = False

    # ── App ───────────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8787
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def summary_model(self) -> str:
        return self.ollama_summary_model or self.ollama_llm_model


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached settings instance — reads .env once at startup.
    Use get_settings() everywhere instead of instantiating Settings() directly.
    """
    return Settings()
