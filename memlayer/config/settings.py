"""Application settings and configuration schema."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreCfg(BaseSettings):
    """SQLite store location."""
    path: str = Field("data/memory.db", min_length=1, validation_alias="MEMLAYER_DB_PATH")

    model_config = SettingsConfigDict(env_prefix="MEMLAYER_", env_ignore_empty=True, populate_by_name=True)

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


class NodeCfg(BaseSettings):
    """Identity of the physical replica writing records."""
    id: str = Field("home-node", min_length=1)
    location: str = Field("unknown", min_length=1)

    model_config = SettingsConfigDict(env_prefix="MEMLAYER_NODE_", env_ignore_empty=True)


class OllamaCfg(BaseSettings):
    """Generation and embedding backend."""
    url: str = Field("http://localhost:11434/api/chat", min_length=1)
    default_model: str = Field("llama3.2", min_length=1, validation_alias="OLLAMA_MODEL")
    keep_alive: str = Field("10m", min_length=1)
    embedding_model: Optional[str] = "nomic-embed-text"
    # Cold model loads can take many minutes: 900 x 2s is roughly 30m.
    retries: int = Field(900, gt=0)
    retry_sleep_ms: int = Field(2000, ge=0)
    timeout: float = Field(300.0, gt=0)

    model_config = SettingsConfigDict(env_prefix="OLLAMA_", env_ignore_empty=True, populate_by_name=True)


class ChatCfg(BaseSettings):
    """Chat history and summarization."""
    default_session: str = Field("default", min_length=1, validation_alias="MEMLAYER_DEFAULT_SESSION")
    history_limit: int = Field(50, gt=0)
    recent_window: int = Field(5, gt=0)

    model_config = SettingsConfigDict(env_prefix="CHAT_", env_ignore_empty=True, populate_by_name=True)


class PromptCfg(BaseSettings):
    """Prompt token budget (also sent as num_ctx)."""
    max_tokens: int = Field(2000, gt=0, validation_alias="MAX_PROMPT_TOKENS")

    model_config = SettingsConfigDict(env_prefix="PROMPT_", env_ignore_empty=True, populate_by_name=True)


class RagCfg(BaseSettings):
    """Retrieval-augmented context."""
    enabled: bool = False
    top_k: int = Field(5, gt=0)
    min_score: float = 0.2

    model_config = SettingsConfigDict(env_prefix="MEMLAYER_RAG_", env_ignore_empty=True)


class LogCfg(BaseSettings):
    """Logging toggles."""
    level: str = "info"
    request_bodies: bool = True

    model_config = SettingsConfigDict(env_prefix="MEMLAYER_LOG_", env_ignore_empty=True)


class Settings(BaseModel):
    """
    Main application settings.

    Each section reads its own environment variables when it is built
    from defaults; sections passed in explicitly are used as given.
    """
    store: StoreCfg = Field(default_factory=StoreCfg)
    node: NodeCfg = Field(default_factory=NodeCfg)
    ollama: OllamaCfg = Field(default_factory=OllamaCfg)
    chat: ChatCfg = Field(default_factory=ChatCfg)
    prompt: PromptCfg = Field(default_factory=PromptCfg)
    rag: RagCfg = Field(default_factory=RagCfg)
    log: LogCfg = Field(default_factory=LogCfg)

    @model_validator(mode="after")
    def _check_rag_embedding_model(self) -> "Settings":
        if self.rag.enabled and not (self.ollama.embedding_model or "").strip():
            raise ValueError("ollama.embedding_model is required when rag.enabled is true")
        return self
