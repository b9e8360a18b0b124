"""Configuration management for ingestrag using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IngestRAGConfig(BaseSettings):
    """ingestrag configuration with environment variable support.

    All settings use the INGESTRAG_ env prefix. Processing policy constants
    (attempt limits, waits, chunk window) live here so deployments can tune
    them without code changes.
    """

    model_config = SettingsConfigDict(
        env_prefix="INGESTRAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- API Keys --
    openai_api_key: str = ""

    # -- Model Configuration --
    stt_model: str = "whisper-1"
    stt_language: str | None = "ko"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None
    boundary_model: str = "gpt-4o-mini"
    ocr_model: str = "gpt-4o"

    # -- Database and Storage --
    database_path: str = "ingestrag.db"
    work_dir: Path | None = None
    cleanup_audio: bool = True

    # -- Task Lock --
    lock_backend: Literal["sqlite", "memory"] = "sqlite"
    lock_timeout_seconds: float = 7200.0
    lock_strict_mode: bool = False

    # -- Item Processing Policy --
    max_attempts: int = 3
    boundary_detection: bool = True
    min_subrange_seconds: float = 1200.0
    chunk_window: int = 500
    chunk_overlap: int = 100
    retry_base_seconds: float = 5.0
    rate_limit_wait_seconds: float = 30.0
    inter_item_delay_seconds: float = 2.0
    embed_batch_size: int = 64
    default_max_items: int = 5

    # -- Maintenance --
    orphan_age_seconds: float = 7200.0

    # -- Scanning --
    scan_max_pages: int = 10
    scan_page_timeout_seconds: float = 30.0
    scan_page_delay_seconds: float = 0.3

    # -- Pipelines --
    enabled_pipelines: list[str] = ["sermon", "bulletin", "news"]
    sermon_list_url: str = ""
    bulletin_list_url: str = ""
    bulletin_link_pattern: str | None = None
    news_list_url: str = ""
    news_link_pattern: str | None = None

    # -- YouTube --
    youtube_cookie_file: str | None = None
    # Proof of Origin (PO) Token. Required for stable YouTube extraction since 2025.
    youtube_po_token: str | None = None
    youtube_impersonate: str | None = "chrome-120"
    youtube_player_clients: list[str] = ["tv", "web", "mweb"]
    js_runtime: str | None = "deno"
    audio_format: str = "mp3"

    # -- Logging --
    log_level: str = "INFO"
    log_format: Literal["colored", "plain", "json"] = "colored"
    log_timestamps: bool = True

    # -- Provider Retry Configuration --
    retry_max_attempts: int = 3
    retry_min_wait_seconds: float = 4.0
    retry_max_wait_seconds: float = 60.0
    retry_exponential_multiplier: float = 1.0

    # -- HTTP API --
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @field_validator("max_attempts", "chunk_window", "scan_max_pages", "embed_batch_size")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("chunk_overlap")
    @classmethod
    def _validate_overlap(cls, value: int) -> int:
        if value < 0:
            raise ValueError("chunk_overlap must not be negative")
        return value

    @model_validator(mode="after")
    def _validate_window(self) -> "IngestRAGConfig":
        if self.chunk_overlap >= self.chunk_window:
            raise ValueError("chunk_overlap must be smaller than chunk_window")
        return self

    def list_url_for(self, pipeline_type: str) -> str:
        """Get the configured listing URL for a pipeline type."""
        return {
            "sermon": self.sermon_list_url,
            "bulletin": self.bulletin_list_url,
            "news": self.news_list_url,
        }.get(pipeline_type, "")
