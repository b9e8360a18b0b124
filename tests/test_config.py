"""Tests for configuration and logging setup."""

import pytest
import structlog
from pydantic import ValidationError

from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.logging_config import Timer, configure_logging, get_logger


def make_config(**kwargs) -> IngestRAGConfig:
    return IngestRAGConfig(_env_file=None, **kwargs)


class TestIngestRAGConfigDefaults:
    """Default processing policy and pipeline settings."""

    def test_processing_policy_defaults(self):
        config = make_config()

        assert config.max_attempts == 3
        assert config.min_subrange_seconds == 1200
        assert config.chunk_window == 500
        assert config.chunk_overlap == 100
        assert config.retry_base_seconds == 5
        assert config.rate_limit_wait_seconds == 30
        assert config.inter_item_delay_seconds == 2
        assert config.default_max_items == 5

    def test_lock_and_maintenance_defaults(self):
        config = make_config()

        assert config.lock_backend == "sqlite"
        assert config.lock_timeout_seconds == 7200
        assert config.lock_strict_mode is False
        assert config.orphan_age_seconds == 7200

    def test_scan_defaults(self):
        config = make_config()

        assert config.scan_max_pages == 10
        assert config.scan_page_timeout_seconds == 30
        assert config.enabled_pipelines == ["sermon", "bulletin", "news"]


class TestIngestRAGConfigEnvironment:
    """Settings are read from INGESTRAG_ environment variables."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("INGESTRAG_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("INGESTRAG_LOCK_BACKEND", "memory")
        monkeypatch.setenv("INGESTRAG_BULLETIN_LIST_URL", "https://example.org/board/65")

        config = make_config()

        assert config.max_attempts == 5
        assert config.lock_backend == "memory"
        assert config.list_url_for("bulletin") == "https://example.org/board/65"

    def test_list_env_is_json(self, monkeypatch):
        monkeypatch.setenv("INGESTRAG_ENABLED_PIPELINES", '["news"]')

        assert make_config().enabled_pipelines == ["news"]

    def test_unknown_pipeline_has_no_url(self):
        assert make_config().list_url_for("podcast") == ""


class TestIngestRAGConfigValidation:
    @pytest.mark.parametrize("field", ["max_attempts", "chunk_window", "scan_max_pages"])
    def test_rejects_non_positive(self, field: str):
        with pytest.raises(ValidationError):
            make_config(**{field: 0})

    def test_rejects_negative_overlap(self):
        with pytest.raises(ValidationError):
            make_config(chunk_overlap=-1)

    def test_rejects_overlap_not_smaller_than_window(self):
        with pytest.raises(ValidationError):
            make_config(chunk_window=100, chunk_overlap=100)

    def test_rejects_unknown_lock_backend(self):
        with pytest.raises(ValidationError):
            make_config(lock_backend="redis")

    def test_rejects_unknown_log_format(self):
        with pytest.raises(ValidationError):
            make_config(log_format="xml")


class TestLogging:
    def test_configure_rejects_unknown_format(self):
        with pytest.raises(ValueError, match="log_format"):
            configure_logging(log_format="xml")

    def test_timer_logs_completion_fields(self):
        with structlog.testing.capture_logs() as logs:
            with Timer(get_logger("test"), "scan", task_type="bulletin") as timer:
                timer.complete(new_count=2)

        assert [e["event"] for e in logs] == ["scan_started", "scan_completed"]
        assert logs[1]["new_count"] == 2
        assert logs[1]["task_type"] == "bulletin"

    def test_timer_logs_failure(self):
        with structlog.testing.capture_logs() as logs:
            with pytest.raises(RuntimeError):
                with Timer(get_logger("test"), "process"):
                    raise RuntimeError("boom")

        assert logs[-1]["event"] == "process_failed"
        assert logs[-1]["error_type"] == "RuntimeError"
