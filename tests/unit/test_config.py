"""Unit tests for settings and logging setup."""

import pytest
import structlog
from pydantic import ValidationError

from docklink.config import Settings
from docklink.models.errors import ErrorType, InvalidState
from docklink.utils.logging import setup_logging


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DOCKER_HOST", raising=False)
        settings = Settings(_env_file=None)

        assert settings.docker_host == "unix:///var/run/docker.sock"
        assert settings.stream_max_frame_size is None
        assert settings.engine.get_base_url() == "http://docker"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DOCKER_HOST", "tcp://engine:2376")
        monkeypatch.setenv("DOCKER_API_VERSION", "1.43")
        monkeypatch.setenv("EXEC_POLL_INTERVAL", "0.5")

        settings = Settings(_env_file=None)

        assert settings.docker_api_version == "v1.43"
        assert settings.engine.get_base_url() == "http://engine:2376/v1.43"
        assert settings.stream.exec_poll_interval == 0.5

    def test_rejects_unknown_scheme(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, docker_host="ssh://engine")

    def test_rejects_unknown_log_format(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_format="xml")

    def test_logging_group(self):
        settings = Settings(_env_file=None, log_level="warning", log_format="JSON")
        assert settings.logging.log_format == "json"
        assert settings.logging.log_level == "warning"


class TestLogging:
    """Test structlog configuration."""

    def test_setup_json(self):
        setup_logging(level="DEBUG", fmt="json")
        assert structlog.is_configured()

    def test_setup_console(self):
        setup_logging(fmt="console")
        assert structlog.is_configured()


class TestErrors:
    """Test error serialization."""

    def test_invalid_state_response(self):
        error = InvalidState("remove", "running", "abc")
        response = error.to_response()

        assert response.error_type == ErrorType.INVALID_STATE.value
        assert response.handle_id == "abc"
        assert "Cannot remove process abc in state running" == response.error
