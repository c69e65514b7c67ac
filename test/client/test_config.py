import pytest
from pydantic import ValidationError as PydanticValidationError

from client.config import ClientConfig, DEFAULT_BASE_URL


class TestClientConfig:
    def test_defaults(self):
        config = ClientConfig()
        assert config.base_url == DEFAULT_BASE_URL
        assert config.csrf_cookie_name == "csrftoken"
        assert config.csrf_header_name == "X-CSRFToken"
        assert config.login_entry_point == "/login"

    def test_fallback_url_strips_api_segment(self):
        config = ClientConfig(base_url="https://portal.example.com/api/")
        assert config.base_url == "https://portal.example.com/api"
        assert config.credential_fallback_url == "https://portal.example.com"

    def test_fallback_url_keeps_api_host(self):
        config = ClientConfig(base_url="https://api.portal.example/api")
        assert config.credential_fallback_url == "https://api.portal.example"

    def test_fallback_url_only_strips_trailing_api_segment(self):
        config = ClientConfig(base_url="http://localhost:8000/apiv2/api")
        assert config.credential_fallback_url == "http://localhost:8000/apiv2"

    def test_fallback_url_without_api_segment(self):
        config = ClientConfig(base_url="https://portal.example.com/v1")
        assert config.credential_fallback_url == "https://portal.example.com/v1"

    def test_explicit_fallback_url_is_kept(self):
        config = ClientConfig(credential_fallback_url="https://other.example.com/admin/login/")
        assert config.credential_fallback_url == "https://other.example.com/admin/login/"

    def test_rejects_non_http_base_url(self):
        with pytest.raises(PydanticValidationError):
            ClientConfig(base_url="ftp://portal")

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(PydanticValidationError):
            ClientConfig(timeout=0)

    def test_disk_storage_requires_path(self):
        with pytest.raises(PydanticValidationError, match="marker_path"):
            ClientConfig(marker_storage="disk")


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PORTAL_API_BASE_URL", "https://hr.example.com/api")
        monkeypatch.setenv("PORTAL_CSRF_COOKIE_NAME", "xsrf")
        monkeypatch.setenv("PORTAL_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("PORTAL_PROBE_PATH", "/projects/")

        config = ClientConfig.from_env()

        assert config.base_url == "https://hr.example.com/api"
        assert config.csrf_cookie_name == "xsrf"
        assert config.timeout == 2.5
        assert config.probe_path == "/projects/"

    def test_overrides_win_over_environment(self, monkeypatch):
        monkeypatch.setenv("PORTAL_API_BASE_URL", "https://hr.example.com/api")

        config = ClientConfig.from_env(base_url="http://localhost:9000/api", timeout=None)

        assert config.base_url == "http://localhost:9000/api"
        assert config.timeout == 10.0

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("PORTAL_MARKER_STORAGE", "sqlite")

        with pytest.raises(PydanticValidationError):
            ClientConfig.from_env()
