"""
Unit tests for SedConfig and Docs service construction.
"""
import json
from unittest.mock import MagicMock, patch

import pytest

from core.config import SedConfig
from core.service import DocsAuthenticationError, build_docs_service, load_credentials
from core.utils import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES

ENV_VARS = (
    "DOCSED_MAX_RETRIES",
    "DOCSED_BASE_DELAY",
    "DOCSED_MAX_DELAY",
    "DOCSED_IMAGE_PAUSE",
    "DOCSED_IMAGE_RETRY_PAUSE",
    "GOOGLE_DOCS_CREDENTIALS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSedConfig:
    """Tests for SedConfig.from_env."""

    def test_defaults(self, clean_env):
        config = SedConfig.from_env()
        assert config.max_retries == DEFAULT_MAX_RETRIES
        assert config.base_delay == DEFAULT_BASE_DELAY
        assert config.image_pause == 0.5
        assert config.credentials_file is None

    def test_overrides(self, clean_env):
        clean_env.setenv("DOCSED_MAX_RETRIES", "2")
        clean_env.setenv("DOCSED_IMAGE_PAUSE", "0")
        clean_env.setenv("GOOGLE_DOCS_CREDENTIALS", "/tmp/creds.json")
        config = SedConfig.from_env()
        assert config.max_retries == 2
        assert config.image_pause == 0.0
        assert config.credentials_file == "/tmp/creds.json"

    def test_invalid_values_fall_back(self, clean_env):
        clean_env.setenv("DOCSED_BASE_DELAY", "soon")
        clean_env.setenv("DOCSED_MAX_RETRIES", "many")
        config = SedConfig.from_env()
        assert config.base_delay == DEFAULT_BASE_DELAY
        assert config.max_retries == DEFAULT_MAX_RETRIES

    def test_negative_retries_clamped(self, clean_env):
        clean_env.setenv("DOCSED_MAX_RETRIES", "-3")
        assert SedConfig.from_env().max_retries == 0


class TestLoadCredentials:
    """Tests for load_credentials and build_docs_service."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocsAuthenticationError):
            load_credentials(str(tmp_path / "absent.json"))

    def test_unreadable_json(self, tmp_path):
        path = tmp_path / "creds.json"
        path.write_text("not json")
        with pytest.raises(DocsAuthenticationError):
            load_credentials(str(path))

    def test_authorized_user_with_token(self, tmp_path):
        path = tmp_path / "creds.json"
        path.write_text(json.dumps({'token': "abc", 'client_id': "id", 'client_secret': "secret"}))
        credentials = load_credentials(str(path))
        assert credentials.token == "abc"

    def test_expired_without_refresh_token(self, tmp_path):
        path = tmp_path / "creds.json"
        path.write_text(json.dumps({'client_id': "id", 'client_secret': "secret"}))
        with pytest.raises(DocsAuthenticationError):
            load_credentials(str(path))

    def test_service_account(self, tmp_path):
        path = tmp_path / "sa.json"
        path.write_text(json.dumps({'type': "service_account"}))
        with patch("core.service.service_account.Credentials.from_service_account_file") as from_file:
            from_file.return_value = "sa-creds"
            assert load_credentials(str(path)) == "sa-creds"
        from_file.assert_called_once_with(str(path), scopes=["https://www.googleapis.com/auth/documents"])

    def test_build_requires_credentials(self):
        with pytest.raises(DocsAuthenticationError):
            build_docs_service(None)

    def test_build(self):
        service = MagicMock()
        with patch("core.service.load_credentials", return_value="creds"), \
                patch("core.service.build", return_value=service) as build:
            assert build_docs_service("/tmp/creds.json") is service
        build.assert_called_once_with("docs", "v1", credentials="creds", cache_discovery=False)
