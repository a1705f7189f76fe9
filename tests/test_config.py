"""Tests for configuration and project pinning."""

import json

import pytest

from substrate._config import DEFAULT_API_URL, DEFAULT_TIMEOUT, ConfigManager, get_home


@pytest.fixture
def config(temp_dir, monkeypatch):
    monkeypatch.delenv("SUBSTRATE_API_URL", raising=False)
    monkeypatch.delenv("SUBSTRATE_API_KEY", raising=False)
    return ConfigManager(temp_dir / "home")


class TestHome:
    """Tests for locating the home directory."""

    def test_env_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("SUBSTRATE_HOME", str(temp_dir))
        assert get_home() == temp_dir

    def test_default(self, monkeypatch):
        monkeypatch.delenv("SUBSTRATE_HOME", raising=False)
        assert get_home().name == ".substrate"


class TestConfigManager:
    """Tests for the global config file."""

    def test_missing_file_is_empty(self, config):
        assert config.load_config() == {}
        assert config.get("api_url") is None

    def test_set_and_get(self, config):
        config.set("api_url", "https://sync.example.test")
        config.set("timeout", 3)

        assert config.get("api_url") == "https://sync.example.test"
        assert json.loads(config.config_path.read_text()) == {
            "api_url": "https://sync.example.test",
            "timeout": 3,
        }

    def test_corrupt_file_is_empty(self, config):
        config.config_path.parent.mkdir(parents=True)
        config.config_path.write_text("{not json")
        assert config.load_config() == {}

    def test_api_url_precedence(self, config, monkeypatch):
        assert config.get_api_url() == DEFAULT_API_URL

        config.set("api_url", "https://configured.example.test/")
        assert config.get_api_url() == "https://configured.example.test"

        monkeypatch.setenv("SUBSTRATE_API_URL", "https://env.example.test")
        assert config.get_api_url() == "https://env.example.test"

    def test_api_key_from_auth_file(self, config, monkeypatch):
        assert config.get_api_key() is None

        config.auth_path.parent.mkdir(parents=True, exist_ok=True)
        config.auth_path.write_text(json.dumps({"api_key": "from-file"}))
        assert config.get_api_key() == "from-file"

        monkeypatch.setenv("SUBSTRATE_API_KEY", "from-env")
        assert config.get_api_key() == "from-env"

    def test_timeout(self, config):
        assert config.get_timeout() == DEFAULT_TIMEOUT
        config.set("timeout", "2.5")
        assert config.get_timeout() == 2.5
        config.set("timeout", "soon")
        assert config.get_timeout() == DEFAULT_TIMEOUT


class TestProjectPin:
    """Tests for the per-project pin file."""

    def test_pin_and_find_from_subdirectory(self, config, temp_dir):
        project = temp_dir / "project"
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)

        path = config.pin_project(project, "proj-42")

        assert path == project / ".substrate" / "config.json"
        assert config.get_project_id(nested) == "proj-42"
        assert config.find_project_config(nested) == path

    def test_unpinned_directory(self, config, temp_dir):
        assert config.get_project_id(temp_dir) is None

    def test_local_pin_ignores_ancestors(self, config, temp_dir):
        nested = temp_dir / "project" / "src"
        nested.mkdir(parents=True)
        config.pin_project(temp_dir / "project", "proj-42")

        assert config.get_local_pin(temp_dir / "project") == "proj-42"
        assert config.get_local_pin(nested) is None


    def test_unpin_removes_file(self, config, temp_dir):
        config.pin_project(temp_dir, "proj-42")

        assert config.unpin_project(temp_dir)
        assert not ConfigManager.project_config_path(temp_dir).exists()
        assert not config.unpin_project(temp_dir)

    def test_unpin_keeps_other_settings(self, config, temp_dir):
        path = ConfigManager.project_config_path(temp_dir)
        path.parent.mkdir()
        path.write_text(json.dumps({"project_id": "proj-42", "scope": "src"}))

        assert config.unpin_project(temp_dir)
        assert json.loads(path.read_text()) == {"scope": "src"}
