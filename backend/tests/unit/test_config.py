"""Tests for configuration loading and path resolution."""

import json

import pytest

from face_match import config as config_module
from face_match.config import get_default_config, get_env_overrides, load_config
from face_match.paths import ensure_data_home, get_config_path, get_data_home


@pytest.fixture(autouse=True)
def data_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("FACE_MATCH_DATA_HOME", str(home))
    monkeypatch.delenv("FACE_MATCH_CONFIG", raising=False)
    return home


class TestPaths:

    def test_data_home_override(self, data_home):
        assert get_data_home() == data_home

    def test_explicit_config_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FACE_MATCH_CONFIG", str(tmp_path / "custom.json"))
        assert get_config_path() == tmp_path / "custom.json"

    def test_data_home_config_preferred(self, data_home):
        ensure_data_home()
        (data_home / "config.json").write_text("{}", encoding="utf-8")
        assert get_config_path() == data_home / "config.json"

    def test_ensure_data_home(self, data_home):
        ensure_data_home()
        assert (data_home / "data" / "photos").is_dir()


class TestLoadConfig:
    """Tests for defaults, file merge and environment overrides."""

    def test_defaults(self, tmp_path):
        config = load_config(path=tmp_path / "missing.json", environ={})

        assert config['indexing'] == {'batch_size': 50, 'concurrency': 5}
        assert config['vision']['collection_prefix'] == "event-"
        assert config['search']['threshold'] == 80.0
        assert config['database']['url'].startswith("sqlite:///")
        assert config['database']['url'].endswith("face_match.db")

    def test_file_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            'indexing': {'concurrency': 3},
            'storage': {'backend': 's3', 'bucket': 'event-photos', 'region': 'ap-southeast-1'},
        }), encoding="utf-8")

        config = load_config(path=path, environ={})

        assert config['indexing'] == {'batch_size': 50, 'concurrency': 3}
        assert config['storage']['bucket'] == "event-photos"
        # Vision region falls back to the storage region
        assert config['vision']['region'] == "ap-southeast-1"

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'indexing': {'batch_size': 10}}), encoding="utf-8")

        config = load_config(path=path, environ={
            'FACE_MATCH_BATCH_SIZE': "20",
            'FACE_MATCH_SEARCH_THRESHOLD': "92.5",
            'FACE_MATCH_DEBUG': "true",
            'AWS_REGION': "eu-west-1",
        })

        assert config['indexing']['batch_size'] == 20
        assert config['search']['threshold'] == 92.5
        assert config['server']['debug'] is True
        assert config['vision']['region'] == "eu-west-1"
        assert config['storage']['region'] == "eu-west-1"

    def test_database_url_precedence(self):
        overrides = get_env_overrides({
            'DATABASE_URL': "postgresql://generic/db",
            'FACE_MATCH_DATABASE_URL': "postgresql://specific/db",
        })
        assert overrides['database']['url'] == "postgresql://specific/db"

        overrides = get_env_overrides({'DATABASE_URL': "postgresql://generic/db"})
        assert overrides['database']['url'] == "postgresql://generic/db"

    def test_invalid_env_value_ignored(self):
        assert get_env_overrides({'FACE_MATCH_CONCURRENCY': "lots"}) == {}

    def test_defaults_not_mutated(self, tmp_path):
        load_config(path=tmp_path / "missing.json", environ={'FACE_MATCH_CONCURRENCY': "9"})
        assert get_default_config()['indexing']['concurrency'] == 5

    def test_get_config_cached(self, monkeypatch):
        monkeypatch.setattr(config_module, "_config", None)
        first = config_module.get_config()
        assert config_module.get_config() is first
        assert config_module.reload_config() is not first
        monkeypatch.setattr(config_module, "_config", None)
