"""Tests for configuration loading."""
from pathlib import Path

import pytest

from mpkg.config import DEFAULT_REPO_URL, Config, load_config, parse_config


class TestParseConfig:

    def test_key_values(self):
        values = parse_config(
            "# mpkg config\n"
            "PKG_DB_PATH = /srv/db\n"
            "\n"
            "PKG_REPO_URL=https://mirror.example.org/repo/?a=b\n"
            "BROKEN LINE\n"
            "EMPTY =\n"
        )
        assert values == {
            "PKG_DB_PATH": "/srv/db",
            "PKG_REPO_URL": "https://mirror.example.org/repo/?a=b",
        }


class TestLoadConfig:

    def test_defaults_when_missing(self, tmp_path):
        config = load_config(tmp_path / "absent.conf")
        assert config == Config()
        assert config.repo_url == DEFAULT_REPO_URL

    def test_file_values(self, tmp_path):
        path = tmp_path / "mpkg.conf"
        path.write_text(
            f"PKG_DB_PATH = {tmp_path}/db\n"
            f"PKG_CACHE_PATH = {tmp_path}/cache\n"
            "PKG_ROOT = /mnt/target\n"
            "UNKNOWN_KEY = x\n"
        )
        config = load_config(path)
        assert config.db_path == tmp_path / "db"
        assert config.cache_path == tmp_path / "cache"
        assert config.root == Path("/mnt/target")
        assert config.repo_db == tmp_path / "db" / "repo.db"

    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "env.conf"
        path.write_text("PKG_REPO_URL = https://env.example.org/\n")
        monkeypatch.setenv("MPKG_CONFIG", str(path))
        assert load_config().repo_url == "https://env.example.org/"


class TestConfig:

    def test_frozen(self):
        config = Config()
        with pytest.raises(AttributeError):
            config.root = Path("/tmp")

    def test_with_root(self):
        config = Config().with_root(Path("/mnt"))
        assert config.root == Path("/mnt")
        assert Config().root == Path("/")

    def test_derived_paths(self, tmp_path):
        config = Config(db_path=tmp_path / "db", cache_path=tmp_path / "cache")
        assert config.archive_path("foo") == tmp_path / "cache" / "foo.tar.xz"
        assert config.lock_path == tmp_path / "db" / ".lock"
        config.ensure_dirs()
        assert config.journal_dir.is_dir()
        assert config.cache_path.is_dir()
