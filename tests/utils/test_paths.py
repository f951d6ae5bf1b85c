"""Tests for data directory resolution."""

from pathlib import Path

from src.utils import paths


def test_home_override(tmp_path, monkeypatch):
    monkeypatch.setenv("CARGOPULSE_HOME", str(tmp_path))
    assert paths.get_data_dir() == tmp_path
    assert paths.get_blob_dir() == tmp_path / "blobs"
    assert paths.get_default_db_path() == tmp_path / "cargopulse.db"
    assert paths.get_outbox_db_path() == tmp_path / "outbox.db"


def test_platform_dir_without_override(monkeypatch):
    monkeypatch.delenv("CARGOPULSE_HOME")
    monkeypatch.setattr(
        paths.platformdirs, "user_data_dir", lambda name, appauthor: f"/data/{appauthor}/{name}"
    )
    assert paths.get_data_dir() == Path("/data/CargoPulse/cargopulse")


def test_ensure_dirs_exist(tmp_path, monkeypatch):
    home = tmp_path / "state"
    monkeypatch.setenv("CARGOPULSE_HOME", str(home))
    paths.ensure_dirs_exist()
    assert (home / "blobs").is_dir()
