"""
Tests for config/env_loader.py - .env loading via python-dotenv.
"""
import os

from config.env_loader import load_env


def test_missing_file_is_ignored(tmp_path):
    assert load_env(tmp_path / ".env") == {}


def test_loads_values_without_clobbering(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("CHEFFLOW_TEST_A=from-file\nCHEFFLOW_TEST_B=also-file\n")
    monkeypatch.setenv("CHEFFLOW_TEST_B", "from-shell")
    monkeypatch.delenv("CHEFFLOW_TEST_A", raising=False)

    found = load_env(env_file)

    assert found == {"CHEFFLOW_TEST_A": "from-file", "CHEFFLOW_TEST_B": "also-file"}
    assert os.environ["CHEFFLOW_TEST_A"] == "from-file"
    assert os.environ["CHEFFLOW_TEST_B"] == "from-shell"
    os.environ.pop("CHEFFLOW_TEST_A", None)


def test_override(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("CHEFFLOW_TEST_C=from-file\n")
    monkeypatch.setenv("CHEFFLOW_TEST_C", "from-shell")
    load_env(env_file, override=True)
    assert os.environ["CHEFFLOW_TEST_C"] == "from-file"
