"""
Tests for the server entry point (startup, exit codes, shutdown).
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from config.settings_schema import validate_settings
from core.exceptions import EngineLaunchError, SettingsValidationError
from web.server import build_parser, main


@pytest.fixture
def settings():
    return validate_settings({"web": {"host": "127.0.0.1", "port": 3100}})


@pytest.fixture
def patched(settings):
    bridge = MagicMock()
    with patch('web.server.load_validated_settings', return_value=settings), \
         patch('web.server.build_bridge', return_value=bridge) as build, \
         patch('web.server.uvicorn.run') as run, \
         patch('web.server.atexit.register') as register, \
         patch('web.server.configure_logging'):
        yield {"bridge": bridge, "build": build, "run": run, "register": register}


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.config is None
    assert args.port is None
    assert args.dotenv == "./.env"


def test_clean_run_exits_zero(patched, settings, tmp_path):
    code = main(["--dotenv", str(tmp_path / "missing.env")])

    assert code == 0
    bridge = patched["bridge"]
    patched["build"].assert_called_once_with(settings)
    bridge.start.assert_called_once()
    patched["register"].assert_called_once_with(bridge.shutdown)
    _, kwargs = patched["run"].call_args
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 3100
    bridge.shutdown.assert_called()


def test_port_flag_overrides_settings(patched, tmp_path):
    main(["--dotenv", str(tmp_path / "missing.env"), "--port", "4242"])
    assert patched["run"].call_args.kwargs["port"] == 4242


def test_engine_launch_failure_exits_one(patched, tmp_path):
    patched["bridge"].start.side_effect = EngineLaunchError("engine died before READY")

    code = main(["--dotenv", str(tmp_path / "missing.env")])

    assert code == 1
    patched["run"].assert_not_called()
    patched["bridge"].shutdown.assert_called()


def test_engine_shut_down_when_server_raises(patched, tmp_path):
    patched["run"].side_effect = KeyboardInterrupt()
    with pytest.raises(KeyboardInterrupt):
        main(["--dotenv", str(tmp_path / "missing.env")])
    patched["bridge"].shutdown.assert_called()


def test_invalid_settings_exit_one(tmp_path):
    error = SettingsValidationError("bad settings", context={"errors": ["web.port"]})
    with patch('web.server.load_validated_settings', side_effect=error), \
         patch('web.server.build_bridge') as build, \
         patch('web.server.configure_logging'):
        code = main(["--dotenv", str(tmp_path / "missing.env")])
    assert code == 1
    build.assert_not_called()


def test_config_flag_sets_env(patched, tmp_path, monkeypatch):
    # Registered so the override is undone after the test
    monkeypatch.setenv("CHEFFLOW_CONFIG_PATH", str(tmp_path / "previous.yaml"))
    cfg = tmp_path / "chefflow.yaml"
    main(["--dotenv", str(tmp_path / "missing.env"), "--config", str(cfg)])
    assert os.environ["CHEFFLOW_CONFIG_PATH"] == str(cfg)
