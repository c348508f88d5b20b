"""Pytest configuration and shared fixtures for teamai tests.

This module provides:
- An isolated coordination root per test
- A default configuration with short intervals
- A Coordinator wired to both
- Helpers to write config files and age heartbeats on disk
"""

import json
from datetime import timedelta
from pathlib import Path

import pytest

import teamai.config as config_module
from teamai.config import LivenessConfig, MessagingConfig, TeamAIConfig
from teamai.coordinator import Coordinator
from teamai.paths import ROOT_ENV_VAR, TeamLayout
from teamai.utils import format_timestamp, utc_now


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the user's root, config files and the config singleton."""
    monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
    workdir = tmp_path / "workdir"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    monkeypatch.setattr(config_module, "_config_instance", None)
    yield
    config_module._config_instance = None


@pytest.fixture
def root(tmp_path):
    """Coordination root directory (not created yet).

    Returns:
        Path: Path to the root
    """
    return tmp_path / "team-ai"


@pytest.fixture
def config():
    """Default configuration with intervals short enough for tests."""
    return TeamAIConfig(
        liveness=LivenessConfig(heartbeat_timeout=600.0, heartbeat_interval=0.05),
        messaging=MessagingConfig(watch_interval=0.05, operation_timeout=5.0),
    )


@pytest.fixture
def coordinator(root, config):
    coord = Coordinator(root=root, config=config)
    yield coord
    coord.close()


@pytest.fixture
def layout(root):
    return TeamLayout(root)


@pytest.fixture
def age_heartbeat(layout):
    """Factory fixture that moves an agent's heartbeat into the past on disk.

    Returns:
        callable: Function taking (agent_id, seconds)
    """

    def _age(agent_id: str, seconds: float) -> None:
        path = layout.metadata_path(agent_id)
        data = json.loads(path.read_text())
        data["last_heartbeat"] = format_timestamp(utc_now() - timedelta(seconds=seconds))
        path.write_text(json.dumps(data, indent=2))

    return _age


@pytest.fixture
def write_config(tmp_path):
    """Factory fixture to write config files.

    Returns:
        callable: Function that writes content and returns the path
    """

    def _write(content: str, filename: str = ".teamai.yaml") -> Path:
        path = tmp_path / filename
        path.write_text(content)
        return path

    return _write
