from __future__ import annotations

import pytest

from tests.utils.fakes import FakeDockerClient, FakeNetworkControl, FakeRunner
from weavenet.common.settings import WeaveSettings
from weavenet.network import commands


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(commands, "tool_available", lambda name: True)


@pytest.fixture
def settings() -> WeaveSettings:
    return WeaveSettings()


@pytest.fixture
def control() -> FakeNetworkControl:
    return FakeNetworkControl()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()
