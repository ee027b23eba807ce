"""Shared fixtures for unit tests."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from factories import FakeSopsRunner, FakeStore
from sops_operator.config import OperatorConfig
from sops_operator.decryptor.session import DecryptionSession


@pytest.fixture(autouse=True)
def no_kopf_events():
    """kopf.event needs a running operator; record calls instead."""
    with patch("sops_operator.utils.events.kopf.event") as mock_event:
        yield mock_event


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.add_namespace("default", {"kubernetes.io/metadata.name": "default"})
    store.add_namespace("team-a", {"kubernetes.io/metadata.name": "team-a", "env": "prod"})
    store.add_namespace("team-b", {"kubernetes.io/metadata.name": "team-b", "env": "dev"})
    return store


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig()


@pytest.fixture
def sops_runner() -> FakeSopsRunner:
    return FakeSopsRunner()


@pytest.fixture
def fake_session(sops_runner: FakeSopsRunner):
    """Make every handler create sessions backed by the fake sops runner."""
    def new_session(self, config):
        return DecryptionSession(sops=sops_runner)

    with patch("sops_operator.handlers.base.BaseHandler.new_session", new_session):
        yield sops_runner


