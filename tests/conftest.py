"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from editstream.services import telemetry


@pytest.fixture
def event_sink():
    sink = telemetry.InMemoryEventSink().attach()
    yield sink
    sink.detach()


@pytest.fixture
def app_root(tmp_path):
    root = tmp_path / "app"
    root.mkdir()
    return root
