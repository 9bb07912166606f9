"""
Pytest configuration and fixtures for apiary tests.

This module provides shared fixtures used across unit and integration tests.
Network capabilities are replaced with stubs through
build_default_registry(perform_overrides=...), so no test leaves the machine.
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest

from apiary.plugins import PluginContext, PluginRegistry, build_default_registry
from apiary.plugins.http import HTTPResponse
from apiary.schema import EntryData
from apiary.store import RequestStore


def stub_http(context: PluginContext, payload: EntryData) -> EntryData:
    """HTTP capability that always answers 200 "ok"."""
    return HTTPResponse(code=200, body="ok")


class StepClock:
    """Deterministic clock: every call advances by a fixed step."""

    def __init__(
        self,
        start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        step: timedelta = timedelta(milliseconds=250),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path of a not-yet-existing document."""
    return temp_dir / "db.json"


@pytest.fixture
def registry() -> PluginRegistry:
    """Built-in plugins with the HTTP capability stubbed."""
    return build_default_registry(perform_overrides={"http": stub_http})


@pytest.fixture
def store(db_path: Path, registry: PluginRegistry) -> Generator[RequestStore, None, None]:
    """An empty store backed by db_path."""
    s = RequestStore(db_path, registry=registry)
    yield s
    if not s.closed:
        s.close()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
