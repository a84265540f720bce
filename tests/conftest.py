"""Pytest configuration and shared fixtures for crewpilot tests."""

from pathlib import Path

import pytest

from fakes import IDLE_TEXT, PROJECT_NAME, SESSION_NAME, WORKING_TEXT, FakeBackend, FakeClock


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """A project with an initialised .team-config/."""
    config_dir = tmp_path / ".team-config"
    config_dir.mkdir()
    (config_dir / "USER-CONTEXT.md").write_text(f"# User Context\n\n## Project Name\n{PROJECT_NAME}\n")
    return tmp_path


@pytest.fixture
def backend() -> FakeBackend:
    """Fake backend with one live session and two panes."""
    fake = FakeBackend({SESSION_NAME: ["%1", "%2"]})
    fake.screens = {"%1": IDLE_TEXT, "%2": WORKING_TEXT}
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
