"""Tests for ConfigService."""

import pytest
import yaml

from crewpilot.models.config import NotifyMethod
from crewpilot.services.config_service import (
    ConfigService,
    get_config_service,
    reset_config_service,
)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "crewpilot.yaml"


@pytest.fixture(autouse=True)
def reset_singleton():
    """Reset the config service singleton between tests."""
    reset_config_service()
    yield
    reset_config_service()


class TestConfigServiceLoad:
    """Tests for loading configuration."""

    def test_load_defaults_when_no_file(self, config_file):
        """Returns default config when file doesn't exist."""
        config = ConfigService(config_file).load()

        assert config.watch.poll_interval == 5
        assert config.watch.notify == NotifyMethod.DESKTOP
        assert config.monitor.interval == 30
        assert config.monitor.stuck_threshold == 3
        assert config.search.limit == 20
        assert config.resume.review_after_hours == 24
        assert config.dashboard.port == 3000

    def test_load_from_yaml(self, config_file):
        """Loads sectioned config from YAML."""
        config_file.write_text(
            """
watch:
  poll_interval: 2
  notify: both
monitor:
  stuck_threshold: 5
search:
  limit: 10
"""
        )

        config = ConfigService(config_file).load()

        assert config.watch.poll_interval == 2
        assert config.watch.notify == NotifyMethod.BOTH
        assert config.monitor.stuck_threshold == 5
        assert config.search.limit == 10

    def test_load_handles_invalid_yaml(self, config_file):
        """Returns defaults for invalid YAML."""
        config_file.write_text("invalid: yaml: content: [")

        config = ConfigService(config_file).load()

        assert config.watch.poll_interval == 5

    def test_load_handles_validation_error(self, config_file):
        """Returns defaults for invalid config values."""
        config_file.write_text("watch:\n  poll_interval: -1\n")

        config = ConfigService(config_file).load()

        assert config.watch.poll_interval == 5

    def test_load_handles_non_mapping(self, config_file):
        config_file.write_text("- just\n- a list\n")

        assert ConfigService(config_file).load().watch.poll_interval == 5

    def test_empty_file(self, config_file):
        config_file.write_text("")

        assert ConfigService(config_file).load().monitor.interval == 30

    def test_get_config_loads_once(self, config_file):
        """get_config only loads once."""
        config_file.write_text("watch:\n  poll_interval: 5\n")
        service = ConfigService(config_file)

        config1 = service.get_config()
        config_file.write_text("watch:\n  poll_interval: 10\n")
        config2 = service.get_config()

        assert config1 is config2
        assert config1.watch.poll_interval == 5

    def test_reload_forces_reload(self, config_file):
        """reload forces re-reading from disk."""
        config_file.write_text("watch:\n  poll_interval: 5\n")
        service = ConfigService(config_file)
        service.get_config()

        config_file.write_text("watch:\n  poll_interval: 10\n")

        assert service.reload().watch.poll_interval == 10


class TestConfigSections:
    """Tests for section filtering."""

    def test_top_level_fields_ignored(self, config_file):
        config_file.write_text("poll_interval: 3\nport: 4000\n")

        config = ConfigService(config_file).load()

        assert config.watch.poll_interval == 5
        assert config.dashboard.port == 3000

    def test_unknown_fields_ignored(self, config_file):
        config_file.write_text("mystery: true\nwatch:\n  poll_interval: 2\n")

        assert ConfigService(config_file).load().watch.poll_interval == 2

    def test_malformed_section_ignored(self, config_file):
        config_file.write_text("search: 5\n")

        assert ConfigService(config_file).load().search.limit == 20


class TestConfigSave:
    """Tests for saving configuration."""

    def test_save_round_trip(self, tmp_path):
        config_file = tmp_path / "nested" / "crewpilot.yaml"
        service = ConfigService(config_file)
        config = service.load()
        config.monitor.stuck_threshold = 4

        assert service.save(config) is True

        data = yaml.safe_load(config_file.read_text())
        assert data["monitor"]["stuck_threshold"] == 4
        assert data["watch"]["notify"] == "desktop"
        assert service.reload().monitor.stuck_threshold == 4

    def test_save_without_config(self, config_file):
        assert ConfigService(config_file).save() is False


class TestSingleton:
    """Tests for the module-level singleton."""

    def test_get_config_service_returns_same_instance(self, tmp_path):
        service1 = get_config_service(tmp_path)
        service2 = get_config_service(tmp_path)

        assert service1 is service2
        assert service1.config_path == tmp_path / ".team-config" / "crewpilot.yaml"

    def test_reset_config_service(self, tmp_path):
        service1 = get_config_service(tmp_path)
        reset_config_service()

        assert get_config_service(tmp_path) is not service1
