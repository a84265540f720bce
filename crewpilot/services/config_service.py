"""Configuration loading service.

Reads .team-config/crewpilot.yaml, keeps its known sections, and validates
the result with Pydantic.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from crewpilot.models.config import AppConfig
from crewpilot.workspace import CONFIG_FILE, get_team_config_dir

logger = logging.getLogger(__name__)

SECTIONS = ("watch", "monitor", "notifications", "search", "resume", "dashboard")


class ConfigService:
    """Service for loading and saving crewpilot configuration.

    Handles:
    - Loading config from crewpilot.yaml
    - Validating against the Pydantic schema
    - Dropping unknown or malformed sections
    - Saving updated config
    """

    def __init__(self, config_path: str | Path):
        """Initialize the config service.

        Args:
            config_path: Path to the config file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    @classmethod
    def for_project(cls, project_dir: str | Path) -> "ConfigService":
        """Build a service for a project's .team-config/crewpilot.yaml."""
        return cls(get_team_config_dir(project_dir) / CONFIG_FILE)

    def load(self) -> AppConfig:
        """Load and validate configuration.

        Returns:
            Validated AppConfig instance. Missing, unreadable or invalid
            files yield defaults.
        """
        if not self.config_path.exists():
            logger.debug(f"Config file not found at {self.config_path}, using defaults")
            self._config = AppConfig()
            return self._config

        try:
            with open(self.config_path) as f:
                raw_config = yaml.safe_load(f) or {}
        except Exception as e:
            logger.warning(f"Error reading config file: {e}, using defaults")
            self._config = AppConfig()
            return self._config

        if not isinstance(raw_config, dict):
            logger.warning(f"Config file {self.config_path} is not a mapping, using defaults")
            self._config = AppConfig()
            return self._config

        sections = self._select_sections(raw_config)

        try:
            self._config = AppConfig(**sections)
        except Exception as e:
            logger.warning(f"Config validation error: {e}, using defaults")
            self._config = AppConfig()

        return self._config

    def get_config(self) -> AppConfig:
        """Get the current configuration.

        Loads from disk if not already loaded.
        """
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()

    def save(self, config: AppConfig | None = None) -> bool:
        """Save configuration to disk.

        Args:
            config: Config to save. Uses current config if not provided.

        Returns:
            True if save succeeded.
        """
        config = config or self._config
        if config is None:
            return False

        try:
            config_dict = config.model_dump(mode="json")
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
            return True
        except Exception as e:
            logger.error(f"Error saving config: {e}")
            return False

    def _select_sections(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Keep the known sections that hold a mapping.

        Unknown keys and non-mapping sections are logged and dropped.

        Args:
            raw: Raw config dictionary from YAML.

        Returns:
            Config dictionary keyed by section.
        """
        sections: dict[str, Any] = {}

        for section in SECTIONS:
            value = raw.get(section)
            if isinstance(value, dict):
                sections[section] = value
            elif value is not None:
                logger.warning(f"Ignoring config section '{section}': expected a mapping")

        for key in raw:
            if key not in SECTIONS:
                logger.info(f"Ignoring unknown config field: {key}")

        return sections


# Module-level singleton
_config_service: ConfigService | None = None


def get_config_service(project_dir: str | Path = ".") -> ConfigService:
    """Get the global config service instance.

    Args:
        project_dir: Project root (only used on first call).

    Returns:
        ConfigService singleton.
    """
    global _config_service
    if _config_service is None:
        _config_service = ConfigService.for_project(project_dir)
    return _config_service


def reset_config_service() -> None:
    """Reset the global config service (for testing)."""
    global _config_service
    _config_service = None
