"""Configuration management for tabfinder."""

from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATHS = (
    Path("tabfinder.yaml"),
    Path.home() / ".config" / "tabfinder" / "config.yaml",
    Path("/etc/tabfinder/config.yaml"),
)


def validate_fuzziness(value: float) -> float:
    if not 0 <= value <= 1:
        raise ValueError("fuzziness must be between 0 and 1")
    return value


class SearchConfig(BaseModel):
    fuzziness: float = 0.3
    debounce_ms: int = 150
    browse_limit: int = 10

    @field_validator('fuzziness')
    @classmethod
    def validate_fuzziness(cls, v: float) -> float:
        return validate_fuzziness(v)


class SourcesConfig(BaseModel):
    history_max_results: int = 1000
    history_capacity: int = 5000
    closed_tabs_max_results: int = 25
    closed_tabs_capacity: int = 500


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None


class Config(BaseModel):
    """Main configuration for the tabfinder engine."""

    search: SearchConfig = Field(default_factory=SearchConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def find(cls) -> Optional[Path]:
        """First existing file among the default locations."""
        for candidate in DEFAULT_CONFIG_PATHS:
            if candidate.exists():
                return candidate
        return None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML.

        Missing or unreadable settings never block search: any failure logs
        a warning and falls back to the built-in defaults.
        """
        if config_path is None:
            config_path = cls.find()
            if config_path is None:
                logger.debug("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.warning(f"Failed to load config {config_path}, using defaults: {e}")
            return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)


class SettingsStore:
    """
    Persists committed settings.

    Live-preview changes only touch the in-memory config; the file is
    written on commit so a synced store is not hammered on every tick.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path or DEFAULT_CONFIG_PATHS[1]

    def load(self) -> Config:
        if not self.path.exists():
            return Config()
        return Config.load(self.path)

    def commit(self, config: Config) -> bool:
        try:
            config.save(self.path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to save settings to {self.path}: {e}")
            return False
        logger.debug(f"Settings saved to {self.path}")
        return True
