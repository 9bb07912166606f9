"""
Configuration for apiary.

Settings are read from a YAML file (apiary.yaml by default) and validated
with pydantic. Every field has a default, so an empty or missing file is a
valid configuration.

Example:
    db_path: ~/.local/share/apiary/db.json
    log_level: INFO
    perform_timeout_seconds: 10
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFIG_PATH = Path("apiary.yaml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ApiaryConfig(BaseModel):
    """
    Application settings.

    Attributes:
        db_path: JSON document holding the request collection
        log_level: Root log level for the CLI
        perform_timeout_seconds: Deadline handed to network capabilities
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: Path = Path("db.json")
    log_level: str = "WARNING"
    perform_timeout_seconds: float = Field(default=30.0, gt=0, le=3600)

    @field_validator("db_path")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        """Expand ~ in the document path."""
        return v.expanduser()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard level names in any case."""
        level = v.upper()
        if level not in LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(LOG_LEVELS)}"
            raise ValueError(msg)
        return level


def load_config(path: Path | str) -> ApiaryConfig:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return ApiaryConfig.model_validate(data or {})


def load_config_from_string(content: str) -> ApiaryConfig:
    """Load configuration from a YAML string."""
    data = yaml.safe_load(content)
    return ApiaryConfig.model_validate(data or {})
