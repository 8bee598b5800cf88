"""Application configuration for the web archiver.

Settings are resolved in three layers: built-in defaults, environment
variables (with ``.env`` file support), and a JSON settings file.  The
JSON file is looked up in ``config/appsettings.json`` first and
``config/local.settings.json`` second; a missing or broken file is
skipped with a warning.

Key exports:
    ArchiverSettings: Root settings model.
    TaskConfig: One scheduled fetch (URL, file name hint, cron expression).
    load_settings: Build settings from the layered sources.
    BASE_DIR / CONFIG_DIR: Canonical project paths.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.utils import read_json_file

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing the JSON settings files."""

PRIMARY_CONFIG: Path = CONFIG_DIR / "appsettings.json"
FALLBACK_CONFIG: Path = CONFIG_DIR / "local.settings.json"

DEFAULT_FLARESOLVERR_URL = "http://localhost:8191"

logger: logging.Logger = logging.getLogger(__name__)


def _normalise_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


# JSON keys are matched case-insensitively, ignoring underscores.
_TASK_KEYS: Dict[str, str] = {
    "url": "url",
    "target": "url",
    "filename": "file_name",
    "namehint": "file_name",
    "cronexpression": "cron_expression",
    "cronspec": "cron_expression",
    "cron": "cron_expression",
}

_SETTINGS_KEYS: Dict[str, str] = {
    "outputdirectory": "output_directory",
    "flaresolverrurl": "flaresolverr_url",
    "solverbaseurl": "flaresolverr_url",
    "urlstoscrape": "tasks",
    "tasks": "tasks",
    "loglevel": "log_level",
    "logdir": "log_dir",
    "solvermaxtimeout": "solver_max_timeout",
    "requesttimeout": "request_timeout",
}


def _remap(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    remapped: Dict[str, Any] = {}
    for key, value in data.items():
        target = mapping.get(_normalise_key(str(key)))
        if target is None:
            logger.debug("Ignoring unknown configuration key '%s'", key)
            continue
        remapped[target] = value
    return remapped


class TaskConfig(BaseModel):
    """One scheduled fetch.

    Attributes:
        url: Page to fetch through FlareSolverr.
        file_name: Name hint for saved files (extension is dropped).
        cron_expression: When to fetch, evaluated in UTC.
    """

    url: str
    file_name: str
    cron_expression: str

    @model_validator(mode="before")
    @classmethod
    def _accept_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _remap(data, _TASK_KEYS)
        return data

    @field_validator("cron_expression")
    @classmethod
    def _strip_cron(cls, value: str) -> str:
        return value.strip()


class ArchiverSettings(BaseSettings):
    """Root configuration model.

    Every field can be set through an environment variable of the same
    name.  The solver URL is also read from ``FlareSolverrUrl``.
    """

    # Core
    log_level: str = "INFO"
    log_dir: str = "logs"
    output_directory: str = "scraped_html"

    # FlareSolverr
    flaresolverr_url: str = Field(
        default=DEFAULT_FLARESOLVERR_URL,
        validation_alias=AliasChoices("flaresolverr_url", "flaresolverrurl"),
    )
    # maxTimeout forwarded to FlareSolverr, in milliseconds
    solver_max_timeout: int = 60000
    # HTTP timeout per solver call, in seconds
    request_timeout: float = 120.0

    tasks: List[TaskConfig] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _settings_from_file(path: Path) -> Optional[ArchiverSettings]:
    data = read_json_file(path)
    if data is None:
        return None
    try:
        settings = ArchiverSettings(**_remap(data, _SETTINGS_KEYS))
    except ValidationError as e:
        logger.warning("Failed to load configuration from %s: %s", path, e)
        return None
    logger.info("Loaded configuration from %s", path)
    return settings


def load_settings(
    primary: Union[str, Path] = PRIMARY_CONFIG,
    fallback: Union[str, Path] = FALLBACK_CONFIG,
) -> ArchiverSettings:
    """Load settings from the first usable JSON file, else defaults."""
    for path in (Path(primary), Path(fallback)):
        settings = _settings_from_file(path)
        if settings is not None:
            return settings

    logger.info("No configuration file found; using defaults")
    return ArchiverSettings()
