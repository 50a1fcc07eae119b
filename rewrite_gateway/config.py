import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigFileError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_REPLAY_BODY_BYTES = 10 * 1024 * 1024


class PathMappingConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    from_: str = Field(alias="from")
    to: str


class GatewayConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_host: str = ""
    path_mappings: list[PathMappingConfig] = Field(default_factory=list)
    mirrors: list[str] = Field(default_factory=list)
    follow_redirects: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_replay_body_bytes: int = Field(default=DEFAULT_MAX_REPLAY_BODY_BYTES, ge=0)

    @field_validator("default_host")
    @classmethod
    def _strip_default_host(cls, value: str) -> str:
        return value.strip()

    @field_validator("mirrors")
    @classmethod
    def _drop_blank_mirrors(cls, value: list[str]) -> list[str]:
        return [mirror.strip() for mirror in value if mirror.strip()]


def load_config(path: str | Path) -> GatewayConfig:
    """
    Read a YAML configuration file.

    An empty file yields the defaults.
    :raises ConfigFileError: file unreadable, malformed YAML, or schema violation
    """
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise ConfigFileError(f"failed to read config file {path}: {exc}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigFileError(f"failed to parse config file {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigFileError(f"config file {path} must contain a mapping at the top level")

    try:
        return GatewayConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigFileError(f"invalid config file {path}: {exc}") from exc


def resolve_config(path: str | Path,
                   host_override: str | None = None,
                   follow_redirects: bool = False) -> GatewayConfig:
    """
    Startup configuration: the file at `path` (empty config if it cannot be
    loaded), then command line / environment overrides on top.
    """
    try:
        config = load_config(path)
    except ConfigFileError as exc:
        logger.warning("Failed to load config file: %s", exc)
        config = GatewayConfig()

    updates = {}
    if host_override:
        logger.info("Using host override: %s", host_override)
        updates["default_host"] = host_override.strip()
    if follow_redirects:
        logger.info("Following redirects enabled via command line")
        updates["follow_redirects"] = True

    return config.model_copy(update=updates) if updates else config
