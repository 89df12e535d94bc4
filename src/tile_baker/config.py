from __future__ import annotations

from pathlib import Path
from typing import Any, Final, Literal, Mapping, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_SCHEMA_VERSIONS: Final[set[int]] = {1}

ENV_PREFIX: Final[str] = "TILESET_BAKER_"
DEFAULT_BAKER_CONFIG_ENV: Final[str] = f"{ENV_PREFIX}CONFIG"

DEFAULT_ROOT_URL: Final[str] = "https://tile.googleapis.com/v1/3dtiles/root.json"
DEFAULT_ELEVATION_URL: Final[str] = "https://maps.googleapis.com/maps/api/elevation/json"


class BakerEnvironment(BaseSettings):
    """Values that may only come from the process environment."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    api_key: SecretStr = SecretStr("")
    config: Optional[Path] = None


class BakerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1

    api_key: SecretStr = SecretStr("")
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    radius_m: float = Field(gt=0.0, le=1_000_000.0)
    out_dir: Path

    # Concurrency.
    concurrency: int = Field(default=8, ge=1, le=256)
    bake_workers: int = Field(default=4, ge=1, le=64)
    timeout_s: float = Field(default=60.0, gt=0)

    # Explicit origin (ECEF meters) disables first-tile-wins.
    origin: Optional[tuple[float, float, float]] = None
    up_source: Literal["tile", "origin"] = "tile"

    root_url: str = DEFAULT_ROOT_URL
    elevation_url: str = DEFAULT_ELEVATION_URL
    use_elevation: bool = True
    max_depth: Optional[int] = Field(default=None, ge=0)

    @field_validator("root_url", "elevation_url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped.startswith(("http://", "https://")):
            raise ValueError(f"expected an http(s) URL, got {value!r}")
        return stripped

    @model_validator(mode="after")
    def _validate_schema_version(self) -> "BakerConfig":
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"Unsupported baker config schema_version={self.schema_version}; "
                f"supported versions: {sorted(SUPPORTED_SCHEMA_VERSIONS)}"
            )
        return self

    @property
    def api_key_value(self) -> str:
        return self.api_key.get_secret_value()


def _resolve_config_path(
    path: Optional[Union[str, Path]], env: BakerEnvironment
) -> Optional[Path]:
    candidate: Optional[Path] = None
    if path is not None:
        candidate = Path(path)
    elif env.config is not None:
        candidate = env.config
    if candidate is None:
        return None
    candidate = candidate.expanduser()
    if not candidate.is_absolute():
        candidate = (Path.cwd() / candidate).resolve()
    return candidate


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to load baker config YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"baker config must be a mapping: {source}")
    if "api_key" in data:
        raise ValueError(
            f"Secrets must not be stored in config YAML ({source}): "
            f"set {ENV_PREFIX}API_KEY or pass --key"
        )
    return data


def load_baker_config(
    path: Optional[Union[str, Path]] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
) -> BakerConfig:
    """Merge YAML file, environment and explicit overrides into a config.

    Later sources win; ``None`` override values are ignored so unset CLI flags
    fall through to the file.
    """

    env = BakerEnvironment()
    config_path = _resolve_config_path(path, env)

    data: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.is_file():
            raise FileNotFoundError(f"baker config file not found: {config_path}")
        raw_text = config_path.read_text(encoding="utf-8")
        data.update(_parse_yaml(raw_text, source=config_path))

    env_key = env.api_key.get_secret_value()
    if env_key:
        data["api_key"] = env_key
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    source = str(config_path) if config_path is not None else "<arguments>"
    try:
        return BakerConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid baker config ({source}): {exc}") from exc
