"""Configuration management for the task board service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

logger = logging.getLogger("taskboard.config")

DEFAULT_JWT_SECRET = "taskboard-development-secret"
DEFAULT_TOKEN_TTL_MINUTES = 60
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from an optional YAML file and the environment."""

    jwt_secret: str
    database_path: Path
    token_ttl_minutes: int = DEFAULT_TOKEN_TTL_MINUTES
    jwt_algorithm: str = JWT_ALGORITHM
    cors_origins: Tuple[str, ...] = ("*",)
    host: str = "0.0.0.0"
    port: int = 3000

    @staticmethod
    def from_dict(data: Mapping[str, Any], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        raw_db_path = data.get("database_path")
        if raw_db_path:
            candidate = Path(str(raw_db_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        ttl = int(data.get("token_ttl_minutes", DEFAULT_TOKEN_TTL_MINUTES))
        if ttl <= 0:
            raise ValueError("token_ttl_minutes must be a positive integer")

        known = {
            "jwt_secret",
            "database_path",
            "token_ttl_minutes",
            "jwt_algorithm",
            "cors_origins",
            "host",
            "port",
        }
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
        return Settings(
            jwt_secret=str(data.get("jwt_secret") or DEFAULT_JWT_SECRET),
            database_path=database_path,
            token_ttl_minutes=ttl,
            jwt_algorithm=str(data.get("jwt_algorithm", JWT_ALGORITHM)),
            cors_origins=_parse_origins(data.get("cors_origins", "*")),
            host=str(data.get("host", "0.0.0.0")),
            port=int(data.get("port", 3000)),
        )


def _parse_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        items: List[str] = [item.strip() for item in value.split(",")]
    elif isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        raise ValueError("cors_origins must be a string or a list of strings")
    cleaned = tuple(item for item in items if item)
    return cleaned or ("*",)


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    mapping = {
        "TASKBOARD_JWT_SECRET": "jwt_secret",
        "TASKBOARD_DB_PATH": "database_path",
        "TASKBOARD_TOKEN_TTL_MINUTES": "token_ttl_minutes",
        "TASKBOARD_CORS_ORIGINS": "cors_origins",
        "TASKBOARD_HOST": "host",
        "TASKBOARD_PORT": "port",
    }
    overrides: Dict[str, Any] = {}
    for env_name, key in mapping.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            overrides[key] = value.strip()
    return overrides


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "taskboard.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build :class:`Settings` from YAML (if any) overlaid with environment variables."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("TASKBOARD_CONFIG"))

    data: Dict[str, Any] = {}
    base_path: Path | None = None
    if config_path is not None:
        data.update(_load_yaml(config_path))
        base_path = config_path.parent

    data.update(_environment_overrides(env))

    settings = Settings.from_dict(data, base_path=base_path)
    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("TASKBOARD_JWT_SECRET is not set; using the development signing secret")
    return settings


__all__ = ["Settings", "load_settings", "resolve_config_path"]
