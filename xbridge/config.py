"""Bridge configuration — process settings and backend descriptors.

Settings come from environment variables. Backend descriptors are read from,
in order:

1. ``BRIDGE_CONFIG_FILE`` (YAML or JSON, default ``downstreams.yaml``)
2. ``DOWNSTREAMS_JSON`` (inline JSON; replaces the file when set)
3. ``BRIDGE_BACKEND_<NAME>_URL`` style variables (added on top)

Each source document has the shape ``{"servers": [{...}, ...]}``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from xbridge.descriptors import BackendDescriptor, DescriptorSet

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "downstreams.yaml"
SUPPORTED_SPECVERSIONS = ("1.0", "1.0-rc1")

_BACKEND_ENV_PREFIX = "BRIDGE_BACKEND_"
_BACKEND_ENV_FIELDS = ("URL", "API_KEY", "ENABLED", "GROUP_TYPE", "PATH_PREFIX", "CASE_INSENSITIVE")


class ConfigError(ValueError):
    """Backend configuration could not be read."""


def _env_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "")
    return float(raw) if raw else default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "")
    return int(raw) if raw else default


@dataclass
class BridgeSettings:
    """Process-wide settings for the facade."""

    base_url: str = ""
    api_keys: list[str] = field(default_factory=list)
    allow_anonymous: bool = False
    config_file: str = DEFAULT_CONFIG_FILE
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Two-step filtering
    fetch_limit: int = 50
    max_fetch_limit: int = 200
    enrichment_concurrency: int = 8
    fetch_timeout: float = 10.0
    filter_deadline: float = 30.0
    name_index_ttl: float = 300.0
    name_index_max_pages: int = 50
    name_index_max_entries: int = 64

    # Backends
    backend_timeout: float = 10.0
    retry_interval: float = 60.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> BridgeSettings:
        env = os.environ if env is None else env
        keys = [k.strip() for k in env.get("BRIDGE_API_KEY", "").split(",") if k.strip()]
        return cls(
            base_url=env.get("BASE_URL", "").rstrip("/"),
            api_keys=keys,
            allow_anonymous=_env_bool(env.get("BRIDGE_ALLOW_ANONYMOUS")),
            config_file=env.get("BRIDGE_CONFIG_FILE", DEFAULT_CONFIG_FILE),
            host=env.get("HOST", "0.0.0.0"),
            port=_env_int(env, "PORT", 8080),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            fetch_limit=_env_int(env, "FILTER_FETCH_LIMIT", 50),
            max_fetch_limit=_env_int(env, "FILTER_MAX_FETCH_LIMIT", 200),
            enrichment_concurrency=_env_int(env, "FILTER_CONCURRENCY", 8),
            fetch_timeout=_env_float(env, "FILTER_FETCH_TIMEOUT", 10.0),
            filter_deadline=_env_float(env, "FILTER_DEADLINE", 30.0),
            name_index_ttl=_env_float(env, "NAME_INDEX_TTL", 300.0),
            name_index_max_pages=_env_int(env, "NAME_INDEX_MAX_PAGES", 50),
            backend_timeout=_env_float(env, "SERVER_HEALTH_TIMEOUT", 10.0),
            retry_interval=_env_float(env, "RETRY_INTERVAL", 60.0),
        )

    @property
    def auth_configured(self) -> bool:
        return bool(self.api_keys)


# ---------------------------------------------------------------------------
# Backend descriptors
# ---------------------------------------------------------------------------


def descriptor_from_dict(data: Mapping[str, Any]) -> BackendDescriptor:
    """Build a descriptor from one ``servers`` entry."""
    url = data.get("url") or data.get("base_url") or ""
    group_type = data.get("group_type") or data.get("groupType") or ""
    if not url or not group_type:
        raise ConfigError(f"Backend entry needs 'url' and 'group_type': {dict(data)!r}")
    enabled = data.get("enabled", True)
    if isinstance(enabled, str):
        enabled = _env_bool(enabled, default=True)
    return BackendDescriptor(
        group_type=str(group_type),
        base_url=str(url).rstrip("/"),
        api_key=str(data.get("api_key") or data.get("apiKey") or ""),
        enabled=bool(enabled),
        path_prefix=data.get("path_prefix", data.get("pathPrefix")),
        case_insensitive_names=bool(data.get("case_insensitive_names", False)),
    )


def _servers_from_document(data: Any, origin: str) -> list[BackendDescriptor]:
    if data is None:
        return []
    if isinstance(data, list):
        servers = data
    elif isinstance(data, dict):
        servers = data.get("servers", [])
    else:
        raise ConfigError(f"{origin}: expected a mapping with 'servers'")
    return [descriptor_from_dict(s) for s in servers]


def load_config_file(path: str | Path) -> list[BackendDescriptor]:
    """Read descriptors from a YAML or JSON file (JSON is valid YAML)."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {path} is not valid YAML/JSON: {exc}") from exc
    return _servers_from_document(data, str(path))


def load_env_backends(env: Mapping[str, str]) -> list[BackendDescriptor]:
    """Read ``BRIDGE_BACKEND_<NAME>_<FIELD>`` variables.

    ``<NAME>`` is an arbitrary label; ``GROUP_TYPE`` defaults to the
    lower-cased label.
    """
    entries: dict[str, dict[str, str]] = {}
    for key, value in env.items():
        if not key.startswith(_BACKEND_ENV_PREFIX):
            continue
        rest = key[len(_BACKEND_ENV_PREFIX):]
        for suffix in _BACKEND_ENV_FIELDS:
            if rest.endswith("_" + suffix):
                name = rest[: -(len(suffix) + 1)]
                if name:
                    entries.setdefault(name, {})[suffix] = value
                break

    descriptors = []
    for name in sorted(entries):
        fields = entries[name]
        if "URL" not in fields:
            logger.warning("Ignoring backend %s: no %s%s_URL set", name, _BACKEND_ENV_PREFIX, name)
            continue
        descriptors.append(
            descriptor_from_dict(
                {
                    "url": fields["URL"],
                    "group_type": fields.get("GROUP_TYPE") or name.lower(),
                    "api_key": fields.get("API_KEY", ""),
                    "enabled": fields.get("ENABLED", "true"),
                    "path_prefix": fields.get("PATH_PREFIX"),
                    "case_insensitive_names": _env_bool(fields.get("CASE_INSENSITIVE")),
                }
            )
        )
    return descriptors


def load_descriptors(
    settings: BridgeSettings,
    env: Mapping[str, str] | None = None,
) -> DescriptorSet:
    """Load the backend descriptor set from file, JSON env and per-backend env."""
    env = os.environ if env is None else env
    descriptors: list[BackendDescriptor] = []

    inline = env.get("DOWNSTREAMS_JSON", "")
    if inline:
        try:
            data = json.loads(inline)
        except json.JSONDecodeError as exc:
            raise ConfigError("Invalid DOWNSTREAMS_JSON format") from exc
        descriptors = _servers_from_document(data, "DOWNSTREAMS_JSON")
        logger.info("Loaded %d backend(s) from DOWNSTREAMS_JSON", len(descriptors))
    elif settings.config_file and Path(settings.config_file).exists():
        descriptors = load_config_file(settings.config_file)
        logger.info("Loaded %d backend(s) from %s", len(descriptors), settings.config_file)
    else:
        logger.info("No backend configuration file at %s", settings.config_file)

    descriptors.extend(load_env_backends(env))
    # register() raises ModelConflict on duplicate enabled group types
    return DescriptorSet(descriptors)
