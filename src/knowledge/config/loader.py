"""Configuration loading.

A config file is a TOML document whose top-level keys mirror AppConfig.
An optional ``[profiles.<name>]`` table is merged over the base tables
key by key, so a profile only has to name what it changes::

    [embedding]
    provider = "hash"

    [profiles.server.embedding]
    provider = "openai"
    api_key = "${OPENAI_API_KEY}"

String values may reference environment variables as ``${VAR}`` or
``${VAR:-default}``. KNOWLEDGE_* environment variables (and a .env file,
when given) override whatever the file says.
"""

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from knowledge.config.schema import AppConfig
from knowledge.observability.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "KNOWLEDGE_CONFIG"
PROFILE_ENV = "KNOWLEDGE_PROFILE"

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[^}:]+?)\s*(?::-(?P<default>[^}]*))?\}")


def _expand(text: str) -> str:
    def lookup(match: re.Match) -> str:
        name = match.group("name").strip()
        default = match.group("default")
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        logger.warning("env_var_not_found", var_name=name)
        return match.group(0)

    return _PLACEHOLDER.sub(lookup, text)


def expand_env_vars(value: Any) -> Any:
    """Replace ${VAR} and ${VAR:-default} in every string of a parsed config.

    Unset variables without a default are kept as written.
    """
    if isinstance(value, str):
        return _expand(value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value


def merge_tables(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base; nested tables merge recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_tables(current, value)
        else:
            merged[key] = value
    return merged


def read_config_file(path: Path, profile: Optional[str] = None) -> dict[str, Any]:
    """Parse a TOML config file and apply the named profile.

    Raises:
        ValueError: If the profile is not defined in the file
    """
    with path.open("rb") as f:
        data = tomllib.load(f)

    profiles = data.pop("profiles", {})
    if profile:
        if profile not in profiles:
            raise ValueError(f"Profile '{profile}' not found in {path} (available: {sorted(profiles)})")
        data = merge_tables(data, profiles[profile])

    return expand_env_vars(data)


def load_config(
    config_path: Optional[Path] = None,
    profile: Optional[str] = None,
    env_file: Optional[Path] = None,
) -> AppConfig:
    """Build the validated application configuration.

    Args:
        config_path: TOML file; a missing file means defaults only
        profile: Profile table to merge over the base; defaults to $KNOWLEDGE_PROFILE
        env_file: .env file to load before reading the environment
    """
    if env_file is not None and env_file.is_file():
        load_dotenv(env_file)
        logger.debug("env_file_loaded", path=str(env_file))

    profile = profile or os.environ.get(PROFILE_ENV) or None

    values: dict[str, Any] = {}
    if config_path is not None and config_path.is_file():
        values = read_config_file(config_path, profile)
        logger.debug("config_file_read", path=str(config_path), profile=profile)

    config = AppConfig(**values)
    logger.debug(
        "config_loaded",
        embedding_provider=config.embedding.provider.value,
        vector_store=config.vector_store.store_type.value,
        graph_store=config.graph_store.store_type.value,
        repository=config.repository.store_type.value,
    )
    return config


def get_default_config_path() -> Path:
    """Locate the config file.

    $KNOWLEDGE_CONFIG wins when set. Otherwise the first existing file of
    ./knowledge.toml, ~/.knowledge/config.toml and /etc/knowledge/config.toml;
    ./knowledge.toml when none exists.
    """
    explicit = os.environ.get(CONFIG_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()

    candidates = (
        Path.cwd() / "knowledge.toml",
        Path.home() / ".knowledge" / "config.toml",
        Path("/etc/knowledge/config.toml"),
    )
    return next((path for path in candidates if path.is_file()), candidates[0])
