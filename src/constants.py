"""Constants and runtime configuration used across the project."""

import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    DOWNLOAD_ERROR = 3


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    MAVEN_CENTRAL_ID = "central"
    MAVEN_CENTRAL_URL = "https://repo.maven.apache.org/maven2"
    METADATA_FILE = "maven-metadata.xml"
    LOCAL_METADATA_FILE = "maven-metadata-local.xml"
    SNAPSHOT_SUFFIX = "-SNAPSHOT"
    POM_EXTENSION = "pom"
    # Packaging types that are published without a companion binary
    POM_ONLY_PACKAGING = ("pom", "bom")
    PACKAGING_EXTENSIONS = {
        "bundle": "jar",
        "maven-plugin": "jar",
        "ejb": "jar",
        "war": "war",
        "ear": "ear",
        "rar": "rar",
        "aar": "aar",
    }
    MAX_RELOCATION_DEPTH = 5

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    USER_AGENT = "artifetch/0.1"
    CONNECT_TIMEOUT = 10  # seconds
    READ_TIMEOUT = 30  # seconds
    HTTP_RETRY_MAX = 2  # total attempts for transient connection failures
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    HTTP_TRUST_ENV = True

    ADD_CENTRAL_REPOSITORY = False
    ALLOW_LOCAL_ADDRESSES = False
    BLOCKED_HOSTS = ("0.0.0.0", "::", "[::]")
    LOCAL_REPOSITORY: Optional[str] = None

    CONFIG_FILE_NAMES = ("artifetch.yml", "artifetch.yaml")
    ENV_CONFIG = "ARTIFETCH_CONFIG"
    ENV_LOG_LEVEL = "ARTIFETCH_LOG_LEVEL"
    ENV_LOG_FORMAT = "ARTIFETCH_LOG_FORMAT"


_ENV_OVERRIDES = {
    "ARTIFETCH_CONNECT_TIMEOUT": ("CONNECT_TIMEOUT", float),
    "ARTIFETCH_READ_TIMEOUT": ("READ_TIMEOUT", float),
    "ARTIFETCH_HTTP_RETRY_MAX": ("HTTP_RETRY_MAX", int),
    "ARTIFETCH_ADD_CENTRAL": ("ADD_CENTRAL_REPOSITORY", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "ARTIFETCH_ALLOW_LOCAL_ADDRESSES": ("ALLOW_LOCAL_ADDRESSES", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "ARTIFETCH_LOCAL_REPOSITORY": ("LOCAL_REPOSITORY", str),
}

_HTTP_KEYS = {
    "connect_timeout": ("CONNECT_TIMEOUT", float),
    "read_timeout": ("READ_TIMEOUT", float),
    "retry_max": ("HTTP_RETRY_MAX", int),
    "retry_base_delay": ("HTTP_RETRY_BASE_DELAY_SEC", float),
    "user_agent": ("USER_AGENT", str),
    "trust_env": ("HTTP_TRUST_ENV", bool),
}

_RESOLUTION_KEYS = {
    "add_central_repository": ("ADD_CENTRAL_REPOSITORY", bool),
    "allow_local_addresses": ("ALLOW_LOCAL_ADDRESSES", bool),
    "local_repository": ("LOCAL_REPOSITORY", str),
    "max_relocation_depth": ("MAX_RELOCATION_DEPTH", int),
}


def _find_config_file(path: Optional[str] = None) -> Optional[str]:
    """Return the first existing config path in priority order."""
    candidates = [path, os.environ.get(Constants.ENV_CONFIG)]
    candidates.extend(Constants.CONFIG_FILE_NAMES)
    for candidate in candidates:
        if candidate and os.path.isfile(candidate):
            return candidate
    return None


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the YAML configuration file, returning {} when none is present.

    Args:
        path (str, optional): Explicit config path. Falls back to
            ARTIFETCH_CONFIG and then ./artifetch.yml.

    Returns:
        dict: Parsed configuration mapping.
    """
    config_path = _find_config_file(path)
    if not config_path:
        return {}
    import yaml  # pylint: disable=import-outside-toplevel

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load config %s: %s", config_path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level must be a mapping", config_path)
        return {}
    logger.debug("Loaded config from %s", config_path)
    return data


def _apply_section(section: Any, keys: Dict[str, Any]) -> None:
    if not isinstance(section, dict):
        return
    for key, (attr, cast) in keys.items():
        if key in section and section[key] is not None:
            setattr(Constants, attr, cast(section[key]))


def apply_config(cfg: Dict[str, Any]) -> None:
    """Apply YAML config and ARTIFETCH_* environment overrides onto Constants.

    Environment variables win over the config file.
    """
    _apply_section(cfg.get("http"), _HTTP_KEYS)
    _apply_section(cfg.get("resolution"), _RESOLUTION_KEYS)
    blocked = (cfg.get("resolution") or {}).get("blocked_hosts") if isinstance(cfg.get("resolution"), dict) else None
    if blocked:
        Constants.BLOCKED_HOSTS = tuple(Constants.BLOCKED_HOSTS) + tuple(str(h).lower() for h in blocked)

    for env_name, (attr, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            setattr(Constants, attr, cast(raw))
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", env_name, raw)
