"""Layered configuration for the Devport client.

Settings come from up to four layers; a later layer overrides an
earlier one key by key:

1. Built-in dataclass defaults
2. ``~/.devport/client.json``
3. ``<workspace>/.devport/client.json``
4. ``DEVPORT_*`` environment variables

Example ``client.json``::

    {
      "recovery": {"max_attempts": 5, "base_delay": 0.5},
      "fallback": {"enabled": true}
    }

Environment Variables:
    DEVPORT_AUTO_RECONNECT: Reconnect after an unexpected close (default: true)
    DEVPORT_RETRY_MAX_ATTEMPTS: Failed attempts before giving up (default: 10)
    DEVPORT_RETRY_BASE_DELAY: First backoff delay in seconds (default: 1.0)
    DEVPORT_RETRY_MAX_DELAY: Backoff ceiling in seconds (default: 30.0)
    DEVPORT_RETRY_JITTER: Backoff jitter factor, 0 to 1 (default: 0.0)
    DEVPORT_CONNECTION_TIMEOUT: Socket open timeout in seconds (default: 10.0)
    DEVPORT_REATTACH_SESSION: Re-attach the session after reconnecting (default: true)
    DEVPORT_HTTP_FALLBACK: Send actions over HTTP while the socket is down (default: false)
    DEVPORT_HTTP_TIMEOUT: HTTP request timeout in seconds (default: 30.0)
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".devport"
CONFIG_FILE_NAME = "client.json"

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


@dataclass
class RecoveryConfig:
    """Reconnection behaviour after the socket closes unexpectedly.

    Retry ``n`` (0-based) waits ``min(base_delay * 2**n, max_delay)``
    seconds, spread by ``jitter_factor`` when it is non-zero.

    Attributes:
        enabled: Reconnect automatically.
        max_attempts: Failed attempts allowed before giving up.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        jitter_factor: Relative jitter, 0.3 means +/-30%.
        connection_timeout: Socket open timeout, in seconds.
        reattach_session: Re-attach the active session and fetch missed
            messages once reconnected.
    """
    enabled: bool = True
    max_attempts: int = 10
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_factor: float = 0.0
    connection_timeout: float = 10.0
    reattach_session: bool = True

    def __post_init__(self):
        problems = []
        if self.max_attempts < 1:
            problems.append("max_attempts must be >= 1")
        if self.base_delay <= 0:
            problems.append("base_delay must be > 0")
        elif self.max_delay < self.base_delay:
            problems.append("max_delay must not be below base_delay")
        if not 0.0 <= self.jitter_factor <= 1.0:
            problems.append("jitter_factor must lie in [0, 1]")
        if self.connection_timeout <= 0:
            problems.append("connection_timeout must be > 0")
        if problems:
            raise ValueError("; ".join(problems))


@dataclass
class FallbackConfig:
    """HTTP surface settings.

    Attributes:
        enabled: Deliver actions over HTTP when the socket is not
            authenticated. Gap recovery uses HTTP either way.
        timeout: Per-request timeout in seconds.
    """
    enabled: bool = False
    timeout: float = 30.0

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass
class ClientConfig:
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)


def _to_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_STRINGS


# env var -> (section, key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "DEVPORT_AUTO_RECONNECT": ("recovery", "enabled", _to_bool),
    "DEVPORT_RETRY_MAX_ATTEMPTS": ("recovery", "max_attempts", int),
    "DEVPORT_RETRY_BASE_DELAY": ("recovery", "base_delay", float),
    "DEVPORT_RETRY_MAX_DELAY": ("recovery", "max_delay", float),
    "DEVPORT_RETRY_JITTER": ("recovery", "jitter_factor", float),
    "DEVPORT_CONNECTION_TIMEOUT": ("recovery", "connection_timeout", float),
    "DEVPORT_REATTACH_SESSION": ("recovery", "reattach_session", _to_bool),
    "DEVPORT_HTTP_FALLBACK": ("fallback", "enabled", _to_bool),
    "DEVPORT_HTTP_TIMEOUT": ("fallback", "timeout", float),
}

SECTIONS = {
    "recovery": RecoveryConfig,
    "fallback": FallbackConfig,
}


def get_config_paths(workspace_path: Optional[Path] = None) -> Dict[str, Path]:
    """Locations searched for ``client.json``, keyed by layer name."""
    paths = {"user": Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME}
    if workspace_path:
        paths["project"] = Path(workspace_path) / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    return paths


def _read_layer(path: Path) -> Dict[str, Any]:
    """Read one config file; unreadable or malformed files count as empty."""
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring config file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level must be an object", path)
        return {}
    logger.debug("Loaded config layer %s", path)
    return data


def _env_layer() -> Dict[str, Dict[str, Any]]:
    layer: Dict[str, Dict[str, Any]] = {}
    for env_var, (section, key, parse) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            layer.setdefault(section, {})[key] = parse(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a valid %s", env_var, raw, parse.__name__)
    return layer


def _build_section(name: str, values: Dict[str, Any]):
    section_cls = SECTIONS[name]
    known = {f.name for f in fields(section_cls)}

    extra = sorted(k for k in values if k not in known and not k.startswith("_"))
    if extra:
        logger.warning("Unknown keys in '%s' config ignored: %s", name, ", ".join(extra))

    try:
        return section_cls(**{k: v for k, v in values.items() if k in known})
    except (TypeError, ValueError) as e:
        logger.warning("Invalid '%s' config, falling back to defaults: %s", name, e)
        return section_cls()


def load_client_config(workspace_path: Optional[Path] = None) -> ClientConfig:
    """Resolve the client configuration from all layers.

    Args:
        workspace_path: Project directory whose ``.devport/client.json``
            is layered over the user file. Skipped when None.
    """
    paths = get_config_paths(workspace_path)
    layers: List[Dict[str, Any]] = [_read_layer(paths["user"])]
    if "project" in paths:
        layers.append(_read_layer(paths["project"]))
    layers.append(_env_layer())

    sections = {}
    for name in SECTIONS:
        values: Dict[str, Any] = {}
        for layer in layers:
            section = layer.get(name)
            if section is None:
                continue
            if not isinstance(section, dict):
                logger.warning("Config section '%s' must be an object, got %s", name, type(section).__name__)
                continue
            values.update(section)
        sections[name] = _build_section(name, values)

    return ClientConfig(**sections)


def get_recovery_config(workspace_path: Optional[Path] = None) -> RecoveryConfig:
    return load_client_config(workspace_path).recovery


def generate_example_config() -> str:
    """Render a commented ``client.json`` with every default spelled out."""
    defaults = ClientConfig()
    example: Dict[str, Any] = {"_comment": "Devport client configuration"}
    notes = {
        "recovery": "Socket reconnection settings",
        "fallback": "HTTP delivery while the socket is unavailable",
    }
    for name in SECTIONS:
        section = getattr(defaults, name)
        example[name] = {"_comment": notes[name]}
        example[name].update({f.name: getattr(section, f.name) for f in fields(section)})
    return json.dumps(example, indent=2)


__all__ = [
    "ClientConfig",
    "ENV_OVERRIDES",
    "FallbackConfig",
    "RecoveryConfig",
    "generate_example_config",
    "get_config_paths",
    "get_recovery_config",
    "load_client_config",
]
