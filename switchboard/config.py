"""
Switchboard configuration.

Values come from, in increasing precedence:
- built-in defaults
- environment variables (``SWITCHBOARD_<FIELD>``, e.g. ``SWITCHBOARD_PORT``)
- an optional YAML file named by ``SWITCHBOARD_CONFIG`` or ``--config``

Environment variables:
- SWITCHBOARD_HOST / SWITCHBOARD_PORT: where the service listens
- SWITCHBOARD_API_KEY: key operator clients must present (empty = dev mode)
- SWITCHBOARD_STORAGE_DIR: where queue/session/history are saved (unset = memory only)
- SWITCHBOARD_RESPONSE_TEMPLATE: text appended to every answer
"""
import logging
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWITCHBOARD_"
CONFIG_ENV = "SWITCHBOARD_CONFIG"


def check_file_permissions(path: Path) -> None:
    """
    Refuse a config file holding an API key that group/other can read (Unix only).
    """
    if sys.platform == "win32" or not path.exists():
        return
    mode = path.stat().st_mode & 0o777
    if mode & 0o077:
        raise PermissionError(
            f"Config file {path} contains an API key but has insecure permissions ({oct(mode)}). "
            f"Run: chmod 600 {path}"
        )


@dataclass
class Config:
    """Service and mediator settings."""

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Operator WebSocket auth
    api_key: str = ""

    # Keepalive interval (seconds)
    ping_interval: int = 60

    # Persistence
    storage_dir: Optional[str] = None
    max_session_entries: int = 200
    max_history_entries: int = 100
    max_queue_prompt_length: int = 100000
    queue_save_delay: float = 0.3
    session_save_delay: float = 1.0
    history_save_delay: float = 2.0

    # Mediator behaviour
    processing_timeout: float = 30.0
    short_question_threshold: int = 100
    response_template: Optional[str] = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                values[f.name] = raw
        return cls().updated(values)

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """Environment settings overlaid with the YAML file, if there is one."""
        environ = os.environ if environ is None else environ
        config = cls.from_env(environ)

        if path is None and environ.get(CONFIG_ENV):
            path = Path(environ[CONFIG_ENV])
        if path is None:
            return config

        path = Path(path).expanduser()
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        if data.get("api_key"):
            check_file_permissions(path)
        return config.updated(data)

    def updated(self, overrides: Dict[str, Any]) -> 'Config':
        """A copy with ``overrides`` applied. Unknown keys are skipped with a warning."""
        known = {f.name: f for f in fields(self)}
        values = {name: getattr(self, name) for name in known}
        for key, raw in overrides.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            values[key] = _coerce(key, known[key].default, raw)
        return Config(**values)

    @property
    def storage_path(self) -> Optional[Path]:
        return Path(self.storage_dir).expanduser() if self.storage_dir else None


def _coerce(name: str, default: Any, raw: Any) -> Any:
    """Convert ``raw`` to the type of the field's default. Bad numbers are fatal."""
    if raw is None:
        return default
    if isinstance(default, int):
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid integer for {name}: {raw!r}")
    if isinstance(default, float):
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid number for {name}: {raw!r}")
    text = str(raw)
    if default is None and not text.strip():
        return None
    return text
