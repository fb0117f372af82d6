"""Supervisor configuration, loaded from TOML with bundled defaults."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .errors import ConfigError
from .execution.capabilities import OPTIONAL_CAPABILITY_NAMES


def _default_config_path() -> Path:
    """Return bundled default configuration TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read configuration TOML and return the supervisor table.

    Example:
        ```python
        raw = _read_config_toml(Path("/tmp/supervisor.toml"))
        ```
    """
    if not path.exists():
        return {
            "max_result_bytes": 20000,
            "max_execution_ms": 15000,
            "max_log_entries": 200,
            "extra_whitelist": [],
            "log_min_interval_ms": 0,
            "memory_limit_mb": 512,
            "startup_timeout_ms": 10000,
            "fetch_timeout_seconds": 10.0,
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    config_obj = raw.get("supervisor", raw)
    if not isinstance(config_obj, dict):
        raise ConfigError("Supervisor config must be a TOML table")
    return config_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        names = _list_of_str(["chr", "ord"], "extra_whitelist")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULT_CONFIG_RAW = _read_config_toml(_default_config_path())
DEFAULT_MAX_RESULT_BYTES = int(_DEFAULT_CONFIG_RAW.get("max_result_bytes", 20000))
DEFAULT_MAX_EXECUTION_MS = int(_DEFAULT_CONFIG_RAW.get("max_execution_ms", 15000))
DEFAULT_MAX_LOG_ENTRIES = int(_DEFAULT_CONFIG_RAW.get("max_log_entries", 200))
DEFAULT_EXTRA_WHITELIST = frozenset(
    _list_of_str(_DEFAULT_CONFIG_RAW.get("extra_whitelist", []), "extra_whitelist")
)
DEFAULT_LOG_MIN_INTERVAL_MS = int(_DEFAULT_CONFIG_RAW.get("log_min_interval_ms", 0))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_CONFIG_RAW.get("memory_limit_mb", 512))
DEFAULT_STARTUP_TIMEOUT_MS = int(_DEFAULT_CONFIG_RAW.get("startup_timeout_ms", 10000))
DEFAULT_FETCH_TIMEOUT_SECONDS = float(_DEFAULT_CONFIG_RAW.get("fetch_timeout_seconds", 10.0))


@dataclass(frozen=True, slots=True)
class SupervisorConfig:
    """Limits and capabilities applied to every worker a supervisor starts.

    Example:
        ```python
        config = SupervisorConfig(max_execution_ms=2000, extra_whitelist=frozenset({"chr"}))
        ```
    """

    max_result_bytes: int = DEFAULT_MAX_RESULT_BYTES
    max_execution_ms: int = DEFAULT_MAX_EXECUTION_MS
    max_log_entries: int = DEFAULT_MAX_LOG_ENTRIES
    extra_whitelist: frozenset[str] = field(default_factory=lambda: DEFAULT_EXTRA_WHITELIST)
    fetch_proxy_url: str | None = None
    log_min_interval_ms: int = DEFAULT_LOG_MIN_INTERVAL_MS
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    startup_timeout_ms: int = DEFAULT_STARTUP_TIMEOUT_MS
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Validate limits, whitelist names and the proxy URL.

        Example:
            ```python
            SupervisorConfig(max_log_entries=10)
            ```
        """
        for name in ("max_result_bytes", "max_execution_ms", "max_log_entries", "startup_timeout_ms"):
            if int(getattr(self, name)) <= 0:
                raise ConfigError(f"'{name}' must be positive")
        if self.log_min_interval_ms < 0 or self.memory_limit_mb < 0:
            raise ConfigError("'log_min_interval_ms' and 'memory_limit_mb' must not be negative")
        if self.fetch_timeout_seconds <= 0:
            raise ConfigError("'fetch_timeout_seconds' must be positive")

        # Lists from callers are accepted and frozen here.
        object.__setattr__(
            self,
            "extra_whitelist",
            frozenset(_list_of_str(self.extra_whitelist, "extra_whitelist")),
        )
        unknown = sorted(self.extra_whitelist - OPTIONAL_CAPABILITY_NAMES)
        if unknown:
            raise ConfigError(
                "Unknown capabilities in 'extra_whitelist': " + ", ".join(unknown)
            )

        if self.fetch_proxy_url is not None:
            parsed = urlparse(self.fetch_proxy_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ConfigError("'fetch_proxy_url' must be an absolute http(s) URL")

    def handshake(self) -> dict[str, Any]:
        """Return the configuration subset delivered to a new worker.

        Example:
            ```python
            message = SupervisorConfig().handshake()
            ```
        """
        return {
            "max_result_bytes": self.max_result_bytes,
            "max_log_entries": self.max_log_entries,
            "extra_whitelist": sorted(self.extra_whitelist),
            "fetch_proxy_url": self.fetch_proxy_url,
            "log_min_interval_ms": self.log_min_interval_ms,
            "memory_limit_mb": self.memory_limit_mb,
            "fetch_timeout_seconds": self.fetch_timeout_seconds,
        }

    @classmethod
    def from_file(cls, config_path: str) -> "SupervisorConfig":
        """Create a configuration from a TOML file.

        Example:
            ```python
            config = SupervisorConfig.from_file("/tmp/supervisor.toml")
            ```
        """
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        raw = _read_config_toml(path)
        proxy = raw.get("fetch_proxy_url")
        return cls(
            max_result_bytes=int(raw.get("max_result_bytes", DEFAULT_MAX_RESULT_BYTES)),
            max_execution_ms=int(raw.get("max_execution_ms", DEFAULT_MAX_EXECUTION_MS)),
            max_log_entries=int(raw.get("max_log_entries", DEFAULT_MAX_LOG_ENTRIES)),
            extra_whitelist=frozenset(
                _list_of_str(raw.get("extra_whitelist", []), "extra_whitelist")
            ),
            fetch_proxy_url=str(proxy) if proxy else None,
            log_min_interval_ms=int(raw.get("log_min_interval_ms", DEFAULT_LOG_MIN_INTERVAL_MS)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            startup_timeout_ms=int(raw.get("startup_timeout_ms", DEFAULT_STARTUP_TIMEOUT_MS)),
            fetch_timeout_seconds=float(
                raw.get("fetch_timeout_seconds", DEFAULT_FETCH_TIMEOUT_SECONDS)
            ),
        )
