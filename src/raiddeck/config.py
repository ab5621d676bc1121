"""Configuration management for RaidDeck."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError
from .logging_utils import get_logger

CONFIG_PATH = Path.home() / ".config" / "raiddeck" / "config.yaml"
DEFAULT_DATABASE_PATH = Path("db.json")
DEFAULT_CREDENTIALS_PATH = Path.home() / "raiddeck_twitch.secret"
DEFAULT_REFRESH_INTERVAL_MS = 10_000
MIN_REFRESH_INTERVAL_MS = 1_000

log = get_logger(__name__)


@dataclass(slots=True)
class AppConfig:
    """Process-wide settings handed to the components at startup."""

    database_path: Path = DEFAULT_DATABASE_PATH
    credentials_path: Path = DEFAULT_CREDENTIALS_PATH
    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS
    theme: Optional[str] = None

    @property
    def refresh_interval(self) -> float:
        """Refresh interval in seconds."""

        return self.refresh_interval_ms / 1000.0


@dataclass(slots=True)
class Credentials:
    """Remote service credentials read from the secret file."""

    client_id: str
    access_token: str
    channel_name: Optional[str] = None
    client_secret: Optional[str] = None


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _clean_scalar(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value


def _parse_config(raw: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for number, line in enumerate(raw.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, value = stripped.partition(":")
        if not separator or not key.strip():
            raise ConfigurationError(f"Malformed configuration line {number}: {line!r}")
        result[key.strip()] = _clean_scalar(value)
    return result


def parse_refresh_interval(value: object) -> int:
    """Return a validated refresh interval in milliseconds."""

    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid refresh interval: {value!r}")
    try:
        interval = int(str(value).strip())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid refresh interval: {value!r}") from exc
    if interval < MIN_REFRESH_INTERVAL_MS:
        raise ConfigurationError(
            f"Refresh interval must be at least {MIN_REFRESH_INTERVAL_MS} ms (got {interval})"
        )
    return interval


def _dump_config(config: AppConfig) -> str:
    lines = [
        f"database_path: {config.database_path}",
        f"credentials_path: {config.credentials_path}",
        f"refresh_interval_ms: {config.refresh_interval_ms}",
    ]
    if config.theme:
        lines.append(f"theme: {config.theme}")
    lines.append("")
    return "\n".join(lines)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from *path* or return the defaults if it is missing."""

    config_path = path or CONFIG_PATH
    if not config_path.exists():
        log.info("Configuration file missing at %s; using defaults", config_path)
        return AppConfig()
    log.debug("Loading configuration from %s", config_path)
    try:
        raw = config_path.read_text(encoding="utf8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration at {config_path}: {exc}") from exc
    data = _parse_config(raw)

    config = AppConfig()
    database = data.get("database_path")
    if database:
        config.database_path = Path(database).expanduser()
    credentials = data.get("credentials_path")
    if credentials:
        config.credentials_path = Path(credentials).expanduser()
    interval = data.get("refresh_interval_ms")
    if interval:
        config.refresh_interval_ms = parse_refresh_interval(interval)
    theme = data.get("theme")
    if theme:
        config.theme = theme
    unknown = sorted(set(data) - {"database_path", "credentials_path", "refresh_interval_ms", "theme"})
    if unknown:
        log.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
    log.info(
        "Loaded configuration from %s (database=%s, interval=%d ms)",
        config_path,
        config.database_path,
        config.refresh_interval_ms,
    )
    return config


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Persist *config* to disk at *path*."""

    config_path = path or CONFIG_PATH
    _ensure_parent(config_path)
    config_path.write_text(_dump_config(config), encoding="utf8")
    log.info("Configuration saved to %s", config_path)


_CREDENTIAL_ALIASES = {
    "channel": "channel_name",
    "channel_name": "channel_name",
    "client_id": "client_id",
    "clientid": "client_id",
    "client_secret": "client_secret",
    "secret": "client_secret",
    "access_token": "access_token",
    "token": "access_token",
    "access": "access_token",
}


def load_credentials(path: Path) -> Credentials:
    """Read ``key=value`` credentials from *path*.

    The ``oauth:`` prefix chat clients use is stripped from the access token.
    """

    if not path.exists():
        raise ConfigurationError(f"Credentials file not found at {path}")
    try:
        raw = path.read_text(encoding="utf8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read credentials at {path}: {exc}") from exc
    values: dict[str, str] = {}
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, value = stripped.partition("=")
        if not separator:
            continue
        field_name = _CREDENTIAL_ALIASES.get(key.strip().lower().replace("-", "_"))
        if field_name is None:
            log.debug("Ignoring unknown credentials key %s", key.strip())
            continue
        values[field_name] = _clean_scalar(value)

    token = values.get("access_token", "")
    if token.startswith("oauth:"):
        token = token[len("oauth:"):]
    client_id = values.get("client_id", "")
    missing = [name for name, value in (("client_id", client_id), ("access_token", token)) if not value]
    if missing:
        raise ConfigurationError(
            f"Credentials at {path} are missing: {', '.join(missing)}"
        )
    log.debug("Loaded credentials from %s", path)
    return Credentials(
        client_id=client_id,
        access_token=token,
        channel_name=values.get("channel_name") or None,
        client_secret=values.get("client_secret") or None,
    )


__all__ = [
    "AppConfig",
    "CONFIG_PATH",
    "Credentials",
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_DATABASE_PATH",
    "DEFAULT_REFRESH_INTERVAL_MS",
    "load_config",
    "load_credentials",
    "parse_refresh_interval",
    "save_config",
]
