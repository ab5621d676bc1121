"""Command line entry point for RaidDeck."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable

from . import __version__
from .app import RaidDeckApp
from .config import CONFIG_PATH, AppConfig, load_config, load_credentials, parse_refresh_interval
from .database import ChannelDatabase
from .errors import ConfigurationError, NotFoundError, ParseError
from .logging_utils import configure_logging, get_log_file_path, get_logger
from .service import HelixChannelService
from .sync import SyncEngine
from .themes import CUSTOM_THEMES

log = get_logger(__name__)


def _sorted_theme_names() -> list[str]:
    """Return the bundled theme catalog in a consistent order."""

    return sorted(CUSTOM_THEMES)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Twitch raid target dashboard")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=None,
        help="Channel database file (overrides database_path from the config)",
    )
    parser.add_argument(
        "--credentials",
        type=Path,
        default=None,
        help="Twitch credentials file (overrides credentials_path from the config)",
    )
    parser.add_argument(
        "--refresh-interval",
        metavar="MS",
        default=None,
        help="Refresh interval in milliseconds (overrides refresh_interval_ms)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override RAIDDECK_LOG_LEVEL for this invocation",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write logs to this file instead of the default or RAIDDECK_LOG_FILE",
    )
    theme_names = ", ".join(_sorted_theme_names())
    parser.add_argument(
        "--theme",
        default=None,
        help=f"Select the application theme. Available options: {theme_names}.",
    )
    parser.add_argument(
        "--list-themes",
        action="store_true",
        help="List available themes and exit.",
    )
    parser.add_argument(
        "--channel-logs",
        metavar="NAME",
        default=None,
        help="Print log entries mentioning the given channel and exit.",
    )
    return parser.parse_args(argv)


def _print_channel_logs(channel_name: str) -> None:
    """Write log entries that reference *channel_name* to stdout."""

    log_path = get_log_file_path()
    if log_path is None:
        print("File logging is not enabled; set --log-file or RAIDDECK_LOG_FILE.")
        return

    if not log_path.exists():
        print(f"No log file found at {log_path}")
        return

    token = channel_name.casefold()
    matches = 0

    print(f"Log file: {log_path}")
    with log_path.open("r", encoding="utf8", errors="replace") as handle:
        for raw_line in handle:
            line = raw_line.rstrip("\n")
            if token in line.casefold():
                print(line)
                matches += 1

    if matches == 0:
        print(f"No log entries mentioning '{channel_name}' were found.")


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.database is not None:
        config.database_path = args.database.expanduser()
    if args.credentials is not None:
        config.credentials_path = args.credentials.expanduser()
    if args.refresh_interval is not None:
        config.refresh_interval_ms = parse_refresh_interval(args.refresh_interval)
    if args.theme:
        config.theme = args.theme
    return config


def open_database(path: Path) -> ChannelDatabase:
    """Load the channel database at *path*, creating an empty one if absent."""

    try:
        return ChannelDatabase.load(path)
    except NotFoundError:
        log.info("No channel database at %s; creating a new one", path)
    database = ChannelDatabase(path=path, auto_save=True)
    try:
        database.save()
    except OSError as exc:
        raise ConfigurationError(f"Cannot create database at {path}: {exc}") from exc
    return database


def build_app(config: AppConfig) -> RaidDeckApp:
    """Wire the store, remote service and sync engine into the application."""

    database = open_database(config.database_path)
    credentials = load_credentials(config.credentials_path)
    service = HelixChannelService(credentials)
    engine = SyncEngine(database, service, refresh_interval=config.refresh_interval)
    return RaidDeckApp(config, engine)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    if args.list_themes:
        for theme_name in _sorted_theme_names():
            print(theme_name)
        return
    configure_logging(
        level=args.log_level,
        log_file=str(args.log_file) if args.log_file is not None else None,
    )
    if args.channel_logs:
        _print_channel_logs(args.channel_logs)
        return
    log.info("CLI invoked with config=%s", args.config)
    try:
        config = _apply_overrides(load_config(args.config), args)
        app = build_app(config)
    except (ConfigurationError, ParseError) as exc:
        log.error("Startup failed: %s", exc)
        raise SystemExit(2) from exc
    log.info("Launching Textual application")
    try:
        app.run()
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received; exiting application")
        if app.is_running:
            app.exit()
        raise SystemExit(130) from None
    finally:
        _save_on_exit(app)


def _save_on_exit(app: RaidDeckApp) -> None:
    database = app.engine.database
    if database.auto_save or database.path is None:
        return
    try:
        database.save()
    except OSError as exc:
        log.error("Failed to save database to %s: %s", database.path, exc)


if __name__ == "__main__":  # pragma: no cover
    main()
