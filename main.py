"""Command-line interface for the Userdesk service."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from app.config import Settings, load_settings
from app.database import Database, StorageError, UniqueConstraintViolation, resolve_database_path

logger = logging.getLogger("userdesk.main")

KNOWN_COMMANDS = {"serve", "init-db", "users", "create-user", "logs", "stats"}
GLOBAL_OPTIONS = ("--config", "--db")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Userdesk user management utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERDESK_CONFIG or config/userdesk.yaml)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (overrides configuration and USERDESK_DB_PATH)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default from configuration)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port (default: 3000)")
    serve_parser.add_argument(
        "--demo",
        action="store_true",
        help="Serve the in-memory demo application instead of the SQLite service",
    )

    subparsers.add_parser("init-db", help="Create the tables and seed the initial users")
    subparsers.add_parser("users", help="List all users")

    create_parser = subparsers.add_parser("create-user", help="Create a user")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address")
    create_parser.add_argument("--role", default="user", help="Role to assign (default: user)")

    logs_parser = subparsers.add_parser("logs", help="Show the most recent activity log entries")
    logs_parser.add_argument("--limit", type=int, default=20, help="Number of entries to show")

    subparsers.add_parser("stats", help="Show database statistics")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    # Anything that is not a sub-command (or a global option preceding one)
    # is treated as options for "serve".
    index = 0
    while index < len(args_list):
        token = args_list[index]
        if token in GLOBAL_OPTIONS:
            index += 2
        elif token.split("=", 1)[0] in GLOBAL_OPTIONS:
            index += 1
        else:
            break
    rest = args_list[index:]
    if not rest:
        args_list = [*args_list, "serve"]
    elif rest[0] not in KNOWN_COMMANDS and rest[0] not in ("-h", "--help"):
        if not any(flag in rest for flag in ("-h", "--help")):
            args_list = [*args_list[:index], "serve", *rest]

    return parser.parse_args(args_list)


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config).expanduser() if args.config else None
    settings = load_settings(config_path)
    if args.db_path:
        settings = replace(settings, database_path=resolve_database_path(args.db_path))
    return settings


def _open_database(settings: Settings) -> Database:
    database = Database(settings.database_path, seed=settings.seed_on_startup)
    database.open()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(settings: Settings, *, host: str | None, port: int | None, demo: bool) -> None:
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port

    if demo:
        from app.demo import create_demo_app

        app = create_demo_app()
        logger.info("Starting demo service on http://%s:%s", bind_host, bind_port)
    else:
        from app.service import create_app

        app = create_app(settings=settings)
        logger.info("Starting Userdesk service on http://%s:%s", bind_host, bind_port)

    uvicorn.run(app, host=bind_host, port=bind_port, log_level=settings.log_level)


def _list_users(database: Database) -> None:
    users = database.get_all_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Role':<8}  Created")
    print("-" * 90)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {user.role:<8}  {created}")


def _create_user(database: Database, name: str, email: str, role: str) -> int:
    name = name.strip()
    email = email.strip()
    if not name or not email:
        print("Error: name and email are required", file=sys.stderr)
        return 1
    try:
        user = database.create_user(name, email, role.strip() or "user")
    except UniqueConstraintViolation as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> ({user.role})")
    return 0


def _show_logs(database: Database, limit: int) -> None:
    entries = database.get_logs(limit)
    if not entries:
        print("No activity has been recorded yet.")
        return

    for entry in entries:
        created = entry.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{created}  {entry.level:<7} {entry.message}  [{entry.ip_address or '-'}]")


def _show_stats(database: Database) -> None:
    stats = database.get_stats()
    print(f"Total users:       {stats.total_users}")
    print(f"Admin users:       {stats.admin_users}")
    print(f"Total log entries: {stats.total_logs}")
    print(f"Logs (last hour):  {stats.recent_logs}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = _load_settings(args)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port, demo=args.demo)
        return 0

    try:
        database = _open_database(settings)
    except StorageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "init-db":
            print("Database initialisation complete.")
        elif args.command == "users":
            _list_users(database)
        elif args.command == "create-user":
            return _create_user(database, args.name, args.email, args.role)
        elif args.command == "logs":
            _show_logs(database, args.limit)
        elif args.command == "stats":
            _show_stats(database)
    finally:
        database.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
