"""Command-line interface for the task board service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from taskboard.config import Settings, load_settings
from taskboard.database import Database
from taskboard.models import Role

logger = logging.getLogger("taskboard.main")

_MIN_PASSWORD_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Taskboard service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: TASKBOARD_CONFIG or config/taskboard.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the task board database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP/WebSocket service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: from configuration)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 3000)")

    user_parser = subparsers.add_parser("create-user", help="Create a user account, e.g. the first Admin")
    user_parser.add_argument("username", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")
    user_parser.add_argument(
        "--role",
        choices=[role.value for role in Role],
        default=Role.ADMIN.value,
        help="Role to grant (default: Admin)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first == "--config" and len(args_list) >= 2:
            rest = args_list[2:]
            if not rest or rest[0] not in known_commands:
                args_list = [*args_list[:2], "serve", *rest]
        elif first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str | None, port: int | None) -> None:
    from taskboard.api import create_app
    import uvicorn

    bind_host = host or settings.host
    bind_port = port or settings.port
    logger.info("Starting task board on http://%s:%s", bind_host, bind_port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level="info")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {_MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < _MIN_PASSWORD_LENGTH:
            print(f"Passwords need at least {_MIN_PASSWORD_LENGTH} characters.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("The two entries differ, try again.")
            continue
        return password
    return None


def _create_user(database: Database, *, username: str, email: str, role: str) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(username, email, password, Role(role))
    except ValueError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.username} <{user.email}> ({user.role.value})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = load_settings(Path(args.config) if args.config else None)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "create-user":
        return _create_user(database, username=args.username, email=args.email, role=args.role)
    elif args.command == "init-db":
        print(f"Database ready at {settings.database_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
