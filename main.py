"""Command-line interface for the users API."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from users_api.api import UserCreateRequest
from users_api.config import Settings, load_settings
from users_api.database import Database
from users_api.errors import UserServiceError
from users_api.users import UserService

logger = logging.getLogger("users_api.main")

_KNOWN_COMMANDS = {"serve", "init-db", "list-users", "create-user", "delete-user"}


def _command_index(args: Sequence[str]) -> int:
    """Return the position of the subcommand, skipping a leading --config option."""

    index = 0
    while index < len(args):
        if args[index] == "--config":
            index += 2
        elif args[index].startswith("--config="):
            index += 1
        else:
            break
    return min(index, len(args))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=argparse.SUPPRESS,
        help="Path to a YAML configuration file (default: USERS_API_CONFIG)",
    )

    parser = argparse.ArgumentParser(description="Users API service and administration utilities")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML configuration file (default: USERS_API_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve", config=None)

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: from settings)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: from settings)",
    )

    subparsers.add_parser("init-db", parents=[common], help="Initialise the users database")
    subparsers.add_parser("list-users", parents=[common], help="Print all users")

    create_parser = subparsers.add_parser("create-user", parents=[common], help="Create a user")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address")

    delete_parser = subparsers.add_parser("delete-user", parents=[common], help="Delete a user")
    delete_parser.add_argument("user_id", type=int, help="Identifier of the user to delete")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    index = _command_index(args_list)
    if index == len(args_list) or args_list[index] not in _KNOWN_COMMANDS | {"-h", "--help"}:
        args_list.insert(index, "serve")

    return parser.parse_args(args_list)


def _serve(settings: Settings, *, host: str | None, port: int | None) -> None:
    from users_api.api import create_app
    import uvicorn

    if host is not None:
        settings = replace(settings, host=host)
    if port is not None:
        settings = replace(settings, port=port)

    logger.info("Starting users API on http://%s:%s", settings.host, settings.port)
    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


def _open_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _list_users(service: UserService) -> int:
    users = service.list_users()
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {created}")
    return 0


def _create_user(service: UserService, name: str, email: str) -> int:
    try:
        request = UserCreateRequest(name=name, email=email)
    except ValidationError as exc:
        print(f"Invalid user details: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 1

    try:
        user = service.create_user(request.name, request.email)
    except UserServiceError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


def _delete_user(service: UserService, user_id: int) -> int:
    try:
        service.delete_user(user_id)
    except UserServiceError as exc:
        print(f"Failed to delete user #{user_id}: {exc.message}", file=sys.stderr)
        return 1

    print(f"Deleted user #{user_id}.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    settings = load_settings(args.config)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "serve":
        _serve(settings, host=args.host, port=args.port)
        return 0

    with _open_database(settings) as database:
        service = UserService(database)
        if args.command == "init-db":
            print("Database initialisation complete.")
            return 0
        if args.command == "list-users":
            return _list_users(service)
        if args.command == "create-user":
            return _create_user(service, args.name, args.email)
        if args.command == "delete-user":
            return _delete_user(service, args.user_id)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
