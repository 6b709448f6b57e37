"""Create a LocalData account from the command line."""

import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional, Sequence

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from localdata.config import load_settings
from localdata.database import Database, resolve_database_path
from localdata.errors import AccountError

MAX_PROMPTS = 3


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a LocalData user account")
    parser.add_argument("name", help="Display name shown by /api/user")
    parser.add_argument("email", help="Login email; stored lower-cased")
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="SQLite database to write to (overrides the configured database_path)",
    )
    target.add_argument(
        "--config",
        default=None,
        help="YAML configuration file to read database_path from",
    )
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of standard input",
    )
    return parser.parse_args(argv)


def prompt_for_password() -> str:
    for _ in range(MAX_PROMPTS):
        password = getpass.getpass("Password: ")
        if not password:
            print("Password must not be empty.", file=sys.stderr)
            continue
        if getpass.getpass("Confirm password: ") != password:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        return password
    raise SystemExit(f"No password set after {MAX_PROMPTS} attempts.")


def read_password(args: argparse.Namespace) -> str:
    if not args.password_stdin:
        return prompt_for_password()
    password = sys.stdin.readline().rstrip("\r\n")
    if not password:
        raise SystemExit("No password was supplied on standard input.")
    return password


def open_database(args: argparse.Namespace) -> Database:
    if args.db_path:
        path = resolve_database_path(args.db_path)
    else:
        path = load_settings(Path(args.config) if args.config else None).database_path
    database = Database(path)
    database.initialize()
    return database


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    password = read_password(args)
    database = open_database(args)

    try:
        user = database.create_user(args.name, args.email, password)
    except AccountError as exc:
        print(f"Error: {exc.detail}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}> in {database.path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
