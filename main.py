#!/usr/bin/env python3
"""
PimpMyPack -- account and session management CLI.

Works directly against DATABASE_URL; the API server does not need to run.

Usage:
  python main.py create-account alice alice@example.com
  python main.py create-account root root@example.com --admin --active
  python main.py confirm 3 Zq0v...
  python main.py set-role 3 admin
  python main.py sweep

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the account database (default: ./pimpmypack.db)
  SECRET_KEY     Required unless DEBUG=true (see core/config.py)
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AccountConflict, StoreError
from auth.models import ROLE_ADMIN, ROLE_STANDARD, STATUS_ACTIVE, STATUS_PENDING, Account
from auth.passwords import hash_password
from auth.refresh_tokens import RefreshTokenStore
from auth.store import AccountStore
from auth.sweeper import run_sweep_once
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _read_password() -> Optional[str]:
    password = getpass.getpass("  Password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.", file=sys.stderr)
        return None
    if getpass.getpass("  Repeat password: ") != password:
        print("  [!] Passwords do not match.", file=sys.stderr)
        return None
    return password


def cmd_create_account(store: AccountStore, args: argparse.Namespace) -> int:
    password = args.password or _read_password()
    if password is None:
        return 1
    account = Account(
        username=args.username,
        email=args.email,
        firstname=args.firstname,
        lastname=args.lastname,
        role=ROLE_ADMIN if args.admin else ROLE_STANDARD,
        status=STATUS_ACTIVE if args.active else STATUS_PENDING,
    )
    try:
        account_id = store.create_account(account, hash_password(password, get_settings().bcrypt_rounds))
    except AccountConflict:
        print(f"  [!] Username '{args.username}' is already taken.", file=sys.stderr)
        return 1
    print(f"  Created account {account_id} ({account.role}, {account.status}).")
    if account.confirmation_code:
        print(f"  Confirmation code: {account.confirmation_code}")
    return 0


def cmd_confirm(store: AccountStore, args: argparse.Namespace) -> int:
    if not store.confirm(args.account_id, args.code):
        print("  [!] Invalid confirmation code or user ID.", file=sys.stderr)
        return 1
    print(f"  Account {args.account_id} confirmed.")
    return 0


def cmd_set_role(store: AccountStore, args: argparse.Namespace) -> int:
    if not store.set_role(args.account_id, args.role):
        print(f"  [!] No account with ID {args.account_id}.", file=sys.stderr)
        return 1
    print(f"  Account {args.account_id} is now {args.role}.")
    return 0


def cmd_sweep(store: AccountStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    refresh_tokens = RefreshTokenStore(
        store.engine,
        default_days=settings.refresh_token_days,
        extended_days=settings.refresh_token_remember_me_days,
    )
    result = run_sweep_once(refresh_tokens)
    print(f"  Removed {result.tokens_deleted} expired refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pimpmypack",
        description="Manage PimpMyPack accounts and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-account alice alice@example.com
  python main.py create-account root root@example.com --admin --active
  python main.py confirm 3 <code>
  python main.py set-role 3 admin
  python main.py sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-account", help="Create an account (password is prompted)")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("--firstname", default="")
    create.add_argument("--lastname", default="")
    create.add_argument("--admin", action="store_true", help="Grant the admin role")
    create.add_argument("--active", action="store_true", help="Skip e-mail confirmation")
    # Not advertised: passing a password on the command line leaks it to the shell history.
    create.add_argument("--password", help=argparse.SUPPRESS)
    create.set_defaults(func=cmd_create_account)

    confirm = sub.add_parser("confirm", help="Confirm a pending account")
    confirm.add_argument("account_id", type=int)
    confirm.add_argument("code")
    confirm.set_defaults(func=cmd_confirm)

    set_role = sub.add_parser("set-role", help="Change an account's role")
    set_role.add_argument("account_id", type=int)
    set_role.add_argument("role", choices=[ROLE_ADMIN, ROLE_STANDARD])
    set_role.set_defaults(func=cmd_set_role)

    sweep = sub.add_parser("sweep", help="Delete expired refresh tokens now")
    sweep.set_defaults(func=cmd_sweep)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    store = AccountStore(get_settings().database_url)
    try:
        return args.func(store, args)
    except StoreError as exc:
        print(f"  [!] Database error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
