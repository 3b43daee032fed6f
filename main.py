#!/usr/bin/env python3
"""
AdvisorGate -- operator CLI for provisioning sign-in accounts.

Accounts, verified locations and second factors are managed out-of-band;
there is no self-service sign-up.

Usage:
  python main.py create-user alice@example.com --name "Alice" --office Toronto
  python main.py create-user alice@example.com --password 'pw' --pin 1234
  python main.py add-ip alice@example.com 203.0.113.7 CA
  python main.py add-ip alice@example.com 203.0.113.7 CA --unverified
  python main.py enable-2fa alice@example.com
  python main.py disable-2fa alice@example.com

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: advisorgate_auth.db)
  SECRET_KEY    Required by the settings layer unless DEBUG=true, even though
                the CLI signs nothing. Pass --database-url to skip settings.
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from auth.guards import hash_secret
from auth.models import User
from auth.store import StoreUnavailableError, UserStore
from auth.totp import generate_secret, provisioning_uri

_MAX_PASSWORD_LEN = 64


def _prompt_password() -> Optional[str]:
    """Read a password twice without echo. Returns None on mismatch."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _require_user(store: UserStore, email: str) -> Optional[User]:
    user = store.get_by_email(email)
    if user is None:
        print(f"  [!] No account for '{email}'.")
    return user


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _prompt_password()
    if not password:
        print("  [!] A password is required.")
        return 1
    if len(password) > _MAX_PASSWORD_LEN:
        print(f"  [!] Password must be at most {_MAX_PASSWORD_LEN} characters.")
        return 1
    if args.pin is not None and not args.pin.isdigit():
        print("  [!] PIN must be digits only.")
        return 1

    user = User(
        email=args.email,
        display_name=args.name or "",
        office=args.office or "",
        hashed_password=hash_secret(password),
        hashed_pin=hash_secret(args.pin) if args.pin else None,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] An account for '{args.email}' already exists.")
        return 1
    print(f"Created {args.email.lower()} (id={user_id}).")
    return 0


def cmd_add_ip(store: UserStore, args: argparse.Namespace) -> int:
    user = _require_user(store, args.email)
    if user is None:
        return 1
    verified = not args.unverified
    store.add_verified_ip(user.id, args.ip, args.country, verified=verified)
    state = "verified" if verified else "unverified"
    print(f"{args.ip} ({args.country.upper()}) recorded as {state} for {user.email}.")
    return 0


def cmd_enable_2fa(store: UserStore, args: argparse.Namespace) -> int:
    user = _require_user(store, args.email)
    if user is None:
        return 1
    secret = generate_secret()
    store.set_otp_secret(user.email, secret)
    store.set_two_fa_enabled(user.id, True)
    print(f"2FA enabled for {user.email}. Scan this URI with an authenticator app:")
    print(provisioning_uri(secret, user.email))
    return 0


def cmd_disable_2fa(store: UserStore, args: argparse.Namespace) -> int:
    user = _require_user(store, args.email)
    if user is None:
        return 1
    store.set_two_fa_enabled(user.id, False)
    print(f"2FA disabled for {user.email}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="advisorgate",
        description="Provision AdvisorGate sign-in accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice@example.com --name "Alice" --office Toronto
  python main.py add-ip alice@example.com 203.0.113.7 CA
  python main.py enable-2fa alice@example.com
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the auth database (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a password (and optional PIN) account")
    create.add_argument("email")
    create.add_argument("--name", default="", help="Display name")
    create.add_argument("--office", default="", help="Office the advisor belongs to")
    create.add_argument("--password", default=None, help="Password (prompted when omitted)")
    create.add_argument("--pin", default=None, help="Numeric PIN for step-up confirmation")
    create.set_defaults(handler=cmd_create_user)

    add_ip = sub.add_parser("add-ip", help="Allow-list a source IP + country for an account")
    add_ip.add_argument("email")
    add_ip.add_argument("ip")
    add_ip.add_argument("country", help="ISO 3166-1 alpha-2 code, e.g. CA")
    add_ip.add_argument(
        "--unverified",
        action="store_true",
        help="Record the location without allowing sign-in from it",
    )
    add_ip.set_defaults(handler=cmd_add_ip)

    enable = sub.add_parser("enable-2fa", help="Generate a TOTP secret and require it at sign-in")
    enable.add_argument("email")
    enable.set_defaults(handler=cmd_enable_2fa)

    disable = sub.add_parser("disable-2fa", help="Stop requiring TOTP at sign-in")
    disable.add_argument("email")
    disable.set_defaults(handler=cmd_disable_2fa)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        store = UserStore(args.database_url)
    except ValidationError as exc:
        # Without --database-url the store reads Settings, which enforces SECRET_KEY.
        print(f"  [!] Configuration error: {exc.errors()[0]['msg']}")
        return 1
    try:
        return args.handler(store, args)
    except StoreUnavailableError as exc:
        print(f"  [!] {exc}")
        return 2
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
