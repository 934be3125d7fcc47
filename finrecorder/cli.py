"""CLI tool for admin and maintenance operations.

Usage:
    python -m finrecorder.cli create-user
    python -m finrecorder.cli recalculate <username>
    python -m finrecorder.cli snapshot
    python -m finrecorder.cli update-prices [TW|US]
    python -m finrecorder.cli update-rates
    python -m finrecorder.cli backfill <username> <year>
"""

import sys
import getpass

from sqlmodel import Session, select

from finrecorder.database import engine, create_db_and_tables
from finrecorder.models.user import User
from finrecorder.services.auth import create_user as create_user_record, get_totp_uri
from finrecorder.utils.logging import setup_logging

COMMANDS = ["create-user", "recalculate", "snapshot", "update-prices", "update-rates", "backfill"]


def _find_user(session: Session, username: str) -> User:
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None:
        print(f"User '{username}' not found.")
        sys.exit(1)
    return user


def create_user():
    """Create a user with TOTP setup."""
    username = input("Username: ").strip()
    if not username:
        print("Username cannot be empty.")
        sys.exit(1)

    password = getpass.getpass("Password: ")
    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        print("Passwords do not match.")
        sys.exit(1)

    with Session(engine) as session:
        try:
            _, totp_secret = create_user_record(session, username, password)
        except ValueError as e:
            print(str(e))
            sys.exit(1)

    totp_uri = get_totp_uri(totp_secret, username)
    print(f"\nUser '{username}' created successfully.")
    print(f"\nTOTP Secret: {totp_secret}")
    print(f"TOTP URI: {totp_uri}")
    print("\nScan the QR code below with your authenticator app:")

    try:
        import qrcode
        qr = qrcode.QRCode(box_size=1, border=1)
        qr.add_data(totp_uri)
        qr.make(fit=True)
        qr.print_ascii(invert=True)
    except ImportError:
        print("(Install qrcode[pil] to display QR code in terminal)")


def recalculate(username: str):
    from finrecorder.engine.ledger import recompute_holdings_from_history

    with Session(engine) as session:
        user = _find_user(session, username)
        result = recompute_holdings_from_history(session, user.id)
    print(f"Rebuilt {result['holdings']} holdings from {result['trades']} trades.")


def snapshot():
    from finrecorder.engine.scheduler import execute_job

    result = execute_job("snapshot_values")
    print(f"Processed {result.get('users_processed', 0)} users, {len(result.get('errors', []))} errors.")
    for error in result.get("errors", []):
        print(f"  {error}")


def update_prices(market: str | None = None):
    from finrecorder.engine.scheduler import execute_job

    jobs = {"TW": ["update_tw_prices"], "US": ["update_us_prices"]}.get(market, ["update_tw_prices", "update_us_prices"])
    for job in jobs:
        result = execute_job(job)
        print(f"{job}: {result.get('updated')} ({len(result.get('errors', []))} missing)")


def update_rates():
    from finrecorder.engine.scheduler import execute_job

    result = execute_job("update_rates")
    if result.get("success"):
        print(f"USD/TWD {result['rate']} from {result['source']}")
    else:
        print(f"Rate update failed: {result.get('error')}")
        sys.exit(1)


def backfill(username: str, year: int):
    from finrecorder.engine.snapshot_job import backfill_snapshots

    with Session(engine) as session:
        user = _find_user(session, username)
        result = backfill_snapshots(session, user.id, year)
    print(f"Wrote {result['snapshots']} snapshots over {result['days']} price days in {year}.")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m finrecorder.cli <command> [args]")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)

    setup_logging()
    create_db_and_tables()

    command, args = sys.argv[1], sys.argv[2:]
    if command == "create-user":
        create_user()
    elif command == "recalculate" and len(args) == 1:
        recalculate(args[0])
    elif command == "snapshot":
        snapshot()
    elif command == "update-prices":
        update_prices(args[0].upper() if args else None)
    elif command == "update-rates":
        update_rates()
    elif command == "backfill" and len(args) == 2 and args[1].isdigit():
        backfill(args[0], int(args[1]))
    else:
        print(f"Unknown command or arguments: {' '.join(sys.argv[1:])}")
        sys.exit(1)


if __name__ == "__main__":
    main()
