"""Operator command line for the booking engine.

    slotbook init-db
    slotbook add-user --email b@example.com --role BARBER
    slotbook set-week 1 --day 1=09:00-17:00 --day 2=09:00-17:00
    slotbook slots 1 2026-10-19
    slotbook book --client 2 --barber 1 --date 2026-10-19 --time 09:00
    slotbook cancel 7 --actor 2
    slotbook balance 2
    slotbook grant 2 10 --reason MEMBERSHIP_RENEWAL
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys

from sqlalchemy.exc import IntegrityError

from slotbook.app.core import constants
from slotbook.app.core.db import init_db, make_session_factory
from slotbook.app.core.collaborators import Identity
from slotbook.app.core.logger import configure_logging
from slotbook.app.domain.errors import BookingError, InvalidArgument
from slotbook.app.domain.models import User, UserRole
from slotbook.app.services.availability_services import WeeklyAvailabilityRepo
from slotbook.app.services.engine import BookingEngine
from slotbook.app.services.shared_services import format_time_12h
from slotbook.config import EngineSettings


def _parse_day_hours(raw: str) -> tuple[int, tuple[str, str]]:
    """``1=09:00-17:00`` -> (1, ("09:00", "17:00"))"""
    try:
        dow, _, span = raw.partition("=")
        start, _, end = span.partition("-")
        if not start or not end:
            raise ValueError(raw)
        return int(dow), (start.strip(), end.strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected DOW=HH:MM-HH:MM, got {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slotbook", description="Barber availability & booking engine")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables (development; production uses alembic)")
    p.add_argument("--force", action="store_true", help="Drop existing tables first")

    p = sub.add_parser("add-user", help="Create a user")
    p.add_argument("--email", required=True)
    p.add_argument("--name", default=None)
    p.add_argument("--role", default="CLIENT", choices=[r.value for r in UserRole])

    p = sub.add_parser("set-week", help="Replace a barber's weekly hours (Sunday=0)")
    p.add_argument("barber_id", type=int)
    p.add_argument("--day", action="append", type=_parse_day_hours, default=[], metavar="DOW=HH:MM-HH:MM")

    p = sub.add_parser("slots", help="List free slots for a barber on a date")
    p.add_argument("barber_id", type=int)
    p.add_argument("date")
    p.add_argument("--plan", default=None)

    p = sub.add_parser("book", help="Book a slot")
    p.add_argument("--client", type=int, required=True)
    p.add_argument("--barber", type=int, required=True)
    p.add_argument("--date", required=True)
    p.add_argument("--time", required=True)
    p.add_argument("--kind", default="STANDARD")
    p.add_argument("--key", default=None, help="Idempotency key")

    p = sub.add_parser("cancel", help="Cancel an appointment")
    p.add_argument("appointment_id", type=int)
    p.add_argument("--actor", type=int, required=True)
    p.add_argument("--role", default="CLIENT", choices=[r.value for r in UserRole])
    p.add_argument("--reason", default=None)
    p.add_argument("--hard-delete", action="store_true")

    p = sub.add_parser("balance", help="Show a user's points balance")
    p.add_argument("user_id", type=int)

    p = sub.add_parser("grant", help="Credit points to a user")
    p.add_argument("user_id", type=int)
    p.add_argument("delta", type=int)
    p.add_argument("--reason", default="MANUAL_CREDIT")
    return parser


async def _run(args: argparse.Namespace, settings: EngineSettings) -> int:
    session_factory = make_session_factory(settings.database_url)
    engine = BookingEngine(settings, session_factory)
    try:
        if args.command == "init-db":
            await init_db(force=args.force, engine=session_factory.kw["bind"])
            print("schema ready")
        elif args.command == "add-user":
            async with session_factory() as session:
                user = User(email=args.email.strip().lower(), name=args.name, role=UserRole(args.role))
                session.add(user)
                try:
                    await session.commit()
                except IntegrityError:
                    print(f"user {args.email} already exists", file=sys.stderr)
                    return 1
                print(f"user {user.id} ({user.role.value}) created")
        elif args.command == "set-week":
            async with session_factory() as session:
                async with session.begin():
                    rows = await WeeklyAvailabilityRepo.replace_week(session, args.barber_id, dict(args.day))
            print(f"{len(rows)} working day(s) set for barber {args.barber_id}")
        elif args.command == "slots":
            result = await engine.get_available_slots(args.barber_id, args.date, args.plan)
            for slot in result.slots:
                print(f"{slot.strftime('%H:%M')}  {format_time_12h(slot)}")
            if not result.slots:
                print("no free slots")
        elif args.command == "book":
            appt = await engine.book(args.client, args.barber, args.date, args.time, args.kind, args.key)
            print(f"appointment {appt.id} {appt.status.value} starts_at={appt.starts_at.isoformat()}")
        elif args.command == "cancel":
            actor = Identity(user_id=args.actor, role=UserRole(args.role))
            await engine.cancel(args.appointment_id, actor, reason=args.reason, hard_delete=args.hard_delete)
            print(f"appointment {args.appointment_id} {'deleted' if args.hard_delete else 'canceled'}")
        elif args.command == "balance":
            print(await engine.get_points_balance(args.user_id))
        elif args.command == "grant":
            entry = await engine.grant_points(args.user_id, args.delta, args.reason)
            print(f"ledger entry {entry.id}: +{entry.delta}")
        return 0
    finally:
        await session_factory.kw["bind"].dispose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(constants.LOG_LEVEL_NAME, log_file=None, stderr=True)
    settings = EngineSettings.from_env()
    if args.database_url:
        settings = dataclasses.replace(settings, database_url=args.database_url)
    try:
        return asyncio.run(_run(args, settings))
    except InvalidArgument as e:
        print(f"invalid input: {e.code}", file=sys.stderr)
        return 2
    except BookingError as e:
        print(f"error: {e.code}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
