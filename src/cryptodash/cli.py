"""Operator commands for bootstrapping admins and fixing roles."""

import argparse
import asyncio
import sys
from collections.abc import Sequence

from cryptodash.admin.service import ensure_admin_remains, ensure_not_last_admin, parse_role
from cryptodash.auth.models import User
from cryptodash.auth.passwords import hash_password
from cryptodash.auth.repository import UserRepository
from cryptodash.auth.roles import Role
from cryptodash.config import get_settings
from cryptodash.shared.database import DatabaseManager
from cryptodash.shared.exceptions import AppException, UserNotFoundError
from cryptodash.shared.logging import get_logger, setup_logging

logger = get_logger("cryptodash.cli")


async def init_db(db: DatabaseManager) -> None:
    await db.create_all()
    logger.info("Database tables created", extra={"event_type": "tables_created"})


async def create_admin(db: DatabaseManager, email: str, name: str, password: str) -> User:
    """Create an admin account, or promote the existing account with that email."""
    rounds = get_settings().bcrypt_rounds
    async with db.session() as session:
        users = UserRepository(session)
        user = await users.get_by_email(email)
        if user is None:
            user = await users.create(
                User(
                    email=email,
                    name=name,
                    password_hash=hash_password(password, rounds),
                    role=Role.ADMIN.value,
                )
            )
            logger.info(
                "Admin account created",
                extra={"event_type": "admin_created", "user_id": str(user.id)},
            )
        else:
            user = await users.set_role(user, Role.ADMIN)
            logger.info(
                "Existing account promoted to admin",
                extra={"event_type": "admin_promoted", "user_id": str(user.id)},
            )
    return user


async def set_role(db: DatabaseManager, email: str, role: str) -> User:
    """Set a user's role by email; the last admin cannot be demoted."""
    new_role = parse_role(role)
    async with db.session() as session:
        users = UserRepository(session)
        user = await users.get_by_email(email)
        if user is None:
            raise UserNotFoundError(f"User with email {email} not found", details={"email": email})
        removes_admin = user.role == Role.ADMIN.value and new_role is not Role.ADMIN
        if removes_admin:
            await ensure_not_last_admin(users, user, "demote")
        previous = user.role
        user = await users.set_role(user, new_role)
        if removes_admin:
            await ensure_admin_remains(session, users, "demote")
    logger.info(
        "Role set from the command line",
        extra={
            "event_type": "role_set",
            "user_id": str(user.id),
            "previous_role": previous,
            "new_role": new_role.value,
        },
    )
    return user


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cryptodash-admin", description="Administrative account maintenance"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create missing database tables.")

    create = sub.add_parser("create-admin", help="Create or promote an admin account.")
    create.add_argument("--email", required=True)
    create.add_argument("--name", default="Admin User")
    create.add_argument("--password", required=True)

    role = sub.add_parser("set-role", help="Set the role of an existing account.")
    role.add_argument("--email", required=True)
    role.add_argument("--role", required=True, choices=[r.value for r in Role])
    return parser


async def _run(args: argparse.Namespace, db: DatabaseManager) -> None:
    try:
        if args.command == "init-db":
            await init_db(db)
        elif args.command == "create-admin":
            await create_admin(db, args.email, args.name, args.password)
        elif args.command == "set-role":
            await set_role(db, args.email, args.role)
    finally:
        await db.close()


def main(argv: Sequence[str] | None = None, db: DatabaseManager | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings().log_level)
    try:
        asyncio.run(_run(args, db or DatabaseManager()))
    except AppException as e:
        logger.error(
            "Command failed",
            extra={
                "event_type": "command_failed",
                "command": args.command,
                "code": e.code,
                "error": e.message,
            },
        )
        print(e.message, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
