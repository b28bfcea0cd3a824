"""
Account CLI commands: create-super-admin, set-status
"""
import asyncio
import logging

from aptivo.database import AsyncSessionLocal, close_db
from aptivo.errors import APIError
from aptivo.orm.user import UserRole, UserStatus
from aptivo.services import user_service

logger = logging.getLogger(__name__)


class UserCommand:
    """Account CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        if args.user_action == "create-super-admin":
            return self._create_super_admin(args)
        elif args.user_action == "set-status":
            return self._set_status(args)
        else:
            print("Error: Unknown user action")
            return 1

    def _create_super_admin(self, args) -> int:
        """Create the account, or promote it when the email is already registered."""
        email = args.email.strip().lower()

        async def run():
            try:
                async with AsyncSessionLocal() as db:
                    user = await user_service.get_user_by_email(db, email)
                    if user is not None:
                        if self.dry_run:
                            return f"[DRY RUN] Would promote user {user.id} to super_admin"
                        user.role = UserRole.super_admin
                        user.status = UserStatus.active
                        user.email_verified = True
                        await db.commit()
                        return f"OK: promoted user {user.id} to super_admin"

                    if not args.password or len(args.password) < 8:
                        return None
                    if self.dry_run:
                        return f"[DRY RUN] Would create super_admin {email}"
                    user = await user_service.create_user(
                        db, email, args.password, args.name, UserRole.super_admin
                    )
                    await db.commit()
                    return f"OK: created super_admin {user.id} ({email})"
            finally:
                await close_db()

        try:
            message = asyncio.run(run())
        except APIError as e:
            print(f"Error: {e.message}")
            return 1

        if message is None:
            print("Error: --password of at least 8 characters is required for a new account")
            return 1
        print(message)
        return 0

    def _set_status(self, args) -> int:
        status = UserStatus(args.status)

        async def run():
            try:
                async with AsyncSessionLocal() as db:
                    user = await user_service.get_user_by_email(db, args.email)
                    if user is None:
                        return False
                    if not self.dry_run:
                        await user_service.set_user_status(db, user, status)
                        await db.commit()
                    return True
            finally:
                await close_db()

        try:
            found = asyncio.run(run())
        except APIError as e:
            print(f"Error: {e.message}")
            return 1

        if not found:
            print(f"Error: no user with email {args.email}")
            return 1
        prefix = "[DRY RUN] Would set" if self.dry_run else "OK: set"
        print(f"{prefix} {args.email} to {status.value}")
        return 0
