"""
Database CLI commands: init, check
"""
import asyncio

from sqlalchemy import func, select

from aptivo.database import AsyncSessionLocal, close_db, engine, init_db
from aptivo.orm.base import Base


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        """Execute database command."""
        if args.db_action == "init":
            return self._init(args)
        elif args.db_action == "check":
            return self._check(args)
        else:
            print("Error: Unknown database action")
            return 1

    def _init(self, args) -> int:
        print("=== Database Init ===")
        print(f"Target: {engine.url.render_as_string(hide_password=True)}")

        if self.dry_run:
            print("[DRY RUN] Would create tables:")
            for table in Base.metadata.sorted_tables:
                print(f"  - {table.name}")
            return 0

        async def run():
            try:
                await init_db()
            finally:
                await close_db()

        asyncio.run(run())
        print(f"OK: {len(Base.metadata.sorted_tables)} tables present")
        return 0

    def _check(self, args) -> int:
        print("=== Database Check ===")

        async def run():
            counts = {}
            try:
                async with AsyncSessionLocal() as session:
                    for table in Base.metadata.sorted_tables:
                        result = await session.execute(select(func.count()).select_from(table))
                        counts[table.name] = result.scalar() or 0
            finally:
                await close_db()
            return counts

        counts = asyncio.run(run())
        width = max(len(name) for name in counts) if counts else 0
        for name, count in counts.items():
            print(f"  {name.ljust(width)}  {count}")
        return 0
