#!/usr/bin/env python3
"""
Apply the XP engine migration.

Creates profiles XP columns, xp_transactions, xp_limits and notifications.
"""

import asyncio
import sys
from pathlib import Path

# Path setup
THIS_FILE = Path(__file__).resolve()
SCRIPTS_DIR = THIS_FILE.parent
PROJECT_DIR = SCRIPTS_DIR.parent

if str(PROJECT_DIR) not in sys.path:
    sys.path.insert(0, str(PROJECT_DIR))

from services.db_service import init_db_pool, execute, fetchrow, close_db_pool
from app.core.logging import configure_logging, get_logger
from app.core.run_context import with_run_id

configure_logging(service_name="script")
logger = get_logger()

MIGRATION_FILE = PROJECT_DIR / "infra" / "migrations" / "001_xp_engine.sql"
EXPECTED_TABLES = ("profiles", "xp_transactions", "xp_limits", "notifications")


async def apply_migration() -> bool:
    """Apply the XP engine migration."""
    print("\n=== Applying XP Engine Migration ===\n")

    print("1. Initializing database connection...")
    await init_db_pool()
    print("   ✓ Database connected\n")

    if not MIGRATION_FILE.exists():
        print(f"   ✗ SQL file not found: {MIGRATION_FILE}")
        return False

    print("2. Reading SQL migration file...")
    sql_content = MIGRATION_FILE.read_text(encoding="utf-8")
    print(f"   ✓ Read {len(sql_content)} bytes from {MIGRATION_FILE.name}\n")

    print("3. Applying migration...")
    try:
        await execute(sql_content)
        print("   ✓ Migration applied successfully\n")
    except Exception as e:
        print(f"   ✗ Migration failed: {e}")
        logger.exception("xp_migration_failed", error=str(e))
        return False

    print("4. Verifying tables...")
    check_sql = """
        SELECT COUNT(*) AS count
        FROM information_schema.tables
        WHERE table_schema = 'public' AND table_name = $1
    """
    all_present = True
    for table in EXPECTED_TABLES:
        row = await fetchrow(check_sql, table)
        if row and row["count"] > 0:
            print(f"   ✓ Table '{table}' exists")
        else:
            all_present = False
            print(f"   ⚠ Table '{table}' not found")

    print("\n=== Migration Complete ===\n")
    await close_db_pool()
    return all_present


if __name__ == "__main__":
    try:
        with with_run_id(script="apply_xp_migration"):
            ok = asyncio.run(apply_migration())
    except KeyboardInterrupt:
        print("\n\nMigration interrupted by user.")
        sys.exit(130)
    except Exception as e:
        print(f"\n\n✗ Migration failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    sys.exit(0 if ok else 1)
