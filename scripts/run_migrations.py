"""Apply pending ``migrations/*.sql`` files in filename order.

Applied files are recorded in ``schema_migrations``; re-running is a no-op.
"""

import argparse
import glob
import logging
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from leadgen.database import get_conn  # noqa: E402
from leadgen.settings import POSTGRES_DSN  # noqa: E402

logger = logging.getLogger("run_migrations")

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "..", "migrations")


def pending_files(migrations_dir: str, applied: set) -> list:
    files = sorted(glob.glob(os.path.join(migrations_dir, "*.sql")))
    return [p for p in files if os.path.basename(p) not in applied]


def run(migrations_dir: str = MIGRATIONS_DIR) -> int:
    if not POSTGRES_DSN:
        raise RuntimeError("POSTGRES_DSN or DATABASE_URL must be set in env/.env")
    with get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
        )
        cur.execute("SELECT filename FROM schema_migrations")
        applied = {row[0] for row in cur.fetchall()}
        files = pending_files(migrations_dir, applied)
        if not files:
            logger.info("No pending migrations.")
            return 0
        for path in files:
            fname = os.path.basename(path)
            with open(path, "r", encoding="utf-8") as fh:
                sql = fh.read()
            logger.info("Applying migration: %s", fname)
            cur.execute(sql)
            cur.execute(
                "INSERT INTO schema_migrations(filename) VALUES (%s) ON CONFLICT DO NOTHING",
                (fname,),
            )
        logger.info("Migrations applied: %d", len(files))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Apply lead-gen SQL migrations")
    parser.add_argument("--dir", default=MIGRATIONS_DIR, help="Directory holding *.sql files")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return run(args.dir)
    except Exception as e:
        logger.error("Migration failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
