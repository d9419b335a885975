"""
Create marketplace tables and constraints.

Idempotent: existing tables are left untouched. Use --reset in development
to drop and recreate everything.
"""
from __future__ import annotations

import argparse

from sovrn.core.database import check_connection, create_all_tables, reset_database


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create Sovrn database tables.")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables (destructive).")
    args = parser.parse_args(argv)

    if not check_connection():
        print("Database unreachable; check DATABASE_URL")
        return 1

    if args.reset:
        reset_database()
    else:
        create_all_tables()
    print("Tables ready")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
