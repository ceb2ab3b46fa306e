#!/usr/bin/env python3
"""
Create the underwriting tables in Postgres: proposals, vehicle_records,
person_records, coverage_lines, decisions, payment_artifacts, lifecycle_events.

Uses DATABASE_URL environment variable. Does NOT drop existing tables.
Run once before enabling USE_POSTGRES_PROPOSALS.
"""

from __future__ import annotations
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

# Make sure src is on sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from src.database.models import Base
from src.database.postgres_real import ProposalDB


def main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 1

    store = ProposalDB(connection_string=url)
    try:
        with store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("Proposal database reachable")

        store.create_tables()
    except OperationalError as e:
        print(f"Cannot reach proposal database: {e}", file=sys.stderr)
        return 2

    existing = set(inspect(store.engine).get_table_names())
    missing = sorted(set(Base.metadata.tables) - existing)
    if missing:
        print(f"Tables still missing after create_all: {missing}", file=sys.stderr)
        return 3
    print("Underwriting tables ready:", ", ".join(sorted(Base.metadata.tables)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
