#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from tableside.core.config import DATABASE_URL, DEV_BOOTSTRAP_ALLOW, IS_DEV  # noqa: E402
from tableside.core.database import Database  # noqa: E402
from tableside.core.logging_setup import configure_logging  # noqa: E402
from tableside.core.result import Err, capture  # noqa: E402
from tableside.services.container import ServiceContainer  # noqa: E402
from tableside.services.staff_accounts import create_staff_user, get_staff_by_email  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an owner account and a restaurant with tables (DEV).")
    parser.add_argument("--email", required=True, help="Owner email")
    parser.add_argument("--name", required=True, help="Owner name")
    parser.add_argument("--password", help="Owner password (required when the account does not exist)")
    parser.add_argument("--restaurant", required=True, help="Restaurant name")
    parser.add_argument("--tables", type=int, default=4, help="Number of tables to create")
    parser.add_argument("--capacity", type=int, default=4, help="Seats per table")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run without DEV_BOOTSTRAP_ALLOW=1",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging()

    if not DEV_BOOTSTRAP_ALLOW and not args.force:
        print("Bootstrap disabled. Set DEV_BOOTSTRAP_ALLOW=1 or pass --force.")
        return 1

    database = Database(DATABASE_URL)
    if database.is_sqlite:
        database.create_all()
    services = ServiceContainer.build()

    db = database.session()
    try:
        owner = get_staff_by_email(db, args.email)
        if owner is None:
            if not args.password:
                print("--password is required to create the owner account")
                return 1
            result = capture(create_staff_user, db, email=args.email, name=args.name, password=args.password)
            if isinstance(result, Err):
                print(f"Owner not created: {result.kind.value}: {result.message}")
                return 1
            owner = result.value

        result = capture(
            services.restaurants.create_restaurant,
            db,
            owner.id,
            args.restaurant,
            table_count=args.tables,
            table_capacity=args.capacity,
        )
        if isinstance(result, Err):
            print(f"Restaurant not created: {result.kind.value}: {result.message}")
            return 1
        restaurant = result.value
        print(f"Restaurant created: id={restaurant.id} slug={restaurant.slug} owner={owner.email}")
        if IS_DEV:
            for table in services.restaurants.list_tables(db, restaurant.id):
                print(f"  table {table.table_number} id={table.id} qr={table.qr_code}")
    finally:
        db.close()
        database.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
