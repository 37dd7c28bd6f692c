"""Utility script to reset the local database.

Usage:
    python scripts/reset_local_db.py [--seed-admin EMAIL]

Environment:
    Ensure DATABASE_URL and ADMIN_USER_IDS are available in the current shell
    before running this script.
"""

from __future__ import annotations

import argparse

from action_flows.db import init_db
from action_flows.logging_config import configure_logging
from action_flows.users import UserCreate, create_user


def reset_database(seed_admin: str | None = None) -> None:
    init_db(drop_existing=True)
    print("Local database reset.")

    if seed_admin:
        admin = create_user(UserCreate(name="Administrator", email=seed_admin, role="admin"))
        print(f"Seeded admin {admin.email} with id {admin.id}.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--seed-admin", metavar="EMAIL", help="create an admin account after the reset")
    args = parser.parse_args()

    configure_logging()
    reset_database(seed_admin=args.seed_admin)
