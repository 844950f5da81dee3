#!/usr/bin/env python3
"""
Register a studio's Microsoft 365 app and its users.

The client secret is encrypted with ENCRYPTION_KEY before it is stored, so
run this with the same .env as the service.

Usage:
    python scripts/configure_studio.py --studio-id=studio-1 --client-id=XXX \
        --client-secret=YYY --tenant-id=<directory id> --user=u1 --user=u2

    python scripts/configure_studio.py --studio-id=studio-1 --client-id=XXX --disable
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session

from app.core.database import create_db_and_tables, engine
from app.core.security import get_encryptor
from app.stores.tenants import TenantConfigStore


def main():
    parser = argparse.ArgumentParser(description="Configure a studio's Microsoft 365 app registration")
    parser.add_argument("--studio-id", required=True, help="Studio identifier")
    parser.add_argument("--client-id", required=True, help="Application (client) ID")
    parser.add_argument("--client-secret", help="Client secret (omit to keep the stored one)")
    parser.add_argument("--tenant-id", default="common", help="Directory (tenant) ID")
    parser.add_argument("--disable", action="store_true", help="Disable Microsoft 365 for the studio")
    parser.add_argument("--user", action="append", default=[], help="User id to add to the studio (repeatable)")
    args = parser.parse_args()

    create_db_and_tables()

    with Session(engine) as session:
        store = TenantConfigStore(session)
        try:
            config = store.save(
                get_encryptor(),
                studio_id=args.studio_id,
                client_id=args.client_id,
                client_secret=args.client_secret,
                tenant_id=args.tenant_id,
                enabled=not args.disable,
            )
        except ValueError as e:
            print(f"Error: {e}")
            sys.exit(1)

        for user_id in args.user:
            store.add_member(user_id, config.studio_id)

        state = "enabled" if config.enabled else "disabled"
        print(f"Studio {config.studio_id}: app {config.client_id} in directory {config.directory} ({state})")
        for user_id in args.user:
            print(f"  member: {user_id}")


if __name__ == "__main__":
    main()
