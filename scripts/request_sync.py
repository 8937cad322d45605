#!/usr/bin/env python3
"""
Ask Google HomeGraph to re-sync the devices of the linked account.

Run this after adding, removing or renaming devices so the assistant
picks up the change without unlinking the account.

Usage:
    python scripts/request_sync.py [--node-id=ID] [--service-account=KEY.json]

Requirements:
    - The account must already be linked (a refresh token is stored)
    - SERVICE_ACCOUNT_FILE must be set in .env or passed as an argument
"""
import argparse
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from smarthome.auth.authority import Authority
from smarthome.core.config import AuthConfig, settings
from smarthome.core.database import create_db_and_tables
from smarthome.core.persistence import open_blob_store
from smarthome.devices import DeviceRegistry
from smarthome.homegraph.reporter import StateReporter


def main():
    parser = argparse.ArgumentParser(description="Request a HomeGraph sync")
    parser.add_argument("--node-id", default=settings.node_id, help="Bridge node id")
    parser.add_argument("--service-account", default=settings.service_account_file,
                        help="Service account JSON key file")
    args = parser.parse_args()

    if not args.service_account:
        print("Error: SERVICE_ACCOUNT_FILE is required.")
        print()
        print("Either:")
        print("  1. Set it in .env file, or")
        print("  2. Pass it as an argument:")
        print("     python scripts/request_sync.py --service-account=key.json")
        sys.exit(1)

    create_db_and_tables()
    authority = Authority(
        AuthConfig.from_settings(settings),
        persistence=open_blob_store(args.node_id, settings.auth_file),
    )
    authority.load()

    if not authority.is_user_logged_in():
        print("Error: no account is linked to this bridge yet.")
        sys.exit(1)

    reporter = StateReporter(authority, DeviceRegistry(), service_account_file=args.service_account)
    if reporter.request_sync():
        print("Sync requested.")
    else:
        print("Sync request failed, see the log for details.")
        sys.exit(1)


if __name__ == "__main__":
    main()
