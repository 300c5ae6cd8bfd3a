#!/usr/bin/env python3
"""
Seed the database with the default checklist and a handful of doors.

Creates the schema if needed, seeds the configured inspection points and
registers demo doors.  With --demo, one door is walked through the whole
workflow (inspect, certify, release, client download and accept) so the
audit trail and certificate storage have something to show.

Usage:
    python3 scripts/seed_data.py [--config FILE] [--reset] [--demo]
"""

import argparse
import logging
import sys
from pathlib import Path
from uuid import uuid4

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEMO_DOORS = [
    {"door_number": "1", "size": "1.5", "pressure_kpa": 140, "drawing_number": "RB-140-15", "po_number": "PO-1001"},
    {"door_number": "2", "size": "1.8", "pressure_kpa": 400, "drawing_number": "RB-400-18", "po_number": "PO-1001"},
    {"door_number": "3", "size": "2.0", "pressure_kpa": 400, "drawing_number": "RB-400-20", "po_number": None},
]


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed checklist points and demo doors")
    parser.add_argument("--config", help="Deployment YAML merged over the defaults")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    parser.add_argument("--demo", action="store_true", help="Walk the first door through the workflow")
    args = parser.parse_args()

    from inspex_config import get_active_config
    from inspex_kernel.db.engine import drop_tables, make_engine
    from inspex_kernel.domain.actor import Actor, ActorRole
    from inspex_kernel.domain.dtos import ActorProfile, AssetSpec
    from inspex_kernel.exceptions import DuplicateAssetError
    from inspex_kernel.logging_config import configure_logging
    from inspex_services import InspexWorkflow, StaticIdentityDirectory

    configure_logging(level=logging.WARNING)
    config = get_active_config(args.config)

    if args.reset:
        print("  Dropping tables...")
        engine = make_engine(config.database.url)
        drop_tables(engine)
        engine.dispose()

    people = {
        role: Actor(actor_id=uuid4(), role=role, display_name=f"Demo {role.value.title()}")
        for role in ActorRole
    }
    identity = StaticIdentityDirectory(
        ActorProfile(actor_id=a.actor_id, name=a.label, role=a.role) for a in people.values()
    )

    workflow = InspexWorkflow.from_config(config, identity=identity)
    try:
        points = workflow.list_inspection_points()
        print(f"  Checklist: {len(points)} active points")

        admin = people[ActorRole.ADMIN]
        doors = []
        for door in DEMO_DOORS:
            try:
                record = workflow.register_asset(admin, AssetSpec(**door))
            except DuplicateAssetError as exc:
                print(f"  skip  {exc.serial_number} (already registered)")
                continue
            doors.append(record)
            print(f"  door  {record.serial_number}")

        if args.demo and doors:
            door = doors[0]
            inspector = people[ActorRole.INSPECTOR]
            engineer = people[ActorRole.ENGINEER]
            client = people[ActorRole.CLIENT]

            session = workflow.start_inspection(inspector, door.asset_id)
            for check in session.checks:
                workflow.update_check(inspector, session.session_id, check.point_id, True)
            workflow.complete_inspection(inspector, session.session_id, notes="Demo inspection")
            artifact = workflow.certify(engineer, door.asset_id)
            workflow.release_to_client(admin, door.asset_id)
            download = workflow.client_download(client, door.asset_id)
            workflow.client_accept(client, door.asset_id)
            workflow.flush_notifications()

            print(f"  demo  {door.serial_number}: certificate {artifact.storage_key} ({len(download.content)} bytes)")
            for entry in workflow.audit_trail(door.asset_id):
                print(f"        {entry.seq:>4}  {entry.action:<22} {entry.actor_role}")
    finally:
        workflow.close()

    print("  Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
