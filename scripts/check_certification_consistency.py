#!/usr/bin/env python3
"""
Report doors whose certification status disagrees with their artifacts.

Checks, for every door:
  - certified  <=> exactly one active certificate artifact
  - at most one in-progress inspection session
  - inspection_status in_progress <=> an in-progress session exists
and, with --audit, recomputes the workflow log hash chain.

Exit status is 0 when clean and 1 when any violation is found.

Usage:
    python3 scripts/check_certification_consistency.py [--config FILE] [--audit]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Certificate binding consistency check")
    parser.add_argument("--config", help="Deployment YAML merged over the defaults")
    parser.add_argument("--audit", action="store_true", help="Also validate the workflow log hash chain")
    args = parser.parse_args()

    from inspex_config import get_active_config
    from inspex_kernel.db.engine import create_session_factory, make_engine, session_scope
    from inspex_kernel.exceptions import AuditChainBrokenError
    from inspex_kernel.selectors.consistency_selector import ConsistencySelector
    from inspex_kernel.services.workflow_log_service import WorkflowLogService

    config = get_active_config(args.config)
    engine = make_engine(config.database.url, busy_timeout=config.database.busy_timeout)
    factory = create_session_factory(engine)

    failed = False
    try:
        with session_scope(factory) as session:
            violations = ConsistencySelector(session).find_all()
            for v in violations:
                print(f"  VIOLATION  {v.serial_number:<16} {v.rule:<28} {v.detail}")
            if violations:
                failed = True
            else:
                print("  OK  certificate binding holds for every door")

            if args.audit:
                try:
                    WorkflowLogService(session).validate_chain()
                    print("  OK  workflow log hash chain intact")
                except AuditChainBrokenError as exc:
                    print(f"  VIOLATION  workflow log: {exc}")
                    failed = True
    finally:
        engine.dispose()

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
