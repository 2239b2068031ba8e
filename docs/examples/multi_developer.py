#!/usr/bin/env python3
"""Several developers sharing one bugflow tracker.

This example runs two simulated developers in threads. Each repeatedly picks
a confirmed report, works on it, and marks it fixed; QA then verifies
everything. Because a developer holds at most one report at a time and a
report can only be started from ``confirmed``, two developers racing for the
same report never both win.

Key concepts shown:
  - Registering members with roles and logging them in
  - The USER -> SYSTEM_ANALYST -> DEVELOPER -> QUALITY_ASSURANCE hand-offs
  - Handling a lost race (IllegalTransitionError) by moving on
  - Restoring the tracker from its SQLite snapshot

How to run:
    python docs/examples/multi_developer.py
"""

from __future__ import annotations

import tempfile
import threading
import time
from pathlib import Path

from bugflow.core import Tracker
from bugflow.errors import IllegalTransitionError
from bugflow.identity import make_hasher
from bugflow.report import CONFIRMED, FIXED
from bugflow.store import SQLiteStore

PASSWORD = "demo"
# Cheap Argon2 costs keep the demo snappy; real trackers use the defaults.
FAST_HASHER = make_hasher(time_cost=1, memory_cost=1024)


def staff(tracker: Tracker) -> None:
    """Register and log in one reporter, one analyst, two developers, one tester."""
    for username, role in [
        ("reporter", "user"),
        ("analyst", "system_analyst"),
        ("dev-alpha", "developer"),
        ("dev-beta", "developer"),
        ("tester", "quality_assurance"),
    ]:
        tracker.members.register(username, PASSWORD, role)
        tracker.members.login(username, PASSWORD)


def file_reports(tracker: Tracker) -> None:
    for description in [
        "Crash when saving an empty document",
        "Search ignores accented characters",
        "Footer shows last year",
        "Export button does nothing on Safari",
    ]:
        report = tracker.engine.submit_report("reporter", description)
        tracker.engine.confirm("analyst", report.id)
        print(f"  Filed and confirmed: #{report.id} {description}")


def developer_loop(tracker: Tracker, developer: str) -> None:
    """Take confirmed reports one at a time until none are left."""
    engine = tracker.engine
    while True:
        candidates = [r for r in engine.reports().values() if r.state == CONFIRMED]
        if not candidates:
            print(f"  [{developer}] Nothing left to work on.")
            return
        target = candidates[0]
        try:
            engine.start_development(developer, target.id)
        except IllegalTransitionError:
            # Someone else started it between our read and our start.
            continue
        print(f"  [{developer}] Working on #{target.id}")
        time.sleep(0.05)
        engine.mark_fixed(developer, target.id, FIXED, f"Fixed by {developer}")
        print(f"  [{developer}] Fixed #{target.id}")


def main() -> None:
    with tempfile.TemporaryDirectory(prefix="bugflow_demo_") as tmpdir:
        db_path = Path(tmpdir) / "demo.db"

        # check_same_thread=False: both developer threads checkpoint through one connection.
        with Tracker(store=SQLiteStore(db_path, check_same_thread=False), hasher=FAST_HASHER) as tracker:
            print("=== Multi-Developer Demo ===\n")
            staff(tracker)

            print("Filing reports:")
            file_reports(tracker)

            print("\nStarting developers:")
            threads = [threading.Thread(target=developer_loop, args=(tracker, dev)) for dev in ("dev-alpha", "dev-beta")]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            for report_id in tracker.engine.reports():
                tracker.engine.approve_fix("tester", report_id)

        # A fresh tracker picks up where the last one stopped.
        with Tracker(store=SQLiteStore(db_path), hasher=FAST_HASHER) as restored:
            print("\n--- Final State (restored from snapshot) ---")
            for report in restored.engine.reports().values():
                print(f"  #{report.id} {report.state:<10} {report.description:<40} ({report.resolution_note})")

    print("\nDemo complete. Temp database cleaned up.")


if __name__ == "__main__":
    main()
