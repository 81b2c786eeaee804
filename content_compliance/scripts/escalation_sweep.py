#!/usr/bin/env python3
"""
Run the escalation sweep against the persisted approval store.

Usage:
    python -m content_compliance.scripts.escalation_sweep --once
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from content_compliance.config.settings import load_settings
from content_compliance.services.engine import build_default_engine


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Escalate overdue reviews and expire stale approvals")
    parser.add_argument("--data_dir", type=Path, default=None, help="Override COMPLIANCE_DATA_DIR")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    parser.add_argument("--verify-audit", action="store_true", help="Check the audit digest chain first")
    return parser.parse_args()


def print_step(message: str) -> None:
    print(f"[sweep] {message}")


def run_sweep() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO)

    settings = load_settings()
    if args.data_dir is not None:
        settings.data_dir = args.data_dir
    print_step(f"Data directory: {settings.data_dir}")

    engine = build_default_engine(settings)

    if args.verify_audit:
        intact, broken = engine.workflow.audit.verify_chain()
        if not intact:
            print_step(f"ERROR: audit chain broken at {len(broken)} entr(y/ies): {', '.join(broken[:10])}")
            sys.exit(1)
        print_step(f"Audit chain intact ({len(engine.workflow.audit)} entries)")

    sweep = engine.create_sweep(args.interval)

    if args.once:
        result = sweep.run_once()
        print_step(
            f"Escalated {len(result.escalated)}, expired {len(result.expired)}, "
            f"published {len(result.published)}, skipped {len(result.skipped)}"
        )
        for request_id, message in result.errors.items():
            print_step(f"  {request_id}: {message}")
        return

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
    print_step(f"Sweeping every {sweep.interval_seconds:.0f}s (Ctrl+C to stop)")
    sweep.run_forever(stop_event)
    print_step("Stopped")


if __name__ == "__main__":
    run_sweep()
