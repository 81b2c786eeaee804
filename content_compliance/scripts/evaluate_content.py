#!/usr/bin/env python3
"""
Evaluate content items from a JSON file against the compliance rules.

Usage:
    python -m content_compliance.scripts.evaluate_content --content_file posts.json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List

from dotenv import load_dotenv

load_dotenv()

from content_compliance.compliance.catalog import BUILTIN_VERSION, JsonRuleCatalog, StaticRuleCatalog, dump_catalog
from content_compliance.compliance.rules import DEFAULT_RULES
from content_compliance.config.settings import load_settings
from content_compliance.services.collaborators import InMemoryConsentStore
from content_compliance.services.engine import ComplianceEngine, build_catalog
from content_compliance.services.workflow import ApprovalWorkflow
from content_compliance.storage.codec import load_consent, load_content, parse_datetime, to_primitive


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate content against AHPRA/TGA compliance rules")
    parser.add_argument("--content_file", type=Path, help="JSON object or list of content items")
    parser.add_argument("--consent_file", type=Path, default=None, help="Optional JSON list of consent records")
    parser.add_argument("--rules", type=Path, default=None, help="JSON rule catalogue (default: configured/built-in)")
    parser.add_argument("--at", default=None, help="Evaluation time (ISO 8601, default: now)")
    parser.add_argument("--json_out", type=Path, default=None, help="Write reports to this file")
    parser.add_argument("--dump-catalog", type=Path, default=None, help="Write the built-in catalogue as JSON and exit")
    return parser.parse_args()


def print_step(message: str) -> None:
    print(f"[evaluate] {message}")


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        print_step(f"ERROR: file not found at {path}")
        sys.exit(1)
    except json.JSONDecodeError as exc:
        print_step(f"ERROR: {path} is not valid JSON: {exc}")
        sys.exit(1)


def run_evaluation() -> None:
    args = parse_args()

    if args.dump_catalog:
        args.dump_catalog.parent.mkdir(parents=True, exist_ok=True)
        payload = dump_catalog(DEFAULT_RULES, BUILTIN_VERSION)
        args.dump_catalog.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print_step(f"Built-in catalogue ({len(payload['rules'])} rules) written to {args.dump_catalog}")
        return

    if args.content_file is None:
        print_step("ERROR: --content_file is required")
        sys.exit(1)

    raw = _read_json(args.content_file)
    records: List[Any] = raw if isinstance(raw, list) else [raw]
    try:
        items = [load_content(record) for record in records]
    except (KeyError, TypeError, ValueError) as exc:
        print_step(f"ERROR: malformed content item: {exc}")
        sys.exit(1)
    print_step(f"Loaded {len(items)} content item(s)")

    consent_store = InMemoryConsentStore()
    if args.consent_file:
        for record in _read_json(args.consent_file):
            consent_store.put(load_consent(record))

    settings = load_settings()
    catalog = JsonRuleCatalog(args.rules) if args.rules else build_catalog(settings)
    if isinstance(catalog, StaticRuleCatalog):
        print_step(f"Using built-in rule catalogue {catalog.version}")
    engine = ComplianceEngine(catalog=catalog, consent_store=consent_store, workflow=ApprovalWorkflow(settings=settings))

    at_time = parse_datetime(args.at) if args.at else None
    reports = engine.evaluate_batch(items, at_time)

    results = []
    for item, report in zip(items, reports):
        status = "compliant" if report.is_compliant else "NOT compliant"
        print_step(f"{item.id}: score {report.score:.2f}, risk {report.risk_level}, {status}")
        for finding in report.violations:
            print_step(f"  violation {finding.rule_id}: {finding.message}")
        for finding in report.warnings:
            print_step(f"  warning   {finding.rule_id}: {finding.message}")
        if report.evaluation_incomplete:
            print_step("  evaluation incomplete; content must not be published")
        payload = to_primitive(report)
        payload["content_id"] = item.id
        payload["is_compliant"] = report.is_compliant
        results.append(payload)

    if args.json_out:
        args.json_out.parent.mkdir(parents=True, exist_ok=True)
        args.json_out.write_text(json.dumps(results, indent=2, ensure_ascii=False), encoding="utf-8")
        print_step(f"Reports written to {args.json_out}")

    if any(not report.is_compliant for report in reports):
        sys.exit(2)


if __name__ == "__main__":
    run_evaluation()
