"""
Runtime settings for the compliance engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

# SLA per approval level, in hours
SLA_JUNIOR_HOURS = float(os.getenv("COMPLIANCE_SLA_JUNIOR_HOURS", "24"))
SLA_SENIOR_HOURS = float(os.getenv("COMPLIANCE_SLA_SENIOR_HOURS", "48"))
SLA_MANAGER_HOURS = float(os.getenv("COMPLIANCE_SLA_MANAGER_HOURS", "72"))

PUBLISH_WINDOW_HOURS = float(os.getenv("COMPLIANCE_PUBLISH_WINDOW_HOURS", "168"))
PASS_SCORE = float(os.getenv("COMPLIANCE_PASS_SCORE", "80"))
SWEEP_INTERVAL_SECONDS = float(os.getenv("COMPLIANCE_SWEEP_INTERVAL_SECONDS", "300"))
DATA_DIR = os.getenv("COMPLIANCE_DATA_DIR", "compliance_data")
RULES_PATH = os.getenv("COMPLIANCE_RULES_PATH")
RULES_URL = os.getenv("COMPLIANCE_RULES_URL")
RULES_AUTH_TOKEN = os.getenv("COMPLIANCE_RULES_TOKEN")


def _default_sla_hours() -> Dict[str, float]:
    return {
        "junior_review": SLA_JUNIOR_HOURS,
        "senior_review": SLA_SENIOR_HOURS,
        "manager_approval": SLA_MANAGER_HOURS,
    }


@dataclass(slots=True)
class WorkflowSettings:
    """Workflow timings, scoring threshold and storage locations."""

    sla_hours: Dict[str, float] = field(default_factory=_default_sla_hours)
    publish_window_hours: float = PUBLISH_WINDOW_HOURS
    pass_score: float = PASS_SCORE
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS
    data_dir: Path = field(default_factory=lambda: Path(DATA_DIR))
    rules_path: Optional[Path] = field(default_factory=lambda: Path(RULES_PATH) if RULES_PATH else None)
    rules_url: Optional[str] = RULES_URL
    rules_auth_token: Optional[str] = RULES_AUTH_TOKEN

    def sla_for(self, level: str) -> timedelta:
        return timedelta(hours=self.sla_hours[level])

    @property
    def publish_window(self) -> timedelta:
        return timedelta(hours=self.publish_window_hours)


def load_settings() -> WorkflowSettings:
    """Read settings from the current environment (after ``load_dotenv``)."""
    rules_path = os.getenv("COMPLIANCE_RULES_PATH")
    return WorkflowSettings(
        sla_hours={
            "junior_review": float(os.getenv("COMPLIANCE_SLA_JUNIOR_HOURS", "24")),
            "senior_review": float(os.getenv("COMPLIANCE_SLA_SENIOR_HOURS", "48")),
            "manager_approval": float(os.getenv("COMPLIANCE_SLA_MANAGER_HOURS", "72")),
        },
        publish_window_hours=float(os.getenv("COMPLIANCE_PUBLISH_WINDOW_HOURS", "168")),
        pass_score=float(os.getenv("COMPLIANCE_PASS_SCORE", "80")),
        sweep_interval_seconds=float(os.getenv("COMPLIANCE_SWEEP_INTERVAL_SECONDS", "300")),
        data_dir=Path(os.getenv("COMPLIANCE_DATA_DIR", "compliance_data")),
        rules_path=Path(rules_path) if rules_path else None,
        rules_url=os.getenv("COMPLIANCE_RULES_URL"),
        rules_auth_token=os.getenv("COMPLIANCE_RULES_TOKEN"),
    )


__all__ = ["WorkflowSettings", "load_settings"]
