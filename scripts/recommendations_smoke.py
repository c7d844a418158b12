#!/usr/bin/env python3
from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from seed_companies import seed

PATIENT = {"Authorization": "Bearer smoke-patient"}
CARETAKER = {"Authorization": "Bearer smoke-caretaker"}

LAB_PANEL = {
    "title": "Annual blood panel",
    "analysis_type": "blood",
    "indicators": [
        {"name": "Vitamin D (25-OH)", "value": 14, "unit": "ng/mL", "reference_min": 30, "reference_max": 100},
        {"name": "LDL cholesterol", "value": 4.9, "unit": "mmol/L", "reference_min": 0, "reference_max": 3.0},
        {"name": "Glucose", "value": 5.1, "unit": "mmol/L", "reference_min": 3.9, "reference_max": 5.5},
    ],
}


@dataclass
class StepResult:
    name: str
    passed: bool
    evidence: dict[str, Any] = field(default_factory=dict)


def _step(name: str, check: Callable[[], tuple[bool, dict[str, Any]]]) -> StepResult:
    passed, evidence = check()
    return StepResult(name=name, passed=passed, evidence=evidence)


def run() -> int:
    workdir = Path(tempfile.mkdtemp(prefix="carehub-smoke-"))
    db_path = workdir / "carehub.sqlite"
    os.environ["CAREHUB_DB_PATH"] = str(db_path)
    os.environ.setdefault("ALLOW_ANON", "false")
    seed(str(db_path))

    backend_module = importlib.import_module("main")
    backend_module = importlib.reload(backend_module)
    results: list[StepResult] = []

    with TestClient(backend_module.app) as client:
        state: dict[str, Any] = {}

        def grant() -> tuple[bool, dict[str, Any]]:
            response = client.post(
                "/caretaker/links",
                headers=PATIENT,
                json={
                    "caretaker_id": "smoke-caretaker",
                    "permissions": {"diary": {"read": True, "write": False}},
                },
            )
            return response.status_code == 200, response.json()

        def caretaker_scope() -> tuple[bool, dict[str, Any]]:
            read = client.get("/diary/entries", headers=CARETAKER, params={"patient_id": "smoke-patient"})
            write = client.post(
                "/diary/entries",
                headers=CARETAKER,
                json={"patient_id": "smoke-patient", "notes": "should be blocked"},
            )
            return (
                read.status_code == 200 and write.status_code == 403,
                {"read_status": read.status_code, "write_status": write.status_code, "write_body": write.json()},
            )

        def analysis() -> tuple[bool, dict[str, Any]]:
            response = client.post("/analyses", headers=PATIENT, json=LAB_PANEL)
            body = response.json()
            created = body.get("recommendations_created", [])
            state["recommendations"] = created
            return response.status_code == 200 and len(created) >= 6, {"created": [item["title"] for item in created]}

        def idempotent() -> tuple[bool, dict[str, Any]]:
            response = client.post("/recommendations/generate", headers=PATIENT)
            return response.json().get("count") == 0, response.json()

        def lifecycle() -> tuple[bool, dict[str, Any]]:
            target = next(item for item in state["recommendations"] if item["type"] == "SUPPLEMENT")
            statuses = []
            for action in ("view", "click", "purchase", "dismiss"):
                response = client.post(
                    f"/recommendations/{target['id']}/interact",
                    headers=PATIENT,
                    json={"action": action},
                )
                statuses.append(response.json().get("new_status"))
            history = client.get(f"/recommendations/{target['id']}/interactions", headers=PATIENT).json()
            return (
                statuses == ["VIEWED", "CLICKED", "PURCHASED", "PURCHASED"] and len(history["items"]) == 4,
                {"statuses": statuses, "partner": target.get("company_id")},
            )

        results.append(_step("Grant diary read-only delegation", grant))
        results.append(_step("Caretaker scope enforced", caretaker_scope))
        results.append(_step("Lab analysis generates recommendations", analysis))
        results.append(_step("Regeneration creates nothing", idempotent))
        results.append(_step("Interaction lifecycle", lifecycle))

    passed = sum(1 for item in results if item.passed)
    timestamp = datetime.now(timezone.utc).isoformat()
    print(f"CareHub smoke run at {timestamp} (db: {db_path})")
    for item in results:
        status = "PASS" if item.passed else "FAIL"
        print(f"[{status}] {item.name}")
        if not item.passed:
            print(json.dumps(item.evidence, indent=2, ensure_ascii=True))
    print(f"Passed {passed}/{len(results)} steps.")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    raise SystemExit(run())
