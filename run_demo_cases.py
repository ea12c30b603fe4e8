#!/usr/bin/env python3
"""
run_demo_cases.py

Runs demo applications (demo_cases/*.json) through the case lifecycle against the FastAPI backend:

1) POST /api/cases                                  (as the applicant)
2) POST /api/cases/{caseId}/corrections/return      (staff, if the payload lists corrections)
3) POST /api/cases/{caseId}/resubmission            (applicant answers them)
4) POST /api/cases/{caseId}/corrections/{key}/resolve
5) POST /api/cases/{caseId}/status                  (one call per checkpoint in the payload)
6) GET  /api/cases/{caseId}

Outputs:
- demo_results.json (full responses per case)
- demo_results.csv  (one summary row per case)

Payload format:
{
  "application": {...CaseCreateIn fields...},
  "corrections": [{"fieldKey": "jobsite", "message": "...", "fix": "RIYADH"}],
  "checkpoints": ["evaluated", "for_confirmation"]
}
"""

from __future__ import annotations

import argparse
import csv
import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

import requests


def die(msg: str) -> None:
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)


def load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def save_csv(path: Path, rows: List[Dict[str, Any]], fieldnames: List[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        for r in rows:
            w.writerow(r)


def headers(actor_id: str, role: str) -> Dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


def check_payload(name: str, payload: Dict[str, Any]) -> List[str]:
    problems = []
    if not isinstance(payload.get("application"), dict):
        problems.append(f"{name}: missing 'application' object")
    for i, c in enumerate(payload.get("corrections") or []):
        if not c.get("fieldKey") or not c.get("message"):
            problems.append(f"{name}: corrections[{i}] needs fieldKey and message")
    if not isinstance(payload.get("checkpoints", []), list):
        problems.append(f"{name}: 'checkpoints' must be a list")
    return problems


def call(method: str, url: str, timeout_s: int, expect: int = 200, **kwargs) -> Dict[str, Any]:
    r = requests.request(method, url, timeout=timeout_s, **kwargs)
    if r.status_code != expect:
        die(f"{method} {url} failed ({r.status_code}): {r.text}")
    return r.json()


def run_case(base_url: str, payload: Dict[str, Any], applicant: str, staff: str, timeout_s: int) -> Dict[str, Any]:
    as_applicant = headers(applicant, "applicant")
    as_staff = headers(staff, "staff")

    created = call("POST", f"{base_url}/api/cases", timeout_s, json=payload["application"], headers=as_applicant)
    case_id = created["caseId"]
    print(f"caseId = {case_id} controlNumber = {created['controlNumber']}")

    steps: Dict[str, Any] = {"created": created}
    corrections = payload.get("corrections") or []
    if corrections:
        steps["returned"] = call(
            "POST",
            f"{base_url}/api/cases/{case_id}/corrections/return",
            timeout_s,
            json={
                "items": [{"fieldKey": c["fieldKey"], "message": c["message"]} for c in corrections],
                "note": payload.get("note"),
            },
            headers=as_staff,
        )
        fixes = {c["fieldKey"]: c["fix"] for c in corrections if "fix" in c}
        steps["resubmitted"] = call(
            "POST",
            f"{base_url}/api/cases/{case_id}/resubmission",
            timeout_s,
            json={"fields": fixes},
            headers=as_applicant,
        )
        steps["resolved"] = [
            call("POST", f"{base_url}/api/cases/{case_id}/corrections/{c['fieldKey']}/resolve", timeout_s, headers=as_staff)
            for c in corrections
        ]

    for checkpoint in payload.get("checkpoints") or []:
        call("POST", f"{base_url}/api/cases/{case_id}/status", timeout_s, json={"checkpoint": checkpoint}, headers=as_staff)

    steps["final"] = call("GET", f"{base_url}/api/cases/{case_id}", timeout_s)
    return steps


def summarize_case(payload_name: str, steps: Dict[str, Any]) -> Dict[str, Any]:
    final = steps.get("final") or {}
    case = final.get("case") or steps.get("created") or {}
    corrections = final.get("corrections") or []
    return {
        "payload": payload_name,
        "case_id": case.get("caseId"),
        "control_number": case.get("controlNumber"),
        "status_label": case.get("statusLabel"),
        "finished": case.get("finished"),
        "needs_correction": case.get("needsCorrection"),
        "corrections_total": len(corrections),
        "corrections_open": sum(1 for c in corrections if c.get("resolvedAt") is None),
        "salary_usd": case.get("salaryUsd"),
    }


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--base-url", default="http://127.0.0.1:8000", help="FastAPI base URL")
    ap.add_argument("--cases-dir", default="demo_cases", help="Folder containing *.json payloads")
    ap.add_argument("--applicant-id", default="applicant-demo", help="X-Actor-Id used for applicant calls")
    ap.add_argument("--staff-id", default="staff-demo", help="X-Actor-Id used for staff calls")
    ap.add_argument("--timeout", type=int, default=30, help="HTTP timeout seconds")
    ap.add_argument("--sleep", type=float, default=0.0, help="Seconds to sleep between cases")
    ap.add_argument("--out-json", default="demo_results/demo_results.json")
    ap.add_argument("--out-csv", default="demo_results/demo_results.csv")
    args = ap.parse_args()

    base_url = args.base_url.rstrip("/")
    cases_dir = Path(args.cases_dir)

    if not cases_dir.exists():
        die(f"cases dir not found: {cases_dir}")

    payload_files = sorted([p for p in cases_dir.glob("*.json") if p.is_file()])
    if not payload_files:
        die(f"No payloads found in {cases_dir} (expected *.json)")

    all_results: List[Dict[str, Any]] = []
    summary_rows: List[Dict[str, Any]] = []

    for p in payload_files:
        payload_name = p.name
        print(f"\n=== Running {payload_name} ===")

        payload = load_json(p)
        problems = check_payload(payload_name, payload)
        if problems:
            die("; ".join(problems))

        steps = run_case(base_url, payload, args.applicant_id, args.staff_id, args.timeout)
        print(f"final status = {steps['final']['case']['statusLabel']}")

        all_results.append({"payload": payload_name, **steps})
        summary_rows.append(summarize_case(payload_name, steps))

        if args.sleep > 0:
            time.sleep(args.sleep)

    out_json = Path(args.out_json)
    out_csv = Path(args.out_csv)
    save_json(out_json, all_results)

    fieldnames = [
        "payload",
        "case_id",
        "control_number",
        "status_label",
        "finished",
        "needs_correction",
        "corrections_total",
        "corrections_open",
        "salary_usd",
    ]
    save_csv(out_csv, summary_rows, fieldnames=fieldnames)

    print("\n=== DONE ===")
    print(f"Wrote: {out_json}")
    print(f"Wrote: {out_csv}")


if __name__ == "__main__":
    main()
