#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from typing import Any
from urllib import error, request

SAMPLE_CV = """Jane Doe
Senior Software Engineer
jane.doe@example.com | +1 555 123 4567

PROFESSIONAL SUMMARY
Backend engineer with eight years of experience building APIs.

EXPERIENCE
Software Engineer | Acme Corp | 2019 - Present
• Built internal tools for the support team
• Maintained the billing service

SKILLS
Python, SQL, Docker
"""

REQUIRED_PATHS = (
    "/api/analyze",
    "/api/score-teaser",
    "/api/optimize",
    "/api/cover-letter",
    "/api/export-pdf",
    "/api/export-cover-letter-pdf",
    "/api/feedback",
)


def call(
    base_url: str,
    method: str,
    path: str,
    payload: dict[str, Any] | None = None,
) -> tuple[int, dict[str, Any] | str | bytes, str]:
    body = None
    headers = {"Accept": "application/json, application/pdf"}
    if payload is not None:
        body = json.dumps(payload).encode("utf-8")
        headers["Content-Type"] = "application/json"

    req = request.Request(f"{base_url.rstrip('/')}{path}", data=body, headers=headers, method=method)
    try:
        with request.urlopen(req, timeout=30) as resp:
            content_type = resp.headers.get("content-type", "")
            raw = resp.read()
            if "json" in content_type:
                return resp.status, json.loads(raw.decode("utf-8")), content_type
            return resp.status, raw, content_type
    except error.HTTPError as exc:
        raw_text = exc.read().decode("utf-8", errors="replace")
        parsed: dict[str, Any] | str
        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError:
            parsed = raw_text
        return exc.code, parsed, exc.headers.get("content-type", "")


def check_json(base_url: str, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any] | None:
    status, data, _ = call(base_url, method, path, payload)
    if status != 200 or not isinstance(data, dict):
        print(f"[FAIL] {method} {path} => {status} {data}")
        return None
    print(f"[PASS] {method} {path}")
    return data


def check_pdf(base_url: str, path: str, text: str) -> bool:
    status, data, content_type = call(base_url, "POST", path, {"text": text})
    if status != 200 or not isinstance(data, bytes) or not data.startswith(b"%PDF"):
        print(f"[FAIL] POST {path} => {status} {content_type}")
        return False
    print(f"[PASS] POST {path} ({len(data)} bytes)")
    return True


def run_llm_checks(base_url: str) -> bool:
    rewrite = check_json(base_url, "POST", "/api/optimize-text", {"text": "managed team", "context": "experience bullet"})
    if rewrite is None or not rewrite.get("improvedText"):
        return False

    letter = check_json(
        base_url,
        "POST",
        "/api/cover-letter",
        {"cvText": SAMPLE_CV, "jobTitle": "Platform Engineer", "companyName": "Globex"},
    )
    return letter is not None and bool(letter.get("coverLetter"))


def main() -> int:
    parser = argparse.ArgumentParser(description="Minimal API smoke test for the CV Boost backend")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="Backend base URL")
    parser.add_argument("--with-llm", action="store_true", help="Also exercise routes that call the language model")
    args = parser.parse_args()

    health = check_json(args.base_url, "GET", "/health")
    if health is None:
        return 1

    parsed = check_json(args.base_url, "POST", "/api/parse-cv", {"text": SAMPLE_CV})
    if parsed is None or parsed["preview"].get("name") != "Jane Doe":
        return 1

    applied = check_json(
        args.base_url,
        "POST",
        "/api/optimize",
        {
            "cvText": SAMPLE_CV,
            "changes": [
                {"original": "Maintained the billing service", "suggested": "Owned the billing service end to end"}
            ],
        },
    )
    if applied is None or applied.get("applied") != ["chg_1"]:
        return 1

    for method, path in (("GET", "/api/templates"), ("GET", "/api/job-titles?q=engineer"), ("GET", "/api/track")):
        if check_json(args.base_url, method, path) is None:
            return 1

    if not check_pdf(args.base_url, "/api/export-pdf", applied["optimizedCV"]):
        return 1
    if not check_pdf(args.base_url, "/api/export-cover-letter-pdf", "Dear Hiring Manager,\n\nThank you."):
        return 1

    status, openapi, _ = call(args.base_url, "GET", "/openapi.json")
    if status != 200 or not isinstance(openapi, dict):
        print(f"[FAIL] /openapi.json => {status}")
        return 1
    missing = [path for path in REQUIRED_PATHS if path not in openapi.get("paths", {})]
    if missing:
        print(f"[FAIL] routes missing from /openapi.json: {', '.join(missing)}")
        return 1

    if args.with_llm:
        if not health.get("llmConfigured"):
            print("[FAIL] --with-llm requested but the backend has no OPENAI_API_KEY")
            return 1
        if not run_llm_checks(args.base_url):
            return 1
    else:
        print("[SKIP] language model routes (pass --with-llm to include them)")

    if check_json(args.base_url, "GET", "/api/metrics/snapshot") is None:
        return 1

    print("[PASS] smoke checks completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
