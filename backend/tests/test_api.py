from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

import cvboost.main as main_module
from cvboost.auth_store import set_account_active, upsert_local_account
from cvboost.feedback_store import clear_local_feedback
from cvboost.llm_client import LLMNotConfiguredError, LLMRequestError
from cvboost.main import app
from cvboost.templates import TEMPLATES

client = TestClient(app, raise_server_exceptions=False)

SAMPLE_CV = (
    "Jane Doe\n"
    "Senior Software Engineer\n"
    "jane.doe@example.com | +1 555 123 4567\n"
    "\n"
    "PROFESSIONAL SUMMARY\n"
    "Backend engineer with eight years of experience building APIs.\n"
    "\n"
    "EXPERIENCE\n"
    "Software Engineer | Acme Corp | 2019 - Present\n"
    "• Built internal tools for the support team\n"
    "• Maintained the billing service\n"
    "\n"
    "SKILLS\n"
    "Python, SQL, Docker\n"
)


@pytest.fixture(autouse=True)
def isolated_runtime(tmp_path, monkeypatch) -> None:
    db_path = tmp_path / "cvboost_test.sqlite3"
    monkeypatch.setenv("CVBOOST_DB_PATH", str(db_path))
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("CVBOOST_ENV", "development")
    monkeypatch.setenv("CVBOOST_ADMIN_USERNAMES", "admin")
    monkeypatch.delenv("CVBOOST_REQUIRE_LOGIN_FOR_BUILDER", raising=False)
    monkeypatch.setattr(
        main_module,
        "RATE_LIMITER",
        main_module.SessionRateLimiter(
            limit=20,
            window_seconds=60,
            duplicate_limit=3,
            duplicate_window_seconds=15,
        ),
    )
    monkeypatch.setattr(
        main_module,
        "AUTH_LOGIN_RATE_LIMITER",
        main_module.AuthLoginRateLimiter(fail_limit=6, window_seconds=300, lock_seconds=300),
    )
    monkeypatch.setattr(main_module, "METRICS", main_module.MetricsTracker())
    clear_local_feedback()
    client.cookies.clear()


def fake_chat(monkeypatch, *responses):
    """Replace the model call; the last response repeats once the queue drains."""
    calls: list[dict] = []
    queue = list(responses)

    def _fake(messages, **kwargs):
        calls.append({"messages": messages, **kwargs})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(main_module, "chat_completion", _fake)
    return calls


def assert_error_shape(data: dict, *, expected_code: str) -> None:
    assert data["code"] == expected_code
    assert isinstance(data["message"], str)
    assert data["message"]
    assert isinstance(data["requestId"], str)
    assert data["requestId"]


def login(username: str, password: str) -> dict:
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200
    return resp.json()


def analysis_payload(**overrides) -> str:
    payload = {
        "overallScore": 78,
        "summary": "Solid backend profile.",
        "strengths": ["APIs", "APIs", "Mentoring"],
        "improvements": ["Quantify impact"],
        "missingKeySkills": ["Kubernetes"],
        "cv_entries": {
            "summary": {"exists": True},
            "work_experience": [{"title": "Software Engineer", "organization": "Acme Corp"}],
            "education": [],
            "projects": [],
        },
        "suggestedChanges": [
            {
                "section": "Experience",
                "original": "Built internal tools for the support team",
                "suggested": "Built internal tools that cut support response time by 30%",
                "reason": "Quantified impact",
            }
        ],
        "keywords": {"present": ["Python"], "missing": ["Kubernetes"]},
    }
    payload.update(overrides)
    return json.dumps(payload)


def test_health() -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "llmConfigured": True}


def test_request_and_session_ids_are_echoed() -> None:
    resp = client.get("/health", headers={"x-request-id": "req-1", "x-session-id": "session-abc"})
    assert resp.headers["x-request-id"] == "req-1"
    assert resp.headers["x-session-id"] == "session-abc"


def test_invalid_session_id_is_replaced() -> None:
    resp = client.get("/health", headers={"x-session-id": "!"})
    assert resp.status_code == 200
    assert resp.headers["x-session-id"] != "!"
    assert main_module.validate_session_id(resp.headers["x-session-id"])


def test_analyze_applies_changes_when_model_omits_optimized_cv(monkeypatch) -> None:
    calls = fake_chat(monkeypatch, analysis_payload())

    resp = client.post(
        "/api/analyze",
        data={"cvText": SAMPLE_CV, "jobTitle": "**Backend Engineer**", "companyName": "Globex"},
        headers={"x-request-id": "req-analyze"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["requestId"] == "req-analyze"

    analysis = data["analysis"]
    assert analysis["overallScore"] == 78
    assert analysis["strengths"] == ["APIs", "Mentoring"]
    assert analysis["suggestedChanges"][0]["id"] == "chg_1"
    assert "cut support response time by 30%" in analysis["optimizedCV"]
    assert "Built internal tools for the support team" not in analysis["optimizedCV"]

    begin, end = analysis["changeOffsets"]["chg_1"]
    assert SAMPLE_CV[begin:end] == "Built internal tools for the support team"

    assert data["meta"]["jobTitle"] == "Backend Engineer"
    assert data["meta"]["cvTextUsed"] == SAMPLE_CV.strip()
    assert calls[0]["json_mode"] is True
    assert "Backend Engineer" in calls[0]["messages"][1]["content"]


def test_analyze_keeps_model_optimized_cv_and_clamps_score(monkeypatch) -> None:
    fake_chat(monkeypatch, analysis_payload(overallScore=180, optimizedCV="Rewritten CV"))

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobTitle": "Engineer"})
    assert resp.status_code == 200
    analysis = resp.json()["analysis"]
    assert analysis["overallScore"] == 100
    assert analysis["optimizedCV"] == "Rewritten CV"


def test_analyze_requires_cv_and_job_context(monkeypatch) -> None:
    fake_chat(monkeypatch, analysis_payload())

    missing_cv = client.post("/api/analyze", data={"jobTitle": "Engineer"})
    assert missing_cv.status_code == 400
    assert_error_shape(missing_cv.json(), expected_code="CV_REQUIRED")

    missing_job = client.post("/api/analyze", data={"cvText": SAMPLE_CV})
    assert missing_job.status_code == 400
    assert_error_shape(missing_job.json(), expected_code="JOB_CONTEXT_REQUIRED")


def test_analyze_reports_unparseable_model_output(monkeypatch) -> None:
    fake_chat(monkeypatch, "I could not analyze this CV.")

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobTitle": "Engineer"})
    assert resp.status_code == 500
    assert_error_shape(resp.json(), expected_code="ANALYSIS_PARSE_FAILED")


def test_analyze_without_api_key_reports_configuration_error(monkeypatch) -> None:
    fake_chat(monkeypatch, LLMNotConfiguredError("Missing required environment variable: OPENAI_API_KEY"))

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobTitle": "Engineer"})
    assert resp.status_code == 500
    data = resp.json()
    assert_error_shape(data, expected_code="LLM_NOT_CONFIGURED")
    assert "OPENAI_API_KEY" in data["message"]


def test_analyze_rejects_broken_pdf_upload(monkeypatch) -> None:
    fake_chat(monkeypatch, analysis_payload())

    resp = client.post(
        "/api/analyze",
        data={"jobTitle": "Engineer"},
        files={"cv": ("cv.pdf", b"not really a pdf", "application/pdf")},
    )
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="PDF_PARSE_FAILED")


def test_analyze_fetches_job_url_when_description_missing(monkeypatch) -> None:
    calls = fake_chat(monkeypatch, "Platform Engineer at Globex. Requirements: Go, Kubernetes.", analysis_payload())
    monkeypatch.setattr(main_module, "fetch_page_text", lambda url: "Platform Engineer Globex careers page")

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobUrl": "https://jobs.example.com/1"})
    assert resp.status_code == 200
    meta = resp.json()["meta"]
    assert meta["jobDescriptionUsed"].startswith("Platform Engineer at Globex")
    assert meta["jobUrl"] == "https://jobs.example.com/1"
    assert len(calls) == 2


def test_analyze_job_url_fetch_failure(monkeypatch) -> None:
    fake_chat(monkeypatch, analysis_payload())

    def failing_fetch(url):
        raise main_module.DocumentError("unreachable")

    monkeypatch.setattr(main_module, "fetch_page_text", failing_fetch)

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobUrl": "https://jobs.example.com/2"})
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="JOB_URL_FETCH_FAILED")


def test_analyze_bumps_usage_counter_in_production(monkeypatch) -> None:
    monkeypatch.setenv("CVBOOST_ENV", "production")
    fake_chat(monkeypatch, analysis_payload())

    resp = client.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobTitle": "Engineer"})
    assert resp.status_code == 200

    track = client.get("/api/track")
    assert track.status_code == 200
    assert track.json() == {"count": 1}


def test_score_teaser_requires_api_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "")

    resp = client.post("/api/score-teaser", data={"cvText": SAMPLE_CV, "targetRole": "Data Analyst"})
    assert resp.status_code == 503
    assert_error_shape(resp.json(), expected_code="SERVICE_UNAVAILABLE")


def test_score_teaser_validates_input(monkeypatch) -> None:
    fake_chat(monkeypatch, '{"overallScore": 80, "summary": "ok"}')

    short_cv = client.post("/api/score-teaser", data={"cvText": "too short", "targetRole": "Data Analyst"})
    assert short_cv.status_code == 400
    assert_error_shape(short_cv.json(), expected_code="CV_TOO_SHORT")

    no_role = client.post("/api/score-teaser", data={"cvText": SAMPLE_CV, "targetRole": " "})
    assert no_role.status_code == 400
    assert_error_shape(no_role.json(), expected_code="TARGET_ROLE_REQUIRED")


def test_score_teaser_success_truncates_summary(monkeypatch) -> None:
    fake_chat(monkeypatch, json.dumps({"overallScore": 83, "summary": "x" * 400}))

    resp = client.post("/api/score-teaser", data={"cvText": SAMPLE_CV, "targetRole": "Data Analyst"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["score"] == 83
    assert len(data["summary"]) == 250
    assert data["targetRole"] == "Data Analyst"
    assert data["fallbackUsed"] is False
    assert isinstance(data["analyzedAt"], int)


def test_score_teaser_falls_back_on_unusable_output(monkeypatch) -> None:
    fake_chat(monkeypatch, "not json at all")

    resp = client.post("/api/score-teaser", data={"cvText": SAMPLE_CV, "targetRole": "Data Analyst"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["score"] == 60
    assert data["fallbackUsed"] is True
    assert "Data Analyst" in data["summary"]


def test_score_teaser_zero_score_uses_default(monkeypatch) -> None:
    fake_chat(monkeypatch, '{"overallScore": 0, "summary": "Weak match."}')

    resp = client.post("/api/score-teaser", data={"cvText": SAMPLE_CV, "targetRole": "Data Analyst"})
    assert resp.status_code == 200
    assert resp.json()["score"] == 60


def test_analyze_resume_success(monkeypatch) -> None:
    fake_chat(monkeypatch, '{"score": 88, "suggestions": ["Add metrics", "Tighten summary"]}')

    resp = client.post(
        "/api/analyze-resume",
        json={"resumeData": {"personalInfo": {"name": "Jane Doe"}, "skills": ["Python"]}},
    )
    assert resp.status_code == 200
    assert resp.json() == {"score": 88, "suggestions": ["Add metrics", "Tighten summary"], "fallbackUsed": False}


def test_analyze_resume_falls_back_on_model_failure(monkeypatch) -> None:
    fake_chat(monkeypatch, LLMRequestError("LLM request failed with status 500"))

    resp = client.post("/api/analyze-resume", json={"resumeData": {}})
    assert resp.status_code == 200
    data = resp.json()
    assert data["score"] == 72
    assert len(data["suggestions"]) == 4
    assert data["fallbackUsed"] is True


def test_analyze_resume_requires_login_when_builder_is_gated(monkeypatch) -> None:
    monkeypatch.setenv("CVBOOST_REQUIRE_LOGIN_FOR_BUILDER", "true")

    resp = client.post("/api/analyze-resume", json={"resumeData": {}})
    assert resp.status_code == 401
    assert_error_shape(resp.json(), expected_code="AUTH_LOGIN_REQUIRED")


def test_optimize_text(monkeypatch) -> None:
    calls = fake_chat(monkeypatch, "Led a team of five engineers to ship the billing rewrite.")

    resp = client.post("/api/optimize-text", json={"text": "managed team", "context": "experience bullet"})
    assert resp.status_code == 200
    assert resp.json() == {"improvedText": "Led a team of five engineers to ship the billing rewrite."}
    assert calls[0]["max_tokens"] == 500
    assert "experience bullet" in calls[0]["messages"][0]["content"]


def test_optimize_text_requires_text() -> None:
    resp = client.post("/api/optimize-text", json={"text": "   "})
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="TEXT_REQUIRED")


def test_optimize_text_mode(monkeypatch) -> None:
    fake_chat(monkeypatch, "Improved summary")

    resp = client.post("/api/optimize", json={"text": "my summary", "context": "summary"})
    assert resp.status_code == 200
    assert resp.json() == {"mode": "text", "improvedText": "Improved summary"}


def test_optimize_structured_mode_marks_targeted(monkeypatch) -> None:
    calls = fake_chat(
        monkeypatch,
        json.dumps({"score": 140, "missingKeywords": ["Go"], "keyImprovements": ["Added metrics"], "summary": "New"}),
    )

    resp = client.post(
        "/api/optimize",
        json={
            "resumeData": {"personalInfo": {"name": "Jane Doe"}, "summary": "Engineer"},
            "jobDescription": "We are hiring a platform engineer with Go and Kubernetes experience to run infra.",
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "structured"
    assert data["targeted"] is True
    assert data["score"] == 100
    assert data["missingKeywords"] == ["Go"]
    assert data["summary"] == "New"
    assert calls[0]["temperature"] == 0.3


def test_optimize_structured_mode_short_description_is_general(monkeypatch) -> None:
    fake_chat(monkeypatch, '{"score": 70}')

    resp = client.post("/api/optimize", json={"resumeData": {}, "jobDescription": "short"})
    assert resp.status_code == 200
    assert resp.json()["targeted"] is False


def test_optimize_apply_mode_reports_skipped_changes() -> None:
    resp = client.post(
        "/api/optimize",
        json={
            "cvText": SAMPLE_CV,
            "changes": [
                {"id": "a", "original": "Maintained the billing service", "suggested": "Owned the billing service"},
                {"id": "b", "original": "Not in the CV", "suggested": "Anything"},
                {"id": "c", "original": "  ", "suggested": "Anything"},
            ],
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "apply"
    assert "Owned the billing service" in data["optimizedCV"]
    assert data["applied"] == ["a"]
    assert data["skipped"] == [{"id": "b", "reason": "not_found"}, {"id": "c", "reason": "empty_original"}]


def test_optimize_rejects_empty_request() -> None:
    resp = client.post("/api/optimize", json={})
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="INVALID_OPTIMIZE_REQUEST")


def test_optimize_with_skills(monkeypatch) -> None:
    fake_chat(
        monkeypatch,
        json.dumps(
            {
                "optimizedCV": SAMPLE_CV + "• Deployed services on Kubernetes\n",
                "changesApplied": [
                    {"skill": "Kubernetes", "section": "Experience", "bulletsAdded": ["Deployed services on Kubernetes"]}
                ],
            }
        ),
    )
    placements = [
        {
            "skill": "Kubernetes",
            "targetCvEntry": {"section": "work_experience", "title": "Software Engineer", "organization": "Acme Corp"},
            "userProvidedContext": "Ran our staging cluster",
        }
    ]

    resp = client.post(
        "/api/optimize-with-skills",
        data={"cvText": SAMPLE_CV, "skillPlacements": json.dumps(placements), "jobTitle": "Platform Engineer"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert "Kubernetes" in data["optimizedCV"]
    change = data["skillPlacementChanges"][0]
    assert change["id"] == "skill_1"
    assert change["section"] == "Software Engineer at Acme Corp"
    assert change["suggested"] == "• Deployed services on Kubernetes"


def test_optimize_with_skills_rejects_bad_placements(monkeypatch) -> None:
    fake_chat(monkeypatch, "{}")

    invalid = client.post("/api/optimize-with-skills", data={"cvText": SAMPLE_CV, "skillPlacements": "{oops"})
    assert invalid.status_code == 400
    assert_error_shape(invalid.json(), expected_code="INVALID_SKILL_PLACEMENTS")

    empty = client.post("/api/optimize-with-skills", data={"cvText": SAMPLE_CV, "skillPlacements": "[]"})
    assert empty.status_code == 400
    assert_error_shape(empty.json(), expected_code="NO_SKILL_PLACEMENTS")


def test_cover_letter(monkeypatch) -> None:
    calls = fake_chat(monkeypatch, "Dear Hiring Manager,\n\nI am excited to apply.")

    resp = client.post(
        "/api/cover-letter",
        json={"cvText": SAMPLE_CV, "jobTitle": "Platform Engineer", "companyName": "Globex"},
    )
    assert resp.status_code == 200
    assert resp.json()["coverLetter"].startswith("Dear Hiring Manager")
    assert "Globex" in calls[0]["messages"][0]["content"]


def test_cover_letter_validation() -> None:
    missing_cv = client.post("/api/cover-letter", json={"jobTitle": "Engineer"})
    assert missing_cv.status_code == 400
    assert_error_shape(missing_cv.json(), expected_code="CV_REQUIRED")

    missing_job = client.post("/api/cover-letter", json={"cvText": SAMPLE_CV})
    assert missing_job.status_code == 400
    assert_error_shape(missing_job.json(), expected_code="JOB_CONTEXT_REQUIRED")


def test_export_pdf_returns_attachment() -> None:
    resp = client.post("/api/export-pdf", json={"text": SAMPLE_CV, "fileName": 'Jane "Doe".pdf'})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["content-disposition"] == 'attachment; filename="Jane Doe.pdf"'
    assert resp.content.startswith(b"%PDF")


def test_export_cover_letter_pdf_default_filename() -> None:
    resp = client.post("/api/export-cover-letter-pdf", json={"text": "Dear Hiring Manager,\n\nThanks."})
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == 'attachment; filename="Cover-Letter.pdf"'
    assert resp.content.startswith(b"%PDF")


def test_export_pdf_requires_text() -> None:
    resp = client.post("/api/export-pdf", json={"text": ""})
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="TEXT_REQUIRED")


def test_export_docx_from_resume_data() -> None:
    resp = client.post(
        "/api/export-docx",
        json={
            "resumeData": {
                "personalInfo": {"name": "jane doe", "email": "jane@example.com"},
                "experience": [
                    {"company": "Acme", "role": "engineer", "startDate": "2019", "current": True, "description": ["Built APIs"]}
                ],
                "skills": ["Python"],
            },
            "fileName": "Jane",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )
    assert resp.headers["content-disposition"] == 'attachment; filename="Jane.docx"'
    assert resp.content.startswith(b"PK")


def test_export_docx_requires_content() -> None:
    resp = client.post("/api/export-docx", json={})
    assert resp.status_code == 400
    assert_error_shape(resp.json(), expected_code="INVALID_EXPORT_REQUEST")


def test_parse_cv_returns_preview_and_template() -> None:
    resp = client.post("/api/parse-cv", json={"text": SAMPLE_CV})
    assert resp.status_code == 200
    data = resp.json()
    assert data["preview"]["name"] == "Jane Doe"
    assert data["preview"]["contact"]["email"] == "jane.doe@example.com"
    assert data["suggestedTemplate"] in TEMPLATES


def test_templates_endpoints() -> None:
    listing = client.get("/api/templates")
    assert listing.status_code == 200
    data = listing.json()
    assert {item["id"] for item in data["templates"]} == set(TEMPLATES)
    assert data["defaultTheme"] in data["themes"]

    fit = client.post("/api/templates/fit", json={"resume": {"name": "Jane"}, "templateId": "does-not-exist"})
    assert fit.status_code == 200
    fit_data = fit.json()
    assert fit_data["fits"] is True
    assert fit_data["templateId"] == "default"

    suggest = client.post("/api/templates/suggest", json={"resume": {"name": "Jane"}})
    assert suggest.status_code == 200
    assert suggest.json()["templateId"] in TEMPLATES


def test_job_titles_search() -> None:
    resp = client.get("/api/job-titles", params={"q": "data"})
    assert resp.status_code == 200
    titles = resp.json()["titles"]
    assert titles
    assert all("data" in title.lower() for title in titles)


def test_feedback_submit_validates_rating() -> None:
    for rating in (None, 0, 6, "abc", 2.5, True):
        resp = client.post("/api/feedback", json={"rating": rating})
        assert resp.status_code == 400
        assert_error_shape(resp.json(), expected_code="RATING_REQUIRED")


def test_feedback_submit_and_admin_listing(monkeypatch) -> None:
    upsert_local_account(username="admin", password="admin-pass-123")
    upsert_local_account(username="member", password="member-pass-123")

    created = client.post("/api/feedback", json={"rating": "4", "comment": "Great", "source": "results"})
    assert created.status_code == 200
    created_data = created.json()
    assert created_data["storage"] == "database"
    assert created_data["feedback"]["rating"] == 4
    assert created_data["note"] is None

    client.post("/api/feedback", json={"rating": 2})

    anonymous = client.get("/api/feedback")
    assert anonymous.status_code == 401
    assert_error_shape(anonymous.json(), expected_code="AUTH_LOGIN_REQUIRED")

    member = login("member", "member-pass-123")
    forbidden = client.get("/api/feedback", headers={"x-session-token": member["token"]})
    assert forbidden.status_code == 403
    assert_error_shape(forbidden.json(), expected_code="FORBIDDEN")

    admin = login("admin", "admin-pass-123")
    listing = client.get("/api/feedback", headers={"x-session-token": admin["token"]})
    assert listing.status_code == 200
    listing_data = listing.json()
    assert listing_data["source"] == "database"
    assert [item["rating"] for item in listing_data["feedback"]] == [2, 4]

    stats = client.get("/api/feedback/stats", headers={"x-session-token": admin["token"]})
    assert stats.status_code == 200
    stats_data = stats.json()
    assert stats_data["total"] == 2
    assert stats_data["averageRating"] == 3.0
    assert stats_data["withComments"] == 1
    assert [bucket["count"] for bucket in stats_data["distribution"]] == [0, 1, 0, 1, 0]

    client.post("/api/auth/logout", headers={"x-session-token": admin["token"]})
    client.post("/api/auth/logout", headers={"x-session-token": member["token"]})
    client.cookies.clear()


def test_feedback_falls_back_to_local_storage(tmp_path, monkeypatch) -> None:
    blocked = tmp_path / "blocked"
    blocked.mkdir()
    monkeypatch.setenv("CVBOOST_DB_PATH", str(blocked))

    resp = client.post("/api/feedback", json={"rating": 5, "comment": "Offline"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["storage"] == "local"
    assert data["feedback"]["id"].startswith("local_")
    assert data["note"] == "Stored locally (database temporarily unavailable)"


def test_track_counts_only_in_production(monkeypatch) -> None:
    dev = client.post("/api/track")
    assert dev.status_code == 200
    assert dev.json() == {"count": 0}

    monkeypatch.setenv("CVBOOST_ENV", "production")
    first = client.post("/api/track")
    second = client.post("/api/track")
    assert first.json() == {"count": 1}
    assert second.json() == {"count": 2}
    assert client.get("/api/track").json() == {"count": 2}


def test_track_returns_zero_when_storage_unavailable(tmp_path, monkeypatch) -> None:
    blocked = tmp_path / "blocked"
    blocked.mkdir()
    monkeypatch.setenv("CVBOOST_DB_PATH", str(blocked))

    assert client.get("/api/track").json() == {"count": 0}


def test_auth_login_me_logout_flow() -> None:
    upsert_local_account(username="alice", password="alice-pass-1")

    data = login("alice", "alice-pass-1")
    assert data["user"]["username"] == "alice"
    assert data["user"]["isAdmin"] is False

    me = client.get("/api/auth/me", headers={"x-session-token": data["token"]})
    assert me.status_code == 200
    assert me.json()["user"]["username"] == "alice"

    logout = client.post("/api/auth/logout", headers={"x-session-token": data["token"]})
    assert logout.status_code == 200
    assert logout.json()["revoked"] is True
    client.cookies.clear()

    after = client.get("/api/auth/me", headers={"x-session-token": data["token"]})
    assert after.status_code == 401
    assert_error_shape(after.json(), expected_code="AUTH_LOGIN_REQUIRED")


def test_auth_login_rejects_bad_credentials_and_disabled_accounts() -> None:
    upsert_local_account(username="bob", password="bob-pass-12")

    wrong = client.post("/api/auth/login", json={"username": "bob", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert_error_shape(wrong.json(), expected_code="AUTH_INVALID_CREDENTIALS")

    set_account_active(username="bob", active=False)
    disabled = client.post("/api/auth/login", json={"username": "bob", "password": "bob-pass-12"})
    assert disabled.status_code == 403
    assert_error_shape(disabled.json(), expected_code="AUTH_ACCOUNT_DISABLED")


def test_auth_login_locks_after_repeated_failures(monkeypatch) -> None:
    monkeypatch.setattr(
        main_module,
        "AUTH_LOGIN_RATE_LIMITER",
        main_module.AuthLoginRateLimiter(fail_limit=2, window_seconds=300, lock_seconds=300),
    )
    upsert_local_account(username="carol", password="carol-pass-1")

    first = client.post("/api/auth/login", json={"username": "carol", "password": "wrong-1"})
    assert first.status_code == 401

    second = client.post("/api/auth/login", json={"username": "carol", "password": "wrong-2"})
    assert second.status_code == 429
    data = second.json()
    assert_error_shape(data, expected_code="AUTH_LOGIN_RATE_LIMITED")
    assert data["retryAfterSec"] >= 1


def test_rate_limit_returns_429_with_headers(monkeypatch) -> None:
    fake_chat(monkeypatch, "Improved")
    monkeypatch.setattr(
        main_module,
        "RATE_LIMITER",
        main_module.SessionRateLimiter(limit=1, window_seconds=60, duplicate_limit=3, duplicate_window_seconds=15),
    )
    headers = {"x-session-id": "session-rate"}

    first = client.post("/api/optimize-text", json={"text": "first"}, headers=headers)
    assert first.status_code == 200
    assert first.headers["x-ratelimit-limit"] == "1"
    assert first.headers["x-ratelimit-remaining"] == "0"

    second = client.post("/api/optimize-text", json={"text": "second"}, headers=headers)
    assert second.status_code == 429
    data = second.json()
    assert_error_shape(data, expected_code="TOO_MANY_REQUESTS")
    assert data["retryAfterSec"] >= 1


def test_duplicate_submissions_are_limited(monkeypatch) -> None:
    fake_chat(monkeypatch, "Improved")
    monkeypatch.setattr(
        main_module,
        "RATE_LIMITER",
        main_module.SessionRateLimiter(limit=20, window_seconds=60, duplicate_limit=2, duplicate_window_seconds=15),
    )
    headers = {"x-session-id": "session-dup"}

    for _ in range(2):
        assert client.post("/api/optimize-text", json={"text": "same"}, headers=headers).status_code == 200

    third = client.post("/api/optimize-text", json={"text": "same"}, headers=headers)
    assert third.status_code == 429
    assert "repeated" in third.json()["message"]


def test_payload_too_large(monkeypatch) -> None:
    monkeypatch.setattr(main_module, "MAX_JSON_BODY_BYTES", 2048)

    resp = client.post("/api/optimize-text", json={"text": "x" * 5000})
    assert resp.status_code == 413
    assert_error_shape(resp.json(), expected_code="PAYLOAD_TOO_LARGE")


def test_validation_error_shape() -> None:
    resp = client.post("/api/optimize-text", json={"text": "hello", "unexpected": 1})
    assert resp.status_code == 422
    assert_error_shape(resp.json(), expected_code="VALIDATION_ERROR")


def test_metrics_snapshot_counts_requests(monkeypatch) -> None:
    client.get("/health")
    client.post("/api/optimize-text", json={"text": " "})

    resp = client.get("/api/metrics/snapshot")
    assert resp.status_code == 200
    data = resp.json()
    assert data["requestTotal"] >= 2
    assert data["pathCounts"]["/health"] >= 1
    assert data["errorCounts"]["TEXT_REQUIRED"] == 1
    assert data["latency"]["/health"]["count"] >= 1


def test_export_pdf_from_resume_data() -> None:
    resp = client.post(
        "/api/export-pdf",
        json={"resumeData": {"personalInfo": {"name": "jane doe"}, "skills": ["Python"]}},
    )
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == 'attachment; filename="Optimized-CV.pdf"'
    assert resp.content.startswith(b"%PDF")


def test_templates_active_theme_and_exact_job_title() -> None:
    themed = client.get("/api/templates", params={"theme": "navy"})
    assert themed.json()["activeTheme"] == themed.json()["themes"]["navy"]

    fallback = client.get("/api/templates", params={"theme": "neon"})
    assert fallback.json()["activeTheme"] == fallback.json()["themes"]["indigo"]

    titles = client.get("/api/job-titles", params={"q": "Data Analyst"}).json()
    assert titles["exactMatch"] is True
    assert client.get("/api/job-titles", params={"q": "data"}).json()["exactMatch"] is False


def test_health_answers_while_analysis_waits_on_model(monkeypatch) -> None:
    def slow_chat(messages, **kwargs):
        time.sleep(1.0)
        return analysis_payload()

    monkeypatch.setattr(main_module, "chat_completion", slow_chat)

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            analysis = asyncio.create_task(
                http.post("/api/analyze", data={"cvText": SAMPLE_CV, "jobTitle": "Engineer"})
            )
            await asyncio.sleep(0.2)
            started = time.perf_counter()
            health = await http.get("/health")
            waited = time.perf_counter() - started
            return health, waited, await analysis

    health, waited, analysis = asyncio.run(scenario())
    assert health.status_code == 200
    assert waited < 0.5
    assert analysis.status_code == 200


def test_template_routes_reject_malformed_preview() -> None:
    for resume in (
        {"summary": 123},
        {"sections": [1]},
        {"sections": [{"items": [{"bullets": 5}]}]},
        {"skills": 7},
    ):
        resp = client.post("/api/templates/fit", json={"resume": resume, "templateId": "executive"})
        assert resp.status_code == 422
        assert_error_shape(resp.json(), expected_code="VALIDATION_ERROR")

    suggest = client.post("/api/templates/suggest", json={"resume": {"sections": "abc"}})
    assert suggest.status_code == 422
    assert_error_shape(suggest.json(), expected_code="VALIDATION_ERROR")


def test_template_fit_counts_preview_bullets() -> None:
    resume = {
        "name": "Jane",
        "skills": ["Python"],
        "sections": [{"title": "Experience", "items": [{"title": "Engineer", "bullets": ["x"] * 20}]}],
    }
    resp = client.post("/api/templates/fit", json={"resume": resume, "templateId": "executive"})
    assert resp.status_code == 200
    assert resp.json()["overflowPercent"] > 0


def test_export_filenames_strip_quotes() -> None:
    docx = client.post("/api/export-docx", json={"text": SAMPLE_CV, "fileName": 'Jane "CV"'})
    assert docx.status_code == 200
    assert docx.headers["content-disposition"] == 'attachment; filename="Jane CV.docx"'

    pdf = client.post("/api/export-pdf", json={"text": SAMPLE_CV, "fileName": '""'})
    assert pdf.headers["content-disposition"] == 'attachment; filename="Optimized-CV.pdf"'
