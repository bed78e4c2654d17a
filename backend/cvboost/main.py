from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import sqlite3
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Literal

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .auth_store import (
    VERIFY_REASON_ACCOUNT_INACTIVE,
    create_auth_session,
    ensure_default_local_account,
    is_admin_username,
    revoke_auth_session,
    validate_auth_session,
    verify_local_account_with_reason,
)
from .cv_parser import convert_resume_data, parse_raw_cv, resume_to_text
from .documents import DocumentError, clean_title, extract_pdf_text, fetch_page_text, infer_job_title
from .docx_export import build_resume_docx
from .feedback_store import create_feedback, list_feedback, summarize_feedback
from .job_titles import JOB_CATEGORIES, is_valid_job_title, search_job_titles
from .llm_client import (
    LLMNotConfiguredError,
    LLMRequestError,
    LLMResponseError,
    chat_completion,
    extract_json_object,
    get_extract_model,
    is_configured,
)
from .patches import apply_changes, coerce_changes, find_change_offsets, skipped_to_dicts
from .pdf_export import build_cover_letter_pdf, build_resume_pdf
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    REVIEW_SYSTEM_PROMPT,
    SKILLS_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_builder_text_system_prompt,
    build_cover_letter_prompt,
    build_job_extract_prompt,
    build_resume_review_prompt,
    build_skills_prompt,
    build_structured_optimize_system_prompt,
    build_structured_optimize_user_message,
    build_teaser_prompt,
    build_text_rewrite_system_prompt,
    describe_entry_location,
)
from .templates import (
    DEFAULT_THEME,
    THEME_COLORS,
    analyze_content_fit,
    get_template_limits,
    get_theme_colors,
    list_templates,
    suggest_best_template,
)
from .usage_store import CV_OPTIMIZED_COUNTER, get_counter, increment_counter


def get_env_int(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = os.getenv(name, "").strip()
    try:
        value = int(raw) if raw else int(default)
    except (TypeError, ValueError):
        value = int(default)

    if min_value is not None:
        value = max(min_value, value)
    if max_value is not None:
        value = min(max_value, value)
    return value


def get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def is_production() -> bool:
    return os.getenv("CVBOOST_ENV", "development").strip().lower() == "production"


def is_public_path(path: str) -> bool:
    if path in {
        "/health",
        "/openapi.json",
        "/docs",
        "/docs/oauth2-redirect",
        "/redoc",
        "/api/auth/login",
    }:
        return True
    return path.startswith("/health/")


def is_builder_login_required() -> bool:
    return get_env_bool("CVBOOST_REQUIRE_LOGIN_FOR_BUILDER", False)


def is_login_required_path(path: str, method: str) -> bool:
    if is_public_path(path) or path.startswith("/api/auth/"):
        return False

    if path == "/api/feedback/stats":
        return True
    if path == "/api/feedback" and method.upper() == "GET":
        return True

    if is_builder_login_required():
        return path in {"/api/export-docx", "/api/analyze-resume"}
    return False


def parse_auth_session_token(request: Request) -> str:
    header_token = request.headers.get("x-session-token", "").strip()
    if header_token:
        return header_token

    cookie_token = request.cookies.get(AUTH_COOKIE_NAME, "").strip()
    if cookie_token:
        return cookie_token

    auth_header = request.headers.get("authorization", "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


def validate_session_id(session_id: str) -> bool:
    if not session_id:
        return False
    return bool(re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9._:-]{2,127}", session_id))


SESSION_COOKIE_NAME = "cvboost_session"
AUTH_COOKIE_NAME = "cvboost_auth"
MAX_TEXT_LENGTH = 60_000
MAX_JSON_BODY_BYTES = get_env_int("CVBOOST_MAX_JSON_BYTES", 200_000, min_value=2_048)
MAX_UPLOAD_BYTES = get_env_int("CVBOOST_MAX_UPLOAD_BYTES", 5 * 1024 * 1024, min_value=16_384)
AUTH_SESSION_TTL_SECONDS = get_env_int("CVBOOST_AUTH_SESSION_TTL_SECONDS", 7 * 24 * 3600, min_value=300, max_value=30 * 24 * 3600)
AUTH_LOGIN_FAIL_LIMIT = get_env_int("CVBOOST_AUTH_LOGIN_FAIL_LIMIT", 6, min_value=2, max_value=100)
AUTH_LOGIN_FAIL_WINDOW_SECONDS = get_env_int("CVBOOST_AUTH_LOGIN_FAIL_WINDOW_SECONDS", 5 * 60, min_value=10, max_value=24 * 3600)
AUTH_LOGIN_LOCK_SECONDS = get_env_int("CVBOOST_AUTH_LOGIN_LOCK_SECONDS", 5 * 60, min_value=10, max_value=24 * 3600)

MIN_TEASER_CV_CHARS = 50
MIN_TEASER_ROLE_CHARS = 2
TEASER_SUMMARY_CHARS = 250
TEASER_FALLBACK_SCORE = 60
REVIEW_FALLBACK_SCORE = 72
REVIEW_FALLBACK_SUGGESTIONS = [
    "Add more quantifiable achievements with specific metrics",
    "Consider adding a professional summary if missing",
    "Use stronger action verbs at the start of bullet points",
    "Ensure all sections are complete and relevant",
]
TARGETED_DESCRIPTION_MIN_CHARS = 50
MAX_MISSING_SKILLS = 10

ERROR_CODE_BY_STATUS = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    413: "PAYLOAD_TOO_LARGE",
    422: "VALIDATION_ERROR",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
    503: "SERVICE_UNAVAILABLE",
}

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("cvboost.api")
usage_logger = logging.getLogger("cvboost.usage")


class PersonalInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    email: str = ""
    phone: str = ""
    linkedin: str = ""
    website: str = ""
    location: str = ""
    title: str = ""


class ExperienceEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    company: str = ""
    role: str = ""
    location: str = ""
    startDate: str = ""
    endDate: str = ""
    current: bool = False
    description: list[str] = Field(default_factory=list)


class EducationEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    institution: str = ""
    degree: str = ""
    field: str = ""
    location: str = ""
    startDate: str = ""
    endDate: str = ""
    gpa: str | None = None
    achievements: list[str] = Field(default_factory=list)


class ProjectEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    description: str = ""
    technologies: list[str] = Field(default_factory=list)
    link: str | None = None
    bullets: list[str] = Field(default_factory=list)


class CertificationEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    issuer: str = ""
    date: str = ""
    link: str | None = None


class CustomSectionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    text: str = ""


class CustomSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    title: str = ""
    items: list[CustomSectionItem] = Field(default_factory=list)


class ResumeData(BaseModel):
    """Structured résumé as produced by the builder UI."""

    model_config = ConfigDict(extra="ignore")

    personalInfo: PersonalInfo = Field(default_factory=PersonalInfo)
    summary: str = ""
    experience: list[ExperienceEntry] = Field(default_factory=list)
    education: list[EducationEntry] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    projects: list[ProjectEntry] = Field(default_factory=list)
    certifications: list[CertificationEntry] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    customSections: list[CustomSection] = Field(default_factory=list)


class PreviewItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bullets: list[str] = Field(default_factory=list)


class PreviewSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[PreviewItem] = Field(default_factory=list)


class PreviewDocument(BaseModel):
    """The parts of a parsed CV preview that drive template fitting."""

    model_config = ConfigDict(extra="ignore")

    summary: str | None = ""
    skills: list[str] = Field(default_factory=list)
    sections: list[PreviewSection] = Field(default_factory=list)


class AnalyzeResumeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resumeData: ResumeData


class AnalyzeResumeResponse(BaseModel):
    score: int
    suggestions: list[str]
    fallbackUsed: bool


class OptimizeTextRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(default="", max_length=MAX_TEXT_LENGTH)
    context: str | None = None


class OptimizeTextResponse(BaseModel):
    improvedText: str


class ChangeInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    section: str | None = None
    original: str
    suggested: str
    reason: str | None = None


class OptimizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    context: str | None = None
    resumeData: ResumeData | None = None
    jobDescription: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    cvText: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    changes: list[ChangeInput] | None = None


class SkippedChangeItem(BaseModel):
    id: str
    reason: str


class ApplyChangesResponse(BaseModel):
    mode: Literal["apply"] = "apply"
    optimizedCV: str
    applied: list[str]
    skipped: list[SkippedChangeItem]


class TargetCvEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    section: Literal["summary", "work_experience", "education", "projects"]
    title: str | None = None
    organization: str | None = None


class SkillPlacement(BaseModel):
    model_config = ConfigDict(extra="ignore")

    skill: str = Field(min_length=1)
    targetCvEntry: TargetCvEntry
    userProvidedContext: str = ""


class SkillPlacementChange(BaseModel):
    id: str
    skill: str
    section: str
    original: str
    suggested: str
    reason: str


class SkillsOptimizeResponse(BaseModel):
    success: bool = True
    optimizedCV: str
    changesApplied: list[dict[str, Any]]
    skillPlacementChanges: list[SkillPlacementChange]


class CoverLetterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cvText: str = Field(default="", max_length=MAX_TEXT_LENGTH)
    jobDescription: str = Field(default="", max_length=MAX_TEXT_LENGTH)
    jobTitle: str = ""
    companyName: str = ""


class CoverLetterResponse(BaseModel):
    success: bool = True
    coverLetter: str


class ExportPdfRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(default="", max_length=MAX_TEXT_LENGTH)
    fileName: str | None = None


class ExportResumeRequest(BaseModel):
    """Either builder data or raw CV text; builder data wins when both are sent."""

    model_config = ConfigDict(extra="forbid")

    resumeData: ResumeData | None = None
    text: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    fileName: str | None = None


class ParseCvRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(max_length=MAX_TEXT_LENGTH)


class TemplateFitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resume: PreviewDocument
    templateId: str


class TemplateSuggestRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resume: PreviewDocument


class FeedbackCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: Any = None
    comment: str | None = Field(default=None, max_length=5_000)
    source: str | None = Field(default=None, max_length=120)


class FeedbackItem(BaseModel):
    id: str
    createdAt: str
    rating: int
    comment: str
    source: str
    userId: int | None = None
    username: str | None = None


class FeedbackCreateResponse(BaseModel):
    success: bool = True
    feedback: FeedbackItem
    storage: Literal["database", "local"]
    note: str | None = None


class FeedbackListResponse(BaseModel):
    success: bool = True
    feedback: list[FeedbackItem]
    source: Literal["database", "local"]
    note: str | None = None


class RatingBucket(BaseModel):
    rating: int
    count: int
    percentage: float


class FeedbackStatsResponse(BaseModel):
    total: int
    averageRating: float
    distribution: list[RatingBucket]
    withComments: int
    source: Literal["database", "local"]


class TrackResponse(BaseModel):
    count: int


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=1, max_length=120)

    @field_validator("username", "password")
    @classmethod
    def normalize_auth_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("text cannot be blank")
        return normalized


class AuthUser(BaseModel):
    id: int
    username: str
    isAdmin: bool


class AuthLoginResponse(BaseModel):
    requestId: str
    sessionId: str
    user: AuthUser
    token: str
    expiresAt: str


class AuthMeResponse(BaseModel):
    requestId: str
    sessionId: str
    user: AuthUser
    expiresAt: str


class AuthLogoutResponse(BaseModel):
    requestId: str
    revoked: bool


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_seconds: int
    message: str | None = None


class AuthLoginRateLimiter:
    def __init__(self, *, fail_limit: int, window_seconds: int, lock_seconds: int):
        self.fail_limit = max(2, int(fail_limit))
        self.window_seconds = max(10, int(window_seconds))
        self.lock_seconds = max(10, int(lock_seconds))
        self._failures: dict[str, deque[float]] = defaultdict(deque)
        self._blocked_until: dict[str, float] = {}
        self._lock = Lock()

    def _cleanup(self, key: str, now: float) -> deque[float]:
        queue = self._failures[key]
        while queue and now - queue[0] > self.window_seconds:
            queue.popleft()
        return queue

    def check(self, *, key: str) -> RateLimitDecision:
        now = time.time()
        with self._lock:
            blocked_until = float(self._blocked_until.get(key, 0.0))
            if blocked_until > now:
                reset_seconds = int(max(1, blocked_until - now))
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_seconds=reset_seconds,
                    message=f"Too many failed login attempts. Retry in {reset_seconds}s",
                )
            self._blocked_until.pop(key, None)
            queue = self._cleanup(key, now)
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.fail_limit - len(queue)),
                reset_seconds=self.window_seconds,
            )

    def register_failure(self, *, key: str) -> RateLimitDecision:
        now = time.time()
        with self._lock:
            queue = self._cleanup(key, now)
            queue.append(now)
            if len(queue) >= self.fail_limit:
                self._blocked_until[key] = now + self.lock_seconds
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_seconds=self.lock_seconds,
                    message=f"Too many failed login attempts. Retry in {self.lock_seconds}s",
                )
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.fail_limit - len(queue)),
                reset_seconds=self.window_seconds,
            )

    def register_success(self, *, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
            self._blocked_until.pop(key, None)


class SessionRateLimiter:
    """Per-session budget for model calls plus a guard against identical resubmits."""

    def __init__(self, *, limit: int, window_seconds: int, duplicate_limit: int, duplicate_window_seconds: int):
        self.limit = max(1, limit)
        self.window_seconds = max(1, window_seconds)
        self.duplicate_limit = max(2, duplicate_limit)
        self.duplicate_window_seconds = max(1, duplicate_window_seconds)
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._duplicates: dict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def consume(self, *, session_id: str, payload_signature: str) -> RateLimitDecision:
        now = time.time()
        with self._lock:
            queue = self._hits[session_id]
            while queue and now - queue[0] > self.window_seconds:
                queue.popleft()

            if len(queue) >= self.limit:
                reset_seconds = int(max(1, self.window_seconds - (now - queue[0])))
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_seconds=reset_seconds,
                    message=f"Rate limit exceeded. Retry in {reset_seconds}s",
                )

            duplicate_queue = self._duplicates[(session_id, payload_signature)]
            while duplicate_queue and now - duplicate_queue[0] > self.duplicate_window_seconds:
                duplicate_queue.popleft()

            if len(duplicate_queue) >= self.duplicate_limit:
                reset_seconds = int(max(1, self.duplicate_window_seconds - (now - duplicate_queue[0])))
                return RateLimitDecision(
                    allowed=False,
                    remaining=max(0, self.limit - len(queue)),
                    reset_seconds=reset_seconds,
                    message="Too many repeated submissions. Please adjust input and retry later.",
                )

            queue.append(now)
            duplicate_queue.append(now)
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.limit - len(queue)),
                reset_seconds=self.window_seconds,
            )


class MetricsTracker:
    def __init__(self) -> None:
        self._lock = Lock()
        self._request_total = 0
        self._path_counts: dict[str, int] = defaultdict(int)
        self._status_counts: dict[str, int] = defaultdict(int)
        self._error_counts: dict[str, int] = defaultdict(int)
        self._latencies_by_path: dict[str, deque[int]] = defaultdict(lambda: deque(maxlen=500))

    def record(self, *, path: str, status: int, duration_ms: int, error_code: str | None) -> None:
        with self._lock:
            self._request_total += 1
            self._path_counts[path] += 1
            self._status_counts[str(status)] += 1
            self._latencies_by_path[path].append(max(0, duration_ms))
            if error_code:
                self._error_counts[error_code] += 1

    @staticmethod
    def _percentile(values: list[int], p: float) -> int:
        if not values:
            return 0
        ranked = sorted(values)
        idx = int(round((len(ranked) - 1) * p))
        return ranked[max(0, min(idx, len(ranked) - 1))]

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            latency = {
                path: {
                    "count": len(values),
                    "p50_ms": self._percentile(list(values), 0.5),
                    "p95_ms": self._percentile(list(values), 0.95),
                }
                for path, values in self._latencies_by_path.items()
            }
            return {
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "requestTotal": self._request_total,
                "pathCounts": dict(self._path_counts),
                "statusCounts": dict(self._status_counts),
                "errorCounts": dict(self._error_counts),
                "latency": latency,
            }


RATE_LIMIT_PER_MINUTE = get_env_int("CVBOOST_RATE_LIMIT_PER_MINUTE", 20, min_value=1, max_value=500)
DUPLICATE_SUBMIT_LIMIT = get_env_int("CVBOOST_DUPLICATE_LIMIT", 3, min_value=2, max_value=50)
RATE_LIMITER = SessionRateLimiter(
    limit=RATE_LIMIT_PER_MINUTE,
    window_seconds=60,
    duplicate_limit=DUPLICATE_SUBMIT_LIMIT,
    duplicate_window_seconds=15,
)
AUTH_LOGIN_RATE_LIMITER = AuthLoginRateLimiter(
    fail_limit=AUTH_LOGIN_FAIL_LIMIT,
    window_seconds=AUTH_LOGIN_FAIL_WINDOW_SECONDS,
    lock_seconds=AUTH_LOGIN_LOCK_SECONDS,
)
METRICS = MetricsTracker()


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


def get_session_id(request: Request) -> str:
    return getattr(request.state, "session_id", "anonymous")


def get_current_user(request: Request) -> dict[str, Any] | None:
    user = getattr(request.state, "current_user", None)
    return user if isinstance(user, dict) else None


def require_current_user(request: Request) -> dict[str, Any]:
    user = get_current_user(request)
    if user is None:
        raise_api_error(status_code=401, code="AUTH_LOGIN_REQUIRED", message="login required")
    return user


def require_admin_user(request: Request) -> dict[str, Any]:
    user = require_current_user(request)
    if not is_admin_username(str(user.get("username", ""))):
        raise_api_error(status_code=403, code="FORBIDDEN", message="admin access required")
    return user


def to_auth_user(user: dict[str, Any]) -> AuthUser:
    username = str(user.get("username", ""))
    return AuthUser(id=int(user.get("id", 0)), username=username, isAdmin=is_admin_username(username))


def build_login_rate_limiter_key(*, request: Request, username: str) -> str:
    client_host = ""
    if request.client is not None and request.client.host:
        client_host = request.client.host.strip()
    return f"{username.strip().lower()}|{client_host or get_session_id(request)}"


def set_error_context(request: Request, *, error_code: str, exception_type: str) -> None:
    request.state.error_code = error_code
    request.state.exception_type = exception_type


def build_error_payload(*, code: str, message: str, request_id: str) -> dict[str, str]:
    return {
        "code": code,
        "message": message,
        "requestId": request_id,
    }


def raise_api_error(
    *,
    status_code: int,
    code: str,
    message: str,
    extra: dict[str, Any] | None = None,
) -> None:
    detail: dict[str, Any] = {"code": code, "message": message}
    if isinstance(extra, dict):
        detail.update(extra)
    raise HTTPException(status_code=status_code, detail=detail)


def payload_signature(*parts: object) -> str:
    encoded = json.dumps(parts, ensure_ascii=False, sort_keys=True, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def apply_rate_limit_or_raise(*, request: Request, signature: str) -> None:
    decision = RATE_LIMITER.consume(session_id=get_session_id(request), payload_signature=signature)
    request.state.rate_limit = {
        "x-ratelimit-limit": str(RATE_LIMITER.limit),
        "x-ratelimit-remaining": str(decision.remaining),
        "x-ratelimit-reset-sec": str(decision.reset_seconds),
    }
    if not decision.allowed:
        raise_api_error(
            status_code=429,
            code="TOO_MANY_REQUESTS",
            message=decision.message or "Rate limit exceeded",
            extra={"retryAfterSec": decision.reset_seconds},
        )


def run_chat(messages: list[dict[str, str]], **options: Any) -> str:
    """Call the model and translate client failures into API errors."""
    try:
        return chat_completion(messages, **options)
    except LLMNotConfiguredError as exc:
        raise_api_error(status_code=500, code="LLM_NOT_CONFIGURED", message=str(exc))
    except LLMResponseError as exc:
        raise_api_error(status_code=502, code="LLM_BAD_RESPONSE", message=str(exc))
    except LLMRequestError as exc:
        raise_api_error(status_code=502, code="LLM_UPSTREAM_ERROR", message=str(exc))
    return ""


def clamp_score(value: object, *, default: int, low: int = 0, high: int = 100) -> int:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return int(max(low, min(high, round(number))))


def normalize_string_list(raw: object, *, limit: int = 20) -> list[str]:
    if not isinstance(raw, list):
        return []
    result: list[str] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        value = item.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        result.append(value)
        if len(result) >= limit:
            break
    return result


def normalize_cv_entries(raw: object) -> dict[str, Any]:
    source = raw if isinstance(raw, dict) else {}
    summary = source.get("summary")
    exists = bool(summary.get("exists")) if isinstance(summary, dict) else False

    def entries(key: str, *, with_org: bool) -> list[dict[str, str]]:
        items = source.get(key)
        result: list[dict[str, str]] = []
        if not isinstance(items, list):
            return result
        for item in items:
            if not isinstance(item, dict):
                continue
            title = str(item.get("title") or "").strip()
            if not title:
                continue
            entry = {"title": title}
            if with_org:
                entry["organization"] = str(item.get("organization") or "").strip()
            result.append(entry)
        return result

    return {
        "summary": {"exists": exists},
        "work_experience": entries("work_experience", with_org=True),
        "education": entries("education", with_org=True),
        "projects": entries("projects", with_org=False),
    }


def normalize_analysis(raw: dict[str, Any], *, cv_text: str) -> dict[str, Any]:
    changes = coerce_changes(raw.get("suggestedChanges"))
    keywords = raw.get("keywords") if isinstance(raw.get("keywords"), dict) else {}

    optimized_cv = raw.get("optimizedCV")
    if not isinstance(optimized_cv, str) or not optimized_cv.strip():
        optimized_cv = apply_changes(cv_text, changes).text

    offsets = find_change_offsets(cv_text, changes)
    return {
        "overallScore": clamp_score(raw.get("overallScore"), default=0),
        "summary": str(raw.get("summary") or "").strip(),
        "strengths": normalize_string_list(raw.get("strengths")),
        "improvements": normalize_string_list(raw.get("improvements")),
        "missingKeySkills": normalize_string_list(raw.get("missingKeySkills"), limit=MAX_MISSING_SKILLS),
        "cv_entries": normalize_cv_entries(raw.get("cv_entries")),
        "suggestedChanges": [
            {
                "id": change.id,
                "section": change.section,
                "original": change.original,
                "suggested": change.suggested,
                "reason": change.reason,
            }
            for change in changes
        ],
        "changeOffsets": {key: list(span) if span else None for key, span in offsets.items()},
        "keywords": {
            "present": normalize_string_list(keywords.get("present")),
            "missing": normalize_string_list(keywords.get("missing")),
        },
        "optimizedCV": optimized_cv,
    }


def parse_rating(value: object) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if float(value) != int(value) or not 1 <= int(value) <= 5:
        return None
    return int(value)


def to_feedback_item(row: dict[str, Any]) -> FeedbackItem:
    return FeedbackItem(
        id=str(row["id"]),
        createdAt=str(row.get("created_at", "")),
        rating=int(row.get("rating", 0)),
        comment=str(row.get("comment") or ""),
        source=str(row.get("source") or "unknown"),
        userId=row.get("user_id"),
        username=row.get("username"),
    )


def track_cv_optimized() -> int:
    try:
        if is_production():
            return increment_counter(CV_OPTIMIZED_COUNTER)
        return get_counter(CV_OPTIMIZED_COUNTER)
    except (sqlite3.Error, OSError) as exc:
        usage_logger.warning(
            json.dumps(
                {
                    "event": "usage_counter_unavailable",
                    "production": is_production(),
                    "exception_type": type(exc).__name__,
                    "error": str(exc),
                },
                ensure_ascii=False,
            )
        )
        return 0


def read_cv_text(cv_text: str, upload: UploadFile | None) -> str:
    text = (cv_text or "").strip()
    if text or upload is None:
        return text

    data = upload.file.read()
    if len(data) > MAX_UPLOAD_BYTES:
        raise_api_error(
            status_code=413,
            code="PAYLOAD_TOO_LARGE",
            message=f"Upload too large, max {MAX_UPLOAD_BYTES} bytes",
        )
    try:
        return extract_pdf_text(data)
    except DocumentError as exc:
        logger.warning(
            json.dumps(
                {"event": "pdf_parse_failed", "filename": upload.filename, "reason": str(exc)},
                ensure_ascii=False,
            )
        )
        raise_api_error(
            status_code=400,
            code="PDF_PARSE_FAILED",
            message="Failed to parse PDF. Please try pasting your CV text instead.",
        )
    return ""


def resolve_job_description(*, job_description: str, job_url: str) -> str:
    description = (job_description or "").strip()
    url = (job_url or "").strip()
    if description or not url:
        return description

    try:
        page_text = fetch_page_text(url)
    except DocumentError:
        raise_api_error(
            status_code=400,
            code="JOB_URL_FETCH_FAILED",
            message="Failed to fetch job description from URL. Please paste the job description manually.",
        )

    try:
        return chat_completion(
            [{"role": "user", "content": build_job_extract_prompt(page_text)}],
            model=get_extract_model(),
            temperature=0.3,
        )
    except LLMNotConfiguredError as exc:
        raise_api_error(status_code=500, code="LLM_NOT_CONFIGURED", message=str(exc))
    except (LLMRequestError, LLMResponseError):
        raise_api_error(
            status_code=400,
            code="JOB_URL_FETCH_FAILED",
            message="Failed to fetch job description from URL. Please paste the job description manually.",
        )
    return ""


def safe_attachment_filename(file_name: str | None, *, default: str) -> str:
    cleaned = (file_name or "").replace('"', "").strip()
    return cleaned or default


def attachment_headers(file_name: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{file_name}"'}


def log_request_event(
    *,
    path: str,
    method: str,
    status: int,
    duration_ms: int,
    request_id: str,
    session_id: str,
    error_code: str | None,
    exception_type: str | None,
) -> None:
    logger.info(
        json.dumps(
            {
                "event": "request",
                "path": path,
                "method": method,
                "status": status,
                "duration_ms": duration_ms,
                "requestId": request_id,
                "sessionId": session_id,
                "error_code": error_code,
                "exception_type": exception_type,
            },
            ensure_ascii=False,
        )
    )


app = FastAPI(title="CV Boost API", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def bootstrap_local_auth() -> None:
    try:
        ensure_default_local_account()
    except (sqlite3.Error, OSError) as exc:
        logger.warning(
            json.dumps(
                {"event": "auth_bootstrap_failed", "exception_type": type(exc).__name__, "error": str(exc)},
                ensure_ascii=False,
            )
        )


@app.middleware("http")
async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    inbound_session_id = request.headers.get("x-session-id") or request.cookies.get(SESSION_COOKIE_NAME) or ""

    request.state.request_id = request_id
    request.state.error_code = None
    request.state.exception_type = None

    started_at = time.perf_counter()
    is_preflight_request = request.method.upper() == "OPTIONS"

    if inbound_session_id and not validate_session_id(inbound_session_id):
        inbound_session_id = ""

    session_id = inbound_session_id or str(uuid.uuid4())
    request.state.session_id = session_id
    request.state.current_user = None

    auth_token = parse_auth_session_token(request)
    if auth_token and not is_preflight_request:
        try:
            auth_session = validate_auth_session(token=auth_token)
        except (sqlite3.Error, OSError):
            auth_session = None
        if auth_session is not None:
            request.state.current_user = {
                "id": int(auth_session["user_id"]),
                "username": str(auth_session["username"]),
            }
            request.state.auth_expires_at = str(auth_session["expires_at"])

    def finalize(response: Response) -> Response:
        duration_ms = int((time.perf_counter() - started_at) * 1000)

        rate_limit_headers = getattr(request.state, "rate_limit", None)
        if isinstance(rate_limit_headers, dict):
            for key, value in rate_limit_headers.items():
                response.headers[key] = value

        response.headers["x-request-id"] = request_id
        response.headers["x-session-id"] = session_id
        response.set_cookie(SESSION_COOKIE_NAME, session_id, httponly=True, samesite="lax")

        error_code = getattr(request.state, "error_code", None)
        exception_type = getattr(request.state, "exception_type", None)

        METRICS.record(
            path=request.url.path,
            status=response.status_code,
            duration_ms=duration_ms,
            error_code=error_code,
        )
        log_request_event(
            path=request.url.path,
            method=request.method,
            status=response.status_code,
            duration_ms=duration_ms,
            request_id=request_id,
            session_id=session_id,
            error_code=error_code,
            exception_type=exception_type,
        )
        return response

    if (
        not is_preflight_request
        and is_login_required_path(request.url.path, request.method)
        and get_current_user(request) is None
    ):
        set_error_context(request, error_code="AUTH_LOGIN_REQUIRED", exception_type="AuthLoginRequired")
        return finalize(
            JSONResponse(
                status_code=401,
                content=build_error_payload(
                    code="AUTH_LOGIN_REQUIRED",
                    message="login required",
                    request_id=request_id,
                ),
            )
        )

    if request.url.path.startswith("/api/") and request.method in {"POST", "PUT", "PATCH"}:
        is_multipart = request.headers.get("content-type", "").lower().startswith("multipart/")
        max_bytes = MAX_UPLOAD_BYTES if is_multipart else MAX_JSON_BODY_BYTES
        content_length = request.headers.get("content-length")
        measured_length: int | None = None

        if content_length:
            try:
                measured_length = int(content_length)
            except ValueError:
                measured_length = None

        if measured_length is None:
            body = await request.body()
            measured_length = len(body)

            async def receive() -> dict[str, Any]:
                return {"type": "http.request", "body": body, "more_body": False}

            request._receive = receive

        if measured_length > max_bytes:
            set_error_context(request, error_code="PAYLOAD_TOO_LARGE", exception_type="PayloadTooLarge")
            return finalize(
                JSONResponse(
                    status_code=413,
                    content=build_error_payload(
                        code="PAYLOAD_TOO_LARGE",
                        message=f"Payload too large, max {max_bytes} bytes",
                        request_id=request_id,
                    ),
                )
            )

    response = await call_next(request)
    return finalize(response)


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "llmConfigured": is_configured()}


@app.post("/api/auth/login", response_model=AuthLoginResponse)
def auth_login(payload: AuthLoginRequest, request: Request, response: Response) -> AuthLoginResponse:
    limiter_key = build_login_rate_limiter_key(request=request, username=payload.username)
    pre_check = AUTH_LOGIN_RATE_LIMITER.check(key=limiter_key)
    if not pre_check.allowed:
        raise_api_error(
            status_code=429,
            code="AUTH_LOGIN_RATE_LIMITED",
            message=pre_check.message or "Too many failed login attempts",
            extra={"retryAfterSec": pre_check.reset_seconds},
        )

    user, verify_reason = verify_local_account_with_reason(username=payload.username, password=payload.password)
    if user is None:
        if verify_reason == VERIFY_REASON_ACCOUNT_INACTIVE:
            raise_api_error(status_code=403, code="AUTH_ACCOUNT_DISABLED", message="account is disabled")

        fail_decision = AUTH_LOGIN_RATE_LIMITER.register_failure(key=limiter_key)
        if not fail_decision.allowed:
            raise_api_error(
                status_code=429,
                code="AUTH_LOGIN_RATE_LIMITED",
                message=fail_decision.message or "Too many failed login attempts",
                extra={"retryAfterSec": fail_decision.reset_seconds},
            )
        raise_api_error(status_code=401, code="AUTH_INVALID_CREDENTIALS", message="invalid username or password")

    AUTH_LOGIN_RATE_LIMITER.register_success(key=limiter_key)

    auth_session = create_auth_session(
        user_id=int(user["id"]),
        session_id=get_session_id(request),
        ttl_seconds=AUTH_SESSION_TTL_SECONDS,
    )
    response.set_cookie(
        AUTH_COOKIE_NAME,
        auth_session["token"],
        httponly=True,
        samesite="lax",
        max_age=int(auth_session["ttl_seconds"]),
    )

    return AuthLoginResponse(
        requestId=get_request_id(request),
        sessionId=get_session_id(request),
        user=to_auth_user(user),
        token=str(auth_session["token"]),
        expiresAt=str(auth_session["expires_at"]),
    )


@app.get("/api/auth/me", response_model=AuthMeResponse)
def auth_me(request: Request) -> AuthMeResponse:
    user = require_current_user(request)
    return AuthMeResponse(
        requestId=get_request_id(request),
        sessionId=get_session_id(request),
        user=to_auth_user(user),
        expiresAt=str(getattr(request.state, "auth_expires_at", "")),
    )


@app.post("/api/auth/logout", response_model=AuthLogoutResponse)
def auth_logout(request: Request, response: Response) -> AuthLogoutResponse:
    token = parse_auth_session_token(request)
    if not token:
        raise_api_error(status_code=401, code="AUTH_TOKEN_REQUIRED", message="session token is required")

    revoked = revoke_auth_session(token=token)
    response.delete_cookie(AUTH_COOKIE_NAME)
    return AuthLogoutResponse(requestId=get_request_id(request), revoked=revoked)


@app.post("/api/analyze")
def analyze(
    request: Request,
    cvText: str = Form(default=""),
    cv: UploadFile | None = File(default=None),
    mode: str = Form(default="specific_role"),
    jobDescription: str = Form(default=""),
    jobUrl: str = Form(default=""),
    jobTitle: str = Form(default=""),
    companyName: str = Form(default=""),
) -> dict[str, Any]:
    cv_text = read_cv_text(cvText, cv)
    if not cv_text:
        raise_api_error(status_code=400, code="CV_REQUIRED", message="No CV content provided")

    if not (jobDescription or "").strip() and (jobUrl or "").strip():
        apply_rate_limit_or_raise(request=request, signature=payload_signature("job-url", jobUrl))
    job_description = resolve_job_description(job_description=jobDescription, job_url=jobUrl)

    if not job_description.strip() and not jobTitle.strip():
        raise_api_error(
            status_code=400,
            code="JOB_CONTEXT_REQUIRED",
            message="Please provide a Job Title, Job Description, or URL to continue.",
        )

    effective_title = (
        clean_title(jobTitle)
        or (infer_job_title(job_description, companyName) if job_description else "")
        or "Role"
    )

    apply_rate_limit_or_raise(
        request=request,
        signature=payload_signature("analyze", cv_text, job_description, effective_title),
    )
    content = run_chat(
        [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_analysis_prompt(
                    cv_text=cv_text,
                    job_title=effective_title,
                    company_name=companyName,
                    job_description=job_description,
                ),
            },
        ],
        temperature=0.5,
        json_mode=True,
    )

    try:
        raw_analysis = extract_json_object(content)
    except LLMResponseError:
        logger.warning(
            json.dumps(
                {"event": "analysis_parse_failed", "requestId": get_request_id(request), "raw_excerpt": content[:200]},
                ensure_ascii=False,
            )
        )
        raise_api_error(
            status_code=500,
            code="ANALYSIS_PARSE_FAILED",
            message="Failed to parse analysis results. Please try again.",
        )

    analysis = normalize_analysis(raw_analysis, cv_text=cv_text)
    track_cv_optimized()

    return {
        "success": True,
        "analysis": analysis,
        "meta": {
            "mode": "title_only" if mode == "title_only" else "specific_role",
            "jobTitle": effective_title,
            "jobUrl": jobUrl,
            "companyName": companyName,
            "cvTextUsed": cv_text,
            "jobDescriptionUsed": job_description,
        },
        "requestId": get_request_id(request),
    }


@app.post("/api/score-teaser")
def score_teaser(
    request: Request,
    cvText: str = Form(default=""),
    cvFile: UploadFile | None = File(default=None),
    targetRole: str = Form(default=""),
) -> dict[str, Any]:
    if not is_configured():
        raise_api_error(
            status_code=503,
            code="SERVICE_UNAVAILABLE",
            message="Service temporarily unavailable. Please try again later.",
        )

    cv_text = read_cv_text(cvText, cvFile)
    if len(cv_text.strip()) < MIN_TEASER_CV_CHARS:
        raise_api_error(status_code=400, code="CV_TOO_SHORT", message="Please provide a valid resume with more content.")

    role = targetRole.strip()
    if len(role) < MIN_TEASER_ROLE_CHARS:
        raise_api_error(status_code=400, code="TARGET_ROLE_REQUIRED", message="Please select a target role.")

    apply_rate_limit_or_raise(request=request, signature=payload_signature("teaser", cv_text, role))

    fallback = {
        "score": TEASER_FALLBACK_SCORE,
        "summary": f"Your resume has been analyzed for {role}. Sign up to see detailed insights.",
        "targetRole": role,
        "analyzedAt": int(time.time() * 1000),
        "fallbackUsed": True,
    }

    try:
        content = chat_completion(
            [{"role": "user", "content": build_teaser_prompt(cv_text=cv_text, target_role=role)}],
            temperature=0.5,
            max_tokens=300,
        )
    except LLMNotConfiguredError:
        raise_api_error(
            status_code=503,
            code="SERVICE_UNAVAILABLE",
            message="Service temporarily unavailable. Please try again later.",
        )
    except LLMResponseError:
        content = ""
    except LLMRequestError as exc:
        raise_api_error(status_code=502, code="LLM_UPSTREAM_ERROR", message=str(exc))

    if not content:
        return fallback

    try:
        parsed = extract_json_object(content)
    except LLMResponseError:
        logger.warning(
            json.dumps({"event": "teaser_parse_failed", "raw_excerpt": content[:200]}, ensure_ascii=False)
        )
        return fallback

    # A zero or missing score reads as "no score" and falls back to the neutral default.
    score = clamp_score(parsed.get("overallScore") or TEASER_FALLBACK_SCORE, default=TEASER_FALLBACK_SCORE)
    summary = str(parsed.get("summary") or f"Analysis complete for {role}.")[:TEASER_SUMMARY_CHARS]
    return {
        "score": score,
        "summary": summary,
        "targetRole": role,
        "analyzedAt": int(time.time() * 1000),
        "fallbackUsed": False,
    }


@app.post("/api/analyze-resume", response_model=AnalyzeResumeResponse)
def analyze_resume(payload: AnalyzeResumeRequest, request: Request) -> AnalyzeResumeResponse:
    resume_data = payload.resumeData.model_dump()
    apply_rate_limit_or_raise(request=request, signature=payload_signature("review", resume_data))

    try:
        content = chat_completion(
            [
                {"role": "system", "content": REVIEW_SYSTEM_PROMPT},
                {"role": "user", "content": build_resume_review_prompt(resume_data=resume_data)},
            ],
            temperature=0.7,
            max_tokens=500,
            json_mode=True,
        )
        parsed = extract_json_object(content)
    except (LLMNotConfiguredError, LLMRequestError, LLMResponseError) as exc:
        logger.warning(
            json.dumps(
                {"event": "resume_review_fallback", "exception_type": type(exc).__name__, "error": str(exc)},
                ensure_ascii=False,
            )
        )
        return AnalyzeResumeResponse(
            score=REVIEW_FALLBACK_SCORE,
            suggestions=list(REVIEW_FALLBACK_SUGGESTIONS),
            fallbackUsed=True,
        )

    suggestions = normalize_string_list(parsed.get("suggestions"), limit=5)
    return AnalyzeResumeResponse(
        score=clamp_score(parsed.get("score") or 70, default=70),
        suggestions=suggestions or ["Unable to generate suggestions"],
        fallbackUsed=False,
    )


def rewrite_text(*, request: Request, text: str, system_prompt: str, user_content: str, max_tokens: int | None) -> str:
    apply_rate_limit_or_raise(request=request, signature=payload_signature("rewrite", text, system_prompt))
    improved = run_chat(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        temperature=0.7,
        max_tokens=max_tokens,
    )
    if not improved:
        raise_api_error(status_code=502, code="LLM_BAD_RESPONSE", message="No response from AI")
    return improved


@app.post("/api/optimize-text", response_model=OptimizeTextResponse)
def optimize_text(payload: OptimizeTextRequest, request: Request) -> OptimizeTextResponse:
    if not payload.text.strip():
        raise_api_error(status_code=400, code="TEXT_REQUIRED", message="No text provided")

    improved = rewrite_text(
        request=request,
        text=payload.text,
        system_prompt=build_text_rewrite_system_prompt(context=payload.context),
        user_content=f"Improve this text:\n\n{payload.text}",
        max_tokens=500,
    )
    return OptimizeTextResponse(improvedText=improved)


@app.post("/api/optimize")
def optimize(payload: OptimizeRequest, request: Request) -> dict[str, Any]:
    if payload.text and payload.text.strip():
        improved = rewrite_text(
            request=request,
            text=payload.text,
            system_prompt=build_builder_text_system_prompt(context=payload.context),
            user_content=payload.text,
            max_tokens=None,
        )
        return {"mode": "text", "improvedText": improved}

    if payload.resumeData is not None:
        resume_data = payload.resumeData.model_dump()
        job_description = (payload.jobDescription or "").strip()
        targeted = len(job_description) > TARGETED_DESCRIPTION_MIN_CHARS

        apply_rate_limit_or_raise(
            request=request,
            signature=payload_signature("structured", resume_data, job_description),
        )
        content = run_chat(
            [
                {"role": "system", "content": build_structured_optimize_system_prompt(targeted=targeted)},
                {
                    "role": "user",
                    "content": build_structured_optimize_user_message(
                        resume_data=resume_data,
                        job_description=job_description,
                        targeted=targeted,
                    ),
                },
            ],
            temperature=0.3,
            json_mode=True,
        )
        try:
            result = extract_json_object(content)
        except LLMResponseError as exc:
            raise_api_error(status_code=502, code="LLM_BAD_RESPONSE", message=str(exc))

        result["score"] = clamp_score(result.get("score"), default=0)
        result["missingKeywords"] = normalize_string_list(result.get("missingKeywords"))
        result["keyImprovements"] = normalize_string_list(result.get("keyImprovements"))
        result["mode"] = "structured"
        result["targeted"] = targeted
        return result

    if payload.cvText is not None and payload.changes is not None:
        changes = coerce_changes([item.model_dump() for item in payload.changes])
        patched = apply_changes(payload.cvText, changes)
        logger.info(
            json.dumps(
                {
                    "event": "changes_applied",
                    "requestId": get_request_id(request),
                    "applied": len(patched.applied),
                    "skipped": len(patched.skipped),
                },
                ensure_ascii=False,
            )
        )
        return ApplyChangesResponse(
            optimizedCV=patched.text,
            applied=patched.applied,
            skipped=[SkippedChangeItem(**item) for item in skipped_to_dicts(patched.skipped)],
        ).model_dump()

    raise_api_error(
        status_code=400,
        code="INVALID_OPTIMIZE_REQUEST",
        message="Provide text, resumeData, or cvText with changes",
    )
    return {}


def parse_skill_placements(raw: str) -> list[SkillPlacement]:
    try:
        parsed = json.loads(raw or "[]")
    except json.JSONDecodeError:
        parsed = None
    if not isinstance(parsed, list):
        raise_api_error(status_code=400, code="INVALID_SKILL_PLACEMENTS", message="Invalid skillPlacements payload")

    try:
        return [SkillPlacement.model_validate(item) for item in parsed]
    except ValidationError:
        raise_api_error(status_code=400, code="INVALID_SKILL_PLACEMENTS", message="Invalid skillPlacements payload")
    return []


@app.post("/api/optimize-with-skills", response_model=SkillsOptimizeResponse)
def optimize_with_skills(
    request: Request,
    cvText: str = Form(default=""),
    cv: UploadFile | None = File(default=None),
    skillPlacements: str = Form(default="[]"),
    jobTitle: str = Form(default=""),
    jobDescription: str = Form(default=""),
) -> SkillsOptimizeResponse:
    cv_text = read_cv_text(cvText, cv)
    if not cv_text:
        raise_api_error(status_code=400, code="CV_REQUIRED", message="No CV content provided")

    placements = parse_skill_placements(skillPlacements)
    if not placements:
        raise_api_error(status_code=400, code="NO_SKILL_PLACEMENTS", message="No skill placements provided")

    placement_dicts = [item.model_dump() for item in placements]
    apply_rate_limit_or_raise(
        request=request,
        signature=payload_signature("skills", cv_text, placement_dicts, jobTitle),
    )
    content = run_chat(
        [
            {"role": "system", "content": SKILLS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_skills_prompt(
                    cv_text=cv_text,
                    job_title=jobTitle,
                    job_description=jobDescription,
                    placements=placement_dicts,
                ),
            },
        ],
        temperature=0.5,
        json_mode=True,
    )
    try:
        result = extract_json_object(content)
    except LLMResponseError as exc:
        raise_api_error(status_code=502, code="LLM_BAD_RESPONSE", message=str(exc))

    changes_applied = [item for item in result.get("changesApplied") or [] if isinstance(item, dict)]

    placement_changes: list[SkillPlacementChange] = []
    for idx, placement in enumerate(placement_dicts):
        location = describe_entry_location(placement["targetCvEntry"])
        bullets = changes_applied[idx].get("bulletsAdded") if idx < len(changes_applied) else None
        bullet_lines = normalize_string_list(bullets) if isinstance(bullets, list) else []
        placement_changes.append(
            SkillPlacementChange(
                id=f"skill_{idx + 1}",
                skill=placement["skill"],
                section=location,
                original=placement["skill"],
                suggested="\n".join(f"• {line}" for line in bullet_lines) if bullet_lines else placement["userProvidedContext"],
                reason=f"Added to {location} based on your experience",
            )
        )

    optimized_cv = result.get("optimizedCV")
    return SkillsOptimizeResponse(
        optimizedCV=optimized_cv if isinstance(optimized_cv, str) and optimized_cv.strip() else cv_text,
        changesApplied=changes_applied,
        skillPlacementChanges=placement_changes,
    )


@app.post("/api/cover-letter", response_model=CoverLetterResponse)
def cover_letter(payload: CoverLetterRequest, request: Request) -> CoverLetterResponse:
    if not payload.cvText.strip():
        raise_api_error(status_code=400, code="CV_REQUIRED", message="Missing cvText")

    if not payload.jobDescription.strip() and not payload.jobTitle.strip():
        raise_api_error(
            status_code=400,
            code="JOB_CONTEXT_REQUIRED",
            message="Please provide either a job title or job description",
        )

    effective_title = (
        clean_title(payload.jobTitle)
        or infer_job_title(payload.jobDescription, payload.companyName)
        or "Role"
    )
    apply_rate_limit_or_raise(
        request=request,
        signature=payload_signature("cover-letter", payload.cvText, payload.jobDescription, effective_title),
    )
    letter = run_chat(
        [
            {
                "role": "user",
                "content": build_cover_letter_prompt(
                    cv_text=payload.cvText,
                    job_title=effective_title,
                    job_description=payload.jobDescription,
                    company_name=payload.companyName,
                ),
            }
        ],
        temperature=0.7,
    )
    if not letter:
        raise_api_error(status_code=502, code="LLM_BAD_RESPONSE", message="Empty cover letter result")
    return CoverLetterResponse(coverLetter=letter)


@app.post("/api/export-cover-letter-pdf")
def export_cover_letter_pdf(payload: ExportPdfRequest) -> Response:
    if not payload.text.strip():
        raise_api_error(status_code=400, code="TEXT_REQUIRED", message="Missing text")

    return Response(
        content=build_cover_letter_pdf(payload.text),
        media_type="application/pdf",
        headers=attachment_headers(safe_attachment_filename(payload.fileName, default="Cover-Letter.pdf")),
    )


@app.post("/api/export-pdf")
def export_pdf(payload: ExportResumeRequest) -> Response:
    if payload.resumeData is not None:
        text = resume_to_text(payload.resumeData.model_dump())
    else:
        text = payload.text or ""
    if not text.strip():
        raise_api_error(status_code=400, code="TEXT_REQUIRED", message="Missing text")

    return Response(
        content=build_resume_pdf(text),
        media_type="application/pdf",
        headers=attachment_headers(safe_attachment_filename(payload.fileName, default="Optimized-CV.pdf")),
    )


@app.post("/api/export-docx")
def export_docx(payload: ExportResumeRequest) -> Response:
    if payload.resumeData is not None:
        preview = convert_resume_data(payload.resumeData.model_dump())
    elif payload.text and payload.text.strip():
        preview = parse_raw_cv(payload.text)
    else:
        raise_api_error(status_code=400, code="INVALID_EXPORT_REQUEST", message="Provide resumeData or text")

    file_name = safe_attachment_filename(payload.fileName, default="Resume.docx")
    if not file_name.lower().endswith(".docx"):
        file_name = f"{file_name}.docx"

    return Response(
        content=build_resume_docx(preview),
        media_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        headers=attachment_headers(file_name),
    )


@app.post("/api/parse-cv")
def parse_cv(payload: ParseCvRequest, request: Request) -> dict[str, Any]:
    preview = parse_raw_cv(payload.text)
    return {
        "preview": preview,
        "suggestedTemplate": suggest_best_template(preview),
        "requestId": get_request_id(request),
    }


@app.get("/api/templates")
def templates_index(theme: str = Query(default="", max_length=40)) -> dict[str, Any]:
    return {
        "templates": list_templates(),
        "themes": THEME_COLORS,
        "defaultTheme": DEFAULT_THEME,
        "activeTheme": get_theme_colors(theme),
    }


@app.post("/api/templates/fit")
def templates_fit(payload: TemplateFitRequest) -> dict[str, Any]:
    fit = analyze_content_fit(payload.resume.model_dump(), payload.templateId)
    result = fit.to_dict()
    result["templateId"] = get_template_limits(payload.templateId).id
    return result


@app.post("/api/templates/suggest")
def templates_suggest(payload: TemplateSuggestRequest) -> dict[str, str]:
    return {"templateId": suggest_best_template(payload.resume.model_dump())}


@app.get("/api/job-titles")
def job_titles(q: str = Query(default="", max_length=120)) -> dict[str, Any]:
    return {
        "titles": search_job_titles(q),
        "categories": list(JOB_CATEGORIES),
        "exactMatch": is_valid_job_title(q.strip()),
    }


@app.post("/api/feedback", response_model=FeedbackCreateResponse)
def submit_feedback(payload: FeedbackCreateRequest, request: Request) -> FeedbackCreateResponse:
    rating = parse_rating(payload.rating)
    if rating is None:
        raise_api_error(status_code=400, code="RATING_REQUIRED", message="Rating is required")

    user = get_current_user(request)
    entry, storage = create_feedback(
        rating=rating,
        comment=payload.comment or "",
        source=payload.source or "unknown",
        user_id=int(user["id"]) if user else None,
        username=str(user["username"]) if user else None,
    )
    return FeedbackCreateResponse(
        feedback=to_feedback_item(entry),
        storage=storage,
        note="Stored locally (database temporarily unavailable)" if storage == "local" else None,
    )


@app.get("/api/feedback", response_model=FeedbackListResponse)
def feedback_list(request: Request) -> FeedbackListResponse:
    require_admin_user(request)
    rows, source = list_feedback()
    return FeedbackListResponse(
        feedback=[to_feedback_item(row) for row in rows],
        source=source,
        note="Database unavailable - showing locally stored feedback" if source == "local" else None,
    )


@app.get("/api/feedback/stats", response_model=FeedbackStatsResponse)
def feedback_stats(request: Request) -> FeedbackStatsResponse:
    require_admin_user(request)
    rows, source = list_feedback()
    return FeedbackStatsResponse(source=source, **summarize_feedback(rows))


@app.post("/api/track", response_model=TrackResponse)
def track_usage() -> TrackResponse:
    return TrackResponse(count=track_cv_optimized())


@app.get("/api/track", response_model=TrackResponse)
def read_usage() -> TrackResponse:
    try:
        return TrackResponse(count=get_counter(CV_OPTIMIZED_COUNTER))
    except (sqlite3.Error, OSError) as exc:
        usage_logger.warning(
            json.dumps(
                {"event": "usage_counter_unavailable", "exception_type": type(exc).__name__, "error": str(exc)},
                ensure_ascii=False,
            )
        )
        return TrackResponse(count=0)


@app.get("/api/metrics/snapshot")
def metrics_snapshot(request: Request) -> dict[str, Any]:
    result = METRICS.snapshot()
    result["requestId"] = get_request_id(request)
    result["llmConfigured"] = is_configured()
    result["rateLimitPerMinute"] = RATE_LIMITER.limit
    return result


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    request_id = get_request_id(request)

    code = ERROR_CODE_BY_STATUS.get(exc.status_code, "REQUEST_ERROR")
    message = "Request failed"
    extra: dict[str, Any] = {}

    if isinstance(exc.detail, str):
        message = exc.detail
    elif isinstance(exc.detail, dict):
        custom_code = str(exc.detail.get("code", "")).strip()
        custom_message = str(exc.detail.get("message", "")).strip()
        if custom_code:
            code = custom_code
        if custom_message:
            message = custom_message

        for key, value in exc.detail.items():
            if key in {"code", "message", "requestId"}:
                continue
            extra[key] = value

    payload: dict[str, Any] = build_error_payload(code=code, message=message, request_id=request_id)
    if extra:
        payload.update(extra)

    set_error_context(request, error_code=code, exception_type="HTTPException")
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = get_request_id(request)
    first_error = exc.errors()[0] if exc.errors() else None
    message = first_error.get("msg", "Request validation failed") if first_error else "Request validation failed"
    set_error_context(request, error_code="VALIDATION_ERROR", exception_type="RequestValidationError")
    return JSONResponse(
        status_code=422,
        content=build_error_payload(code="VALIDATION_ERROR", message=message, request_id=request_id),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = get_request_id(request)
    set_error_context(request, error_code="INTERNAL_ERROR", exception_type=type(exc).__name__)
    logger.exception(
        json.dumps({"event": "unhandled_exception", "requestId": request_id, "path": request.url.path}, ensure_ascii=False)
    )
    return JSONResponse(
        status_code=500,
        content=build_error_payload(
            code="INTERNAL_ERROR",
            message="Unexpected server error",
            request_id=request_id,
        ),
    )
