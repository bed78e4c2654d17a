from __future__ import annotations

import json
import logging
import re
from io import BytesIO

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MAX_PAGE_TEXT_CHARS = 15000
JOB_PAGE_TIMEOUT_SECONDS = 20

SCRIPT_PATTERN = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
STYLE_PATTERN = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]+>")

logger = logging.getLogger("cvboost.api")


class DocumentError(ValueError):
    """Raised when an uploaded CV or a job page cannot be turned into text."""


def extract_pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(BytesIO(data))
        text = "\n".join(page.extract_text() or "" for page in reader.pages).strip()
    except (PyPdfError, ValueError, KeyError, TypeError) as exc:
        raise DocumentError(f"pdf extraction failed: {exc}") from exc
    if not text:
        raise DocumentError("pdf contains no extractable text")
    return text


def html_to_text(html: str, *, max_chars: int = MAX_PAGE_TEXT_CHARS) -> str:
    text = SCRIPT_PATTERN.sub("", html)
    text = STYLE_PATTERN.sub("", text)
    text = TAG_PATTERN.sub(" ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_chars]


def fetch_page_text(url: str, *, transport: httpx.BaseTransport | None = None) -> str:
    """Download a job posting and return its visible text."""
    try:
        with httpx.Client(
            timeout=JOB_PAGE_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": BROWSER_USER_AGENT},
        ) as client:
            response = client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            json.dumps(
                {"event": "job_url_fetch_failed", "url": url, "exception_type": type(exc).__name__},
                ensure_ascii=False,
            )
        )
        raise DocumentError(f"failed to fetch {url}") from exc

    text = html_to_text(response.text)
    if not text:
        raise DocumentError(f"no readable content at {url}")
    return text


def clean_title(raw: str) -> str:
    text = re.sub(r"[*_`~]", "", raw or "")
    return re.sub(r"\s+", " ", text).strip()


def infer_job_title(description: str, company_name: str = "") -> str:
    lines = [line.strip() for line in description.replace("\r\n", "\n").split("\n") if line.strip()]
    if not lines:
        return ""

    first = lines[0]
    if company_name:
        first = re.sub(re.escape(company_name), "", first, flags=re.IGNORECASE).strip()
    first = re.sub(r"^the job posting for (the )?(position|role)\s*(of)?", "", first, flags=re.IGNORECASE).strip()
    first = re.sub(r"^job posting[:\-]?\s*", "", first, flags=re.IGNORECASE).strip()
    first = re.sub(r"^position[:\-]?\s*", "", first, flags=re.IGNORECASE).strip()
    first = re.sub(r"^role[:\-]?\s*", "", first, flags=re.IGNORECASE).strip()
    first = re.sub(r"\s*\|\s*", " ", first)
    first = re.sub(r"\s*-\s*", " ", first).strip()
    first = clean_title(first)
    return first[:80].strip()
