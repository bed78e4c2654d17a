from __future__ import annotations

import json

import httpx
import pytest

from cvboost.documents import (
    DocumentError,
    clean_title,
    extract_pdf_text,
    fetch_page_text,
    html_to_text,
    infer_job_title,
)
from cvboost.llm_client import (
    LLMNotConfiguredError,
    LLMRequestError,
    LLMResponseError,
    chat_completion,
    extract_json_object,
    is_configured,
)
from cvboost.pdf_export import build_cover_letter_pdf


@pytest.fixture(autouse=True)
def llm_env(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm.example.com/v1/")
    monkeypatch.delenv("CVBOOST_LLM_MODEL", raising=False)


def completion_response(content: str | None) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_chat_completion_sends_expected_request() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion_response("  Improved text \n"))

    result = chat_completion(
        [{"role": "user", "content": "hi"}],
        temperature=0.3,
        max_tokens=120,
        json_mode=True,
        transport=httpx.MockTransport(handler),
    )

    assert result == "Improved text"
    assert captured["url"] == "https://llm.example.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["model"] == "gpt-4o"
    assert captured["body"]["temperature"] == 0.3
    assert captured["body"]["max_tokens"] == 120
    assert captured["body"]["response_format"] == {"type": "json_object"}


def test_chat_completion_requires_api_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "")
    assert is_configured() is False
    with pytest.raises(LLMNotConfiguredError):
        chat_completion([{"role": "user", "content": "hi"}])


def test_chat_completion_maps_upstream_failures() -> None:
    failing = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "boom"}))
    with pytest.raises(LLMRequestError):
        chat_completion([{"role": "user", "content": "hi"}], transport=failing)

    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LLMRequestError):
        chat_completion([{"role": "user", "content": "hi"}], transport=httpx.MockTransport(broken))


def test_chat_completion_rejects_empty_choices() -> None:
    empty = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LLMResponseError):
        chat_completion([{"role": "user", "content": "hi"}], transport=empty)

    no_content = httpx.MockTransport(lambda request: httpx.Response(200, json=completion_response(None)))
    assert chat_completion([{"role": "user", "content": "hi"}], transport=no_content) == ""


def test_extract_json_object_variants() -> None:
    assert extract_json_object('{"score": 80}') == {"score": 80}
    assert extract_json_object('```json\n{"score": 81}\n```') == {"score": 81}
    assert extract_json_object('Here you go: {"score": 82} thanks') == {"score": 82}

    for raw in ("", "no json here", "{broken", "[1, 2]"):
        with pytest.raises(LLMResponseError):
            extract_json_object(raw)


def test_html_to_text_strips_markup() -> None:
    html = "<html><style>.x{}</style><script>var a=1;</script><h1>Data Analyst</h1><p>Join   us</p></html>"
    assert html_to_text(html) == "Data Analyst Join us"
    assert html_to_text("<p>" + "a" * 50 + "</p>", max_chars=10) == "a" * 10


def test_fetch_page_text_success_and_failure() -> None:
    ok = httpx.MockTransport(lambda request: httpx.Response(200, text="<main><h1>Platform Engineer</h1></main>"))
    assert fetch_page_text("https://jobs.example.com/1", transport=ok) == "Platform Engineer"

    missing = httpx.MockTransport(lambda request: httpx.Response(404, text="not found"))
    with pytest.raises(DocumentError):
        fetch_page_text("https://jobs.example.com/2", transport=missing)

    blank = httpx.MockTransport(lambda request: httpx.Response(200, text="<script>x()</script>"))
    with pytest.raises(DocumentError):
        fetch_page_text("https://jobs.example.com/3", transport=blank)


def test_extract_pdf_text() -> None:
    data = build_cover_letter_pdf("Jane Doe\nSenior Engineer")
    text = extract_pdf_text(data)
    assert "Jane Doe" in text

    with pytest.raises(DocumentError):
        extract_pdf_text(b"definitely not a pdf")


def test_job_title_helpers() -> None:
    assert clean_title("**Senior  Data Analyst**") == "Senior Data Analyst"
    assert infer_job_title("Position: Backend Engineer - Globex\nWe build things", "Globex") == "Backend Engineer"
    assert infer_job_title("") == ""
