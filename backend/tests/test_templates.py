from __future__ import annotations

from cvboost.templates import (
    DEFAULT_THEME,
    TEMPLATES,
    THEME_COLORS,
    analyze_content_fit,
    get_template_limits,
    get_theme_colors,
    list_templates,
    suggest_best_template,
    templates_by_capacity,
)


def make_resume(*, entries: int = 0, bullets: int = 0, skills: int = 0, summary: str = "") -> dict:
    return {
        "name": "Jane Doe",
        "summary": summary,
        "skills": [f"skill-{idx}" for idx in range(skills)],
        "sections": [
            {
                "id": "experience",
                "type": "experience",
                "items": [
                    {"id": f"item-{idx}", "title": "Engineer", "bullets": [f"b{n}" for n in range(bullets)]}
                    for idx in range(entries)
                ],
            }
        ],
    }


def test_list_templates_exposes_limits() -> None:
    items = list_templates()
    assert len(items) == len(TEMPLATES) == 8

    sidebar = next(item for item in items if item["id"] == "modern-sidebar")
    assert sidebar["limits"]["hasSidebar"] is True
    assert sidebar["limits"]["sidebarSections"] == ["skills", "languages"]
    assert sidebar["limits"]["fontSizeRange"] == {"min": 9, "max": 11}


def test_unknown_template_uses_default_limits() -> None:
    assert get_template_limits("missing").id == "default"


def test_theme_lookup_falls_back_to_default() -> None:
    assert get_theme_colors("navy") == THEME_COLORS["navy"]
    assert get_theme_colors("neon") == THEME_COLORS[DEFAULT_THEME]
    assert get_theme_colors(None) == THEME_COLORS[DEFAULT_THEME]


def test_small_resume_is_spacious() -> None:
    fit = analyze_content_fit(make_resume(entries=1, bullets=2, skills=3), "minimalist")
    assert fit.fits is True
    assert fit.recommended_density == "spacious"
    assert fit.warnings == []


def test_moderate_overflow_keeps_normal_density() -> None:
    fit = analyze_content_fit(make_resume(entries=2, bullets=3, skills=14), "startup")
    assert fit.fits is True
    assert fit.overflow_percent == 12
    assert fit.recommended_density == "normal"
    assert fit.warnings[0]["type"] == "skills"
    assert fit.suggestions[0]["action"] == "Reduce skills list"


def test_heavy_resume_overflows_sidebar_template() -> None:
    fit = analyze_content_fit(make_resume(entries=5, bullets=6, skills=12), "modern-sidebar")

    assert fit.fits is False
    assert fit.overflow_percent == 92
    assert fit.recommended_density == "compact"
    actions = [item["action"] for item in fit.suggestions]
    assert "Move skills to sidebar" in actions
    assert "Use Compact mode" in actions
    assert "Consider extended format" in actions

    payload = fit.to_dict()
    assert payload["overflowPercent"] == 92
    assert payload["recommendedDensity"] == "compact"


def test_summary_overflow_is_weighted() -> None:
    fit = analyze_content_fit(make_resume(summary="x" * 500), "techie")
    assert fit.warnings[0]["type"] == "summary"
    assert fit.warnings[0]["severity"] == "error"
    assert fit.overflow_percent == 15


def test_capacity_order_and_suggestion() -> None:
    ordered = [item.id for item in templates_by_capacity()]
    assert ordered[:3] == ["executive", "ivy-league", "techie"]

    assert suggest_best_template(make_resume(entries=1, bullets=2, skills=3)) == "executive"
    assert suggest_best_template(make_resume(entries=1, bullets=2, skills=20)) == "ivy-league"
    assert suggest_best_template(make_resume(entries=9, bullets=9, skills=40)) == "executive"
