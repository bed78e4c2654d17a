from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TemplateLimits:
    id: str
    name: str
    has_sidebar: bool
    max_summary_chars: int
    max_experience_entries: int
    max_bullets_per_experience: int
    max_education_entries: int
    max_skills: int
    max_languages: int
    font_size_min: int
    font_size_max: int
    sidebar_sections: tuple[str, ...] = ()
    description: str = ""
    category: str = "professional"
    fonts: str = "sans"
    layout: str = "single"
    supports_photo: bool = False
    supports_compression: bool = True

    @property
    def capacity(self) -> int:
        return self.max_experience_entries * self.max_bullets_per_experience + self.max_skills

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "fonts": self.fonts,
            "layout": self.layout,
            "supportsPhoto": self.supports_photo,
            "limits": {
                "hasSidebar": self.has_sidebar,
                "maxSummaryChars": self.max_summary_chars,
                "maxExperienceEntries": self.max_experience_entries,
                "maxBulletsPerExperience": self.max_bullets_per_experience,
                "maxEducationEntries": self.max_education_entries,
                "maxSkills": self.max_skills,
                "maxLanguages": self.max_languages,
                "fontSizeRange": {"min": self.font_size_min, "max": self.font_size_max},
                "supportsCompression": self.supports_compression,
                "sidebarSections": list(self.sidebar_sections),
            },
        }


TEMPLATES: dict[str, TemplateLimits] = {
    item.id: item
    for item in (
        TemplateLimits(
            id="modern-sidebar",
            name="Modern Sidebar",
            has_sidebar=True,
            max_summary_chars=350,
            max_experience_entries=3,
            max_bullets_per_experience=4,
            max_education_entries=2,
            max_skills=8,
            max_languages=4,
            font_size_min=9,
            font_size_max=11,
            sidebar_sections=("skills", "languages", "certifications"),
            description="Two-column layout with skills on the left",
            layout="sidebar",
            supports_photo=True,
        ),
        TemplateLimits(
            id="ivy-league",
            name="Ivy League",
            has_sidebar=False,
            max_summary_chars=400,
            max_experience_entries=4,
            max_bullets_per_experience=4,
            max_education_entries=3,
            max_skills=12,
            max_languages=4,
            font_size_min=10,
            font_size_max=12,
            description="Classic serif typography, traditional layout",
            category="classic",
            fonts="serif",
        ),
        TemplateLimits(
            id="minimalist",
            name="Minimalist",
            has_sidebar=False,
            max_summary_chars=300,
            max_experience_entries=3,
            max_bullets_per_experience=3,
            max_education_entries=2,
            max_skills=10,
            max_languages=3,
            font_size_min=10,
            font_size_max=11,
            description="Clean whitespace, centered header",
            fonts="clean",
        ),
        TemplateLimits(
            id="executive",
            name="Executive",
            has_sidebar=True,
            max_summary_chars=400,
            max_experience_entries=4,
            max_bullets_per_experience=5,
            max_education_entries=2,
            max_skills=10,
            max_languages=4,
            font_size_min=9,
            font_size_max=11,
            sidebar_sections=("skills", "certifications"),
            description="Bold dark header, commanding presence",
            layout="header",
            supports_photo=True,
        ),
        TemplateLimits(
            id="techie",
            name="Techie",
            has_sidebar=False,
            max_summary_chars=250,
            max_experience_entries=3,
            max_bullets_per_experience=4,
            max_education_entries=2,
            max_skills=15,
            max_languages=3,
            font_size_min=9,
            font_size_max=10,
            description="Developer-focused with skills grid",
            category="technical",
            fonts="mono",
        ),
        TemplateLimits(
            id="creative",
            name="Creative",
            has_sidebar=True,
            max_summary_chars=300,
            max_experience_entries=3,
            max_bullets_per_experience=3,
            max_education_entries=2,
            max_skills=8,
            max_languages=3,
            font_size_min=9,
            font_size_max=11,
            sidebar_sections=("skills", "languages"),
            description="Unique split design for designers",
            category="creative",
            layout="split",
            supports_photo=True,
        ),
        TemplateLimits(
            id="startup",
            name="Startup",
            has_sidebar=False,
            max_summary_chars=350,
            max_experience_entries=3,
            max_bullets_per_experience=4,
            max_education_entries=2,
            max_skills=10,
            max_languages=3,
            font_size_min=10,
            font_size_max=12,
            description="Bold typography, modern accents",
            category="creative",
        ),
        TemplateLimits(
            id="international",
            name="International",
            has_sidebar=True,
            max_summary_chars=350,
            max_experience_entries=3,
            max_bullets_per_experience=4,
            max_education_entries=3,
            max_skills=8,
            max_languages=5,
            font_size_min=9,
            font_size_max=11,
            sidebar_sections=("skills", "languages"),
            description="Standardized with photo support",
            fonts="clean",
            layout="sidebar",
            supports_photo=True,
        ),
    )
}

DEFAULT_LIMITS = TemplateLimits(
    id="default",
    name="Default",
    has_sidebar=False,
    max_summary_chars=350,
    max_experience_entries=3,
    max_bullets_per_experience=4,
    max_education_entries=2,
    max_skills=10,
    max_languages=4,
    font_size_min=9,
    font_size_max=11,
)

DEFAULT_THEME = "indigo"
THEME_COLORS: dict[str, dict[str, str]] = {
    "indigo": {"primary": "#6366f1", "dark": "#4f46e5", "light": "#e0e7ff"},
    "blue": {"primary": "#3b82f6", "dark": "#2563eb", "light": "#dbeafe"},
    "purple": {"primary": "#8b5cf6", "dark": "#7c3aed", "light": "#ede9fe"},
    "rose": {"primary": "#f43f5e", "dark": "#e11d48", "light": "#ffe4e6"},
    "amber": {"primary": "#f59e0b", "dark": "#d97706", "light": "#fef3c7"},
    "slate": {"primary": "#475569", "dark": "#334155", "light": "#f1f5f9"},
    "navy": {"primary": "#1e3a8a", "dark": "#1e40af", "light": "#dbeafe"},
    "violet": {"primary": "#8b5cf6", "dark": "#7c3aed", "light": "#ede9fe"},
    "orange": {"primary": "#f97316", "dark": "#ea580c", "light": "#ffedd5"},
    "black": {"primary": "#18181b", "dark": "#09090b", "light": "#f4f4f5"},
}


@dataclass
class ContentFit:
    fits: bool
    overflow_percent: float
    recommended_density: str
    warnings: list[dict[str, Any]] = field(default_factory=list)
    suggestions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fits": self.fits,
            "overflowPercent": self.overflow_percent,
            "recommendedDensity": self.recommended_density,
            "warnings": self.warnings,
            "suggestions": self.suggestions,
        }


def get_template_limits(template_id: str) -> TemplateLimits:
    return TEMPLATES.get(template_id, DEFAULT_LIMITS)


def get_theme_colors(theme: str | None) -> dict[str, str]:
    if not theme:
        return THEME_COLORS[DEFAULT_THEME]
    return THEME_COLORS.get(theme, THEME_COLORS[DEFAULT_THEME])


def list_templates() -> list[dict[str, Any]]:
    return [item.to_dict() for item in TEMPLATES.values()]


def _warning(kind: str, message: str, severity: str, current: int, maximum: int) -> dict[str, Any]:
    return {
        "type": kind,
        "message": message,
        "severity": severity,
        "currentValue": current,
        "maxValue": maximum,
    }


def _suggestion(action: str, description: str, priority: str) -> dict[str, str]:
    return {"action": action, "description": description, "priority": priority}


def analyze_content_fit(resume: dict[str, Any], template_id: str) -> ContentFit:
    """Score how far a preview document overflows one page of the given template.

    The experience list is the first section that has items. Overflow points:
    summary overflow percent times 0.15, 15 per extra entry, 5 per extra
    bullet in each entry, 3 per extra skill.
    """
    limits = get_template_limits(template_id)
    warnings: list[dict[str, Any]] = []
    suggestions: list[dict[str, str]] = []
    overflow_score = 0.0

    summary_length = len(resume.get("summary") or "")
    if summary_length > limits.max_summary_chars:
        overflow = (summary_length - limits.max_summary_chars) / limits.max_summary_chars * 100
        overflow_score += overflow * 0.15
        warnings.append(
            _warning(
                "summary",
                f"Summary is {summary_length - limits.max_summary_chars} characters over limit",
                "error" if overflow > 50 else "warning",
                summary_length,
                limits.max_summary_chars,
            )
        )
        suggestions.append(
            _suggestion(
                "Shorten summary",
                f"Reduce summary to {limits.max_summary_chars} characters or less",
                "high",
            )
        )

    experience_items: list[dict[str, Any]] = []
    for section in resume.get("sections") or []:
        items = section.get("items") or []
        if items:
            experience_items = items
            break

    experience_count = len(experience_items)
    if experience_count > limits.max_experience_entries:
        overflow_score += (experience_count - limits.max_experience_entries) * 15
        warnings.append(
            _warning(
                "experience",
                f"{experience_count - limits.max_experience_entries} extra experience entries",
                "error",
                experience_count,
                limits.max_experience_entries,
            )
        )
        suggestions.append(
            _suggestion(
                "Reduce experience entries",
                f"Keep only {limits.max_experience_entries} most relevant positions",
                "high",
            )
        )

    for idx, item in enumerate(experience_items):
        bullet_count = len(item.get("bullets") or [])
        if bullet_count > limits.max_bullets_per_experience:
            extra = bullet_count - limits.max_bullets_per_experience
            overflow_score += extra * 5
            warnings.append(
                _warning(
                    "experience",
                    f"Position {idx + 1} has {extra} extra bullet points",
                    "warning",
                    bullet_count,
                    limits.max_bullets_per_experience,
                )
            )

    skills_count = len(resume.get("skills") or [])
    if skills_count > limits.max_skills:
        overflow_score += (skills_count - limits.max_skills) * 3
        warnings.append(
            _warning(
                "skills",
                f"{skills_count - limits.max_skills} extra skills",
                "warning",
                skills_count,
                limits.max_skills,
            )
        )
        if limits.has_sidebar:
            suggestions.append(
                _suggestion(
                    "Move skills to sidebar",
                    "This template has a sidebar that can hold additional skills",
                    "medium",
                )
            )
        else:
            suggestions.append(
                _suggestion(
                    "Reduce skills list",
                    f"Keep only {limits.max_skills} most relevant skills",
                    "medium",
                )
            )

    density = "normal"
    if overflow_score > 30:
        density = "compact"
        suggestions.append(
            _suggestion("Use Compact mode", "Switch to Compact density in the preview toolbar", "high")
        )
    elif overflow_score < 10 and not warnings:
        density = "spacious"

    if overflow_score > 50:
        suggestions.append(
            _suggestion(
                "Consider extended format",
                "Your content may require a 2-page resume or larger format",
                "low",
            )
        )

    return ContentFit(
        fits=overflow_score < 25,
        overflow_percent=min(overflow_score, 100),
        recommended_density=density,
        warnings=warnings,
        suggestions=suggestions,
    )


def templates_by_capacity() -> list[TemplateLimits]:
    return sorted(TEMPLATES.values(), key=lambda item: item.capacity, reverse=True)


def suggest_best_template(resume: dict[str, Any]) -> str:
    ordered = templates_by_capacity()
    for template in ordered:
        if analyze_content_fit(resume, template.id).fits:
            return template.id
    return ordered[0].id
