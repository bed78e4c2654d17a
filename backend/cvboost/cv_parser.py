from __future__ import annotations

import re
from typing import Any

SECTION_KEYWORDS: dict[str, str] = {
    "experience": "experience",
    "work experience": "experience",
    "employment": "experience",
    "professional experience": "experience",
    "work history": "experience",
    "education": "education",
    "academic": "education",
    "academic background": "education",
    "qualifications": "education",
    "projects": "projects",
    "key projects": "projects",
    "personal projects": "projects",
    "portfolio": "projects",
    "certifications": "certifications",
    "certificates": "certifications",
    "licenses": "certifications",
    "credentials": "certifications",
    "skills": "custom",
    "technical skills": "custom",
    "core competencies": "custom",
    "expertise": "custom",
    "technologies": "custom",
    "languages": "custom",
    "summary": "custom",
    "objective": "custom",
    "profile": "custom",
    "professional summary": "custom",
    "about": "custom",
    "awards": "custom",
    "achievements": "custom",
    "honors": "custom",
    "publications": "custom",
    "interests": "custom",
    "hobbies": "custom",
    "references": "custom",
}
MAJOR_SECTION_WORDS = (
    "experience",
    "education",
    "skill",
    "project",
    "certification",
    "award",
    "language",
    "employment",
    "work history",
)

TITLE_ACRONYMS = {
    "ceo", "cto", "cfo", "coo", "cmo", "cio", "vp", "svp", "evp",
    "hr", "it", "qa", "ui", "ux", "ai", "ml", "pm", "seo", "sem",
}

BULLET_PATTERN = re.compile(r"^[•\-*]\s")
BULLET_STRIP_PATTERN = re.compile(r"^[•\-*]\s*")
EMAIL_PATTERN = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
PHONE_PATTERN = re.compile(r"(\+?\d[\d\s\-()]{8,})")
LINKEDIN_PATTERN = re.compile(r"(?:https?://)?(?:www\.)?linkedin\.com/in/[\w-]+/?", re.IGNORECASE)
GITHUB_PATTERN = re.compile(r"(?:https?://)?(?:www\.)?github\.com/[\w-]+/?", re.IGNORECASE)
WEBSITE_PATTERN = re.compile(r"(?:https?://)?(?:www\.)?[\w.-]+\.\w+[/\w.-]*")
LOCATION_PATTERN = re.compile(r"^[A-Z][a-zA-Z\s]+,\s*[A-Z][a-zA-Z\s]+$")
TITLE_START_PATTERN = re.compile(
    r"^(senior|junior|lead|principal|staff|chief|head|director|manager|engineer|developer|designer|analyst|consultant|specialist)",
    re.IGNORECASE,
)
TITLE_END_PATTERN = re.compile(
    r"(manager|engineer|developer|designer|analyst|consultant|specialist|officer|executive|director)$",
    re.IGNORECASE,
)
PIPE_TITLE_PATTERN = re.compile(r"^(.+?)\s*\|\s*(.+?)\s*\|\s*(.+)$")
PAREN_DATE_PATTERN = re.compile(r"^(.+?)\s*\((\d{4}.+?)\)$")
TRAILING_DATE_PATTERN = re.compile(r"^(.+?)\s+(\d{4}\s*[-–]\s*(?:\d{4}|present|current))$", re.IGNORECASE)


def empty_preview() -> dict[str, Any]:
    return {"name": "Your Name", "contact": {}, "sections": []}


def _normalize_header(line: str) -> str:
    return re.sub(r"[^a-z\s]", "", line.lower()).strip()


def _is_all_caps(line: str) -> bool:
    return line.isupper() and 2 < len(line) < 50


def _is_section_keyword(lower_line: str) -> bool:
    return any(lower_line == key or lower_line.startswith(key + " ") for key in SECTION_KEYWORDS)


def is_section_header_line(line: str) -> bool:
    return _is_all_caps(line) or _is_section_keyword(_normalize_header(line))


def _is_date_line(line: str) -> bool:
    return bool(re.search(r"\d{4}", line)) or bool(re.search(r"present|current", line, re.IGNORECASE))


def _is_new_entry(line: str, prev_line: str) -> bool:
    if not prev_line:
        return True
    if BULLET_PATTERN.match(prev_line):
        return True
    return "|" in line or _is_date_line(line)


def _clean_handle(part: str, label: str) -> str:
    tail = re.sub(rf"^.*{label}:?\s*", "", part, flags=re.IGNORECASE)
    pieces = tail.split()
    return pieces[0].strip() if pieces else ""


def extract_contact(lines: list[str]) -> dict[str, str]:
    """Pull email, phone, profile links and a "City, Region" location out of header lines."""
    contact: dict[str, str] = {}
    parts: list[str] = []
    for line in lines:
        parts.extend(piece.strip() for piece in re.split(r"\s*[|•]\s*", line) if piece.strip())

    for part in parts:
        lower = part.lower()

        if "@" in part and "email" not in contact:
            match = EMAIL_PATTERN.search(part)
            if match:
                contact["email"] = match.group(0)

        if "phone" not in contact:
            match = PHONE_PATTERN.search(part)
            if match:
                contact["phone"] = match.group(1).strip()

        if "linkedin" in lower and "linkedin" not in contact:
            match = LINKEDIN_PATTERN.search(part)
            if match:
                contact["linkedin"] = match.group(0)
            else:
                handle = _clean_handle(part, "linkedin")
                if len(handle) > 2:
                    contact["linkedin"] = handle if "linkedin.com" in handle else f"linkedin.com/in/{handle}"

        if "github" in lower and "github" not in contact:
            match = GITHUB_PATTERN.search(part)
            if match:
                contact["github"] = match.group(0)
            else:
                handle = _clean_handle(part, "github")
                if len(handle) > 2:
                    contact["github"] = handle if "github.com" in handle else f"github.com/{handle}"

        if (
            ("http" in lower or "www." in lower)
            and "website" not in contact
            and "linkedin" not in lower
            and "github" not in lower
        ):
            match = WEBSITE_PATTERN.search(part)
            if match:
                contact["website"] = match.group(0)

        if "location" not in contact and "@" not in part and "linkedin" not in lower and "github" not in lower:
            match = LOCATION_PATTERN.match(part)
            if match:
                contact["location"] = match.group(0).strip()

    return contact


def extract_title(lines: list[str]) -> str | None:
    for line in lines:
        if "@" in line or re.match(r"^\+?\d", line) or "linkedin" in line.lower():
            continue
        if TITLE_START_PATTERN.search(line) or TITLE_END_PATTERN.search(line):
            return line.strip()
    return None


def parse_job_title_line(line: str) -> tuple[str, str | None]:
    match = PIPE_TITLE_PATTERN.match(line)
    if match:
        return match.group(1).strip(), match.group(3).strip()
    match = PAREN_DATE_PATTERN.match(line)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    match = TRAILING_DATE_PATTERN.match(line)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return line, None


def _header_line_count(lines: list[str], title: str | None) -> int:
    # Lines after the name that carry contact details or the title.
    count = 0
    for line in lines[1:6]:
        if is_section_header_line(line):
            break
        if line == title or extract_contact([line]):
            count += 1
            continue
        break
    return count


def _new_item(section: dict[str, Any], line: str) -> dict[str, Any]:
    title, date = parse_job_title_line(line)
    item: dict[str, Any] = {"id": f"item-{len(section['items'])}", "title": title}
    if date:
        item["date"] = date
    return item


def _parse_content(lines: list[str]) -> tuple[str, list[str], list[str], list[dict[str, Any]]]:
    summary = ""
    skills: list[str] = []
    languages: list[str] = []
    sections: list[dict[str, Any]] = []

    section: dict[str, Any] | None = None
    item: dict[str, Any] | None = None
    in_summary = in_skills = in_languages = False

    def close_section() -> None:
        nonlocal item
        if section is not None and item is not None:
            section["items"].append(item)
            item = None
        if section is not None and section["items"]:
            sections.append(section)

    for idx, line in enumerate(lines):
        lower_line = _normalize_header(line)
        is_header = _is_all_caps(line) or _is_section_keyword(lower_line)

        if in_summary:
            if is_header and any(word in lower_line for word in MAJOR_SECTION_WORDS):
                in_summary = False
            else:
                summary = f"{summary} {line}" if summary else line
                continue

        if is_header:
            close_section()
            section = None
            in_summary = in_skills = in_languages = False

            if any(word in lower_line for word in ("summary", "objective", "profile", "about me")):
                in_summary = True
                continue
            if any(word in lower_line for word in ("skill", "competenc", "expertise", "technologies")):
                in_skills = True
                continue
            if lower_line == "languages":
                in_languages = True
                continue

            section = {
                "id": f"section-{len(sections)}",
                "title": re.sub(r"[:\-]", "", line).strip(),
                "type": SECTION_KEYWORDS.get(lower_line, "custom"),
                "items": [],
            }
            continue

        if in_skills:
            skills.extend(piece.strip() for piece in re.split(r"[,;•\-|]", line) if piece.strip())
            continue

        if in_languages:
            cleaned = BULLET_STRIP_PATTERN.sub("", line).strip()
            if cleaned:
                languages.append(cleaned)
            continue

        if section is None:
            continue

        if BULLET_PATTERN.match(line):
            if item is not None:
                item.setdefault("bullets", []).append(BULLET_STRIP_PATTERN.sub("", line).strip())
            continue

        prev_line = lines[idx - 1] if idx > 0 else ""
        if item is None or _is_date_line(line) or _is_new_entry(line, prev_line):
            if item is not None:
                section["items"].append(item)
            item = _new_item(section, line)
        elif "subtitle" not in item and len(line) < 80:
            item["subtitle"] = line
        else:
            item["description"] = f"{item.get('description', '')} {line}".strip()

    close_section()
    return summary.strip(), skills, languages, sections


def parse_raw_cv(text: str) -> dict[str, Any]:
    """Turn pasted or optimized CV text into the structured preview document."""
    lines = [line.strip() for line in (text or "").split("\n") if line.strip()]
    if not lines:
        return empty_preview()

    title = extract_title(lines[1:4])
    contact = extract_contact(lines[1:6])
    content_lines = lines[1 + _header_line_count(lines, title) :]
    summary, skills, languages, sections = _parse_content(content_lines)

    preview: dict[str, Any] = {
        "name": lines[0],
        "contact": contact,
        "summary": summary,
        "skills": skills,
        "languages": languages,
        "sections": sections,
    }
    if title:
        preview["title"] = title
    return preview


def format_name(name: str) -> str:
    formatted: list[str] = []
    for word in (name or "").split(" "):
        lower = word.lower()
        if lower.startswith("mc"):
            formatted.append("Mc" + word[2:3].upper() + word[3:].lower())
        elif lower.startswith("o'"):
            formatted.append("O'" + word[2:3].upper() + word[3:].lower())
        elif lower.startswith("mac") and len(word) > 3:
            formatted.append("Mac" + word[3:4].upper() + word[4:].lower())
        else:
            formatted.append(word[:1].upper() + word[1:].lower())
    return " ".join(formatted)


def format_job_title(title: str) -> str:
    formatted: list[str] = []
    for word in (title or "").split(" "):
        if word.lower() in TITLE_ACRONYMS:
            formatted.append(word.upper())
        else:
            formatted.append(word[:1].upper() + word[1:].lower())
    return " ".join(formatted)


def format_date_range(start: str | None, end: str | None, current: bool = False) -> str:
    start = start or ""
    end = "Present" if current else (end or "")
    if start and end:
        return f"{start} - {end}"
    return start or end


def _non_empty(values: list[str] | None) -> list[str]:
    return [value for value in values or [] if value]


def _drop_empty(item: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in item.items() if value not in (None, "", [])}


def convert_resume_data(resume_data: dict[str, Any]) -> dict[str, Any]:
    """Map builder ``ResumeData`` onto the preview document templates render."""
    info = resume_data.get("personalInfo") or {}
    sections: list[dict[str, Any]] = []

    experience = resume_data.get("experience") or []
    if experience:
        sections.append(
            {
                "id": "experience",
                "title": "Experience",
                "type": "experience",
                "items": [
                    _drop_empty(
                        {
                            "id": exp.get("id") or f"exp-{idx}",
                            "title": format_job_title(exp.get("role", "")),
                            "subtitle": exp.get("company"),
                            "date": format_date_range(exp.get("startDate"), exp.get("endDate"), bool(exp.get("current"))),
                            "location": exp.get("location"),
                            "bullets": _non_empty(exp.get("description")),
                        }
                    )
                    for idx, exp in enumerate(experience)
                ],
            }
        )

    education = resume_data.get("education") or []
    if education:
        sections.append(
            {
                "id": "education",
                "title": "Education",
                "type": "education",
                "items": [
                    _drop_empty(
                        {
                            "id": edu.get("id") or f"edu-{idx}",
                            "title": (edu.get("degree") or "") + (f" in {edu['field']}" if edu.get("field") else ""),
                            "subtitle": edu.get("institution"),
                            "date": format_date_range(edu.get("startDate"), edu.get("endDate")),
                            "location": edu.get("location"),
                            "description": f"GPA: {edu['gpa']}" if edu.get("gpa") else None,
                            "bullets": _non_empty(edu.get("achievements")),
                        }
                    )
                    for idx, edu in enumerate(education)
                ],
            }
        )

    projects = resume_data.get("projects") or []
    if projects:
        sections.append(
            {
                "id": "projects",
                "title": "Projects",
                "type": "projects",
                "items": [
                    _drop_empty(
                        {
                            "id": proj.get("id") or f"proj-{idx}",
                            "title": proj.get("name"),
                            "subtitle": ", ".join(proj.get("technologies") or []),
                            "description": proj.get("description"),
                            "bullets": _non_empty(proj.get("bullets")),
                        }
                    )
                    for idx, proj in enumerate(projects)
                ],
            }
        )

    certifications = resume_data.get("certifications") or []
    if certifications:
        sections.append(
            {
                "id": "certifications",
                "title": "Certifications",
                "type": "certifications",
                "items": [
                    _drop_empty(
                        {
                            "id": cert.get("id") or f"cert-{idx}",
                            "title": cert.get("name"),
                            "subtitle": cert.get("issuer"),
                            "date": cert.get("date"),
                        }
                    )
                    for idx, cert in enumerate(certifications)
                ],
            }
        )

    for idx, custom in enumerate(resume_data.get("customSections") or []):
        sections.append(
            {
                "id": custom.get("id") or f"custom-{idx}",
                "title": custom.get("title", ""),
                "type": "custom",
                "items": [
                    {"id": item.get("id") or f"item-{pos}", "description": item.get("text", "")}
                    for pos, item in enumerate(custom.get("items") or [])
                ],
            }
        )

    preview: dict[str, Any] = {
        "name": format_name(info.get("name", "")) or "Your Name",
        "contact": _drop_empty(
            {
                "email": info.get("email"),
                "phone": info.get("phone"),
                "location": info.get("location"),
                "linkedin": info.get("linkedin"),
                "website": info.get("website"),
            }
        ),
        "skills": _non_empty(resume_data.get("skills")),
        "languages": _non_empty(resume_data.get("languages")),
        "sections": sections,
    }
    title = format_job_title(info.get("title", ""))
    if title:
        preview["title"] = title
    if resume_data.get("summary"):
        preview["summary"] = resume_data["summary"]
    return preview


def preview_to_text(preview: dict[str, Any]) -> str:
    lines: list[str] = [preview.get("name") or "Your Name"]
    if preview.get("title"):
        lines.append(preview["title"])

    contact = preview.get("contact") or {}
    contact_parts = [
        contact[key] for key in ("email", "phone", "location", "linkedin", "github", "website") if contact.get(key)
    ]
    if contact_parts:
        lines.append(" | ".join(contact_parts))

    if preview.get("summary"):
        lines.extend(["", "PROFESSIONAL SUMMARY", preview["summary"]])

    for section in preview.get("sections") or []:
        items = section.get("items") or []
        if not items:
            continue
        lines.extend(["", (section.get("title") or "").upper()])
        for item in items:
            heading = " | ".join(part for part in (item.get("title"), item.get("subtitle"), item.get("date")) if part)
            if heading:
                lines.append(heading)
            if item.get("location"):
                lines.append(item["location"])
            if item.get("description"):
                lines.append(item["description"])
            lines.extend(f"• {bullet}" for bullet in item.get("bullets") or [] if bullet.strip())

    if preview.get("skills"):
        lines.extend(["", "SKILLS", ", ".join(preview["skills"])])
    if preview.get("languages"):
        lines.extend(["", "LANGUAGES", ", ".join(preview["languages"])])
    return "\n".join(lines)


def resume_to_text(resume_data: dict[str, Any]) -> str:
    return preview_to_text(convert_resume_data(resume_data))
