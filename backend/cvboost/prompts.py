from __future__ import annotations

import json
from typing import Any

TEASER_RESUME_CHARS = 8000

ANALYSIS_SYSTEM_PROMPT = "You are an expert CV analyst. Always respond with valid JSON only. Be concise but thorough."
REVIEW_SYSTEM_PROMPT = "You are a professional resume analyst. Always respond with valid JSON only."
SKILLS_SYSTEM_PROMPT = (
    "You are a professional resume writer. You help candidates accurately represent their real experience. "
    "You NEVER fabricate or exaggerate. Always respond with valid JSON."
)


def build_job_extract_prompt(page_text: str) -> str:
    return (
        "Extract the job description from this webpage content. Include job title, company, requirements, "
        "qualifications, and responsibilities. Return only the extracted job description, no other commentary.\n\n"
        f"Webpage content:\n{page_text}"
    )


def build_analysis_prompt(*, cv_text: str, job_title: str, company_name: str, job_description: str) -> str:
    return (
        "Analyze this CV against the job requirements and provide structured feedback.\n\n"
        f"CV:\n{cv_text}\n\n"
        f"Job Title: {job_title}\n"
        f"Company: {company_name or 'N/A'}\n"
        f"Job Description: {job_description or 'General optimization for job title above'}\n\n"
        "Task:\n"
        "1. Analyze CV-job match based on EXISTING experience only\n"
        "2. Identify missing skills from job description\n"
        "3. Extract CV entry titles for skill placement\n"
        "4. Suggest 3-5 wording improvements (use job keywords, highlight achievements)\n\n"
        "Rules:\n"
        "- Never fabricate experience\n"
        "- Only rephrase existing content\n"
        "- Preserve original CV format in optimizedCV\n"
        "- Keep exact dates, names, structure\n\n"
        "Return JSON:\n"
        "{\n"
        '  "overallScore": <0-100 match score>,\n'
        '  "summary": "<1 sentence: match quality, key gaps, clarity>",\n'
        '  "strengths": ["<3 existing strengths matching role>"],\n'
        '  "improvements": ["<3 ways to better communicate existing experience>"],\n'
        '  "missingKeySkills": ["<max 10 skills/tools explicitly required but missing>"],\n'
        '  "cv_entries": {\n'
        '    "summary": {"exists": <true/false>},\n'
        '    "work_experience": [{"title": "<exact job title>", "organization": "<company>"}],\n'
        '    "education": [{"title": "<exact degree>", "organization": "<institution>"}],\n'
        '    "projects": [{"title": "<exact project name>"}]\n'
        "  },\n"
        '  "suggestedChanges": [\n'
        '    {"id": "chg_1", "section": "<section name>", "original": "<exact text from CV>",'
        ' "suggested": "<improved version with job keywords>", "reason": "<why this helps>"}\n'
        "  ],\n"
        '  "keywords": {"present": ["<job keywords in CV>"], "missing": ["<important keywords not in CV>"]},\n'
        '  "optimizedCV": "<complete CV with all suggestedChanges applied, preserving format>"\n'
        "}\n\n"
        "Constraints:\n"
        "- suggestedChanges: exactly 3-5 items\n"
        '- Each "original" must be verbatim from CV\n'
        "- Limit missingKeySkills to high-impact items only\n"
        "- Extract only existing CV entries (no inference)"
    )


def build_teaser_prompt(*, cv_text: str, target_role: str) -> str:
    role = target_role.strip()
    return (
        "You are an expert HR consultant analyzing a resume for a specific target role.\n\n"
        f"## Resume:\n{cv_text[:TEASER_RESUME_CHARS]}\n\n"
        f"## Target Role:\n{role}\n\n"
        "## Your Task:\n"
        "Analyze how well this resume matches the TARGET ROLE requirements. Consider:\n\n"
        f'1. Keyword Coverage: Does the resume contain keywords, skills, and technologies typically required for "{role}"?\n'
        "2. Experience Relevance: Does the work history show relevant experience for this role?\n"
        "3. Seniority Fit: Does the candidate's experience level match the role expectations?\n"
        "4. Clarity & Impact: Are achievements quantified? Are responsibilities clearly stated?\n"
        f'5. Missing Must-Haves: What critical skills/experiences for "{role}" are NOT demonstrated?\n\n'
        "SCORING GUIDANCE:\n"
        f"- 85-100: Excellent match - resume strongly demonstrates required skills and experience for {role}\n"
        "- 70-84: Good match - most requirements met, minor gaps\n"
        "- 55-69: Moderate match - some relevant experience but significant gaps for this specific role\n"
        f"- 40-54: Weak match - limited relevant experience for {role}\n"
        f"- 0-39: Poor match - resume doesn't align with {role} requirements\n\n"
        "The score must be ROLE-SPECIFIC. The same resume should score differently for \"Software Engineer\" vs "
        '"Product Manager" vs "Sales Representative" based on what skills and experience each role requires.\n\n'
        "Return ONLY a JSON object with exactly these fields:\n"
        "{\n"
        '  "overallScore": <number 0-100 - role-specific match score>,\n'
        '  "summary": "<one sentence explaining why this score for this specific role, mentioning key matches or gaps>"\n'
        "}\n\n"
        "Return ONLY the JSON object, no markdown, no other text."
    )


def build_resume_review_prompt(*, resume_data: dict[str, Any]) -> str:
    return (
        "You are an expert resume reviewer and career coach. Analyze this resume data and provide:\n"
        "1. A score from 0-100 based on completeness, impact, and professionalism\n"
        "2. 3-5 specific, actionable suggestions for improvement\n\n"
        f"Resume Data:\n{json.dumps(resume_data, ensure_ascii=False, indent=2)}\n\n"
        "Respond in this exact JSON format:\n"
        '{\n  "score": <number>,\n  "suggestions": ["<suggestion 1>", "<suggestion 2>", "<suggestion 3>"]\n}\n\n'
        "Scoring criteria:\n"
        "- 90-100: Excellent - comprehensive, well-written, strong achievements\n"
        "- 70-89: Good - solid content but room for improvement\n"
        "- 50-69: Average - missing key elements or weak descriptions\n"
        "- Below 50: Needs significant work\n\n"
        "Focus your suggestions on:\n"
        "- Quantifiable achievements (numbers, percentages, metrics)\n"
        "- Action verbs and impactful language\n"
        "- Missing sections that would strengthen the resume\n"
        "- Clarity and conciseness\n"
        "- ATS optimization"
    )


def build_text_rewrite_system_prompt(*, context: str | None) -> str:
    return (
        "You are an expert resume writer and career coach. Your task is to improve and optimize resume text while:\n\n"
        "1. Keeping the same approximate length (+/-20% of original)\n"
        "2. Using strong action verbs\n"
        "3. Quantifying achievements where possible\n"
        "4. Making it ATS-friendly\n"
        "5. Removing filler words and redundancy\n"
        "6. Maintaining professional tone\n\n"
        f"Context: {context or 'resume section'}\n\n"
        "IMPORTANT:\n"
        "- Return ONLY the improved text, no explanations\n"
        "- Keep the same format (if bullets, keep bullets)\n"
        "- Don't add information that wasn't there\n"
        "- If it's already good, make minimal changes"
    )


def build_builder_text_system_prompt(*, context: str | None) -> str:
    return (
        "You are an expert resume writer. Improve the provided text while:\n"
        "1. Keeping approximately the same length.\n"
        "2. Using strong action verbs.\n"
        "3. Making it ATS-friendly.\n"
        "4. Correcting grammar/spelling.\n"
        f"Context: {context or 'resume section'}\n"
        "IMPORTANT: Return ONLY the improved text."
    )


_TARGETED_AUDIT = """STEP 1: KNOCKOUT CHECK (Immediate Disqualifiers)
- Domain Mismatch: Is the candidate's current role fundamentally different from the target?
  Examples: Lawyer to Engineer, Sales to Developer, Teacher to Data Scientist, Analyst to Software Engineer
  If yes, score MUST be < 35. This is an IMMEDIATE REJECT.
- Tech Stack Gap: Does the CV miss >50% of the critical hard skills/languages in the JD?
  If yes, deduct 30 points from whatever score you calculate.

STEP 2: SENIORITY CALCULATION
Compare candidate's RELEVANT years of experience vs JD requirements (MAX SCORE):
- Junior (0-2 YOE) for Senior (5+ req): 45
- Junior (0-2 YOE) for Mid (3+ req): 55
- Mid (2-4 YOE) for Senior (5+ req): 60
- Mid (2-4 YOE) for Lead/Staff: 50
- Intern/Student for any full-time role: 40

STEP 3: ROLE FAMILY CHECK
These are DIFFERENT job families, do NOT treat them as equivalent:
- Engineering: Software Engineer, Developer, Architect, DevOps
- Analytics: Data Analyst, Product Analyst, Business Analyst, BI Analyst
- Data Science: Data Scientist, ML Engineer
- Product: Product Manager, Product Owner
- Design: UX/UI Designer
Career change caps: Analyst to Engineer 50, PM to Engineer 45, Designer to Engineer 40,
unrelated (Sales, Legal, HR) to Engineer 30.

STEP 4: FINAL BASELINE SCORE (apply all caps above)
- 85-100 (Exceptional): perfect role + seniority + tech stack match
- 70-84 (Strong): same role family, meets seniority, minor skill gaps
- 55-69 (Moderate): adjacent role OR minor seniority gap, some skill overlap
- 40-54 (Weak): different role family OR significant gaps
- 0-39 (Reject): failed knockout check OR multiple major mismatches

Calibration examples:
- Product Analyst (3y) to Senior Software Engineer: 30-40
- Junior Dev (1y) to Senior Dev (5y+ req): 35-45
- Senior Java Dev to Senior Python Dev: 60-70
- Marketing Manager to Software Engineer: 20-30
- Senior React Dev to Senior React Dev: 80-95"""

_GENERAL_AUDIT = """GENERAL AUDIT (No JD provided):
- Impact quantification (metrics, numbers): 30 points
- Clarity and professional presentation: 25 points
- Skills articulation: 20 points
- Career progression: 15 points
- ATS-friendliness: 10 points"""


def build_structured_optimize_system_prompt(*, targeted: bool) -> str:
    return (
        "You are a Senior Technical Recruiter and ATS Auditor.\n"
        "Your goal is to screen candidates ruthlessly based on the Job Description (JD).\n\n"
        "PHASE 1: THE AUDIT (strict scoring on the ORIGINAL resume, do this FIRST)\n"
        'Look ONLY at the provided "RESUME DATA". Do NOT consider your potential improvements yet.\n\n'
        f"{_TARGETED_AUDIT if targeted else _GENERAL_AUDIT}\n\n"
        "PHASE 2: THE OPTIMIZATION (rewrite, do this AFTER scoring)\n"
        "Now that you have scored the ORIGINAL, create the optimized version.\n\n"
        "PRESERVATION RULES (MUST FOLLOW):\n"
        "1. DO NOT DELETE sections: Military Service, Volunteering, Awards, Projects. KEEP THEM ALL\n"
        '2. DO NOT SIMPLIFY job titles: "Creator of XYZ Podcast" stays exactly as written\n'
        "3. DO NOT MODIFY contact info: Name, Email, Phone, LinkedIn URL. Keep VERBATIM\n"
        "4. DO NOT HALLUCINATE: no inventing dates, companies, titles, or skills\n\n"
        "OPTIMIZATION STRATEGY:\n"
        "- Rewrite Summary to target the JD using keywords naturally\n"
        "- Enhance bullet points with action verbs and metrics where reasonable\n"
        "- Bridge gaps identified in Phase 1 through strategic positioning\n\n"
        "OUTPUT FORMAT (valid JSON):\n"
        "{\n"
        '  "score": number,  // the PHASE 1 score (original baseline, be harsh)\n'
        '  "headline": "string (brutally honest 1-sentence assessment of the ORIGINAL CV fit)",\n'
        '  "tailoredSummary": "string (optimized summary targeting the JD)",\n'
        '  "missingKeywords": ["critical skill 1", "critical skill 2"],\n'
        '  "keyImprovements": ["specific improvement 1", "specific improvement 2", "specific improvement 3"],\n'
        '  "experience": [...],\n'
        '  "military": [...],\n'
        '  "education": [...],\n'
        '  "projects": [...],\n'
        '  "volunteering": [...],\n'
        '  "awards": [...]\n'
        "}"
    )


def build_structured_optimize_user_message(*, resume_data: dict[str, Any], job_description: str, targeted: bool) -> str:
    message = f"RESUME DATA (ORIGINAL):\n{json.dumps(resume_data, ensure_ascii=False)}\n"
    if targeted:
        message += f"\nTARGET JOB DESCRIPTION:\n{job_description}\n"
    return message


def describe_entry_location(target: dict[str, Any], *, summary_label: str = "Professional Summary") -> str:
    if target.get("section") == "summary":
        return summary_label
    if target.get("organization"):
        return f"{target.get('title') or ''} at {target['organization']}"
    return target.get("title") or target.get("section") or ""


def build_skills_prompt(
    *,
    cv_text: str,
    job_title: str,
    job_description: str,
    placements: list[dict[str, Any]],
) -> str:
    instructions = "\n\n".join(
        f'{idx}. Skill: "{item["skill"]}"\n'
        f"   - Add to: {describe_entry_location(item['targetCvEntry'], summary_label='Professional Summary section')}\n"
        f"   - Context: {item['userProvidedContext']}"
        for idx, item in enumerate(placements, start=1)
    )
    return (
        "You are an expert resume writer. Your task is to add missing skills to an existing CV by enhancing "
        "specific CV entries that the user has selected.\n\n"
        f"## Original CV:\n{cv_text}\n\n"
        f"## Target Role:\n{job_title or 'General optimization'}\n\n"
        f"## Job Description (for context):\n{job_description or '[Not provided]'}\n\n"
        "## Skills to Add:\n"
        "The user has identified the following missing skills and provided context about how their experience "
        "relates to each skill. You must add content ONLY to the specific CV entries the user selected.\n\n"
        f"{instructions}\n\n"
        "## CRITICAL RULES:\n"
        "1. Add content ONLY under the selected CV entry for each skill. Do NOT move experience between roles, "
        "education entries, or projects.\n"
        "2. Do NOT create new roles, education entries, or projects.\n"
        "3. Do NOT move experience across sections or reorganize the CV structure.\n"
        "4. Rewrite user-provided context into 1-2 professional resume bullets with action verbs, keeping the tone "
        "consistent with the rest of the CV.\n"
        "5. Do NOT exaggerate seniority or invent tools, metrics, or achievements the user didn't mention.\n"
        "6. Preserve the original CV format: keep all existing content intact and match its formatting style.\n\n"
        "## Output Format:\n"
        "Return a JSON object with this structure:\n"
        "{\n"
        '  "optimizedCV": "<the complete CV with the new skill-related content added to the selected entries only>",\n'
        '  "changesApplied": [\n'
        '    {"skill": "<skill name>", "location": "<where it was added>", "bulletsAdded": ["<new bullet 1>", "<new bullet 2>"]}\n'
        "  ]\n"
        "}\n\n"
        "Return ONLY valid JSON, no other text."
    )


def build_cover_letter_prompt(
    *,
    cv_text: str,
    job_title: str,
    job_description: str,
    company_name: str,
) -> str:
    has_description = bool(job_description.strip())
    has_company = bool(company_name.strip())

    if has_description:
        job_context = f"Job description:\n{job_description}"
    else:
        job_context = (
            f'[No job description provided. Create a cover letter targeting the "{job_title}" role, '
            "using typical responsibilities and requirements for this position.]"
        )
    if has_company:
        company_section = f"Company:\n{company_name.strip()}"
        fit_section = (
            "Company Fit (1 short paragraph)\n"
            "   - Why this company specifically (product, market, strategy, culture)\n"
            "   - Show understanding of what they do, no generic praise"
        )
    else:
        company_section = "[Company name not specified. Keep company references generic but professional.]"
        fit_section = (
            "Role Fit (1 short paragraph)\n"
            "   - Why this role specifically and how your experience aligns\n"
            "   - Show understanding of typical challenges and priorities"
        )

    return (
        "I will provide:\n"
        "1) My CV\n"
        f"2) The target role{' and job description' if has_description else ''}\n"
        f"{'3) The company name' if has_company else ''}\n\n"
        "Your task:\n"
        f"Create a concise, high-impact cover letter tailored specifically to this role{' and company' if has_company else ''}.\n\n"
        "STRICT REQUIREMENTS:\n"
        "- Length: 220-300 words MAX (never exceed one page)\n"
        "- Tone: confident, natural, human, and professional. NOT generic, NOT flowery, NOT robotic\n"
        "- Style: clear, direct, impact-focused (avoid buzzwords and cliches)\n"
        "- Voice: first-person, active voice\n"
        "- Do NOT sound like AI wrote this\n"
        "- Do NOT over-explain or repeat my CV\n"
        '- Do NOT use corporate fluff (e.g. "passionate", "synergy", "fast-paced environment")\n\n'
        "STRUCTURE:\n"
        "1. Opening (2-3 sentences)\n"
        "   - Directly state the role\n"
        "   - One sharp hook linking my background to "
        f"{'the company mission/product' if has_company else 'typical requirements for this role'}\n\n"
        "2. Core Value (1 short paragraph)\n"
        "   - 2-3 concrete strengths or achievements from my CV\n"
        f"   - {'Tie each explicitly to what the job description prioritizes' if has_description else 'Tie each to what is typically valued for this role'}\n"
        "   - Focus on outcomes and impact, not responsibilities\n\n"
        f"3. {fit_section}\n\n"
        "4. Closing (2 sentences)\n"
        "   - Clear interest and confidence\n"
        "   - Polite, professional close (no desperation)\n\n"
        "FORMATTING:\n"
        "- Clean, professional layout suitable for PDF or email\n"
        "- No emojis, no bullet points, no bold inside paragraphs\n\n"
        "If something in my CV is weak or missing, subtly work around it without calling attention to gaps.\n\n"
        "--- INPUTS ---\n\n"
        f"Role title:\n{job_title}\n\n"
        f"{company_section}\n\n"
        f"{job_context}\n\n"
        f"CV:\n{cv_text}\n\n"
        "Return ONLY the cover letter text."
    )
