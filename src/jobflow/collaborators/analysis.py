"""Deterministic local job analysis used when no model-backed client is wired in."""

from __future__ import annotations

import re

from jobflow.collaborators.base import AnalysisResult

CATEGORY_SKILLS: dict[str, tuple[str, ...]] = {
    "video": ("video editing", "motion graphics", "color grading"),
    "design": ("graphic design", "branding", "illustration"),
    "web": ("web development", "html", "css", "javascript"),
    "social": ("social media", "copywriting", "content planning"),
    "admin": ("data entry", "research", "spreadsheets"),
    "other": ("general",),
}

KEYWORD_SKILLS: dict[str, str] = {
    "logo": "branding",
    "thumbnail": "graphic design",
    "youtube": "video editing",
    "reel": "video editing",
    "subtitles": "video editing",
    "animation": "motion graphics",
    "wordpress": "web development",
    "landing": "web development",
    "seo": "web development",
    "instagram": "social media",
    "linkedin": "social media",
    "caption": "copywriting",
    "spreadsheet": "spreadsheets",
    "excel": "spreadsheets",
    "research": "research",
}

_BASE_HOURS = {"low": 2.0, "medium": 5.0, "high": 12.0}
_WORD_RE = re.compile(r"[a-z0-9]+")


class HeuristicAnalysisClient:
    """Infer skills from category and keywords, complexity from brief length."""

    def analyze(self, *, title: str, description: str, category: str) -> AnalysisResult:
        words = set(_WORD_RE.findall(f"{title} {description}".lower()))
        category_skills = CATEGORY_SKILLS.get(category, CATEGORY_SKILLS["other"])
        skills = [category_skills[0]]
        for keyword, skill in sorted(KEYWORD_SKILLS.items()):
            if keyword in words and skill not in skills:
                skills.append(skill)

        length = len(description.strip())
        if length < 200:
            complexity = "low"
        elif length < 800:
            complexity = "medium"
        else:
            complexity = "high"

        estimated_hours = _BASE_HOURS[complexity] + 0.5 * (len(skills) - 1)
        confidence = 0.5 if category not in CATEGORY_SKILLS else 0.7
        if len(skills) > 1:
            confidence += 0.1
        return AnalysisResult(
            required_skills=skills,
            complexity=complexity,
            estimated_hours=round(estimated_hours, 1),
            confidence=round(min(confidence, 0.95), 2),
        )
