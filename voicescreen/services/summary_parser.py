"""
Parse a call summary into a structured candidate evaluation.

Summaries arrive either as JSON (structured analysis) or as labelled text
sections ("Experience:", "Availability:", ...). Parsing is best effort:
anything we cannot interpret is left to the raw summary.
"""
import json
import logging
import re
from typing import Optional

from voicescreen.models import CandidateEvaluation, RoleSpecificNotes

logger = logging.getLogger(__name__)

SECTION_LABELS = {
    "experience": "experience",
    "availability": "availability",
    "transportation": "transportation",
    "soft skills": "soft_skills",
    "role-specific": "role_specific",
    "role specific": "role_specific",
}

_SECTION_RE = re.compile(
    r"^\s*(?:#+\s*)?\**(experience|availability|transportation|soft skills|role[- ]specific)\**\s*:\s*(.*)$",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^\s*[-•*]\s+(.+)$")
_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in re.split(r"[,;\n]", value) if item.strip()]


def _from_json(data: dict) -> CandidateEvaluation:
    role_data = data.get("roleSpecific") or data.get("role_specific")
    role_specific = None
    if isinstance(role_data, dict):
        role_specific = RoleSpecificNotes(
            strengths=list(role_data.get("strengths") or []),
            areas_for_improvement=list(
                role_data.get("areasForImprovement") or role_data.get("areas_for_improvement") or []
            ),
            notes=role_data.get("notes"),
        )
    elif isinstance(role_data, str):
        role_specific = RoleSpecificNotes(notes=role_data)

    soft_skills = data.get("softSkills") or data.get("soft_skills") or []
    if isinstance(soft_skills, str):
        soft_skills = _split_list(soft_skills)

    return CandidateEvaluation(
        experience=data.get("experience"),
        availability=data.get("availability"),
        transportation=data.get("transportation"),
        soft_skills=list(soft_skills),
        role_specific=role_specific,
        highlights=list(data.get("highlights") or []),
    )


def _load_json(summary: str) -> Optional[dict]:
    text = summary.strip()
    match = _JSON_BLOCK_RE.search(text)
    if match:
        text = match.group(1).strip()
    if not text.startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _parse_role_specific(lines: list[str]) -> RoleSpecificNotes:
    notes = RoleSpecificNotes()
    target = None
    free_text = []
    for line in lines:
        lowered = line.lower().strip()
        if lowered.startswith("strengths:"):
            target = notes.strengths
            rest = line.split(":", 1)[1].strip()
            if rest:
                target.extend(_split_list(rest))
            continue
        if lowered.startswith("areas for improvement:"):
            target = notes.areas_for_improvement
            rest = line.split(":", 1)[1].strip()
            if rest:
                target.extend(_split_list(rest))
            continue
        bullet = _BULLET_RE.match(line)
        if bullet and target is not None:
            target.append(bullet.group(1).strip())
        elif line.strip():
            free_text.append(line.strip())
    if free_text:
        notes.notes = " ".join(free_text)
    return notes


def _from_text(summary: str) -> CandidateEvaluation:
    sections: dict[str, list[str]] = {}
    current = None
    highlights = []

    for line in summary.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            current = SECTION_LABELS[match.group(1).lower()]
            sections.setdefault(current, [])
            if match.group(2).strip():
                sections[current].append(match.group(2).strip())
            continue
        if current is not None:
            sections[current].append(line)
        else:
            bullet = _BULLET_RE.match(line)
            if bullet:
                highlights.append(bullet.group(1).strip())

    def joined(key: str) -> Optional[str]:
        text = " ".join(part.strip() for part in sections.get(key, []) if part.strip())
        return text or None

    soft_skills = []
    for line in sections.get("soft_skills", []):
        bullet = _BULLET_RE.match(line)
        soft_skills.extend([bullet.group(1).strip()] if bullet else _split_list(line))

    return CandidateEvaluation(
        experience=joined("experience"),
        availability=joined("availability"),
        transportation=joined("transportation"),
        soft_skills=soft_skills,
        role_specific=_parse_role_specific(sections["role_specific"]) if "role_specific" in sections else None,
        highlights=highlights,
    )


def parse_screening_summary(summary: Optional[str]) -> Optional[CandidateEvaluation]:
    """
    Parse a summary into a CandidateEvaluation.

    Returns None when the summary is empty or nothing could be extracted.
    """
    if not summary or not summary.strip():
        return None

    data = _load_json(summary)
    evaluation = _from_json(data) if data is not None else _from_text(summary)
    return None if evaluation.is_empty() else evaluation


def score_evaluation(evaluation: Optional[CandidateEvaluation]) -> Optional[float]:
    """Heuristic 0-10 rating from role-specific strengths vs. improvement areas."""
    if evaluation is None or evaluation.role_specific is None:
        return None
    notes = evaluation.role_specific
    if not notes.strengths and not notes.areas_for_improvement:
        return None
    return 8.0 if len(notes.strengths) > len(notes.areas_for_improvement) else 5.0
