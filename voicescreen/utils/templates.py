"""
Placeholder substitution for screening prompt templates.

Each template kind has a fixed set of placeholders. Supplying a value for a
placeholder outside that set is an error; placeholders without a value are
left untouched so partially filled templates can be rendered in stages.
"""
import re
from enum import Enum
from typing import Mapping

from voicescreen.exceptions import ValidationError

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class TemplateKind(str, Enum):
    SYSTEM_PROMPT = "system_prompt"
    FIRST_MESSAGE = "first_message"
    END_CALL_MESSAGE = "end_call_message"
    FAILURE_NOTE = "failure_note"


PLACEHOLDERS: dict[TemplateKind, frozenset[str]] = {
    TemplateKind.SYSTEM_PROMPT: frozenset({
        "candidate_name", "job_title", "company_name", "role", "tone", "questions", "max_minutes",
    }),
    TemplateKind.FIRST_MESSAGE: frozenset({"candidate_name", "job_title", "company_name"}),
    TemplateKind.END_CALL_MESSAGE: frozenset({"candidate_name", "company_name"}),
    TemplateKind.FAILURE_NOTE: frozenset({"reason"}),
}


def template_placeholders(template: str) -> set[str]:
    """Names of the placeholders used in a template."""
    return set(_PLACEHOLDER_RE.findall(template))


def render_template(kind: TemplateKind, template: str, values: Mapping[str, object]) -> str:
    """
    Substitute ``{{name}}`` placeholders.

    Args:
        kind: Template kind; determines which placeholders are allowed
        template: Template text
        values: Placeholder values

    Raises:
        ValidationError: If a value or a placeholder in the template is not
            part of the kind's placeholder set
    """
    allowed = PLACEHOLDERS[kind]

    unknown_values = set(values) - allowed
    if unknown_values:
        raise ValidationError(
            f"Unsupported placeholders for {kind.value}: {', '.join(sorted(unknown_values))}",
            field="values",
        )

    unknown_in_template = template_placeholders(template) - allowed
    if unknown_in_template:
        raise ValidationError(
            f"Template uses placeholders not allowed for {kind.value}: "
            f"{', '.join(sorted(unknown_in_template))}",
            field="template",
        )

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in values and values[name] is not None:
            return str(values[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(replace, template)
