"""
VAPI screening prompts - the interaction script is built here and injected at call time.

The role variant is resolved once from the job title/department; everything
downstream is a pure function of (role, job, candidate, config).
"""
from dataclasses import dataclass, field
from typing import Optional

from voicescreen.models import ScreeningRole
from voicescreen.services.screening_config import ScreeningConfig
from voicescreen.utils.templates import TemplateKind, render_template

COOK_KEYWORDS = ("cook", "chef", "kitchen")
SERVER_KEYWORDS = ("server", "waiter", "waitress")
HOST_KEYWORDS = ("host", "hostess", "greeting")
MANAGER_KEYWORDS = ("manager", "supervisor", "lead")

END_CALL_PHRASES = [
    "goodbye",
    "thank you for your time",
    "we'll be in touch",
    "have a great day",
    "that concludes our screening",
    "this completes the interview",
]

SYSTEM_PROMPT_TEMPLATE = """## Role
You are the AI screening assistant conducting a short phone screening for the {{job_title}} position at {{company_name}}.
You are speaking with {{candidate_name}}. Use a {{tone}} tone throughout the conversation.

## Guidelines
- Keep the conversation brief (about {{max_minutes}} minutes) and focused on gathering key information
- Ask questions one at a time and wait for the answer
- Do not give evaluative feedback and do not make hiring decisions
- Do not tell the candidate whether they are qualified

## Questions (ask one by one)
{{questions}}

## Ending the call
Thank the candidate, explain that a recruiter will review the screening, and clearly say
"Thank you for your time" or "goodbye" so the call ends properly.

## Summary
After the call, summarize the answers under the headings Experience, Availability,
Transportation, Soft Skills and Role-Specific (with Strengths and Areas for Improvement).
Do not give an overall rating.
"""

FIRST_MESSAGE_TEMPLATE = (
    "Hi {{candidate_name}}, I'm the AI screening assistant for the {{job_title}} position"
    " at {{company_name}}. This call will take about 2-3 minutes. I'll be asking you some"
    " questions about your experience and availability. Could you start by telling me"
    " about your relevant experience for this {{job_title}} role?"
)

END_CALL_MESSAGE_TEMPLATE = (
    "Thank you for your time, {{candidate_name}}. We'll review your responses and get back"
    " to you soon. Have a great day!"
)


@dataclass(frozen=True)
class InteractionScript:
    """Everything the voice assistant needs to run one screening call."""
    role: ScreeningRole
    system_prompt: str
    first_message: str
    end_call_message: str
    questions: list[str]
    end_call_phrases: list[str] = field(default_factory=lambda: list(END_CALL_PHRASES))
    max_duration_seconds: int = 180
    silence_timeout_seconds: int = 15


@dataclass(frozen=True)
class SessionConfig:
    """Start parameters handed to the voice provider adapter."""
    screening_call_id: str
    phone_number: str
    candidate_name: str
    script: InteractionScript
    config: ScreeningConfig
    metadata: dict = field(default_factory=dict)


def determine_screening_role(job_title: Optional[str], department: Optional[str] = None) -> ScreeningRole:
    """Resolve the role variant from the job title and department."""
    title = (job_title or "").lower()
    dept = (department or "").lower()

    if "kitchen" in dept or any(keyword in title for keyword in COOK_KEYWORDS):
        return ScreeningRole.COOK
    if any(keyword in title for keyword in SERVER_KEYWORDS):
        return ScreeningRole.SERVER
    if any(keyword in title for keyword in HOST_KEYWORDS):
        return ScreeningRole.HOST
    if any(keyword in title for keyword in MANAGER_KEYWORDS):
        return ScreeningRole.MANAGER
    return ScreeningRole.GENERAL


def build_interaction_script(
    role: ScreeningRole,
    job_title: str,
    candidate_name: str,
    config: ScreeningConfig,
    company_name: Optional[str] = None,
    max_duration_seconds: Optional[int] = None,
) -> InteractionScript:
    """
    Build the interaction script for one call.

    Questions are the role's questions followed by the mandatory
    availability/transportation questions.
    """
    company = company_name or "our restaurant"
    max_duration = int(max_duration_seconds or config.max_call_duration_seconds)
    questions = config.questions_for(role) + list(config.mandatory_questions)
    questions_text = "\n".join(f"{i + 1}. {question}" for i, question in enumerate(questions))

    system_prompt = render_template(TemplateKind.SYSTEM_PROMPT, SYSTEM_PROMPT_TEMPLATE, {
        "candidate_name": candidate_name,
        "job_title": job_title,
        "company_name": company,
        "role": role.value,
        "tone": config.conversation_tone,
        "questions": questions_text,
        "max_minutes": max(1, round(max_duration / 60)),
    })
    first_message = render_template(TemplateKind.FIRST_MESSAGE, FIRST_MESSAGE_TEMPLATE, {
        "candidate_name": candidate_name,
        "job_title": job_title,
        "company_name": company,
    })
    end_call_message = render_template(TemplateKind.END_CALL_MESSAGE, END_CALL_MESSAGE_TEMPLATE, {
        "candidate_name": candidate_name,
        "company_name": company,
    })

    return InteractionScript(
        role=role,
        system_prompt=system_prompt,
        first_message=first_message,
        end_call_message=end_call_message,
        questions=questions,
        max_duration_seconds=max_duration,
        silence_timeout_seconds=config.silence_timeout_seconds,
    )
