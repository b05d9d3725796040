"""
Screening call configuration: voice settings, tone and question sets.

Defaults live here; a JSON file (SCREENING_CONFIG_PATH) can override any of
them. A broken file is logged and ignored so calls still go out with the
default questions.
"""
import json
import logging
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field

from voicescreen.config import SCREENING_CONFIG_PATH
from voicescreen.models import ScreeningRole

logger = logging.getLogger(__name__)


class VoiceSettings(BaseModel):
    provider: str = "playht"
    voiceId: str = "jennifer"


class ModelSettings(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4"


class TranscriberSettings(BaseModel):
    provider: str = "deepgram"
    model: str = "nova-2"
    language: str = "en-US"


DEFAULT_MANDATORY_QUESTIONS = [
    "Are you available to work morning shifts (6 AM - 2 PM)?",
    "Are you available to work evening shifts (2 PM - 10 PM)?",
    "Can you work weekends?",
    "Do you have reliable transportation to get to work?",
]

DEFAULT_ROLE_QUESTIONS: dict[ScreeningRole, list[str]] = {
    ScreeningRole.SERVER: [
        "How would you handle a difficult customer situation?",
        "Do you have experience with point-of-sale systems?",
        "How do you prioritize tasks during busy service periods?",
    ],
    ScreeningRole.COOK: [
        "What types of cuisine do you have experience preparing?",
        "How do you ensure food safety and proper handling?",
        "How do you handle high-pressure cooking environments?",
    ],
    ScreeningRole.HOST: [
        "What customer service experience do you have?",
        "How do you handle stressful situations with customers?",
        "Are you comfortable using computer systems for reservations?",
    ],
    ScreeningRole.MANAGER: [
        "Tell me about your experience managing restaurant staff.",
        "How do you handle scheduling and staff conflicts?",
        "What strategies do you use to improve customer satisfaction?",
    ],
    ScreeningRole.GENERAL: [
        "What experience do you have that is relevant to this position?",
        "What are your strengths in a fast-paced work environment?",
        "How would you contribute to a positive team atmosphere?",
    ],
}


class ScreeningConfig(BaseModel):
    """Everything that shapes the interaction script for a call."""
    voice: VoiceSettings = Field(default_factory=VoiceSettings)
    model: ModelSettings = Field(default_factory=ModelSettings)
    transcriber: TranscriberSettings = Field(default_factory=TranscriberSettings)
    conversation_tone: str = "friendly and professional"
    max_call_duration_seconds: int = 180
    silence_timeout_seconds: int = 15
    mandatory_questions: list[str] = Field(default_factory=lambda: list(DEFAULT_MANDATORY_QUESTIONS))
    role_questions: dict[ScreeningRole, list[str]] = Field(
        default_factory=lambda: {role: list(qs) for role, qs in DEFAULT_ROLE_QUESTIONS.items()}
    )

    def questions_for(self, role: ScreeningRole) -> list[str]:
        return self.role_questions.get(role) or DEFAULT_ROLE_QUESTIONS[role]


def load_screening_config(path: Optional[str] = None) -> ScreeningConfig:
    """
    Load the screening configuration.

    The file uses the same keys as ScreeningConfig; role questions may be
    given as ``{"roles": {"cook": {"screeningQuestions": [...]}}}``.
    """
    path = path or SCREENING_CONFIG_PATH
    if not path:
        return ScreeningConfig()

    config_file = Path(path)
    if not config_file.exists():
        logger.warning(f"Screening config not found at {path}, using defaults")
        return ScreeningConfig()

    try:
        raw = json.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read screening config {path}: {e}")
        return ScreeningConfig()

    data = dict(raw.get("vapiSettings") or {})
    if "conversationTone" in data:
        data["conversation_tone"] = data.pop("conversationTone")
    if "maxCallDuration" in data:
        data["max_call_duration_seconds"] = data.pop("maxCallDuration")
    if raw.get("mandatoryQuestions"):
        data["mandatory_questions"] = raw["mandatoryQuestions"]

    roles = raw.get("roles") or {}
    role_questions = {}
    for role_name, role_data in roles.items():
        questions = (role_data or {}).get("screeningQuestions")
        if questions and role_name in ScreeningRole._value2member_map_:
            role_questions[ScreeningRole(role_name)] = questions
    if role_questions:
        data["role_questions"] = {**DEFAULT_ROLE_QUESTIONS, **role_questions}

    try:
        config = ScreeningConfig.model_validate(data)
    except ValueError as e:
        logger.error(f"Invalid screening config {path}: {e}")
        return ScreeningConfig()

    logger.info(f"Loaded screening config from {path}")
    return config
