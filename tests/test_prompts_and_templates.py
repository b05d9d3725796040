"""
Tests for role resolution, interaction scripts and template rendering.

Run with: pytest tests/test_prompts_and_templates.py -v
"""
import json

import pytest

from voicescreen.exceptions import ValidationError
from voicescreen.models import ScreeningRole
from voicescreen.services import ScreeningConfig, build_interaction_script, determine_screening_role
from voicescreen.services.screening_config import DEFAULT_MANDATORY_QUESTIONS, load_screening_config
from voicescreen.utils.templates import TemplateKind, render_template, template_placeholders


class TestDetermineRole:

    @pytest.mark.parametrize("job_title,department,expected", [
        ("Line Cook", None, ScreeningRole.COOK),
        ("Sous Chef", None, ScreeningRole.COOK),
        ("Dishwasher", "Kitchen", ScreeningRole.COOK),
        ("Server", None, ScreeningRole.SERVER),
        ("Head Waitress", None, ScreeningRole.SERVER),
        ("Hostess", None, ScreeningRole.HOST),
        ("Shift Supervisor", None, ScreeningRole.MANAGER),
        ("Bartender", None, ScreeningRole.GENERAL),
        (None, None, ScreeningRole.GENERAL),
    ])
    def test_role_from_title(self, job_title, department, expected):
        assert determine_screening_role(job_title, department) == expected


class TestInteractionScript:

    def test_script_contains_candidate_and_questions(self):
        config = ScreeningConfig()

        script = build_interaction_script(ScreeningRole.SERVER, "Server", "Sam", config, company_name="Cafe Luz")

        assert script.role == ScreeningRole.SERVER
        assert script.first_message.startswith("Hi Sam,")
        assert "Cafe Luz" in script.system_prompt
        assert "{{" not in script.system_prompt
        assert script.questions[:3] == config.questions_for(ScreeningRole.SERVER)
        assert script.questions[3:] == DEFAULT_MANDATORY_QUESTIONS
        assert "1. How would you handle a difficult customer situation?" in script.system_prompt
        assert script.max_duration_seconds == 180

    def test_default_company_name(self):
        script = build_interaction_script(ScreeningRole.GENERAL, "Porter", "Ana", ScreeningConfig())

        assert "our restaurant" in script.first_message

    def test_script_is_deterministic(self):
        config = ScreeningConfig()

        first = build_interaction_script(ScreeningRole.COOK, "Cook", "Lee", config)
        second = build_interaction_script(ScreeningRole.COOK, "Cook", "Lee", config)

        assert first == second


class TestRenderTemplate:

    def test_substitutes_known_placeholders(self):
        text = render_template(TemplateKind.FIRST_MESSAGE, "Hi {{candidate_name}}!", {"candidate_name": "Jo"})

        assert text == "Hi Jo!"

    def test_missing_values_are_left_in_place(self):
        text = render_template(
            TemplateKind.END_CALL_MESSAGE, "Bye {{candidate_name}} from {{company_name}}", {"candidate_name": "Jo"}
        )

        assert text == "Bye Jo from {{company_name}}"

    def test_unknown_value_is_rejected(self):
        with pytest.raises(ValidationError):
            render_template(TemplateKind.FAILURE_NOTE, "{{reason}}", {"reason": "x", "salary": "y"})

    def test_unknown_placeholder_in_template_is_rejected(self):
        with pytest.raises(ValidationError):
            render_template(TemplateKind.FIRST_MESSAGE, "Hi {{candidate_name}}, {{salary}}", {})

    def test_placeholder_listing(self):
        assert template_placeholders("{{ a }} and {{b}}") == {"a", "b"}


class TestLoadScreeningConfig:

    def test_no_path_gives_defaults(self):
        assert load_screening_config(None) == ScreeningConfig()

    def test_overrides_from_file(self, tmp_path):
        path = tmp_path / "screening.json"
        path.write_text(json.dumps({
            "mandatoryQuestions": ["Can you work holidays?"],
            "roles": {"cook": {"screeningQuestions": ["Favourite knife?"]}},
        }))

        config = load_screening_config(str(path))

        assert config.mandatory_questions == ["Can you work holidays?"]
        assert config.questions_for(ScreeningRole.COOK) == ["Favourite knife?"]
        assert config.questions_for(ScreeningRole.HOST) == ScreeningConfig().questions_for(ScreeningRole.HOST)

    def test_broken_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        assert load_screening_config(str(path)) == ScreeningConfig()
