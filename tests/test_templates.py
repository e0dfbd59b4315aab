"""
Tests for USSD menu templates
"""
import pytest

from insureme.state_machine import templates
from insureme.state_machine.states import Language


class TestTemplates:

    @pytest.mark.unit
    def test_every_swahili_template_has_an_english_original(self):
        names_sw = {name for name, lang in templates.TEMPLATES if lang == Language.SW}
        names_en = {name for name, lang in templates.TEMPLATES if lang == Language.EN}
        assert names_sw <= names_en

    @pytest.mark.unit
    def test_missing_language_falls_back_to_english(self):
        text = templates.render("invalid_phone", Language.SW)
        assert text == templates.render("invalid_phone", Language.EN)

    @pytest.mark.unit
    @pytest.mark.parametrize("language", [None, "", "fr", "EN"])
    def test_unknown_language_is_english(self, language):
        assert templates.render("goodbye", language) == "Thank you for using InsureMe!"

    @pytest.mark.unit
    def test_unknown_template_raises(self):
        with pytest.raises(KeyError):
            templates.render("does_not_exist", Language.EN)

    @pytest.mark.unit
    def test_confirm_purchase_formatting(self):
        text = templates.render(
            "confirm_purchase", Language.EN,
            plan_name="Standard Health", premium="150.00", coverage="75000.00",
        )
        assert text == (
            "Confirm Purchase:\n"
            "Plan: Standard Health\n"
            "Premium: 150 KES/month\n"
            "Coverage: 75000 KES\n"
            "1. Confirm\n"
            "2. Cancel"
        )

    @pytest.mark.unit
    def test_fixed_templates_ignore_params(self):
        assert templates.render("welcome", Language.EN, name="ignored").startswith("Welcome")

    @pytest.mark.unit
    @pytest.mark.parametrize("language,greeting", [
        (Language.EN, "Thank you Jane Wanjiku,"),
        (Language.SW, "Asante Jane Wanjiku,"),
    ])
    def test_template_param_called_name(self, language, greeting):
        text = templates.render("registration_complete", language, name="Jane Wanjiku")
        assert text.startswith(greeting)

    @pytest.mark.unit
    def test_no_template_carries_a_gateway_prefix(self):
        for (name, lang), template in templates.TEMPLATES.items():
            if isinstance(template, templates.FixedTemplate):
                assert not template.text.startswith(("CON ", "END ")), name

    @pytest.mark.unit
    def test_truncate_lines(self):
        text = "a" * 200 + "\n" + "short"
        result = templates.truncate_lines(text, 160)
        lines = result.split("\n")
        assert len(lines[0]) == 160
        assert lines[1] == "short"
