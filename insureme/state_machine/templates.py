"""
USSD Menu Templates

Keyed by (template name, language). Each entry is either a fixed string or a
formatting function of named parameters. A template missing in the requested
language falls back to English.

Text here carries no CON/END prefix; the gateway adapter adds it.
"""
from dataclasses import dataclass
from typing import Callable, Iterable, Union

from insureme.domain.coverage import format_amount
from insureme.state_machine.states import Language

MAX_LINE_LENGTH = 160


@dataclass(frozen=True)
class FixedTemplate:
    text: str

    def render(self, **params) -> str:
        return self.text


@dataclass(frozen=True)
class FormattedTemplate:
    formatter: Callable[..., str]

    def render(self, **params) -> str:
        return self.formatter(**params)


Template = Union[FixedTemplate, FormattedTemplate]


def _plan_lines(plans: Iterable, back_label: str) -> str:
    lines = [
        f"{index}. {plan.name} ({format_amount(plan.min_premium)}-{format_amount(plan.max_premium)} KES/month)"
        for index, plan in enumerate(plans, start=1)
    ]
    lines.append(f"0. {back_label}")
    return "\n".join(lines)


TEMPLATES: dict[tuple[str, Language], Template] = {
    # ==================== Main menu ====================
    ("welcome", Language.EN): FixedTemplate(
        "Welcome to InsureMe Kenya!\n"
        "1. Register\n"
        "2. My Plans\n"
        "3. Buy Insurance\n"
        "4. Pay Premium\n"
        "5. Check Balance\n"
        "0. Exit"
    ),
    ("welcome", Language.SW): FixedTemplate(
        "Karibu InsureMe Kenya!\n"
        "1. Jisajili\n"
        "2. Bima Zangu\n"
        "3. Nunua Bima\n"
        "4. Lipa Ada\n"
        "5. Angalia Salio\n"
        "0. Ondoka"
    ),
    ("goodbye", Language.EN): FixedTemplate("Thank you for using InsureMe!"),
    ("goodbye", Language.SW): FixedTemplate("Asante kwa kutumia InsureMe!"),
    ("error", Language.EN): FixedTemplate("An error occurred. Please try again later."),
    ("error", Language.SW): FixedTemplate("Kosa limetokea. Tafadhali jaribu baadaye."),

    # ==================== Registration ====================
    ("register_name", Language.EN): FixedTemplate("Enter your full name:"),
    ("register_name", Language.SW): FixedTemplate("Ingiza jina lako kamili:"),
    ("register_occupation", Language.EN): FixedTemplate(
        "What is your occupation?\n"
        "1. Student\n"
        "2. Employed\n"
        "3. Self-employed\n"
        "4. Unemployed\n"
        "5. Other"
    ),
    ("register_occupation", Language.SW): FixedTemplate(
        "Kazi yako ni nini?\n"
        "1. Mwanafunzi\n"
        "2. Mwajiriwa\n"
        "3. Nimejiajiri\n"
        "4. Sina kazi\n"
        "5. Nyingine"
    ),
    ("register_income", Language.EN): FixedTemplate(
        "What is your income range?\n"
        "1. Low (< 20,000 KES)\n"
        "2. Medium (20,000 - 50,000 KES)\n"
        "3. High (> 50,000 KES)"
    ),
    ("register_income", Language.SW): FixedTemplate(
        "Kiwango cha mapato yako?\n"
        "1. Chini (< 20,000 KES)\n"
        "2. Kati (20,000 - 50,000 KES)\n"
        "3. Juu (> 50,000 KES)"
    ),
    ("registration_complete", Language.EN): FormattedTemplate(
        lambda name: f"Thank you {name}, you are now registered with InsureMe.\n"
                     "Dial again and choose 3 to buy insurance."
    ),
    ("registration_complete", Language.SW): FormattedTemplate(
        lambda name: f"Asante {name}, umesajiliwa na InsureMe.\n"
                     "Piga tena uchague 3 kununua bima."
    ),

    # ==================== Purchase ====================
    ("select_plan", Language.EN): FormattedTemplate(
        lambda plans: "Select Plan:\n" + _plan_lines(plans, "Back")
    ),
    ("select_plan", Language.SW): FormattedTemplate(
        lambda plans: "Chagua Mpango:\n" + _plan_lines(plans, "Rudi")
    ),
    ("no_plans_available", Language.EN): FixedTemplate(
        "No insurance plans are available right now. Please try again later."
    ),
    ("enter_premium", Language.EN): FormattedTemplate(
        lambda plan_name, min_premium, max_premium:
            f"{plan_name}\n"
            f"Enter monthly premium ({format_amount(min_premium)}-{format_amount(max_premium)} KES):"
    ),
    ("enter_premium", Language.SW): FormattedTemplate(
        lambda plan_name, min_premium, max_premium:
            f"{plan_name}\n"
            f"Ingiza ada ya kila mwezi ({format_amount(min_premium)}-{format_amount(max_premium)} KES):"
    ),
    ("premium_out_of_range", Language.EN): FormattedTemplate(
        lambda min_premium, max_premium:
            f"Premium must be between {format_amount(min_premium)} and {format_amount(max_premium)} KES.\n"
            "Enter monthly premium:"
    ),
    ("confirm_purchase", Language.EN): FormattedTemplate(
        lambda plan_name, premium, coverage:
            "Confirm Purchase:\n"
            f"Plan: {plan_name}\n"
            f"Premium: {format_amount(premium)} KES/month\n"
            f"Coverage: {format_amount(coverage)} KES\n"
            "1. Confirm\n"
            "2. Cancel"
    ),
    ("confirm_purchase", Language.SW): FormattedTemplate(
        lambda plan_name, premium, coverage:
            "Thibitisha Ununuzi:\n"
            f"Mpango: {plan_name}\n"
            f"Ada: {format_amount(premium)} KES/mwezi\n"
            f"Bima: {format_amount(coverage)} KES\n"
            "1. Thibitisha\n"
            "2. Ghairi"
    ),
    ("purchase_complete", Language.EN): FormattedTemplate(
        lambda plan_name, coverage:
            f"Your {plan_name} policy is now active.\n"
            f"Coverage: {format_amount(coverage)} KES\n"
            "Dial again and choose 4 to pay your premium."
    ),
    ("purchase_complete", Language.SW): FormattedTemplate(
        lambda plan_name, coverage:
            f"Bima yako ya {plan_name} sasa iko hai.\n"
            f"Bima: {format_amount(coverage)} KES\n"
            "Piga tena uchague 4 kulipa ada."
    ),
    ("purchase_cancelled", Language.EN): FixedTemplate("Purchase cancelled. Thank you for using InsureMe!"),
    ("purchase_cancelled", Language.SW): FixedTemplate("Ununuzi umeghairiwa. Asante kwa kutumia InsureMe!"),

    # ==================== Policy views ====================
    ("no_active_policy", Language.EN): FixedTemplate(
        "You have no active policies.\n"
        "Dial *123# to buy insurance."
    ),
    ("no_active_policy", Language.SW): FixedTemplate(
        "Huna bima inayotumika.\n"
        "Piga *123# kununua bima."
    ),
    ("my_plans", Language.EN): FormattedTemplate(
        lambda plan_name, premium, coverage, status:
            "Your Active Policy:\n"
            f"Plan: {plan_name}\n"
            f"Premium: {format_amount(premium)} KES/month\n"
            f"Coverage: {format_amount(coverage)} KES\n"
            f"Status: {status}"
    ),
    ("my_plans", Language.SW): FormattedTemplate(
        lambda plan_name, premium, coverage, status:
            "Bima Yako:\n"
            f"Mpango: {plan_name}\n"
            f"Ada: {format_amount(premium)} KES/mwezi\n"
            f"Bima: {format_amount(coverage)} KES\n"
            f"Hali: {status}"
    ),
    ("check_balance", Language.EN): FormattedTemplate(
        lambda plan_name, coverage, status, end_date:
            "Your Active Policy:\n"
            f"Plan: {plan_name}\n"
            f"Coverage: {format_amount(coverage)} KES\n"
            f"Status: {status}\n"
            f"Expires: {end_date}\n"
            "Thank you for using InsureMe!"
    ),
    ("check_balance", Language.SW): FormattedTemplate(
        lambda plan_name, coverage, status, end_date:
            "Bima Yako:\n"
            f"Mpango: {plan_name}\n"
            f"Bima: {format_amount(coverage)} KES\n"
            f"Hali: {status}\n"
            f"Inaisha: {end_date}\n"
            "Asante kwa kutumia InsureMe!"
    ),

    # ==================== Payment ====================
    ("no_policy_to_pay", Language.EN): FixedTemplate("You have no active policies to pay for."),
    ("no_policy_to_pay", Language.SW): FixedTemplate("Huna bima ya kulipia."),
    ("payment_prompt", Language.EN): FormattedTemplate(
        lambda amount:
            f"You will receive an M-Pesa prompt for {format_amount(amount)} KES.\n"
            "Enter your M-Pesa PIN to complete payment.\n"
            "Thank you!"
    ),
    ("payment_prompt", Language.SW): FormattedTemplate(
        lambda amount:
            f"Utapokea ombi la M-Pesa la {format_amount(amount)} KES.\n"
            "Weka PIN yako ya M-Pesa kukamilisha malipo.\n"
            "Asante!"
    ),
    ("payment_failed", Language.EN): FixedTemplate(
        "We could not start your M-Pesa payment. Please try again later."
    ),
    ("payment_failed", Language.SW): FixedTemplate(
        "Hatukuweza kuanzisha malipo ya M-Pesa. Tafadhali jaribu baadaye."
    ),

    # ==================== Gateway rejections ====================
    ("invalid_phone", Language.EN): FixedTemplate(
        "Invalid phone number. Please use a Kenyan mobile number."
    ),
    ("session_rejected", Language.EN): FixedTemplate(
        "This session could not be continued. Please dial again."
    ),
}


def get_template(name: str, language: Language | str | None = None) -> Template:
    """Look up a template, falling back to English"""
    lang = Language.from_value(language)
    template = TEMPLATES.get((name, lang))
    if template is None:
        template = TEMPLATES[(name, Language.EN)]
    return template


def render(name: str, language: Language | str | None = None, /, **params) -> str:
    """Render a template by name in the given language"""
    return get_template(name, language).render(**params)


def truncate_lines(text: str, max_length: int = MAX_LINE_LENGTH) -> str:
    """Cut every line to ``max_length`` characters. Lines are not wrapped."""
    return "\n".join(line[:max_length] for line in text.split("\n"))
