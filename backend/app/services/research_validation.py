"""Per-step validation rules for the research wizard.

Each validator returns {field: message} for the fields that are missing;
an empty dict means the step is complete. Validation never modifies the form.
"""

from typing import Callable

from app.schemas.research import STEP_ORDER, ResearchForm, Step
from app.schemas.validators import has_value

REQUIRED = "Required"
REQUIRED_SELECTION = "Select or add at least one value"

GENERAL_REQUIRED = (
    "candidate_name",
    "hq_country",
    "company_website",
    "year_founded",
    "estimated_size",
)

ANALYSIS_REQUIRED_LISTS = (
    "product_focus",
    "keywords",
    "buyer_persona",
    "cloud_support",
    "target_customer_size",
    "target_locations",
    "customer_names",
    "compliance_certifications",
    "pricing_models",
    "pilot_offers",
    "automation_level",
    "action_responsibility",
)

SUBMISSION_REQUIRED = ("conclusion_summary", "evidence_links")


def validate_general_step(form: ResearchForm) -> dict[str, str]:
    return {
        name: REQUIRED for name in GENERAL_REQUIRED if not has_value(getattr(form, name))
    }


def validate_analysis_step(form: ResearchForm) -> dict[str, str]:
    errors = {
        name: REQUIRED_SELECTION
        for name in ANALYSIS_REQUIRED_LISTS
        if not has_value(getattr(form, name))
    }
    if not has_value(form.implementation_details):
        errors["implementation_details"] = REQUIRED
    return errors


def validate_submission_step(form: ResearchForm) -> dict[str, str]:
    # notes is optional
    return {
        name: REQUIRED for name in SUBMISSION_REQUIRED if not has_value(getattr(form, name))
    }


STEP_VALIDATORS: dict[Step, Callable[[ResearchForm], dict[str, str]]] = {
    Step.GENERAL: validate_general_step,
    Step.ANALYSIS: validate_analysis_step,
    Step.SUBMISSION: validate_submission_step,
}


def validate_step(step: Step, form: ResearchForm) -> dict[str, str]:
    return STEP_VALIDATORS[step](form)


def validate_all(form: ResearchForm) -> dict[str, str]:
    errors: dict[str, str] = {}
    for step in STEP_ORDER:
        errors.update(validate_step(step, form))
    return errors
