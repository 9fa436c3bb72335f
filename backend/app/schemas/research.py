"""Pydantic schemas for the three-step research wizard.

ResearchForm is the draft: every submission field, with list fields as
Python lists. It is rebuilt from whatever was saved earlier, so the
"before" validator coerces stale or partially shaped blobs (missing lists,
legacy comma-joined strings, numeric sizes) instead of rejecting them.
"""

import enum
from typing import Any

from pydantic import BaseModel, model_validator


class Step(str, enum.Enum):
    GENERAL = "GENERAL"
    ANALYSIS = "ANALYSIS"
    SUBMISSION = "SUBMISSION"


STEP_ORDER = [Step.GENERAL, Step.ANALYSIS, Step.SUBMISSION]


# ── Field groups ─────────────────────────────────────────────

STRING_FIELDS = (
    "candidate_name",
    "candidate_email",
    "company_website",
    "hq_country",
    "year_founded",
    "estimated_size",
    "funding_stage",
    "product_name",
    "product_category",
    "implementation_details",
    "conclusion_summary",
    "evidence_links",
    "notes",
)

LIST_FIELDS = (
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

# Free-form "type, press Enter" tag inputs
TAG_FIELDS = ("keywords", "cloud_support", "customer_names")

# Multi-select fields and their allowed options
OPTION_FIELDS: dict[str, tuple[str, ...]] = {
    "product_focus": ("FinOps", "Compliance", "Sovereignty", "Sustainability"),
    "buyer_persona": ("CTO", "CFO", "CISO", "Sustainable Heads"),
    "target_customer_size": ("SMB", "Mid-Market", "Enterprise"),
    "target_locations": ("North America", "Europe", "APAC", "LATAM", "Middle East & Africa", "Global"),
    "compliance_certifications": ("SOC 2", "ISO 27001", "GDPR", "HIPAA", "FedRAMP", "None"),
    "pricing_models": ("Subscription", "Usage-based", "Percentage of savings", "Per seat", "Custom"),
    "pilot_offers": ("Free trial", "Paid pilot", "Proof of concept", "None"),
    "automation_level": ("Recommendations only", "Human-approved actions", "Fully automated"),
    "action_responsibility": ("Vendor", "Customer", "Shared"),
}


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        items = (str(item).strip() for item in value if item is not None)
        return [item for item in items if item]
    if isinstance(value, str):
        # Legacy drafts and DB rows hold comma-joined strings
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _coerce_str(value: Any) -> str:
    if value is None or isinstance(value, (list, dict)):
        return ""
    return str(value)


class ResearchForm(BaseModel):
    # Researcher
    candidate_name: str = ""
    candidate_email: str = ""

    # GENERAL
    company_website: str = ""
    hq_country: str = ""
    year_founded: str = ""
    estimated_size: str = ""
    funding_stage: str = ""
    product_name: str = ""
    product_category: str = ""

    # ANALYSIS
    product_focus: list[str] = []
    keywords: list[str] = []
    buyer_persona: list[str] = []
    cloud_support: list[str] = []
    target_customer_size: list[str] = []
    target_locations: list[str] = []
    customer_names: list[str] = []
    compliance_certifications: list[str] = []
    pricing_models: list[str] = []
    pilot_offers: list[str] = []
    automation_level: list[str] = []
    action_responsibility: list[str] = []
    implementation_details: str = ""

    # SUBMISSION
    conclusion_summary: str = ""
    evidence_links: str = ""
    notes: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        coerced = {}
        for name in STRING_FIELDS:
            if name in data:
                coerced[name] = _coerce_str(data[name])
        for name in LIST_FIELDS:
            if name in data:
                coerced[name] = _coerce_list(data[name])
        return coerced


# ── Requests ─────────────────────────────────────────────────

class FieldUpdate(BaseModel):
    """PATCH body: {field_name: value, ...}."""
    fields: dict[str, Any]


class TagInput(BaseModel):
    value: str


class OptionToggle(BaseModel):
    option: str


# ── Responses ────────────────────────────────────────────────

class ReservationStatusOut(BaseModel):
    valid: bool
    allowed: bool
    reason: str | None = None
    message: str | None = None


class WizardView(BaseModel):
    company_key: str
    company_name: str
    current_step: Step
    steps: list[Step] = STEP_ORDER
    can_go_back: bool
    form: ResearchForm
    errors: dict[str, str] = {}
    show_validation_banner: bool = False
    attention_pulses: int = 0
    completed: bool = False
    editing_existing: bool = False
    reservation: ReservationStatusOut
    options: dict[str, list[str]] = {k: list(v) for k, v in OPTION_FIELDS.items()}
