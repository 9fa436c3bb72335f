"""Research wizard state machine.

Three steps in a fixed order, with explicit transition tables:

    GENERAL ──next──▶ ANALYSIS ──next──▶ SUBMISSION ──submit──▶ (completed)
            ◀──back──          ◀──back──

`next` validates the current step and refuses to move while fields are
missing. `back` never validates and never touches data. Once submitted the
wizard is completed and rejects further edits.

The wizard is plain in-memory state; ResearchService loads it from and saves
it to the draft store around every operation.
"""

import logging
from typing import Any, Optional

from app.middleware.exceptions import (
    BusinessLogicError,
    InvalidTransitionError,
    WizardLockedError,
)
from app.schemas.research import (
    LIST_FIELDS,
    OPTION_FIELDS,
    STRING_FIELDS,
    TAG_FIELDS,
    ResearchForm,
    Step,
)
from app.schemas.validators import has_value
from app.services.research_validation import validate_all, validate_step

logger = logging.getLogger("atomity.research")

NEXT_STEP: dict[Step, Step] = {
    Step.GENERAL: Step.ANALYSIS,
    Step.ANALYSIS: Step.SUBMISSION,
}

PREVIOUS_STEP: dict[Step, Step] = {
    Step.ANALYSIS: Step.GENERAL,
    Step.SUBMISSION: Step.ANALYSIS,
}

FORM_FIELDS = frozenset(STRING_FIELDS) | frozenset(LIST_FIELDS)


def clean_tag(raw: str) -> str:
    """Trim a typed tag and drop one leading '#'."""
    value = (raw or "").strip()
    if value.startswith("#"):
        value = value[1:].strip()
    return value


class ResearchWizard:
    def __init__(
        self,
        form: Optional[ResearchForm] = None,
        current_step: Step = Step.GENERAL,
        errors: Optional[dict[str, str]] = None,
        show_validation_banner: bool = False,
        attention_pulses: int = 0,
        completed: bool = False,
    ):
        self.form = form or ResearchForm()
        self.current_step = current_step
        self.errors: dict[str, str] = dict(errors or {})
        self.show_validation_banner = show_validation_banner
        self.attention_pulses = attention_pulses
        self.completed = completed

    @property
    def can_go_back(self) -> bool:
        return self.current_step in PREVIOUS_STEP

    # ── Editing ──────────────────────────────────────────────

    def set_field(self, name: str, value: Any) -> None:
        self._ensure_editable()
        if name not in FORM_FIELDS:
            raise BusinessLogicError(f"Unknown research field: {name}", error_code="UNKNOWN_FIELD")

        coerced = getattr(ResearchForm.model_validate({name: value}), name)
        setattr(self.form, name, coerced)

        # Errors clear as soon as the field has a value again
        if name in self.errors and has_value(coerced):
            del self.errors[name]
            if not self.errors:
                self.show_validation_banner = False

    def update_fields(self, values: dict[str, Any]) -> None:
        unknown = sorted(set(values) - FORM_FIELDS)
        if unknown:
            raise BusinessLogicError(
                f"Unknown research fields: {', '.join(unknown)}", error_code="UNKNOWN_FIELD"
            )
        for name, value in values.items():
            self.set_field(name, value)

    def add_tag(self, field: str, raw: str) -> bool:
        """Append a tag. Returns False for empty or duplicate tags (no change)."""
        if field not in TAG_FIELDS:
            raise BusinessLogicError(f"{field} does not accept tags", error_code="NOT_A_TAG_FIELD")
        value = clean_tag(raw)
        current = list(getattr(self.form, field))
        if not value or value in current:
            return False
        self.set_field(field, current + [value])
        return True

    def remove_tag(self, field: str, index: int) -> str:
        if field not in TAG_FIELDS:
            raise BusinessLogicError(f"{field} does not accept tags", error_code="NOT_A_TAG_FIELD")
        current = list(getattr(self.form, field))
        if not 0 <= index < len(current):
            raise BusinessLogicError(
                f"No {field} tag at position {index}", error_code="TAG_INDEX_OUT_OF_RANGE"
            )
        removed = current.pop(index)
        self.set_field(field, current)
        return removed

    def toggle_option(self, field: str, option: str) -> bool:
        """Select or deselect an option. Returns True if it is now selected."""
        options = OPTION_FIELDS.get(field)
        if options is None:
            raise BusinessLogicError(f"{field} is not a multi-select field", error_code="NOT_AN_OPTION_FIELD")
        if option not in options:
            raise BusinessLogicError(
                f"{option!r} is not a valid option for {field}", error_code="INVALID_OPTION"
            )
        current = list(getattr(self.form, field))
        if option in current:
            current.remove(option)
            selected = False
        else:
            current.append(option)
            selected = True
        self.set_field(field, current)
        return selected

    # ── Transitions ──────────────────────────────────────────

    def next(self) -> bool:
        """Validate the current step and advance. Returns False if blocked."""
        self._ensure_editable()
        if self.current_step not in NEXT_STEP:
            raise InvalidTransitionError("Last step reached; submit the research instead")

        errors = validate_step(self.current_step, self.form)
        if errors:
            self.errors = errors
            self.show_validation_banner = True
            self.attention_pulses += 1
            logger.warning(
                "research.validation.failed step=%s missing=%s",
                self.current_step.value, sorted(errors),
            )
            return False

        logger.info("research.validation.passed step=%s", self.current_step.value)
        self.errors = {}
        self.show_validation_banner = False
        self.current_step = NEXT_STEP[self.current_step]
        return True

    def back(self) -> None:
        self._ensure_editable()
        if self.current_step not in PREVIOUS_STEP:
            raise InvalidTransitionError("Already at the first step")
        self.current_step = PREVIOUS_STEP[self.current_step]

    def validate_for_submit(self) -> bool:
        """Full validation before submitting. Records errors on failure."""
        self._ensure_editable()
        if self.current_step != Step.SUBMISSION:
            raise InvalidTransitionError("Research can only be submitted from the final step")

        errors = validate_all(self.form)
        if errors:
            self.errors = errors
            self.show_validation_banner = True
            self.attention_pulses += 1
            logger.warning("research.submit.invalid missing=%s", sorted(errors))
            return False

        self.errors = {}
        self.show_validation_banner = False
        return True

    def mark_completed(self) -> None:
        self.completed = True

    def _ensure_editable(self) -> None:
        if self.completed:
            raise WizardLockedError()

    # ── Draft (de)serialization ──────────────────────────────

    def to_draft(self) -> dict:
        return {
            "form": self.form.model_dump(),
            "current_step": self.current_step.value,
            "errors": self.errors,
            "show_validation_banner": self.show_validation_banner,
            "attention_pulses": self.attention_pulses,
        }

    @classmethod
    def from_draft(cls, draft: Optional[dict], base: Optional[ResearchForm] = None) -> "ResearchWizard":
        """Rebuild a wizard from a saved draft, layered over `base`.

        Accepts the current draft layout and the older layout where the blob
        was just the form fields.
        """
        base = base or ResearchForm()
        if not isinstance(draft, dict):
            return cls(form=base)

        saved_form = draft.get("form") if isinstance(draft.get("form"), dict) else draft
        saved_form = {k: v for k, v in saved_form.items() if k in FORM_FIELDS}
        form = ResearchForm.model_validate({**base.model_dump(), **saved_form})

        try:
            step = Step(draft.get("current_step", Step.GENERAL))
        except ValueError:
            step = Step.GENERAL

        errors = draft.get("errors")
        errors = {str(k): str(v) for k, v in errors.items()} if isinstance(errors, dict) else {}
        pulses = draft.get("attention_pulses")

        return cls(
            form=form,
            current_step=step,
            errors=errors,
            show_validation_banner=bool(draft.get("show_validation_banner")) and bool(errors),
            attention_pulses=pulses if isinstance(pulses, int) else 0,
        )
