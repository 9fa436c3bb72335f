"""Research screen orchestration: reservation gate, draft restore, autosave, submit.

Every operation follows the same cycle:

  1. load the company and the caller's existing submission;
  2. check the reservation (denied → ReservationRequiredError);
  3. rebuild the wizard: defaults ← existing submission ← saved draft;
  4. apply the operation;
  5. autosave the draft (steps 3 to 5 run as one Redis transaction).

Submitting upserts the submission, replaces the draft with a completed marker
and returns the wizard in its completed state. The marker keeps every later
edit failing with SUBMISSION_COMPLETE until `reopen` is called.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.middleware.exceptions import (
    ReservationRequiredError,
    ResourceNotFoundError,
    StepValidationError,
)
from app.models.company import CompanyRegistry
from app.models.research_submission import ResearchSubmission
from app.models.user import User
from app.schemas.research import (
    ReservationStatusOut,
    ResearchForm,
    Step,
    WizardView,
)
from app.services.drafts import DraftStore
from app.services.research_wizard import ResearchWizard
from app.services.reservations import ReservationCheck, ReservationManager
from app.services.submissions import get_submission, submission_to_form, upsert_submission

logger = logging.getLogger("atomity.research")


@dataclass
class ResearchScreen:
    company: CompanyRegistry
    wizard: ResearchWizard
    access: ReservationCheck
    submission: Optional[ResearchSubmission] = None

    @property
    def editing_existing(self) -> bool:
        return self.submission is not None

    def view(self) -> WizardView:
        wizard = self.wizard
        return WizardView(
            company_key=self.company.company_key,
            company_name=self.company.company_name,
            current_step=wizard.current_step,
            can_go_back=wizard.can_go_back and not wizard.completed,
            form=wizard.form,
            errors=wizard.errors,
            show_validation_banner=wizard.show_validation_banner and bool(wizard.errors),
            attention_pulses=wizard.attention_pulses,
            completed=wizard.completed,
            editing_existing=self.editing_existing,
            reservation=ReservationStatusOut(
                valid=self.access.valid,
                allowed=self.access.allowed,
                reason=self.access.reason,
                message=self.access.message,
            ),
        )


class ResearchService:
    def __init__(
        self,
        db: AsyncSession,
        drafts: DraftStore,
        reservations: Optional[ReservationManager] = None,
    ):
        self.db = db
        self.drafts = drafts
        self.reservations = reservations or ReservationManager(db)

    # ── Loading ──────────────────────────────────────────────

    async def check_access(
        self, user: User, company_key: str
    ) -> tuple[CompanyRegistry, ReservationCheck, Optional[ResearchSubmission]]:
        company = await self.reservations.get_company(company_key)
        if company is None:
            raise ResourceNotFoundError("Company", company_key)
        submission = await get_submission(self.db, company_key, user)
        access = self.reservations.check_access(company, user, has_submission=submission is not None)
        return company, access, submission

    async def open(self, user: User, company_key: str) -> ResearchScreen:
        company, access, submission = await self._authorize(user, company_key)
        base = self._base_form(user, submission)
        draft = await self.drafts.load(user.id, company_key)
        wizard = ResearchWizard.from_draft(draft, base=base)
        if await self.drafts.is_completed(user.id, company_key):
            wizard.current_step = Step.SUBMISSION
            wizard.mark_completed()
        return ResearchScreen(company=company, wizard=wizard, access=access, submission=submission)

    async def _authorize(
        self, user: User, company_key: str
    ) -> tuple[CompanyRegistry, ReservationCheck, Optional[ResearchSubmission]]:
        company, access, submission = await self.check_access(user, company_key)
        if not access.allowed:
            logger.warning(
                "research.init.reservationRequired company=%s user=%s reason=%s",
                company_key, user.id, access.reason,
            )
            raise ReservationRequiredError(access.reason, access.message)
        return company, access, submission

    @staticmethod
    def _base_form(user: User, submission: Optional[ResearchSubmission]) -> ResearchForm:
        base = submission_to_form(submission) if submission else ResearchForm()
        if not base.candidate_email:
            base.candidate_email = user.email
        return base

    async def reopen(self, user: User, company_key: str) -> ResearchScreen:
        """Unlock a submitted wizard so the submission can be edited again."""
        await self._authorize(user, company_key)
        await self.drafts.reopen(user.id, company_key)
        logger.info("research.reopen company=%s user=%s", company_key, user.id)
        return await self.open(user, company_key)

    # ── Editing ──────────────────────────────────────────────

    async def _apply(
        self,
        user: User,
        company_key: str,
        operation: Callable[[ResearchWizard], object],
    ) -> ResearchScreen:
        company, access, submission = await self._authorize(user, company_key)
        base = self._base_form(user, submission)
        completed = await self.drafts.is_completed(user.id, company_key)
        rebuilt: list[ResearchWizard] = []

        def change(draft: Optional[dict]) -> dict:
            # Runs once per attempt; only the last wizard is kept
            wizard = ResearchWizard.from_draft(draft, base=base.model_copy(deep=True))
            if completed:
                wizard.mark_completed()
            operation(wizard)
            rebuilt[:] = [wizard]
            return wizard.to_draft()

        await self.drafts.update(user.id, company_key, change)
        return ResearchScreen(company=company, wizard=rebuilt[0], access=access, submission=submission)

    async def update_fields(self, user: User, company_key: str, values: dict) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.update_fields(values))

    async def next_step(self, user: User, company_key: str) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.next())

    async def previous_step(self, user: User, company_key: str) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.back())

    async def add_tag(self, user: User, company_key: str, field: str, value: str) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.add_tag(field, value))

    async def remove_tag(self, user: User, company_key: str, field: str, index: int) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.remove_tag(field, index))

    async def toggle_option(self, user: User, company_key: str, field: str, option: str) -> ResearchScreen:
        return await self._apply(user, company_key, lambda w: w.toggle_option(field, option))

    async def discard_draft(self, user: User, company_key: str) -> None:
        await self.drafts.clear(user.id, company_key)

    # ── Submitting ───────────────────────────────────────────

    async def submit(self, user: User, company_key: str) -> ResearchScreen:
        # Validation results (errors, banner) are saved with the draft either way
        screen = await self._apply(user, company_key, lambda w: w.validate_for_submit())
        wizard = screen.wizard
        if wizard.errors:
            raise StepValidationError(Step.SUBMISSION.value, wizard.errors)

        # Re-check: the reservation may have lapsed since the screen was opened
        _, access, submission = await self.check_access(user, company_key)
        if not access.valid and submission is None:
            raise ReservationRequiredError(access.reason, access.message)

        submission = await upsert_submission(self.db, screen.company, wizard.form, user)
        await self.drafts.mark_completed(user.id, company_key)
        wizard.mark_completed()
        screen.submission = submission
        logger.info("research.submit.success company=%s user=%s", company_key, user.id)
        return screen
