"""Research wizard: three-step form with autosave and final submission.

Endpoints:
  GET    /api/research/{company_key}                      → current wizard view
  PATCH  /api/research/{company_key}/fields               → set field values
  POST   /api/research/{company_key}/next                 → validate + advance
  POST   /api/research/{company_key}/back                 → previous step
  POST   /api/research/{company_key}/tags/{field}         → add a tag
  DELETE /api/research/{company_key}/tags/{field}/{index} → remove a tag
  POST   /api/research/{company_key}/options/{field}      → toggle a multi-select option
  POST   /api/research/{company_key}/submit               → upsert the submission
  POST   /api/research/{company_key}/reopen               → unlock a submitted wizard for edits
  DELETE /api/research/{company_key}/draft                → discard the saved draft

Design:
  - Every call re-checks the reservation; without one (and without an
    earlier submission) the caller gets 403 RESERVATION_REQUIRED.
  - A blocked `next` is not an error: the view comes back on the same step
    with `errors` and `show_validation_banner` set.
  - A blocked `submit` is 422 STEP_VALIDATION_FAILED with the missing fields.
  - After a submit every edit is 400 SUBMISSION_COMPLETE until `reopen`.
  - Two edits racing on one draft both land (the draft update is a Redis
    transaction); a draft that stays contended is 409 DRAFT_CONFLICT.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.schemas.research import FieldUpdate, OptionToggle, TagInput, WizardView
from app.services.drafts import DraftStore
from app.services.research import ResearchService
from app.utils.cache import get_redis

router = APIRouter()


async def get_research_service(db: AsyncSession = Depends(get_db)) -> ResearchService:
    return ResearchService(db, DraftStore(await get_redis()))


@router.get("/{company_key}", response_model=WizardView)
async def get_research(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.open(user, company_key)
    return screen.view()


@router.patch("/{company_key}/fields", response_model=WizardView)
async def update_fields(
    company_key: str,
    body: FieldUpdate,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.update_fields(user, company_key, body.fields)
    return screen.view()


@router.post("/{company_key}/next", response_model=WizardView)
async def next_step(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.next_step(user, company_key)
    return screen.view()


@router.post("/{company_key}/back", response_model=WizardView)
async def previous_step(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.previous_step(user, company_key)
    return screen.view()


@router.post("/{company_key}/tags/{field}", response_model=WizardView)
async def add_tag(
    company_key: str,
    field: str,
    body: TagInput,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.add_tag(user, company_key, field, body.value)
    return screen.view()


@router.delete("/{company_key}/tags/{field}/{index}", response_model=WizardView)
async def remove_tag(
    company_key: str,
    field: str,
    index: int,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.remove_tag(user, company_key, field, index)
    return screen.view()


@router.post("/{company_key}/options/{field}", response_model=WizardView)
async def toggle_option(
    company_key: str,
    field: str,
    body: OptionToggle,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.toggle_option(user, company_key, field, body.option)
    return screen.view()


@router.post("/{company_key}/submit", response_model=WizardView)
async def submit_research(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.submit(user, company_key)
    return screen.view()


@router.post("/{company_key}/reopen", response_model=WizardView)
async def reopen_research(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    screen = await service.reopen(user, company_key)
    return screen.view()


@router.delete("/{company_key}/draft", status_code=status.HTTP_204_NO_CONTENT)
async def discard_draft(
    company_key: str,
    service: ResearchService = Depends(get_research_service),
    user: User = Depends(get_current_user),
):
    await service.discard_draft(user, company_key)
