"""Research submission persistence.

Submissions are upserted by company_key. List fields are stored as
comma-joined strings and split again on read. Values containing a comma do
not survive that round trip ("Smith, Jones & Co." comes back as two names);
the column format is shared with existing data, so this is left as is.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.company import CompanyRegistry
from app.models.research_submission import ResearchSubmission
from app.models.user import User
from app.schemas.research import LIST_FIELDS, STRING_FIELDS, ResearchForm

LIST_SEPARATOR = ", "


def join_list(values: list[str]) -> str:
    return LIST_SEPARATOR.join(values)


def split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def form_to_columns(form: ResearchForm) -> dict:
    columns = {name: getattr(form, name) for name in STRING_FIELDS}
    columns.update({name: join_list(getattr(form, name)) for name in LIST_FIELDS})
    return columns


def submission_to_form(submission: ResearchSubmission) -> ResearchForm:
    data = {name: getattr(submission, name) or "" for name in STRING_FIELDS}
    data.update({name: split_list(getattr(submission, name)) for name in LIST_FIELDS})
    return ResearchForm.model_validate(data)


async def get_submission(
    db: AsyncSession, company_key: str, user: User
) -> Optional[ResearchSubmission]:
    """The user's own submission for a company, if any."""
    result = await db.execute(
        select(ResearchSubmission).where(
            ResearchSubmission.company_key == company_key,
            ResearchSubmission.created_by == user.id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_submission(
    db: AsyncSession,
    company: CompanyRegistry,
    form: ResearchForm,
    user: User,
) -> ResearchSubmission:
    result = await db.execute(
        select(ResearchSubmission).where(ResearchSubmission.company_key == company.company_key)
    )
    submission = result.scalar_one_or_none()
    columns = form_to_columns(form)

    if submission:
        for k, v in columns.items():
            setattr(submission, k, v)
        submission.company_name = company.company_name
        submission.created_by = user.id
    else:
        submission = ResearchSubmission(
            company_key=company.company_key,
            company_name=company.company_name,
            created_by=user.id,
            **columns,
        )
        db.add(submission)
    await db.flush()
    return submission
