"""Aggregate model imports for Alembic auto-detection."""

from app.models.user import User  # noqa: F401
from app.models.company import CompanyRegistry  # noqa: F401
from app.models.research_submission import ResearchSubmission  # noqa: F401
