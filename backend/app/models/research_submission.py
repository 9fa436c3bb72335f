"""Research findings submitted for a reserved company.

One row per company_key (upserted). List-valued form fields are stored as
comma-joined strings, see app.services.submissions for the conversion.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.utils.clock import utcnow


class ResearchSubmission(Base):
    __tablename__ = "research_submissions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_key: Mapped[str] = mapped_column(
        String(80), ForeignKey("company_registry.company_key"),
        unique=True, nullable=False, index=True,
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )

    # Researcher
    candidate_name: Mapped[str | None] = mapped_column(String(255))
    candidate_email: Mapped[str | None] = mapped_column(String(255))

    # Company fundamentals
    company_website: Mapped[str | None] = mapped_column(String(500))
    hq_country: Mapped[str | None] = mapped_column(String(100))
    year_founded: Mapped[str | None] = mapped_column(String(10))
    estimated_size: Mapped[str | None] = mapped_column(String(50))
    funding_stage: Mapped[str | None] = mapped_column(String(100))
    product_name: Mapped[str | None] = mapped_column(String(255))
    product_category: Mapped[str | None] = mapped_column(String(255))

    # Comma-joined list fields
    product_focus: Mapped[str | None] = mapped_column(Text)
    keywords: Mapped[str | None] = mapped_column(Text)
    buyer_persona: Mapped[str | None] = mapped_column(Text)
    cloud_support: Mapped[str | None] = mapped_column(Text)
    target_customer_size: Mapped[str | None] = mapped_column(Text)
    target_locations: Mapped[str | None] = mapped_column(Text)
    customer_names: Mapped[str | None] = mapped_column(Text)
    compliance_certifications: Mapped[str | None] = mapped_column(Text)
    pricing_models: Mapped[str | None] = mapped_column(Text)
    pilot_offers: Mapped[str | None] = mapped_column(Text)
    automation_level: Mapped[str | None] = mapped_column(Text)
    action_responsibility: Mapped[str | None] = mapped_column(Text)

    # Free text
    implementation_details: Mapped[str | None] = mapped_column(Text)
    conclusion_summary: Mapped[str | None] = mapped_column(Text)
    evidence_links: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
