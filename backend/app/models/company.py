"""Company registry: one row per company a researcher has reserved.

A row is created by the first reservation of a normalized company name and
reused by every later reservation of the same name. `company_name_normalized`
is unique so the database itself refuses a second row for the same company.
Rows created before normalization existed have it NULL and are matched on
the raw name instead.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.utils.clock import utcnow

RESERVED = "reserved"
EXPIRED = "expired"


class CompanyRegistry(Base):
    __tablename__ = "company_registry"

    company_key: Mapped[str] = mapped_column(String(80), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name_normalized: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True
    )

    # Reservation
    reserved_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    reservation_status: Mapped[str | None] = mapped_column(String(20))  # reserved | expired
    reserved_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime)
    reservation_expires_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
