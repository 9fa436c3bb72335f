"""Reservation manager: exclusive, time-bounded claims on a company.

Lifecycle of a company_registry row:

    (none) ──reserve──▶ reserved ──keep-alive──▶ reserved (expiry pushed out)
                           │
                           ├─ expiry passes ───▶ lapsed (sweeper marks "expired")
                           └─ lapsed + reserve ─▶ reserved (same company_key, new owner)

Exclusivity is enforced by the database, not by the pre-check:
  - a new company is an INSERT guarded by the unique normalized-name index;
  - an existing company is taken over with a conditional UPDATE that only
    matches when nobody else holds an active reservation.
Whatever the pre-check saw, a zero-row UPDATE or an IntegrityError is the
authoritative "already taken".
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.middleware.exceptions import (
    InvalidCompanyNameError,
    ReservationConflictError,
    ReservationNotHeldError,
)
from app.models.company import EXPIRED, RESERVED, CompanyRegistry
from app.models.user import User
from app.services.normalization import (
    generate_company_key,
    normalize_company_name,
    significant_length,
)
from app.utils.clock import utcnow

logger = logging.getLogger("atomity.reservations")

MIN_COMPANY_NAME_LENGTH = 2

# Access-denied reasons
REASON_TAKEN = "taken"
REASON_INACTIVE = "inactive"
REASON_EXPIRED = "expired"


@dataclass
class Reservation:
    company_key: str
    company_name: str
    reserved_by: str
    reserved_at: Optional[datetime]
    last_activity_at: Optional[datetime]
    reservation_expires_at: Optional[datetime]
    resumed: bool = False

    @classmethod
    def from_company(cls, company: CompanyRegistry, resumed: bool = False) -> "Reservation":
        return cls(
            company_key=company.company_key,
            company_name=company.company_name,
            reserved_by=company.reserved_by,
            reserved_at=company.reserved_at,
            last_activity_at=company.last_activity_at,
            reservation_expires_at=company.reservation_expires_at,
            resumed=resumed,
        )


@dataclass
class ReservationCheck:
    """Outcome of checking a user's access to a company's research form."""
    valid: bool
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None


def is_active(company: CompanyRegistry, now: datetime) -> bool:
    return (
        company.reserved_by is not None
        and company.reservation_status == RESERVED
        and company.reservation_expires_at is not None
        and company.reservation_expires_at > now
    )


class ReservationManager:
    def __init__(
        self,
        db: AsyncSession,
        inactivity_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.inactivity_window = inactivity_window or timedelta(
            hours=settings.reservation_inactivity_hours
        )
        self.clock = clock

    # ── Acquire ──────────────────────────────────────────────

    async def acquire(self, company_name: str, user: User) -> Reservation:
        """Reserve `company_name` for `user`, or resume the user's own reservation.

        Raises InvalidCompanyNameError for names that are too short and
        ReservationConflictError when someone else holds the company.
        """
        name = " ".join((company_name or "").split())
        if significant_length(name) < MIN_COMPANY_NAME_LENGTH:
            raise InvalidCompanyNameError()
        normalized = normalize_company_name(name)
        if not normalized:
            raise InvalidCompanyNameError("Company name must contain letters or digits")

        existing = await self.find_existing(name, normalized)
        now = self.clock()

        if existing is not None and existing.reserved_by == user.id and is_active(existing, now):
            logger.info("Reservation resumed: %s by %s", existing.company_key, user.id)
            return Reservation.from_company(existing, resumed=True)

        if existing is not None and existing.reserved_by not in (None, user.id) and is_active(existing, now):
            # Pre-check only; reserve_company below would refuse as well
            logger.info("Reservation refused: %s held by another user", existing.company_key)
            raise ReservationConflictError()

        company = await self.reserve_company(name, normalized, user, existing)
        logger.info(
            "Reservation acquired: %s (%s) by %s until %s",
            company.company_key, company.company_name_normalized, user.id,
            company.reservation_expires_at.isoformat(),
        )
        return Reservation.from_company(company)

    async def find_existing(self, name: str, normalized: str) -> Optional[CompanyRegistry]:
        """Look a company up by normalized name, then by raw name (legacy rows)."""
        result = await self.db.execute(
            select(CompanyRegistry).where(CompanyRegistry.company_name_normalized == normalized)
        )
        company = result.scalar_one_or_none()
        if company is not None:
            return company

        result = await self.db.execute(
            select(CompanyRegistry)
            .where(
                CompanyRegistry.company_name_normalized.is_(None),
                func.lower(CompanyRegistry.company_name) == name.lower(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def reserve_company(
        self,
        name: str,
        normalized: str,
        user: User,
        existing: Optional[CompanyRegistry] = None,
    ) -> CompanyRegistry:
        """Atomically claim the company, creating the registry row if needed."""
        now = self.clock()
        reservation = {
            "reserved_by": user.id,
            "reservation_status": RESERVED,
            "reserved_at": now,
            "last_activity_at": now,
            "reservation_expires_at": now + self.inactivity_window,
        }

        if existing is None:
            company = CompanyRegistry(
                company_key=generate_company_key(name),
                company_name=name,
                company_name_normalized=normalized,
                **reservation,
            )
            self.db.add(company)
            try:
                await self.db.flush()
            except IntegrityError:
                # Lost the race: someone inserted the same normalized name
                await self.db.rollback()
                raise ReservationConflictError()
            return company

        result = await self.db.execute(
            update(CompanyRegistry)
            .where(
                CompanyRegistry.company_key == existing.company_key,
                or_(
                    CompanyRegistry.reserved_by.is_(None),
                    CompanyRegistry.reserved_by == user.id,
                    CompanyRegistry.reservation_status.is_(None),
                    CompanyRegistry.reservation_status != RESERVED,
                    CompanyRegistry.reservation_expires_at.is_(None),
                    CompanyRegistry.reservation_expires_at <= now,
                ),
            )
            .values(company_name_normalized=normalized, **reservation)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ReservationConflictError()

        return await self.db.get(CompanyRegistry, existing.company_key, populate_existing=True)

    # ── Keep-alive ───────────────────────────────────────────

    async def keep_alive(self, company_key: str, user: User) -> Reservation:
        """Push the expiry of the caller's active reservation forward.

        A lapsed reservation is not revived: ReservationNotHeldError.
        """
        now = self.clock()
        result = await self.db.execute(
            update(CompanyRegistry)
            .where(
                CompanyRegistry.company_key == company_key,
                CompanyRegistry.reserved_by == user.id,
                CompanyRegistry.reservation_status == RESERVED,
                CompanyRegistry.reservation_expires_at > now,
            )
            .values(
                last_activity_at=now,
                reservation_expires_at=now + self.inactivity_window,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Keep-alive rejected: %s not held by %s", company_key, user.id)
            raise ReservationNotHeldError(company_key)

        company = await self.db.get(CompanyRegistry, company_key, populate_existing=True)
        logger.debug("Keep-alive: %s extended to %s", company_key, company.reservation_expires_at)
        return Reservation.from_company(company)

    # ── Reads ────────────────────────────────────────────────

    async def get_company(self, company_key: str) -> Optional[CompanyRegistry]:
        return await self.db.get(CompanyRegistry, company_key)

    async def find_resumable(self, user: User) -> Optional[CompanyRegistry]:
        """The user's most recent active reservation, for resume-on-reload."""
        now = self.clock()
        result = await self.db.execute(
            select(CompanyRegistry)
            .where(
                CompanyRegistry.reserved_by == user.id,
                CompanyRegistry.reservation_status == RESERVED,
                CompanyRegistry.reservation_expires_at > now,
                CompanyRegistry.last_activity_at >= now - self.inactivity_window,
            )
            .order_by(CompanyRegistry.last_activity_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def check_access(
        self,
        company: CompanyRegistry,
        user: User,
        has_submission: bool = False,
    ) -> ReservationCheck:
        """Can `user` work on `company`'s research form right now?

        Valid iff the user holds an active reservation. Users who already
        submitted research for the company may keep editing it after the
        reservation lapses.
        """
        now = self.clock()
        if is_active(company, now) and company.reserved_by == user.id:
            return ReservationCheck(valid=True, allowed=True)

        if company.reserved_by != user.id:
            reason = REASON_TAKEN
            message = (
                f"{company.company_name} is reserved by another researcher. "
                "Please reserve a different company."
            )
        elif company.reservation_status == EXPIRED or (
            company.reservation_expires_at is not None and company.reservation_expires_at <= now
        ):
            reason = REASON_EXPIRED
            expired_at = company.reservation_expires_at
            when = f" on {expired_at:%Y-%m-%d %H:%M} UTC" if expired_at else ""
            message = (
                f"Your reservation for {company.company_name} expired{when}. "
                "Reserve the company again to continue your research."
            )
        else:
            reason = REASON_INACTIVE
            message = (
                f"Your reservation for {company.company_name} is no longer active. "
                "Reserve the company again to continue your research."
            )

        return ReservationCheck(valid=False, allowed=has_submission, reason=reason, message=message)

    # ── Maintenance ──────────────────────────────────────────

    async def release_expired(self) -> int:
        """Mark every lapsed reservation as expired. Returns the number released."""
        now = self.clock()
        result = await self.db.execute(
            update(CompanyRegistry)
            .where(
                and_(
                    CompanyRegistry.reservation_status == RESERVED,
                    CompanyRegistry.reservation_expires_at <= now,
                )
            )
            .values(reservation_status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
