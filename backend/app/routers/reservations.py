"""Reservation routes.

Endpoints:
  POST /api/reservations                        → reserve (or resume) a company
  GET  /api/reservations/current                → the caller's resumable reservation
  GET  /api/reservations/{company_key}          → registry record
  POST /api/reservations/{company_key}/keep-alive → extend the caller's reservation
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.user import User
from app.schemas.reservation import CompanyOut, ReservationOut, ReserveRequest
from app.services.reservations import Reservation, ReservationManager, is_active

router = APIRouter()


@router.post("", response_model=ReservationOut)
async def reserve_company(
    body: ReserveRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Reserve a company for the caller.

    409 COMPANY_ALREADY_RESERVED when another researcher holds it;
    `resumed: true` when the caller already held it.
    """
    return await ReservationManager(db).acquire(body.company_name, user)


@router.get("/current", response_model=ReservationOut)
async def current_reservation(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    company = await ReservationManager(db).find_resumable(user)
    if company is None:
        raise ResourceNotFoundError("Active reservation", user.email)
    return Reservation.from_company(company, resumed=True)


@router.get("/{company_key}", response_model=CompanyOut)
async def get_company(
    company_key: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    manager = ReservationManager(db)
    company = await manager.get_company(company_key)
    if company is None:
        raise ResourceNotFoundError("Company", company_key)
    out = CompanyOut.model_validate(company)
    out.held_by_me = company.reserved_by == user.id and is_active(company, manager.clock())
    return out


@router.post("/{company_key}/keep-alive", response_model=ReservationOut)
async def keep_alive(
    company_key: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await ReservationManager(db).keep_alive(company_key, user)
