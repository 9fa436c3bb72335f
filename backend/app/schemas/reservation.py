from datetime import datetime

from pydantic import BaseModel


class ReserveRequest(BaseModel):
    company_name: str


class ReservationOut(BaseModel):
    company_key: str
    company_name: str
    reserved_by: str | None
    reserved_at: datetime | None = None
    last_activity_at: datetime | None = None
    reservation_expires_at: datetime | None = None
    resumed: bool = False

    model_config = {"from_attributes": True}


class CompanyOut(BaseModel):
    company_key: str
    company_name: str
    company_name_normalized: str | None = None
    reserved_by: str | None = None
    reservation_status: str | None = None
    reserved_at: datetime | None = None
    last_activity_at: datetime | None = None
    reservation_expires_at: datetime | None = None
    held_by_me: bool = False

    model_config = {"from_attributes": True}
