from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from portal.models.registrations import RegistrationKind, RegistrationStatus


class TeamMemberIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    email: str | None = None
    phone: str | None = None
    college: str | None = None
    department: str | None = None
    year: str | None = None


class PaymentClaimIn(BaseModel):
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    external_reference: str | None = Field(default=None, max_length=100)
    # Opaque pointer from the upload service; checked by the admission rules.
    screenshot_ref: str | None = Field(default=None, max_length=500)


class RegistrationCreate(BaseModel):
    kind: RegistrationKind
    team_name: str | None = Field(default=None, max_length=100)
    team_members: list[TeamMemberIn] = Field(default_factory=list)
    payment: PaymentClaimIn
    details: dict[str, Any] = Field(default_factory=dict)


class RegistrationUpdate(BaseModel):
    contact_details: dict[str, Any] | None = None
    location: dict[str, Any] | None = None
    emergency_contact: dict[str, Any] | None = None
    special_requirements: str | None = Field(default=None, max_length=500)
    custom_fields: dict[str, Any] | None = None
    screenshot_ref: str | None = Field(default=None, max_length=500)


class StatusChange(BaseModel):
    status: RegistrationStatus
    admin_notes: str | None = Field(default=None, max_length=500)


class RegistrationOut(BaseModel):
    registration_id: str
    event_id: int
    subject_id: int
    kind: str
    team_name: str | None
    team_members: list[dict] | None
    status: str
    payment_amount: Decimal
    payment_reference: str | None
    payment_screenshot_ref: str
    payment_status: str
    details: dict[str, Any]
    admin_notes: str | None
    reviewed_by: int | None
    reviewed_at: datetime | None
    submitted_at: datetime
    version: int

    class Config:
        from_attributes = True
