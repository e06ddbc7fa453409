"""
Closed write payloads.

Every admin write goes through one of these models, so an unknown field or a
value outside an enumeration fails here instead of reaching the store.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SubscriptionStatus = Literal["active", "expired", "cancelled", "pending"]
PlanType = Literal["annual", "monthly"]
TicketStatus = Literal["open", "in_progress", "resolved", "closed"]
TicketPriority = Literal["low", "medium", "high", "urgent"]
TicketCategory = Literal["technical", "billing", "lost_pet", "account", "other"]
PetType = Literal["Dog", "Cat", "Bird", "Rabbit", "Other"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually set, ready to hand to the repository."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class NewSubscription(_Payload):
    plan_type: PlanType
    amount: float = Field(..., gt=0)
    start_date: date
    end_date: date
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "NewSubscription":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SubscriptionUpdate(_Payload):
    status: Optional[SubscriptionStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount: Optional[float] = Field(default=None, gt=0)
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "SubscriptionUpdate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class NewSupportTicket(_Payload):
    subject: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: TicketCategory
    priority: TicketPriority = "medium"
    user_id: Optional[int] = None
    pet_id: Optional[int] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class SupportTicketUpdate(_Payload):
    status: Optional[TicketStatus] = None
    admin_id: Optional[int] = None
    priority: Optional[TicketPriority] = None


class PetUpdate(_Payload):
    name: Optional[str] = None
    username: Optional[str] = None
    type: Optional[PetType] = None
    breed: Optional[str] = None
    age: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None
    show_phone: Optional[bool] = None
    show_whatsapp: Optional[bool] = None
    show_instagram: Optional[bool] = None
    show_address: Optional[bool] = None
    is_active: Optional[bool] = None
    is_lost: Optional[bool] = None
