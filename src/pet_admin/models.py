from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Type, TypeVar

SUBSCRIPTION_STATUSES = ("active", "expired", "cancelled", "pending")
PLAN_TYPES = ("annual", "monthly")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
TICKET_CATEGORIES = ("technical", "billing", "lost_pet", "account", "other")
RESOLVED_TICKET_STATUSES = ("resolved", "closed")
PET_TYPES = ("Dog", "Cat", "Bird", "Rabbit", "Other")

R = TypeVar("R", bound="_Record")


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Return an aware UTC datetime for values read from the store.

    Naive datetimes are assumed to already be UTC; ISO strings (including the
    trailing ``Z`` form) are parsed.
    """

    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return coerce_datetime(value).date()
    if isinstance(value, date):
        return value
    text = str(value)
    if "T" in text or " " in text:
        return coerce_datetime(text).date()
    return date.fromisoformat(text)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {key: _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


class _Record:
    """
    Shared row conversion for entity records.

    Columns that match a dataclass field are copied over; anything else the
    repository attached (related-entity expansions such as ``users`` or
    ``subscriptions``) lands in ``related``.
    """

    _datetime_fields: Tuple[str, ...] = ()
    _date_fields: Tuple[str, ...] = ()

    @classmethod
    def from_row(cls: Type[R], row: Mapping[str, Any]) -> R:
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        values: Dict[str, Any] = {}
        related: Dict[str, Any] = {}
        for key, value in row.items():
            if key in names and key != "related":
                values[key] = value
            else:
                related[key] = value
        for name in cls._datetime_fields:
            if name in values:
                values[name] = coerce_datetime(values[name])
        for name in cls._date_fields:
            if name in values:
                values[name] = coerce_date(values[name])
        return cls(**values, related=related)  # type: ignore[call-arg]

    def as_dict(self) -> Dict[str, Any]:
        payload = {
            f.name: _to_jsonable(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
            if f.name != "related"
        }
        payload.update(_to_jsonable(getattr(self, "related", {})))
        return payload


@dataclass(frozen=True)
class UserRecord(_Record):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    instagram: Optional[str] = None
    address: Optional[str] = None
    is_active: bool = True
    email_verified: bool = False
    email_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    related: Dict[str, Any] = field(default_factory=dict)

    _datetime_fields = ("email_verified_at", "created_at")


@dataclass(frozen=True)
class PetRecord(_Record):
    """
    A pet owned by exactly one user.

    The ``show_*`` flags decide which owner contact details a public scan page
    may reveal.
    """

    id: int
    user_id: int
    name: Optional[str] = None
    username: Optional[str] = None
    type: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    photo_url: Optional[str] = None
    show_phone: bool = True
    show_whatsapp: bool = True
    show_instagram: bool = False
    show_address: bool = False
    is_active: bool = True
    is_lost: bool = False
    created_at: Optional[datetime] = None
    related: Dict[str, Any] = field(default_factory=dict)

    _datetime_fields = ("created_at",)


@dataclass(frozen=True)
class SubscriptionRecord(_Record):
    id: int
    user_id: int
    plan_type: str
    status: str
    amount: float
    start_date: date
    end_date: date
    currency: str = "INR"
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    related: Dict[str, Any] = field(default_factory=dict)

    _datetime_fields = ("created_at",)
    _date_fields = ("start_date", "end_date")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriptionRecord":
        record = super().from_row(row)
        # Numeric columns come back as Decimal.
        return replace(record, amount=float(record.amount or 0))


@dataclass(frozen=True)
class ScanRecord(_Record):
    id: int
    pet_id: int
    scanned_at: datetime
    scanner_city: Optional[str] = None
    whatsapp_shared: bool = False
    related: Dict[str, Any] = field(default_factory=dict)

    _datetime_fields = ("scanned_at",)


@dataclass(frozen=True)
class SupportTicketRecord(_Record):
    """
    ``resolved_at`` is set exactly when the ticket moved into a resolved or
    closed status and is never recomputed afterwards.
    """

    id: int
    subject: str
    description: str
    category: str
    priority: str = "medium"
    status: str = "open"
    user_id: Optional[int] = None
    pet_id: Optional[int] = None
    admin_id: Optional[int] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    related: Dict[str, Any] = field(default_factory=dict)

    _datetime_fields = ("created_at", "resolved_at")


@dataclass(frozen=True)
class DashboardSummary:
    total_users: int
    total_pets: int
    active_subscriptions: int
    total_scans: int
    total_revenue: float
    currency: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalUsers": self.total_users,
            "totalPets": self.total_pets,
            "activeSubscriptions": self.active_subscriptions,
            "totalScans": self.total_scans,
            "totalRevenue": self.total_revenue,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class CityCount:
    city: str
    count: int


@dataclass(frozen=True)
class ScanAnalytics:
    total_scans: int
    whatsapp_shares: int
    scans_by_date: Dict[date, int]
    top_cities: Sequence[CityCount]
    recent_scans: Sequence[ScanRecord]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalScans": self.total_scans,
            "whatsappShares": self.whatsapp_shares,
            "scansByDate": {day.isoformat(): count for day, count in self.scans_by_date.items()},
            "topCities": [{"city": item.city, "count": item.count} for item in self.top_cities],
            "recentScans": [scan.as_dict() for scan in self.recent_scans],
        }


@dataclass(frozen=True)
class MonthlyRevenue:
    month: str
    revenue: float


@dataclass(frozen=True)
class RevenueAnalytics:
    total_revenue: float
    active_subscriptions: int
    average_revenue: float
    revenue_by_month: Sequence[MonthlyRevenue]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalRevenue": self.total_revenue,
            "activeSubscriptions": self.active_subscriptions,
            "averageRevenue": self.average_revenue,
            "revenueByMonth": [{"month": item.month, "revenue": item.revenue} for item in self.revenue_by_month],
        }


@dataclass(frozen=True)
class UserDetails:
    user: UserRecord
    pets: Sequence[PetRecord]
    subscriptions: Sequence[SubscriptionRecord]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user.as_dict(),
            "pets": [pet.as_dict() for pet in self.pets],
            "subscriptions": [subscription.as_dict() for subscription in self.subscriptions],
        }
