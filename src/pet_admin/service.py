from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from . import aggregator
from .config import AdminConfig
from .errors import AdminError, ValidationError
from .models import (
    RESOLVED_TICKET_STATUSES,
    SUBSCRIPTION_STATUSES,
    DashboardSummary,
    PetRecord,
    RevenueAnalytics,
    ScanAnalytics,
    ScanRecord,
    SubscriptionRecord,
    SupportTicketRecord,
    UserDetails,
    UserRecord,
)
from .payloads import NewSubscription, NewSupportTicket, PetUpdate, SubscriptionUpdate, SupportTicketUpdate
from .query import NEWEST_FIRST, Ordering, QueryFilter, eq, gte, ilike, lte
from .repository import AdminRepository, build_repository_from_env

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)

SUBSCRIPTION_SUMMARY_FIELDS = ("status", "end_date", "plan_type")
SUBSCRIPTION_DETAIL_FIELDS = ("id", "status", "plan_type", "amount", "start_date", "end_date", "created_at")
OWNER_PUBLIC_FIELDS = ("id", "name", "email", "phone", "whatsapp", "is_active")
OWNER_CONTACT_FIELDS = ("id", "name", "email", "phone", "whatsapp", "instagram", "address")
TICKET_USER_FIELDS = ("name", "email")
PET_LABEL_FIELDS = ("name", "username")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class AdminService:
    """
    Admin entry points for users, pets, subscriptions, tickets and analytics.

    The service is stateless apart from its collaborators: the repository, the
    config and a clock returning aware UTC datetimes. Parameters are validated
    before any repository call, repository failures propagate unchanged in
    type, and nothing is retried.
    """

    def __init__(
        self,
        repository: AdminRepository,
        config: Optional[AdminConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.config = config or AdminConfig()
        self.clock = clock or _utcnow

    # Analytics

    def get_dashboard_analytics(self) -> DashboardSummary:
        with self._operation("get_dashboard_analytics"):
            total_users = self.repository.count("users", QueryFilter(where=(eq("is_active", True),)))
            total_pets = self.repository.count("pets", QueryFilter(where=(eq("is_active", True),)))
            active_only = QueryFilter(where=(eq("status", "active"),))
            active_subscriptions = self.repository.count("subscriptions", active_only)
            total_scans = self.repository.count("qr_scans")
            revenue_rows = self.repository.list("subscriptions", active_only)
        return aggregator.dashboard_summary(
            total_users=total_users,
            total_pets=total_pets,
            active_subscriptions=active_subscriptions,
            total_scans=total_scans,
            revenue_rows=[SubscriptionRecord.from_row(row) for row in revenue_rows],
            currency=self.config.currency,
        )

    def get_scan_analytics(self, days: Optional[int] = None) -> ScanAnalytics:
        window = self.config.default_window_days if days is None else days
        with self._operation("get_scan_analytics"):
            if not _is_int(window) or window <= 0:
                raise ValidationError("days must be a positive integer", field="days", entity="qr_scans")
            now = self.clock()
            rows = self.repository.list(
                "qr_scans",
                QueryFilter(where=(gte("scanned_at", now - timedelta(days=window)),)),
                order_by=(Ordering("scanned_at", descending=True),),
                expand={"pets": PET_LABEL_FIELDS},
            )
        return aggregator.scan_analytics(
            [ScanRecord.from_row(row) for row in rows],
            window_days=window,
            now=now,
            top_cities=self.config.top_cities_limit,
            recent=self.config.recent_scans_limit,
        )

    def get_revenue_analytics(self) -> RevenueAnalytics:
        with self._operation("get_revenue_analytics"):
            rows = self.repository.list("subscriptions", order_by=(NEWEST_FIRST,))
        return aggregator.revenue_analytics(SubscriptionRecord.from_row(row) for row in rows)

    # Users

    def get_all_users(self, limit: Optional[int] = None, offset: int = 0) -> List[UserRecord]:
        with self._operation("get_all_users"):
            limit, offset = self._page(limit, offset)
            rows = self.repository.list(
                "users",
                QueryFilter(where=(eq("is_active", True),)),
                order_by=(NEWEST_FIRST,),
                limit=limit,
                offset=offset,
                expand={"subscriptions": SUBSCRIPTION_SUMMARY_FIELDS},
            )
        return [UserRecord.from_row(row) for row in rows]

    def search_users(self, query: str) -> List[UserRecord]:
        """Active users whose name, email or phone contains ``query``, ignoring case."""
        with self._operation("search_users"):
            text = (query or "").strip()
            if not text:
                raise ValidationError("search query must not be empty", field="query", entity="users")
            rows = self.repository.list(
                "users",
                QueryFilter(
                    where=(eq("is_active", True),),
                    any_of=(ilike("name", text), ilike("email", text), ilike("phone", text)),
                ),
                order_by=(NEWEST_FIRST,),
                limit=self.config.search_limit,
                expand={"subscriptions": SUBSCRIPTION_SUMMARY_FIELDS},
            )
        return [UserRecord.from_row(row) for row in rows]

    def update_user_status(self, user_id: int, is_active: bool) -> UserRecord:
        with self._operation("update_user_status"):
            if not isinstance(is_active, bool):
                raise ValidationError("is_active must be a boolean", field="is_active", entity="users")
            row = self.repository.update("users", user_id, {"is_active": is_active})
        logger.info("User %s is_active=%s", user_id, is_active)
        return UserRecord.from_row(row)

    def activate_user(self, user_id: int) -> UserRecord:
        # One update so the three fields never diverge.
        changes = {"is_active": True, "email_verified": True, "email_verified_at": self.clock()}
        with self._operation("activate_user"):
            row = self.repository.update("users", user_id, changes)
        logger.info("User %s activated", user_id)
        return UserRecord.from_row(row)

    def deactivate_user(self, user_id: int) -> UserRecord:
        with self._operation("deactivate_user"):
            row = self.repository.update("users", user_id, {"is_active": False})
        logger.info("User %s deactivated", user_id)
        return UserRecord.from_row(row)

    def get_user_details(self, user_id: int) -> UserDetails:
        """
        Fetch a user with their active pets and all subscriptions.

        The three reads are independent; if any of them fails the whole call
        fails.
        """

        with self._operation("get_user_details"):
            user = self.repository.get("users", user_id)
            pets = self.repository.list(
                "pets",
                QueryFilter(where=(eq("user_id", user_id), eq("is_active", True))),
            )
            subscriptions = self.repository.list(
                "subscriptions",
                QueryFilter(where=(eq("user_id", user_id),)),
                order_by=(NEWEST_FIRST,),
            )
        return UserDetails(
            user=UserRecord.from_row(user),
            pets=[PetRecord.from_row(row) for row in pets],
            subscriptions=[SubscriptionRecord.from_row(row) for row in subscriptions],
        )

    def get_users_with_subscriptions(self) -> List[UserRecord]:
        with self._operation("get_users_with_subscriptions"):
            rows = self.repository.list(
                "users",
                order_by=(NEWEST_FIRST,),
                expand={"subscriptions": SUBSCRIPTION_DETAIL_FIELDS},
            )
        return [UserRecord.from_row(row) for row in rows]

    # Subscriptions

    def create_subscription(
        self,
        user_id: int,
        subscription: Union[NewSubscription, Mapping[str, Any]],
    ) -> SubscriptionRecord:
        with self._operation("create_subscription"):
            payload = self._parse(NewSubscription, subscription, "subscriptions")
            values = payload.model_dump()
            values.update(user_id=user_id, status="active", currency=self.config.currency)
            row = self.repository.insert("subscriptions", values)
        logger.info("Subscription %s created for user %s", row.get("id"), user_id)
        return SubscriptionRecord.from_row(row)

    def update_subscription_status(self, subscription_id: int, status: str) -> SubscriptionRecord:
        with self._operation("update_subscription_status"):
            if status not in SUBSCRIPTION_STATUSES:
                raise ValidationError(
                    f"status must be one of {', '.join(SUBSCRIPTION_STATUSES)}",
                    field="status",
                    entity="subscriptions",
                )
            row = self.repository.update("subscriptions", subscription_id, {"status": status})
        logger.info("Subscription %s status=%s", subscription_id, status)
        return SubscriptionRecord.from_row(row)

    def update_subscription(
        self,
        subscription_id: int,
        updates: Union[SubscriptionUpdate, Mapping[str, Any]],
    ) -> SubscriptionRecord:
        with self._operation("update_subscription"):
            changes = self._changes(SubscriptionUpdate, updates, "subscriptions")
            if ("start_date" in changes) != ("end_date" in changes):
                self._check_subscription_dates(subscription_id, changes)
            row = self.repository.update(
                "subscriptions",
                subscription_id,
                changes,
                expand={"users": OWNER_PUBLIC_FIELDS},
            )
        logger.info("Subscription %s updated: %s", subscription_id, sorted(changes))
        return SubscriptionRecord.from_row(row)

    def get_all_subscriptions(self) -> List[SubscriptionRecord]:
        with self._operation("get_all_subscriptions"):
            rows = self.repository.list(
                "subscriptions",
                order_by=(NEWEST_FIRST,),
                expand={"users": OWNER_PUBLIC_FIELDS},
            )
        return [SubscriptionRecord.from_row(row) for row in rows]

    def get_subscriptions_nearing_expiry(self, days_ahead: Optional[int] = None) -> List[SubscriptionRecord]:
        days = self.config.default_expiry_days if days_ahead is None else days_ahead
        with self._operation("get_subscriptions_nearing_expiry"):
            if not _is_int(days):
                raise ValidationError("days_ahead must be an integer", field="days_ahead", entity="subscriptions")
            if days < 0:
                return []
            now = self.clock()
            rows = self.repository.list(
                "subscriptions",
                QueryFilter(where=(eq("status", "active"), lte("end_date", aggregator.expiry_cutoff(days, now)))),
                order_by=(Ordering("end_date"),),
                expand={"users": OWNER_PUBLIC_FIELDS},
            )
        return aggregator.expiring_subscriptions(
            [SubscriptionRecord.from_row(row) for row in rows],
            days_ahead=days,
            now=now,
        )

    # Pets

    def get_all_pets_with_owners(self, limit: Optional[int] = None, offset: int = 0) -> List[PetRecord]:
        with self._operation("get_all_pets_with_owners"):
            limit, offset = self._page(limit, offset)
            rows = self.repository.list(
                "pets",
                QueryFilter(where=(eq("is_active", True),)),
                order_by=(NEWEST_FIRST,),
                limit=limit,
                offset=offset,
                expand={"users": OWNER_CONTACT_FIELDS},
            )
        return [PetRecord.from_row(row) for row in rows]

    def update_pet(self, pet_id: int, updates: Union[PetUpdate, Mapping[str, Any]]) -> PetRecord:
        with self._operation("update_pet"):
            changes = self._changes(PetUpdate, updates, "pets")
            row = self.repository.update("pets", pet_id, changes, expand={"users": OWNER_CONTACT_FIELDS})
        logger.info("Pet %s updated: %s", pet_id, sorted(changes))
        return PetRecord.from_row(row)

    # Support tickets

    def get_support_tickets(self, limit: Optional[int] = None, offset: int = 0) -> List[SupportTicketRecord]:
        with self._operation("get_support_tickets"):
            limit, offset = self._page(limit, offset)
            rows = self.repository.list(
                "support_tickets",
                order_by=(NEWEST_FIRST,),
                limit=limit,
                offset=offset,
                expand={"users": TICKET_USER_FIELDS, "pets": PET_LABEL_FIELDS},
            )
        return [SupportTicketRecord.from_row(row) for row in rows]

    def create_support_ticket(self, ticket: Union[NewSupportTicket, Mapping[str, Any]]) -> SupportTicketRecord:
        with self._operation("create_support_ticket"):
            payload = self._parse(NewSupportTicket, ticket, "support_tickets")
            values = payload.model_dump()
            values["status"] = "open"
            row = self.repository.insert("support_tickets", values)
        logger.info("Support ticket %s opened (%s/%s)", row.get("id"), payload.category, payload.priority)
        return SupportTicketRecord.from_row(row)

    def update_support_ticket(
        self,
        ticket_id: int,
        updates: Union[SupportTicketUpdate, Mapping[str, Any]],
    ) -> SupportTicketRecord:
        with self._operation("update_support_ticket"):
            changes = self._changes(SupportTicketUpdate, updates, "support_tickets")
            status = changes.get("status")
            if status in RESOLVED_TICKET_STATUSES:
                # The first resolution keeps its timestamp.
                current = self.repository.get("support_tickets", ticket_id)
                if current.get("resolved_at") is None:
                    changes["resolved_at"] = self.clock()
            elif status is not None:
                changes["resolved_at"] = None
            row = self.repository.update("support_tickets", ticket_id, changes)
        logger.info("Support ticket %s updated: %s", ticket_id, sorted(changes))
        return SupportTicketRecord.from_row(row)

    # Helpers

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        try:
            yield
        except AdminError as exc:
            if exc.operation is None:
                exc.operation = name
            logger.warning("%s failed: %s", name, exc)
            raise

    def _page(self, limit: Optional[int], offset: int) -> Tuple[int, int]:
        if limit is None:
            limit = self.config.default_page_size
        if not _is_int(limit) or not 0 < limit <= self.config.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.config.max_page_size}",
                field="limit",
            )
        if not _is_int(offset) or offset < 0:
            raise ValidationError("offset must be a non-negative integer", field="offset")
        return limit, offset

    def _check_subscription_dates(self, subscription_id: int, changes: Mapping[str, Any]) -> None:
        current = SubscriptionRecord.from_row(self.repository.get("subscriptions", subscription_id))
        start_date = changes.get("start_date", current.start_date)
        end_date = changes.get("end_date", current.end_date)
        if end_date < start_date:
            raise ValidationError(
                f"end_date {end_date} must not be before start_date {start_date}",
                field="end_date" if "end_date" in changes else "start_date",
                entity="subscriptions",
            )

    @staticmethod
    def _parse(model: Type[P], payload: Union[P, Mapping[str, Any]], entity: str) -> P:
        if isinstance(payload, model):
            return payload
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            locations = {".".join(str(part) for part in error["loc"]) for error in exc.errors()}
            fields = sorted(location for location in locations if location)
            raise ValidationError(
                f"invalid {model.__name__}: {exc.error_count()} error(s) in {', '.join(fields) or 'payload'}",
                field=fields[0] if fields else None,
                entity=entity,
            ) from exc

    def _changes(self, model: Type[P], payload: Union[P, Mapping[str, Any]], entity: str) -> dict:
        changes = self._parse(model, payload, entity).changes()  # type: ignore[attr-defined]
        if not changes:
            raise ValidationError("update must set at least one field", entity=entity)
        return changes


def build_service_from_env(config: Optional[AdminConfig] = None) -> AdminService:
    cfg = config or AdminConfig.from_env()
    repository = build_repository_from_env(cfg)
    if repository is None:
        raise ValueError("PET_ADMIN_DATABASE_URL is not configured.")
    return AdminService(repository, config=cfg)
