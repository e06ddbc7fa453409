"""
Pure report builders.

Each function consumes records that were already fetched and derives one
report from them. Nothing here performs I/O or keeps state between calls.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ValidationError
from .models import (
    CityCount,
    DashboardSummary,
    MonthlyRevenue,
    RevenueAnalytics,
    ScanAnalytics,
    ScanRecord,
    SubscriptionRecord,
)

ACTIVE = "active"


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def active_revenue(subscriptions: Iterable[SubscriptionRecord]) -> float:
    return sum((sub.amount for sub in subscriptions if sub.status == ACTIVE), 0.0)


def dashboard_summary(
    total_users: int,
    total_pets: int,
    active_subscriptions: int,
    total_scans: int,
    revenue_rows: Iterable[SubscriptionRecord],
    currency: str = "INR",
) -> DashboardSummary:
    return DashboardSummary(
        total_users=total_users,
        total_pets=total_pets,
        active_subscriptions=active_subscriptions,
        total_scans=total_scans,
        total_revenue=active_revenue(revenue_rows),
        currency=currency,
    )


def scan_analytics(
    scans: Sequence[ScanRecord],
    window_days: int = 30,
    now: Optional[datetime] = None,
    top_cities: int = 10,
    recent: int = 20,
) -> ScanAnalytics:
    """
    Summarise the scans of the trailing ``window_days``.

    ``scans`` must be ordered newest first; ``recent_scans`` is a prefix of
    that order and is never re-sorted. Cities are counted on their stored
    value, and equal counts keep the order in which the city was first seen.
    """

    if window_days <= 0:
        raise ValidationError("window_days must be positive", field="window_days", entity="qr_scans")

    since = _now(now) - timedelta(days=window_days)
    in_window = [scan for scan in scans if scan.scanned_at >= since]

    scans_by_date: Dict[date, int] = defaultdict(int)
    cities: Counter = Counter()
    whatsapp_shares = 0
    for scan in in_window:
        scans_by_date[scan.scanned_at.astimezone(timezone.utc).date()] += 1
        if scan.scanner_city:
            cities[scan.scanner_city] += 1
        if scan.whatsapp_shared:
            whatsapp_shares += 1

    return ScanAnalytics(
        total_scans=len(in_window),
        whatsapp_shares=whatsapp_shares,
        scans_by_date=dict(scans_by_date),
        top_cities=[CityCount(city=city, count=count) for city, count in cities.most_common(top_cities)],
        recent_scans=tuple(in_window[:recent]),
    )


def revenue_analytics(subscriptions: Iterable[SubscriptionRecord]) -> RevenueAnalytics:
    """
    ``revenue_by_month`` buckets every subscription by the month it was created
    in, whatever its status. The totals and the average only cover active ones.
    """

    by_month: Dict[str, float] = defaultdict(float)
    total_revenue = 0.0
    active_count = 0
    for subscription in subscriptions:
        if subscription.created_at is not None:
            month = subscription.created_at.astimezone(timezone.utc).strftime("%Y-%m")
            by_month[month] += subscription.amount
        if subscription.status == ACTIVE:
            total_revenue += subscription.amount
            active_count += 1

    return RevenueAnalytics(
        total_revenue=total_revenue,
        active_subscriptions=active_count,
        average_revenue=total_revenue / active_count if active_count else 0.0,
        revenue_by_month=[MonthlyRevenue(month=month, revenue=by_month[month]) for month in sorted(by_month)],
    )


def expiry_cutoff(days_ahead: int, now: Optional[datetime] = None) -> date:
    return (_now(now) + timedelta(days=days_ahead)).date()


def expiring_subscriptions(
    subscriptions: Iterable[SubscriptionRecord],
    days_ahead: int = 30,
    now: Optional[datetime] = None,
) -> List[SubscriptionRecord]:
    if days_ahead < 0:
        return []
    cutoff = expiry_cutoff(days_ahead, now)
    matching = [sub for sub in subscriptions if sub.status == ACTIVE and sub.end_date <= cutoff]
    return sorted(matching, key=lambda sub: sub.end_date)
