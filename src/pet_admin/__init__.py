"""
Admin data access for the pet identification platform.

Users, pets, subscriptions, QR scans and support tickets are read and written
through an ``AdminRepository``; ``AdminService`` exposes the admin entry points
and turns fetched rows into dashboard, scan and revenue reports.
"""

from .config import AdminConfig  # noqa: F401
from .errors import AdminError, NotFound, RepositoryError, ValidationError  # noqa: F401
from .models import (  # noqa: F401
    CityCount,
    DashboardSummary,
    MonthlyRevenue,
    PetRecord,
    RevenueAnalytics,
    ScanAnalytics,
    ScanRecord,
    SubscriptionRecord,
    SupportTicketRecord,
    UserDetails,
    UserRecord,
)
from .payloads import (  # noqa: F401
    NewSubscription,
    NewSupportTicket,
    PetUpdate,
    SubscriptionUpdate,
    SupportTicketUpdate,
)
from .repository import (  # noqa: F401
    AdminRepository,
    SQLAdminRepository,
    build_repository_from_env,
)
from .service import AdminService, build_service_from_env  # noqa: F401
