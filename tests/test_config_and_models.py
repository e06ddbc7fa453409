from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from pet_admin.config import AdminConfig
from pet_admin.errors import NotFound, ValidationError
from pet_admin.models import (
    ScanAnalytics,
    ScanRecord,
    UserDetails,
    UserRecord,
    coerce_date,
    coerce_datetime,
)


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("PET_ADMIN_DATABASE_URL", "sqlite:///admin.db")
    monkeypatch.setenv("PET_ADMIN_ECHO_SQL", "yes")
    monkeypatch.setenv("PET_ADMIN_PAGE_SIZE", "25")
    monkeypatch.setenv("PET_ADMIN_MAX_PAGE_SIZE", "not-a-number")

    config = AdminConfig.from_env(dotenv_path="/nonexistent/.env")

    assert config.database_url == "sqlite:///admin.db"
    assert config.echo_sql is True
    assert config.default_page_size == 25
    assert config.max_page_size == 500
    assert config.currency == "INR"


def test_coerce_helpers_normalise_to_utc():
    assert coerce_datetime("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
    assert coerce_datetime(datetime(2024, 1, 15, 10)) == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
    assert coerce_date("2024-02-01") == date(2024, 2, 1)
    assert coerce_date("2024-02-01T23:00:00+00:00") == date(2024, 2, 1)
    assert coerce_datetime(None) is None


def test_from_row_keeps_expansions_in_related():
    user = UserRecord.from_row(
        {"id": 1, "name": "Asha", "created_at": "2024-01-01T00:00:00Z", "subscriptions": [{"status": "active"}]}
    )

    assert user.related == {"subscriptions": [{"status": "active"}]}
    assert user.as_dict()["subscriptions"] == [{"status": "active"}]
    assert user.as_dict()["created_at"] == "2024-01-01T00:00:00+00:00"


def test_report_serialisation_uses_camel_case():
    scan = ScanRecord(id=1, pet_id=2, scanned_at=datetime(2024, 3, 1, tzinfo=timezone.utc))
    report = ScanAnalytics(
        total_scans=1,
        whatsapp_shares=0,
        scans_by_date={date(2024, 3, 1): 1},
        top_cities=[],
        recent_scans=[scan],
    )
    details = UserDetails(user=UserRecord(id=1), pets=[], subscriptions=[])

    payload = report.as_dict()

    assert payload["scansByDate"] == {"2024-03-01": 1}
    assert payload["recentScans"][0]["scanned_at"] == "2024-03-01T00:00:00+00:00"
    assert details.as_dict()["user"]["id"] == 1


def test_error_context_in_message():
    error = NotFound("users", 7, operation="activate_user")
    invalid = ValidationError("bad limit", field="limit")

    assert "users 7 not found" in str(error)
    assert "operation=activate_user" in str(error)
    assert isinstance(invalid, ValueError)


@pytest.mark.parametrize("page_size", ["0", "-4", "900"])
def test_config_falls_back_on_out_of_range_page_size(monkeypatch, page_size):
    monkeypatch.setenv("PET_ADMIN_PAGE_SIZE", page_size)
    monkeypatch.delenv("PET_ADMIN_MAX_PAGE_SIZE", raising=False)

    config = AdminConfig.from_env(dotenv_path="/nonexistent/.env")

    assert config.default_page_size == 50
    assert config.max_page_size == 500


def test_config_page_size_follows_a_smaller_maximum(monkeypatch):
    monkeypatch.setenv("PET_ADMIN_MAX_PAGE_SIZE", "20")
    monkeypatch.delenv("PET_ADMIN_PAGE_SIZE", raising=False)

    config = AdminConfig.from_env(dotenv_path="/nonexistent/.env")

    assert config.default_page_size == 20


def test_config_rejects_page_size_above_maximum():
    with pytest.raises(PydanticValidationError):
        AdminConfig(default_page_size=600, max_page_size=500)
