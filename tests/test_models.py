"""Tests for integration model derivations."""

from datetime import datetime, timedelta

import pytest
from freezegun import freeze_time

from ingestion.core.config import frequency_to_duration
from ingestion.models import Integration


def make(**overrides):
    fields = {"user_id": "user-1", "platform_name": "twitter", "connection_status": "connected"}
    fields.update(overrides)
    return Integration(**fields)


class TestFrequencies:
    def test_known_frequencies(self):
        assert frequency_to_duration("every_15_minutes") == timedelta(minutes=15)
        assert frequency_to_duration("weekly") == timedelta(weeks=1)
        assert frequency_to_duration(None) is None

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            frequency_to_duration("fortnightly")


@freeze_time("2026-03-01 12:00:00")
class TestDerivedFields:
    """Schedule and health derivations."""

    def test_next_sync_at(self):
        integration = make(last_sync_at=datetime(2026, 3, 1, 11, 0), sync_frequency="every_30_minutes")

        assert integration.next_sync_at == datetime(2026, 3, 1, 11, 30)
        assert integration.is_sync_overdue()
        assert not integration.is_sync_overdue(grace=timedelta(hours=1))

    def test_never_synced_has_no_next_sync(self):
        assert make().next_sync_at is None

    def test_rate_limited(self):
        assert make(rate_limit_reset_at=datetime(2026, 3, 1, 12, 5)).is_rate_limited()
        assert not make(rate_limit_reset_at=datetime(2026, 3, 1, 11, 55)).is_rate_limited()

    def test_healthy_connection(self):
        integration = make(last_successful_sync_at=datetime(2026, 3, 1, 11, 0))

        assert integration.health_score() == 98
        assert integration.health_status() == "excellent"

    def test_degraded_connection(self):
        integration = make(
            error_count=3,
            rate_limit_reset_at=datetime(2026, 3, 1, 12, 30),
        )

        # 100 - 25 (never synced) - 15 (errors) - 20 (rate limited)
        assert integration.health_score() == 40
        assert integration.health_status() == "poor"

    @pytest.mark.parametrize("overrides", [{"connection_status": "error"}, {"enabled": False}])
    def test_unhealthy_when_not_connected(self, overrides):
        integration = make(last_successful_sync_at=datetime(2026, 3, 1, 11, 0), **overrides)

        assert integration.health_score() == 0
        assert integration.health_status() == "critical"
