"""Tests for scheduler settings, the notification gate and job registration."""
import pytest
from datetime import datetime, timezone
from unittest.mock import patch

from billflow.application import scheduler as scheduler_module
from billflow.application.scheduler import (
    get_scheduler_settings,
    should_run,
    start_scheduler,
    update_scheduler_settings,
)


class TestSchedulerSettings:
    def test_defaults_without_row(self, db_session):
        settings = get_scheduler_settings(db_session)
        assert settings["notification_check_time"] == "09:00"
        assert settings["is_enabled"] is True

    def test_update_persists(self, db_session):
        result = update_scheduler_settings(db_session, "20:30", "Europe/Moscow", False)
        assert result == {"notification_check_time": "20:30", "timezone": "Europe/Moscow", "is_enabled": False}
        assert get_scheduler_settings(db_session) == result

    @pytest.mark.parametrize("check_time", ["25:00", "9", "ab:cd", "12:60"])
    def test_rejects_bad_time(self, db_session, check_time):
        with pytest.raises(ValueError, match="Invalid check time"):
            update_scheduler_settings(db_session, check_time, "UTC", True)

    def test_rejects_unknown_timezone(self, db_session):
        with pytest.raises(ValueError, match="Unknown timezone"):
            update_scheduler_settings(db_session, "09:00", "Mars/Olympus_Mons", True)


class TestShouldRun:
    @pytest.fixture
    def shanghai_nine(self, db_session):
        update_scheduler_settings(db_session, "09:00", "Asia/Shanghai", True)
        return db_session

    def test_due_in_local_time(self, shanghai_nine):
        assert should_run(shanghai_nine, now=datetime(2024, 3, 10, 1, 0, tzinfo=timezone.utc))

    def test_other_hour(self, shanghai_nine):
        assert not should_run(shanghai_nine, now=datetime(2024, 3, 10, 2, 0, tzinfo=timezone.utc))

    @pytest.mark.parametrize("check_time, tz_name, expected_utc_hour", [
        ("09:00", "Asia/Shanghai", 1),
        ("09:30", "Asia/Shanghai", 1),
        ("09:00", "Asia/Kolkata", 4),
        ("23:59", "UTC", 23),
    ])
    def test_fires_once_across_hourly_triggers(self, db_session, check_time, tz_name, expected_utc_hour):
        update_scheduler_settings(db_session, check_time, tz_name, True)

        fired = [
            hour for hour in range(24)
            if should_run(db_session, now=datetime(2024, 3, 10, hour, 0, tzinfo=timezone.utc))
        ]

        assert fired == [expected_utc_hour]

    def test_disabled(self, db_session):
        update_scheduler_settings(db_session, "09:00", "Asia/Shanghai", False)
        assert not should_run(db_session, now=datetime(2024, 3, 10, 1, 0, tzinfo=timezone.utc))


class TestJobs:
    def test_start_registers_both_jobs(self):
        with patch.object(scheduler_module, "scheduler") as fake:
            start_scheduler()

        job_ids = [c.kwargs["id"] for c in fake.add_job.call_args_list]
        assert job_ids == ["daily_billing", "notification_check"]
        fake.start.assert_called_once()

    def test_notification_check_skips_when_not_due(self, db_session):
        with patch("billflow.infrastructure.db.schema.ensure_schema"), \
                patch("billflow.infrastructure.db.session.get_session_factory", return_value=lambda: db_session), \
                patch.object(scheduler_module, "should_run", return_value=False), \
                patch("billflow.application.notifications.NotificationService") as service:
            scheduler_module._run_notification_check()

        service.assert_not_called()

    def test_daily_billing_survives_rate_refresh_failure(self, db_session):
        with patch("billflow.infrastructure.db.schema.ensure_schema"), \
                patch("billflow.infrastructure.db.session.get_session_factory", return_value=lambda: db_session), \
                patch("billflow.application.exchange_rates.update_exchange_rates", side_effect=RuntimeError("down")), \
                patch("billflow.application.notifications.SessionNotifier"), \
                patch("billflow.application.renewals.SubscriptionRenewalService") as renewals:
            scheduler_module._run_daily_billing()

        renewals.return_value.process_auto_renewals.assert_called_once()
        renewals.return_value.process_expired_subscriptions.assert_called_once()
