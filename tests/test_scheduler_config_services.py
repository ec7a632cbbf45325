"""Tests for scheduler config services."""

import os
from datetime import timedelta

import pytest

from app.services import scheduler_config

SCHEDULE_ENV = [
    "CELERY_BROKER_URL",
    "CELERY_RESULT_BACKEND",
    "CELERY_TIMEZONE",
    "REDIS_URL",
    "EVENT_RETRY_ENABLED",
    "EVENT_RETRY_INTERVAL_SECONDS",
    "EVENT_CLEANUP_ENABLED",
    "EVENT_RETENTION_DAYS",
    "NOTIFICATION_QUEUE_ENABLED",
    "INVOICE_DOCUMENT_SWEEP_ENABLED",
    "SUBSCRIPTION_EXPIRY_ENABLED",
    "TRIAL_REMINDER_ENABLED",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in SCHEDULE_ENV:
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Environment Variable Helper Tests
# =============================================================================


class TestEnvHelpers:
    def test_env_value_treats_empty_as_unset(self, monkeypatch):
        monkeypatch.setenv("EMPTY_VAR", "")
        assert scheduler_config._env_value("EMPTY_VAR") is None

    def test_env_value_when_not_set(self):
        os.environ.pop("NONEXISTENT_VAR", None)
        assert scheduler_config._env_value("NONEXISTENT_VAR") is None

    @pytest.mark.parametrize("value", ["1", "true", "TRUE", "yes", "on"])
    def test_env_bool_true_values(self, monkeypatch, value):
        monkeypatch.setenv("BOOL_VAR", value)
        assert scheduler_config._env_bool("BOOL_VAR") is True

    def test_env_bool_false_value(self, monkeypatch):
        monkeypatch.setenv("BOOL_VAR", "off")
        assert scheduler_config._env_bool("BOOL_VAR") is False

    def test_env_int_ignores_garbage(self, monkeypatch):
        monkeypatch.setenv("INT_VAR", "ten")
        assert scheduler_config._env_int("INT_VAR") is None
        assert scheduler_config._effective_int("INT_VAR", 7) == 7


# =============================================================================
# Celery Config Tests
# =============================================================================


class TestGetCeleryConfig:
    def test_defaults_to_local_redis(self):
        config = scheduler_config.get_celery_config()

        assert config["broker_url"] == "redis://localhost:6379/0"
        assert config["result_backend"] == "redis://localhost:6379/1"
        assert config["timezone"] == "UTC"
        assert config["task_acks_late"] is True

    def test_redis_url_used_for_both(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/3")

        config = scheduler_config.get_celery_config()

        assert config["broker_url"] == "redis://cache:6379/3"
        assert config["result_backend"] == "redis://cache:6379/3"

    def test_explicit_broker_wins(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/3")
        monkeypatch.setenv("CELERY_BROKER_URL", "redis://broker:6379/0")

        assert scheduler_config.get_celery_config()["broker_url"] == "redis://broker:6379/0"


# =============================================================================
# Beat Schedule Tests
# =============================================================================


class TestBuildBeatSchedule:
    def test_default_schedule(self):
        schedule = scheduler_config.build_beat_schedule()

        assert set(schedule) == {
            "payment_event_retry",
            "payment_event_stale",
            "payment_event_pending",
            "payment_event_cleanup",
            "notification_queue",
            "invoice_document_sweep",
            "subscription_expiry",
            "trial_ending_reminders",
        }
        assert schedule["payment_event_retry"]["schedule"] == timedelta(seconds=300)
        assert schedule["payment_event_cleanup"]["kwargs"] == {"retention_days": 30}

    def test_task_names_are_registered(self):
        import app.tasks  # noqa: F401
        from app.celery_app import celery_app

        for entry in scheduler_config.build_beat_schedule().values():
            assert entry["task"] in celery_app.tasks

    def test_disabling_event_retry(self, monkeypatch):
        monkeypatch.setenv("EVENT_RETRY_ENABLED", "false")

        schedule = scheduler_config.build_beat_schedule()

        assert "payment_event_retry" not in schedule
        assert "payment_event_pending" not in schedule
        assert "payment_event_cleanup" in schedule

    def test_interval_has_floor(self, monkeypatch):
        monkeypatch.setenv("EVENT_RETRY_INTERVAL_SECONDS", "1")
        monkeypatch.setenv("EVENT_RETENTION_DAYS", "0")

        schedule = scheduler_config.build_beat_schedule()

        assert schedule["payment_event_retry"]["schedule"] == timedelta(seconds=30)
        assert schedule["payment_event_cleanup"]["kwargs"] == {"retention_days": 1}
