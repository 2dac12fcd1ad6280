# tests/test_infrastructure.py
"""Tests for infrastructure components"""
import json
import logging

import pytest
from asyncpg.exceptions import PostgresError

from sitenotify.infra.db_resilience_async import is_transient_error, retry_on_transient_error


class TestDatabaseResilience:
    def test_is_transient_error_connection_error(self):
        exc = PostgresError("connection timeout")
        assert is_transient_error(exc) is True

    def test_is_transient_error_server_closed(self):
        exc = PostgresError("server closed the connection unexpectedly")
        assert is_transient_error(exc) is True

    def test_is_transient_error_builtin_connection_error(self):
        assert is_transient_error(ConnectionResetError("reset by peer")) is True

    def test_is_transient_error_non_transient(self):
        exc = ValueError("some other error")
        assert is_transient_error(exc) is False

    def test_is_transient_error_constraint_violation(self):
        exc = PostgresError('new row violates check constraint "notification_logs_status_check"')
        assert is_transient_error(exc) is False

    @pytest.mark.asyncio
    async def test_retry_decorator_succeeds_on_first_try(self):
        call_count = 0

        @retry_on_transient_error(max_retries=3)
        async def successful_operation():
            nonlocal call_count
            call_count += 1
            return "success"

        result = await successful_operation()
        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_decorator_succeeds_after_transient_error(self):
        call_count = 0

        @retry_on_transient_error(max_retries=3, initial_delay=0.01)
        async def operation_with_transient_error():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise PostgresError("connection timeout")
            return "success"

        result = await operation_with_transient_error()
        assert result == "success"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_retry_decorator_gives_up(self):
        call_count = 0

        @retry_on_transient_error(max_retries=2, initial_delay=0.01)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise PostgresError("too many connections")

        with pytest.raises(PostgresError):
            await always_failing()

        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retry_decorator_raises_non_transient_immediately(self):
        call_count = 0

        @retry_on_transient_error(max_retries=3)
        async def operation_with_non_transient_error():
            nonlocal call_count
            call_count += 1
            raise ValueError("not a transient error")

        with pytest.raises(ValueError):
            await operation_with_non_transient_error()

        assert call_count == 1  # Should not retry


class TestMetrics:
    def test_metrics_counter_increment(self):
        from sitenotify.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("test_counter", 1)
        collector.inc_counter("test_counter", 2)

        metrics = collector.get_metrics()
        assert metrics["counters"]["test_counter"] == 3

    def test_metrics_histogram_observe(self):
        from sitenotify.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.observe_histogram("test_histogram", 0.1)
        collector.observe_histogram("test_histogram", 0.2)
        collector.observe_histogram("test_histogram", 0.5)

        metrics = collector.get_metrics()
        stats = metrics["histograms"]["test_histogram"]
        assert stats["count"] == 3
        assert stats["min"] == 0.1
        assert stats["max"] == 0.5

    def test_metrics_with_labels(self):
        from sitenotify.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("notifications_sent_total", 1, {"channel": "push", "type": "safety_alert"})
        collector.inc_counter("notifications_sent_total", 2, {"channel": "email", "type": "safety_alert"})

        metrics = collector.get_metrics()
        assert metrics["counters"]["notifications_sent_total{channel=push,type=safety_alert}"] == 1
        assert metrics["counters"]["notifications_sent_total{channel=email,type=safety_alert}"] == 2

    def test_dispatch_metrics(self):
        from sitenotify.infra.metrics import DispatchMetrics, get_metrics_collector

        collector = get_metrics_collector()
        collector.reset()

        DispatchMetrics.delivered("push", "safety_alert")
        DispatchMetrics.failed("email", "safety_alert")
        DispatchMetrics.subscription_cleared()
        DispatchMetrics.deduped("daily_report_reminder", 0)
        DispatchMetrics.deduped("daily_report_reminder", 3)

        counters = collector.get_metrics()["counters"]
        assert counters["notifications_sent_total{channel=push,type=safety_alert}"] == 1
        assert counters["notifications_failed_total{channel=email,type=safety_alert}"] == 1
        assert counters["push_subscriptions_cleared_total"] == 1
        assert counters["notifications_deduped_total{type=daily_report_reminder}"] == 3

    def test_timer_observes_duration(self):
        from sitenotify.infra.metrics import Timer, get_metrics_collector

        collector = get_metrics_collector()
        collector.reset()

        with Timer("dispatch_duration_seconds", type="safety_alert"):
            pass

        stats = collector.get_metrics()["histograms"]["dispatch_duration_seconds{type=safety_alert}"]
        assert stats["count"] == 1
        assert stats["min"] >= 0


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("sitenotify.test", logging.WARNING, __file__, 1, "Push failed", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_context(self):
        from sitenotify.infra.logging_config import JSONFormatter

        line = JSONFormatter().format(self._record(dispatch_id="abcdef123456", channel="push"))
        data = json.loads(line)

        assert data["message"] == "Push failed"
        assert data["level"] == "WARNING"
        assert data["dispatch_id"] == "abcdef123456"
        assert data["channel"] == "push"
        assert "recipient_id" not in data

    def test_console_formatter_shortens_ids(self):
        from sitenotify.infra.logging_config import ConsoleFormatter

        line = ConsoleFormatter().format(
            self._record(dispatch_id="abcdef123456", recipient_id="11111111-2222", notification_type="safety_alert"),
        )

        assert "dispatch=abcdef12" in line
        assert "recipient=11111111" in line
        assert "type=safety_alert" in line

    def test_log_context_bind(self, caplog):
        from sitenotify.infra.logging_config import LogContext

        ctx = LogContext(logging.getLogger("sitenotify.test"), dispatch_id="d1", notification_type="safety_alert")
        child = ctx.bind(recipient_id="u1", channel=None)

        with caplog.at_level(logging.INFO, logger="sitenotify.test"):
            child.info("delivered")

        record = caplog.records[-1]
        assert record.dispatch_id == "d1"
        assert record.recipient_id == "u1"
        assert not hasattr(record, "channel")
        assert "recipient_id" not in ctx.context

    @pytest.mark.parametrize("email,masked", [
        ("kim.minsu@example.com", "ki***@example.com"),
        ("a@b.co", "a***@b.co"),
        (None, "***"),
        ("not-an-email", "***"),
    ])
    def test_mask_email(self, email, masked):
        from sitenotify.infra.logging_config import mask_email
        assert mask_email(email) == masked


class TestSettings:
    def test_defaults(self):
        from sitenotify.config import Settings
        s = Settings(_env_file=None)
        assert s.app_env == "dev"
        assert s.dispatch_max_concurrency == 20
        assert s.dispatch_deadline_seconds is None
        assert s.in_app_fallback_enabled is True

    def test_push_enabled_requires_all_vapid_fields(self):
        from sitenotify.config import Settings
        s = Settings(vapid_subject="mailto:ops@example.com", vapid_public_key="pub", _env_file=None)
        assert s.push_enabled is False
        s = Settings(
            vapid_subject="mailto:ops@example.com", vapid_public_key="pub", vapid_private_key="priv",
            _env_file=None,
        )
        assert s.push_enabled is True

    def test_smtp_sender_falls_back_to_user(self):
        from sitenotify.config import Settings
        s = Settings(smtp_host="smtp.example.com", smtp_user="noreply@example.com", _env_file=None)
        assert s.smtp_enabled is True

    def test_database_dsn_from_parts(self):
        from sitenotify.config import Settings
        s = Settings(
            database_url=None, pguser="app", pgpassword="pw", pghost="db", pgport=5433, pgdatabase="site",
            _env_file=None,
        )
        assert s.database_dsn == "postgresql://app:pw@db:5433/site"

    def test_invalid_app_env_rejected(self):
        from pydantic import ValidationError
        from sitenotify.config import Settings
        with pytest.raises(ValidationError):
            Settings(app_env="qa", _env_file=None)

    def test_production_requires_vapid(self):
        from sitenotify.config import Settings, validate_or_warn
        s = Settings(app_env="prod", email_notifications_enabled=False, _env_file=None)

        missing = s.validate_required_for_production()
        assert "vapid_private_key" in missing
        with pytest.raises(RuntimeError, match="Missing required settings"):
            validate_or_warn(s)

    def test_production_requires_smtp_when_email_enabled(self):
        from sitenotify.config import Settings
        s = Settings(
            app_env="prod",
            vapid_subject="mailto:ops@example.com", vapid_public_key="pub", vapid_private_key="priv",
            _env_file=None,
        )
        assert s.validate_required_for_production() == ["smtp_host", "smtp_from or smtp_user"]

    def test_non_production_only_warns(self):
        from sitenotify.config import Settings, warn_on_risky_config
        s = Settings(_env_file=None)
        warnings = warn_on_risky_config(s)
        assert any("push delivery is disabled" in w for w in warnings)

    def test_vapid_subject_format_warning(self):
        from sitenotify.config import Settings, warn_on_risky_config
        s = Settings(
            vapid_subject="ops@example.com", vapid_public_key="pub", vapid_private_key="priv",
            _env_file=None,
        )
        assert any("mailto:" in w for w in warn_on_risky_config(s))
