from datetime import datetime

from ntfy_sync.models import (
    NotificationRecord,
    RawMessage,
    SubscriptionRecord,
    normalize_base_url,
    normalize_tags,
)


class TestNotificationRecord:
    def test_from_raw_keeps_server_identity(self) -> None:
        raw = RawMessage(topic="alerts", id="srv1", time=100, message="hi", priority=9, tags=("a", "a", " b "))
        record = NotificationRecord.from_raw(raw, "sub", received_at=500)
        assert record.id == "srv1"
        assert record.time == 100
        assert record.priority == 5
        assert record.tags == ("a", "b")
        assert record.subscription_id == "sub"

    def test_from_raw_assigns_missing_fields(self) -> None:
        raw = RawMessage(topic="alerts")
        first = NotificationRecord.from_raw(raw, "sub", received_at=500)
        second = NotificationRecord.from_raw(raw, "sub", received_at=500)
        assert first.id != second.id
        assert first.time == 500
        assert first.priority == 3
        assert first.message == ""

    def test_display_title(self) -> None:
        assert NotificationRecord(id="a", subscription_id="s", time=1, title="").display_title() is None
        assert NotificationRecord(id="a", subscription_id="s", time=1, title="T").display_title() == "T"

    def test_short_date_time(self) -> None:
        when = datetime(2026, 3, 4, 5, 6)
        record = NotificationRecord(id="a", subscription_id="s", time=int(when.timestamp()))
        assert record.short_date_time(now=datetime(2026, 3, 4, 23, 0)) == "05:06"
        assert record.short_date_time(now=datetime(2026, 3, 5, 1, 0)) == "2026-03-04 05:06"


class TestSubscriptionRecord:
    def test_name_on_default_server(self) -> None:
        assert SubscriptionRecord(id="s", topic="alerts").name() == "alerts"

    def test_name_on_other_server(self) -> None:
        subscription = SubscriptionRecord(id="s", topic="alerts", base_url="https://ntfy.example.com")
        assert subscription.name() == "ntfy.example.com/alerts"
        assert subscription.topic_url() == "https://ntfy.example.com/alerts"

    def test_name_override(self) -> None:
        assert SubscriptionRecord(id="s", topic="alerts", display_name="Pager").name() == "Pager"

    def test_notification_count(self) -> None:
        assert SubscriptionRecord(id="s", topic="alerts", notification_ids=("a", "b")).notification_count == 2


class TestNormalization:
    def test_base_url(self) -> None:
        assert normalize_base_url(None) == "https://ntfy.sh"
        assert normalize_base_url(" https://ntfy.sh/ ") == "https://ntfy.sh"

    def test_tags(self) -> None:
        assert normalize_tags(None) == ()
        assert normalize_tags(["x", "", "y", "x"]) == ("x", "y")
