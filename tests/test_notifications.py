"""Tests for push notification channels, topics, history, preferences and templates."""

import gc

import pytest
from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo

from src.notifications.config import (
    NotificationConfig,
    NotificationType,
    Topic,
    DEFAULT_NOTIFICATION_CONFIG,
    type_config,
)
from src.notifications.errors import (
    ErrorCode,
    GatewayError,
    InvalidTopicError,
    NotFoundError,
    UnknownTemplateError,
    ValidationError,
)
from src.notifications.models import (
    Channel,
    ChannelOutcome,
    HistoryEntry,
    Notification,
    NotificationPreferences,
    mask_token,
)
from src.notifications.store import UserLocks
from src.notifications.templates import TEMPLATES, list_templates, render
from src.notifications.topics import TopicIndex, parse_topic

PARIS = ZoneInfo("Europe/Paris")


class TestNotificationConfig:
    """Tests for notification configuration."""

    def test_default_limits(self):
        config = DEFAULT_NOTIFICATION_CONFIG
        assert config.max_channels_per_user == 5
        assert config.max_error_count == 5
        assert config.history_limit == 100
        assert config.max_bulk_targets == 500
        assert config.batch_size == 100
        assert config.batch_delay_seconds == 1.0

    def test_topics(self):
        assert Topic.HEALTH_TIPS.value == "health_tips"
        assert Topic.WORKOUT_REMINDERS.value == "workout_reminders"
        assert Topic.ACHIEVEMENTS.value == "achievements"

    def test_type_config_fallback(self):
        assert type_config(NotificationType.HEALTH_ALERT)["priority"] == "high"
        assert type_config(NotificationType.RECAP)["priority"] == "normal"


class TestErrors:
    """Tests for the error hierarchy."""

    def test_to_dict(self):
        err = NotFoundError("User 'x' not found", resource_type="user", resource_id="x")
        data = err.to_dict()
        assert data["error"] == "RESOURCE_NOT_FOUND"
        assert data["details"] == [{"resource_type": "user", "resource_id": "x"}]

    def test_unknown_template_is_not_found(self):
        err = UnknownTemplateError("nope", available=["a", "b"])
        assert isinstance(err, NotFoundError)
        assert err.error_code == ErrorCode.UNKNOWN_TEMPLATE
        assert err.details[0]["available"] == ["a", "b"]

    def test_gateway_error_masks_token(self):
        err = GatewayError("boom", permanent=True, token="x" * 40)
        assert err.details[0]["token"] == "x" * 20 + "..."
        assert err.details[0]["permanent"] is True


class TestModels:
    """Tests for notification data models."""

    def test_mask_token(self):
        assert mask_token("short") == "short"
        assert mask_token("a" * 30) == "a" * 20 + "..."

    def test_notification_validate(self):
        with pytest.raises(ValidationError):
            Notification(title=" ", body="b").validate()
        with pytest.raises(ValidationError):
            Notification(title="t", body="").validate()
        Notification(title="t", body="b").validate()

    def test_payload_stringifies_data(self):
        sent_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        n = Notification(
            title="Hi",
            body="There",
            type=NotificationType.ACHIEVEMENT,
            image_url="https://img/x.png",
            data={"points": 10, "flag": True},
        )
        payload = n.to_payload(user_id="u1", sent_at=sent_at)
        assert payload["notification"] == {"title": "Hi", "body": "There", "image": "https://img/x.png"}
        assert payload["data"]["type"] == "achievement"
        assert payload["data"]["user_id"] == "u1"
        assert payload["data"]["points"] == "10"
        assert payload["data"]["flag"] == "True"
        assert payload["data"]["timestamp"] == sent_at.isoformat()

    def test_channel_failure_policy(self):
        channel = Channel(token="t")
        for _ in range(4):
            assert channel.record_failure(permanent=False, max_errors=5) is False
        assert channel.active
        assert channel.record_failure(permanent=False, max_errors=5) is True
        assert not channel.active
        assert channel.deactivated_at is not None

    def test_channel_success_resets_errors(self):
        channel = Channel(token="t", error_count=3)
        channel.record_success()
        assert channel.error_count == 0
        assert channel.success_count == 1

    def test_history_entry_from_outcomes(self):
        n = Notification(title="t", body="b")
        outcomes = [
            ChannelOutcome(token="A", success=True),
            ChannelOutcome(token="B", success=False, permanent=True),
        ]
        entry = HistoryEntry.from_outcomes(n, outcomes)
        assert entry.channels_count == 2
        assert entry.success_count == 1
        assert entry.success is True


class TestQuietHours:
    """Tests for quiet hours evaluation."""

    def test_disabled_by_default(self):
        pref = NotificationPreferences()
        assert not pref.is_in_quiet_hours(datetime(2024, 3, 4, 23, 0, tzinfo=PARIS))

    def test_overnight_window_wraps_midnight(self):
        pref = NotificationPreferences(quiet_hours_enabled=True)
        assert pref.is_in_quiet_hours(datetime(2024, 3, 4, 23, 30, tzinfo=PARIS))
        assert pref.is_in_quiet_hours(datetime(2024, 3, 5, 2, 0, tzinfo=PARIS))
        assert pref.is_in_quiet_hours(datetime(2024, 3, 5, 7, 59, tzinfo=PARIS))
        assert not pref.is_in_quiet_hours(datetime(2024, 3, 5, 8, 0, tzinfo=PARIS))
        assert not pref.is_in_quiet_hours(datetime(2024, 3, 5, 12, 0, tzinfo=PARIS))

    def test_same_day_window(self):
        pref = NotificationPreferences(
            quiet_hours_enabled=True,
            quiet_hours_start="12:00",
            quiet_hours_end="14:00",
        )
        assert pref.is_in_quiet_hours(datetime(2024, 3, 4, 13, 0, tzinfo=PARIS))
        assert not pref.is_in_quiet_hours(datetime(2024, 3, 4, 14, 0, tzinfo=PARIS))

    def test_converts_to_user_timezone(self):
        pref = NotificationPreferences(quiet_hours_enabled=True)
        # 21:30 UTC is 22:30 in Paris during winter time
        assert pref.is_in_quiet_hours(datetime(2024, 1, 10, 21, 30, tzinfo=timezone.utc))

    def test_blocked_reason_order(self):
        pref = NotificationPreferences(enabled=False)
        now = datetime(2024, 3, 4, 12, 0, tzinfo=PARIS)
        assert pref.blocked_reason(NotificationType.TEST, now) == "notifications_disabled"
        pref.enabled = True
        pref.types[NotificationType.TEST] = False
        assert pref.blocked_reason(NotificationType.TEST, now) == "type_disabled"
        assert pref.blocked_reason(NotificationType.WELCOME, now) is None


class TestUserLocks:
    """Tests for per-user locking."""

    @pytest.mark.asyncio
    async def test_same_lock_while_held(self):
        locks = UserLocks()
        lock = locks.for_user("u1")
        async with lock:
            assert locks.for_user("u1") is lock
            assert locks.for_user("u2") is not lock

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self):
        locks = UserLocks()
        for i in range(50):
            async with locks.for_user(f"u{i}"):
                assert len(locks) >= 1
        gc.collect()
        assert len(locks) == 0


class TestChannelRegistry:
    """Tests for channel registration and health tracking."""

    @pytest.mark.asyncio
    async def test_register_new_channel(self, registry, store):
        store.add_user("u1")
        count = await registry.register("u1", "tok-1", {"platform": "ios"})
        assert count == 1
        channels = await registry.list_active("u1")
        assert channels[0].token == "tok-1"
        assert channels[0].platform == "ios"
        assert channels[0].success_count == 0

    @pytest.mark.asyncio
    async def test_register_unknown_user(self, registry):
        with pytest.raises(NotFoundError):
            await registry.register("ghost", "tok")

    @pytest.mark.asyncio
    async def test_register_blank_token(self, registry, store):
        store.add_user("u1")
        with pytest.raises(ValidationError):
            await registry.register("u1", "  ")

    @pytest.mark.asyncio
    async def test_reregister_refreshes_and_reactivates(self, registry, add_user, clock):
        user = add_user("u1", "tok-1")
        user.channels[0].deactivate()
        user.channels[0].device_info = {"platform": "android", "model": "P7"}

        count = await registry.register("u1", "tok-1", {"app_version": "2.0"})

        channel = user.channels[0]
        assert count == 1
        assert channel.active
        assert channel.deactivated_at is None
        assert channel.last_used_at == clock.now
        assert channel.device_info == {"platform": "android", "model": "P7", "app_version": "2.0"}

    @pytest.mark.asyncio
    async def test_sixth_channel_evicts_least_recently_used(self, registry, add_user):
        user = add_user("u1", "t0", "t1", "t2", "t3", "t4")
        count = await registry.register("u1", "t5")
        tokens = [c.token for c in user.channels]
        assert count == 5
        assert "t0" not in tokens
        assert "t5" in tokens

    @pytest.mark.asyncio
    async def test_never_more_than_limit(self, registry, store):
        store.add_user("u1")
        for i in range(12):
            assert await registry.register("u1", f"tok-{i}") <= 5
        assert len(await registry.list_channels("u1")) == 5

    @pytest.mark.asyncio
    async def test_unregister(self, registry, add_user):
        add_user("u1", "A", "B")
        assert await registry.unregister("u1", "A") is True
        assert await registry.unregister("u1", "A") is False
        assert [c.token for c in await registry.list_channels("u1")] == ["B"]

    @pytest.mark.asyncio
    async def test_list_active_sorted_by_recent_use(self, registry, add_user, clock):
        user = add_user("u1", "A", "B", "C")
        user.channels[0].mark_used(clock.now + timedelta(minutes=5))
        user.channels[2].deactivate()
        active = await registry.list_active("u1")
        assert [c.token for c in active] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_transient_failures_deactivate_at_threshold(self, registry, add_user):
        user = add_user("u1", "A")
        for _ in range(4):
            await registry.record_outcome("u1", "A", success=False)
        assert user.channels[0].active
        assert user.channels[0].error_count == 4
        await registry.record_outcome("u1", "A", success=False)
        assert not user.channels[0].active

    @pytest.mark.asyncio
    async def test_permanent_failure_deactivates_immediately(self, registry, add_user):
        user = add_user("u1", "A")
        await registry.record_outcome("u1", "A", success=False, permanent_failure=True)
        assert not user.channels[0].active
        assert await registry.list_active("u1") == []
        # retained for audit
        assert len(await registry.list_channels("u1")) == 1

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, registry, add_user, clock):
        user = add_user("u1", "A")
        await registry.record_outcome("u1", "A", success=False)
        await registry.record_outcome("u1", "A", success=False)
        clock.advance(minutes=1)
        await registry.record_outcome("u1", "A", success=True)
        channel = user.channels[0]
        assert channel.error_count == 0
        assert channel.success_count == 1
        assert channel.last_used_at == clock.now

    @pytest.mark.asyncio
    async def test_outcome_for_unknown_token_ignored(self, registry, add_user):
        add_user("u1", "A")
        await registry.record_outcome("u1", "gone", success=False, permanent_failure=True)
        assert (await registry.channel_stats("u1")) == {"total": 1, "active": 1, "inactive": 0}

    @pytest.mark.asyncio
    async def test_custom_limit(self, store, locks, clock):
        from src.notifications.channels import ChannelRegistry

        registry = ChannelRegistry(store, locks, NotificationConfig(max_channels_per_user=2), clock)
        store.add_user("u1")
        for token in ("a", "b", "c"):
            await registry.register("u1", token)
        assert len(await registry.list_channels("u1")) == 2


class TestTopicIndex:
    """Tests for topic subscription bookkeeping."""

    def test_parse_topic(self):
        assert parse_topic("health_tips") is Topic.HEALTH_TIPS
        assert parse_topic(Topic.ACHIEVEMENTS) is Topic.ACHIEVEMENTS
        with pytest.raises(InvalidTopicError):
            parse_topic("crypto_alerts")

    @pytest.mark.asyncio
    async def test_invalid_topic_fails_before_io(self, topics, gateway, add_user):
        add_user("u1", "A")
        with pytest.raises(InvalidTopicError):
            await topics.subscribe("u1", "not_a_topic")
        assert gateway.subscribed == []

    @pytest.mark.asyncio
    async def test_unknown_user(self, topics):
        with pytest.raises(NotFoundError):
            await topics.subscribe("ghost", "health_tips")

    @pytest.mark.asyncio
    async def test_subscribe_mirrors_active_tokens(self, topics, gateway, add_user):
        user = add_user("u1", "A", "B", "C")
        user.channels[2].deactivate()

        result = await topics.subscribe("u1", "health_tips")

        assert result.success
        assert result.changed
        assert result.tokens == 2
        assert result.success_count == 2
        assert sorted(gateway.subscribed[0][0]) == ["A", "B"]
        assert gateway.subscribed[0][1] == "health_tips"
        assert user.topics == [Topic.HEALTH_TIPS]
        assert topics.members_of("health_tips") == ["u1"]

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent(self, topics, add_user):
        user = add_user("u1", "A")
        await topics.subscribe("u1", Topic.ACHIEVEMENTS)
        result = await topics.subscribe("u1", Topic.ACHIEVEMENTS)
        assert result.changed is False
        assert user.topics == [Topic.ACHIEVEMENTS]
        assert topics.members_of(Topic.ACHIEVEMENTS) == ["u1"]

    @pytest.mark.asyncio
    async def test_subscribe_without_channels_records_membership(self, topics, gateway, add_user):
        add_user("u1")
        result = await topics.subscribe("u1", "workout_reminders")
        assert result.tokens == 0
        assert result.success
        assert gateway.subscribed == []
        assert await topics.topics_of("u1") == [Topic.WORKOUT_REMINDERS]

    @pytest.mark.asyncio
    async def test_partial_gateway_failure_reported(self, topics, gateway, add_user):
        user = add_user("u1", "A", "B")
        gateway.batch_failures = 1
        result = await topics.subscribe("u1", "health_tips")
        assert result.success_count == 1
        assert result.failure_count == 1
        assert not result.success
        assert result.error == "NOT_FOUND"
        # membership is not rolled back
        assert user.topics == [Topic.HEALTH_TIPS]

    @pytest.mark.asyncio
    async def test_gateway_error_reported_not_raised(self, topics, gateway, add_user):
        add_user("u1", "A", "B")
        gateway.batch_error = GatewayError("IID down", topic="health_tips")
        result = await topics.subscribe("u1", "health_tips")
        assert result.failure_count == 2
        assert result.error == "IID down"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, topics, gateway, add_user):
        user = add_user("u1", "A")
        await topics.subscribe("u1", "health_tips")
        result = await topics.unsubscribe("u1", "health_tips")
        assert result.changed
        assert user.topics == []
        assert topics.members_of("health_tips") == []
        assert gateway.unsubscribed == [(["A"], "health_tips")]

    @pytest.mark.asyncio
    async def test_unsubscribe_absent_is_noop(self, topics, add_user):
        add_user("u1")
        result = await topics.unsubscribe("u1", "achievements")
        assert result.changed is False
        assert result.success

    def test_load_rebuilds_index(self, registry, gateway, store):
        u1 = store.add_user("u1")
        u2 = store.add_user("u2")
        u1.topics = [Topic.HEALTH_TIPS, Topic.ACHIEVEMENTS]
        u2.topics = [Topic.HEALTH_TIPS]

        index = TopicIndex(registry, gateway)
        assert index.load([u1, u2]) == 3
        assert index.members_of("health_tips") == ["u1", "u2"]
        assert index.get_stats()["achievements"] == 1


class TestHistoryLog:
    """Tests for the bounded history log."""

    @pytest.mark.asyncio
    async def test_append_newest_first(self, history, store):
        store.add_user("u1")
        await history.append("u1", HistoryEntry(title="first", body="b", type=NotificationType.GENERAL))
        await history.append("u1", HistoryEntry(title="second", body="b", type=NotificationType.GENERAL))
        page = await history.page("u1")
        assert [e.title for e in page.entries] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_capped_at_limit(self, history, store):
        store.add_user("u1")
        for i in range(101):
            length = await history.append(
                "u1", HistoryEntry(title=f"n{i}", body="b", type=NotificationType.GENERAL)
            )
        assert length == 100
        page = await history.page("u1", limit=100)
        assert page.total == 100
        assert page.entries[0].title == "n100"
        # the oldest entry was evicted
        assert page.entries[-1].title == "n1"

    @pytest.mark.asyncio
    async def test_pagination(self, history, store):
        store.add_user("u1")
        for i in range(5):
            await history.append("u1", HistoryEntry(title=f"n{i}", body="b", type=NotificationType.GENERAL))
        page = await history.page("u1", limit=2, offset=2)
        assert [e.title for e in page.entries] == ["n2", "n1"]
        assert page.has_more
        last = await history.page("u1", limit=2, offset=4)
        assert not last.has_more
        assert last.to_dict()["pagination"]["total"] == 5

    @pytest.mark.asyncio
    async def test_invalid_paging(self, history, store):
        store.add_user("u1")
        with pytest.raises(ValidationError):
            await history.page("u1", limit=0)
        with pytest.raises(ValidationError):
            await history.page("u1", offset=-1)

    @pytest.mark.asyncio
    async def test_clear(self, history, store):
        store.add_user("u1")
        await history.append("u1", HistoryEntry(title="t", body="b", type=NotificationType.GENERAL))
        assert await history.clear("u1") == 1
        assert (await history.page("u1")).total == 0


class TestPreferenceManager:
    """Tests for preference management."""

    @pytest.mark.asyncio
    async def test_defaults(self, preferences, store):
        store.add_user("u1")
        pref = await preferences.get_preferences("u1")
        assert pref.enabled
        assert not pref.quiet_hours_enabled
        assert pref.timezone == "Europe/Paris"

    @pytest.mark.asyncio
    async def test_update_partial(self, preferences, store):
        store.add_user("u1")
        pref = await preferences.update_preferences(
            "u1",
            types={"health_tip": False},
            quiet_hours_enabled=True,
            quiet_hours_start="23:00",
        )
        assert pref.types[NotificationType.HEALTH_TIP] is False
        assert pref.types[NotificationType.ACHIEVEMENT] is True
        assert pref.quiet_hours_start == "23:00"
        assert pref.quiet_hours_end == "08:00"

    @pytest.mark.asyncio
    async def test_update_rejects_bad_values(self, preferences, store):
        store.add_user("u1")
        with pytest.raises(ValidationError):
            await preferences.update_preferences("u1", quiet_hours_start="25:00")
        with pytest.raises(ValidationError):
            await preferences.update_preferences("u1", timezone="Mars/Olympus_Mons")
        with pytest.raises(ValidationError):
            await preferences.update_preferences("u1", types={"price_alerts": False})

    @pytest.mark.asyncio
    async def test_is_notification_allowed(self, preferences, store):
        store.add_user("u1")
        await preferences.update_preferences("u1", quiet_hours_enabled=True)
        night = datetime(2024, 3, 4, 23, 0, tzinfo=PARIS)
        noon = datetime(2024, 3, 4, 12, 0, tzinfo=PARIS)
        assert await preferences.is_notification_allowed("u1", NotificationType.REMINDER, night) == (
            False,
            "quiet_hours",
        )
        assert await preferences.is_notification_allowed("u1", NotificationType.REMINDER, noon) == (
            True,
            "allowed",
        )

    @pytest.mark.asyncio
    async def test_reset_to_defaults(self, preferences, store):
        store.add_user("u1")
        await preferences.update_preferences("u1", enabled=False)
        pref = await preferences.reset_to_defaults("u1")
        assert pref.enabled


class TestTemplates:
    """Tests for the template catalog."""

    def test_catalog_names(self):
        assert set(TEMPLATES) == {
            "welcome",
            "daily_reminder",
            "hydration_reminder",
            "workout_reminder",
            "sleep_reminder",
            "achievement",
            "achievement_unlocked",
            "health_alert",
            "premium_feature",
            "subscription_upgrade",
            "test",
        }
        assert list_templates()["test"]["type"] == "test"

    def test_unknown_template(self):
        with pytest.raises(UnknownTemplateError) as exc_info:
            render("does_not_exist")
        assert "welcome" in exc_info.value.available

    def test_defaults(self):
        n = render("hydration_reminder")
        assert n.title == TEMPLATES["hydration_reminder"].title
        assert n.type == NotificationType.HEALTH_REMINDER
        assert n.data == {}

    def test_overrides_win(self):
        n = render("daily_reminder", overrides={"title": "Custom", "data": {"k": "v"}, "image_url": "u"})
        assert n.title == "Custom"
        assert n.body == TEMPLATES["daily_reminder"].body
        assert n.data == {"k": "v"}
        assert n.image_url == "u"

    def test_variables_fill_placeholders(self):
        n = render("welcome", variables={"user_name": "Léa"})
        assert n.title == "🎉 Bienvenue Léa !"

    def test_missing_placeholders_left_as_is(self):
        n = render("welcome")
        assert "{user_name}" in n.title

    def test_stray_braces_in_override(self):
        n = render("test", overrides={"title": "a {b"})
        assert n.title == "a {b"

    def test_user_text_with_field_syntax_kept_literal(self):
        n = render(
            "test",
            overrides={"title": "Score {0} {x[1]}", "body": "Hello {user.name} {user_name!r:>5}"},
            variables={"user_name": "Léa"},
        )
        assert n.title == "Score {0} {x[1]}"
        assert n.body == "Hello {user.name} {user_name!r:>5}"

    def test_override_placeholders_filled_next_to_literal_braces(self):
        n = render("test", overrides={"body": "{user.name} / {user_name}"}, variables={"user_name": "Léa"})
        assert n.body == "{user.name} / Léa"
