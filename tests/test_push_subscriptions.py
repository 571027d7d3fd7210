from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from pywebpush import WebPushException
from sqlalchemy import select
from sqlite_fixtures import memory_engine, session_factory

from officeflow.errors import ApiError, InputValidationError
from officeflow.models import PushSubscription
from officeflow.security import CallerContext
from officeflow.services.push_subscriptions import (
    deactivate_push_subscription,
    get_push_public_config,
    send_push_to_channel,
    upsert_push_subscription,
)
from officeflow.settings import Settings

SUPERVISOR = CallerContext(subject="sup-9", role="supervisor")
SUBSCRIPTION = {
    "endpoint": "https://push.example.com/send/abc",
    "keys": {"p256dh": "p256-key", "auth": "auth-secret"},
}


def _push_settings() -> Settings:
    return Settings(push_vapid_public_key="public-key", push_vapid_private_key="private-key")


class PushSubscriptionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.db = session_factory(self.engine)()
        settings = _push_settings()
        for target in (
            "officeflow.services.push_subscriptions.get_settings",
            "officeflow.settings.get_settings",
        ):
            patcher = patch(target, return_value=settings)
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_public_config(self) -> None:
        config = get_push_public_config()
        self.assertTrue(config["enabled"])
        self.assertEqual(config["vapid_public_key"], "public-key")
        self.assertEqual(config["channel"], "supervisors")

    def test_upsert_is_idempotent_per_endpoint(self) -> None:
        first = upsert_push_subscription(self.db, caller=SUPERVISOR, subscription=SUBSCRIPTION, user_agent="Firefox")
        second = upsert_push_subscription(
            self.db,
            caller=SUPERVISOR,
            subscription={**SUBSCRIPTION, "keys": {"p256dh": "rotated", "auth": "auth-secret"}},
            user_agent="Chrome",
        )
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.p256dh, "rotated")
        self.assertEqual(second.user_agent, "Chrome")
        self.assertEqual(second.channel, "supervisors")

    def test_incomplete_payload_is_rejected(self) -> None:
        with self.assertRaises(InputValidationError):
            upsert_push_subscription(self.db, caller=SUPERVISOR, subscription={"endpoint": "x"}, user_agent=None)
        with self.assertRaises(InputValidationError):
            upsert_push_subscription(
                self.db,
                caller=SUPERVISOR,
                subscription={"endpoint": "x", "keys": {"p256dh": "", "auth": "a"}},
                user_agent=None,
            )

    def test_unsubscribe(self) -> None:
        upsert_push_subscription(self.db, caller=SUPERVISOR, subscription=SUBSCRIPTION, user_agent=None)
        self.assertTrue(deactivate_push_subscription(self.db, caller=SUPERVISOR, endpoint=SUBSCRIPTION["endpoint"]))
        row = self.db.scalar(select(PushSubscription))
        self.assertFalse(row.is_active)
        other = CallerContext(subject="sup-10", role="supervisor")
        self.assertFalse(deactivate_push_subscription(self.db, caller=other, endpoint=SUBSCRIPTION["endpoint"]))

    def test_gone_endpoint_is_deactivated(self) -> None:
        upsert_push_subscription(self.db, caller=SUPERVISOR, subscription=SUBSCRIPTION, user_agent=None)
        gone = WebPushException("Push failed", response=SimpleNamespace(status_code=410, text="gone"))
        with patch("officeflow.services.push_subscriptions.webpush", side_effect=gone) as sender:
            result = send_push_to_channel(
                self.db,
                channel="supervisors",
                event_name="attendance-marked",
                data={"record_id": 1},
                timeout_seconds=1.0,
            )
        sender.assert_called_once()
        self.assertEqual(result, {"total_targets": 1, "sent": 0, "failed": 1, "deactivated": 1})
        row = self.db.scalar(select(PushSubscription))
        self.assertFalse(row.is_active)
        self.assertIn("Push failed", row.last_error)

    def test_successful_send(self) -> None:
        upsert_push_subscription(self.db, caller=SUPERVISOR, subscription=SUBSCRIPTION, user_agent=None)
        with patch("officeflow.services.push_subscriptions.webpush") as sender:
            result = send_push_to_channel(
                self.db,
                channel="supervisors",
                event_name="attendance-marked",
                data={"record_id": 1},
                timeout_seconds=1.0,
            )
        self.assertEqual(result["sent"], 1)
        kwargs = sender.call_args.kwargs
        self.assertEqual(kwargs["vapid_private_key"], "private-key")
        self.assertEqual(kwargs["subscription_info"]["endpoint"], SUBSCRIPTION["endpoint"])


class PushDisabledTests(unittest.TestCase):
    def test_subscribe_without_vapid_keys_is_unavailable(self) -> None:
        engine = memory_engine()
        db = session_factory(engine)()
        try:
            with patch("officeflow.services.push_subscriptions.is_push_enabled", return_value=False):
                with self.assertRaises(ApiError) as exc:
                    upsert_push_subscription(db, caller=SUPERVISOR, subscription=SUBSCRIPTION, user_agent=None)
                result = send_push_to_channel(
                    db,
                    channel="supervisors",
                    event_name="attendance-marked",
                    data={},
                    timeout_seconds=1.0,
                )
        finally:
            db.close()
            engine.dispose()
        self.assertEqual(exc.exception.status_code, 503)
        self.assertEqual(exc.exception.code, "PUSH_NOT_CONFIGURED")
        self.assertEqual(result["total_targets"], 0)


if __name__ == "__main__":
    unittest.main()
